import logging
from dataclasses import dataclass

from errors import ExchangeError

log = logging.getLogger(__name__)

SELF_ACCESS = "self-access"
GRANTED = "granted"
NO_PERMISSION = "no permission"
ORACLE_ERROR = "permission oracle error"


@dataclass(frozen=True)
class AccessDecision:
    authorized: bool
    reason: str


def decide(requester_address: str, patient_address: str, oracle) -> AccessDecision:
    """
    Decide whether ``requester_address`` may read ``patient_address``'s records.

    Self-access short-circuits before the oracle is touched. Any oracle
    failure denies. Computed fresh per call, never cached.
    """
    if requester_address.lower() == patient_address.lower():
        return AccessDecision(True, SELF_ACCESS)

    try:
        permitted = oracle.has_permission(patient_address, requester_address)
    except Exception as e:
        log.warning("permission check for %s on %s failed: %r", requester_address, patient_address, e)
        # ExchangeError messages are fixed text; anything else may carry node details
        cause = e.message if isinstance(e, ExchangeError) else ORACLE_ERROR
        return AccessDecision(False, f"verification failed: {cause}")

    if permitted:
        return AccessDecision(True, GRANTED)
    return AccessDecision(False, NO_PERMISSION)
