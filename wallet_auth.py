"""
Wallet signature authentication.

Clients send four headers:

- ``x-wallet-address``: the wallet claiming to make the request
- ``x-wallet-signature``: EIP-191 personal signature of ``{namespace}:{action}:{timestamp}``
- ``x-wallet-timestamp``: unix seconds, must be within the freshness window
- ``x-wallet-action``: ``upload`` or ``retrieve``

The identity handed downstream is always the address recovered from the
signature, never the claimed header value.
"""
import enum
import logging
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from eth_account import Account
from eth_account.messages import encode_defunct

import config
from errors import Expired, HeadersMissing, Malformed, SignatureMismatch

log = logging.getLogger(__name__)

ADDRESS_HEADER = "x-wallet-address"
SIGNATURE_HEADER = "x-wallet-signature"
TIMESTAMP_HEADER = "x-wallet-timestamp"
ACTION_HEADER = "x-wallet-action"


class Action(str, enum.Enum):
    UPLOAD = "upload"
    RETRIEVE = "retrieve"


@dataclass(frozen=True)
class SignedRequest:
    claimed_address: str
    signature: str
    timestamp: int
    action: Action
    timestamp_text: str  # exactly as sent; the signed message uses this form


@dataclass(frozen=True)
class VerifiedIdentity:
    address: str  # checksummed, recovered from the signature
    action: Action


def build_auth_message(action: str, timestamp, namespace: str = config.AUTH_NAMESPACE) -> str:
    return f"{namespace}:{action}:{timestamp}"


def parse_headers(headers: Mapping[str, str]) -> SignedRequest:
    address = headers.get(ADDRESS_HEADER)
    signature = headers.get(SIGNATURE_HEADER)
    timestamp = headers.get(TIMESTAMP_HEADER)
    action = headers.get(ACTION_HEADER)
    if not address or not signature or not timestamp or not action:
        raise HeadersMissing(
            "Missing wallet authentication headers "
            f"({ADDRESS_HEADER}, {SIGNATURE_HEADER}, {TIMESTAMP_HEADER}, {ACTION_HEADER})"
        )
    try:
        ts = int(timestamp)
    except ValueError:
        raise Malformed("Timestamp must be an integer number of seconds")
    try:
        act = Action(action)
    except ValueError:
        raise Malformed(f"Unsupported action '{action}'")
    return SignedRequest(claimed_address=address, signature=signature, timestamp=ts, action=act,
                         timestamp_text=timestamp)


class SignatureVerifier:
    def __init__(
        self,
        namespace: str = config.AUTH_NAMESPACE,
        window_seconds: int = config.AUTH_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.namespace = namespace
        self.window_seconds = window_seconds
        self.clock = clock

    def verify(self, headers: Mapping[str, str]) -> VerifiedIdentity:
        req = parse_headers(headers)

        # Symmetric: tolerates clock skew in both directions. Exactly at the
        # window edge is still accepted.
        now = int(self.clock())
        if abs(now - req.timestamp) > self.window_seconds:
            raise Expired("Timestamp is too old or too far in the future. Please sign a new message.")

        message = build_auth_message(req.action.value, req.timestamp_text, self.namespace)
        try:
            recovered = Account.recover_message(encode_defunct(text=message), signature=req.signature)
        except Exception as e:
            log.debug("signature recovery failed: %s", e)
            raise Malformed("Signature could not be decoded")

        if recovered.lower() != req.claimed_address.lower():
            raise SignatureMismatch("Wallet signature does not match the claimed address")

        log.info("Authenticated request from %s for action: %s", recovered, req.action.value)
        return VerifiedIdentity(address=recovered, action=req.action)


def sign_request_headers(
    private_key,
    action: str,
    timestamp: Optional[int] = None,
    namespace: str = config.AUTH_NAMESPACE,
) -> dict:
    """Client side: produce the four auth headers for ``action``."""
    action = Action(action).value
    account = Account.from_key(private_key)
    ts = int(time.time()) if timestamp is None else int(timestamp)
    signed = Account.sign_message(encode_defunct(text=build_auth_message(action, ts, namespace)), private_key=account.key)
    return {
        ADDRESS_HEADER: account.address,
        SIGNATURE_HEADER: "0x" + bytes(signed.signature).hex(),
        TIMESTAMP_HEADER: str(ts),
        ACTION_HEADER: action,
    }
