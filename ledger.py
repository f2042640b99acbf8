"""
Read-only client for the on-chain permission registry.

Two facts are queried, both uncached so a revocation takes effect on the
very next request:

- ``verifiedDoctors(doctor)``: may this address issue records
- ``accessPermissions(patient, doctor)``: has the patient granted read access

Any transport, timeout or contract-call failure raises OracleUnavailable.
Nothing here retries.
"""
import logging
from typing import Optional

from web3 import Web3

import config
from errors import OracleUnavailable

log = logging.getLogger(__name__)

REGISTRY_ABI = [
    {
        "name": "accessPermissions",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "patient", "type": "address"},
            {"name": "doctor", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "verifiedDoctors",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "doctor", "type": "address"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
]


class LedgerClient:
    def __init__(
        self,
        rpc_url: str = config.RPC_URL,
        contract_address: str = config.CONTRACT_ADDRESS,
        timeout: float = config.LEDGER_TIMEOUT_SECONDS,
    ):
        self.rpc_url = rpc_url
        self.contract_address = contract_address
        self.timeout = timeout
        self._w3: Optional[Web3] = None
        self._contract = None

    def connect(self) -> None:
        if not self.contract_address:
            raise OracleUnavailable("CONTRACT_ADDRESS not set in environment")
        if not Web3.is_address(self.contract_address):
            raise OracleUnavailable(f"CONTRACT_ADDRESS is not a valid address: {self.contract_address}")
        self._w3 = Web3(Web3.HTTPProvider(self.rpc_url, request_kwargs={"timeout": self.timeout}))
        self._contract = self._w3.eth.contract(
            address=Web3.to_checksum_address(self.contract_address), abi=REGISTRY_ABI
        )
        log.info("Permission registry initialized at %s via %s", self.contract_address, self.rpc_url)

    def is_available(self) -> bool:
        if self._w3 is None:
            return False
        try:
            return bool(self._w3.is_connected())
        except Exception as e:
            log.warning("ledger connectivity check failed: %s", e)
            return False

    def is_verified_issuer(self, address: str) -> bool:
        return self._call("verifiedDoctors", address)

    def has_permission(self, patient_address: str, requester_address: str) -> bool:
        return self._call("accessPermissions", patient_address, requester_address)

    def _call(self, fn_name: str, *addresses: str) -> bool:
        if self._contract is None:
            raise OracleUnavailable("ledger client not connected")
        try:
            args = [Web3.to_checksum_address(a) for a in addresses]
            return bool(getattr(self._contract.functions, fn_name)(*args).call())
        except Exception as e:
            log.error("Error calling %s on permission registry: %s", fn_name, e)
            raise OracleUnavailable("permission registry query failed")
