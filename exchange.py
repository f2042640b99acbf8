"""
Upload and retrieve pipelines.

Each request walks the same states:

    Authenticating -> Validating -> Authorizing -> StoreCheck -> Processing -> Responding

and any state may end the request with an ExchangeError, which carries the
state it failed in. No state retries and none compensates: the only durable
side effect is the store write on upload, and a repeated upload simply
lands under a new address.
"""
import enum
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from web3 import Web3

import config
from access import decide
from envelope import frame, open_envelope, seal, unframe
from errors import (
    ActionMismatch, ExchangeError, Forbidden, ParamsMissing, PayloadTooLarge,
    ServiceUnavailable, UnsupportedMediaType,
)
from wallet_auth import Action, SignatureVerifier, VerifiedIdentity

log = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF-"


class PipelineState(str, enum.Enum):
    AUTHENTICATING = "Authenticating"
    VALIDATING = "Validating"
    AUTHORIZING = "Authorizing"
    STORE_CHECK = "StoreCheck"
    PROCESSING = "Processing"
    RESPONDING = "Responding"


@dataclass(frozen=True)
class UploadResult:
    storage_address: str
    key: str
    original_name: Optional[str]
    original_size: int
    patient_address: str
    requester_address: str

    def to_dict(self) -> dict:
        return {
            "success": True,
            "storageAddress": self.storage_address,
            "key": self.key,
            "message": "File encrypted and uploaded successfully",
            "metadata": {
                "originalName": self.original_name,
                "originalSize": self.original_size,
                "patientAddress": self.patient_address,
                "requesterAddress": self.requester_address,
            },
        }


@dataclass(frozen=True)
class RetrieveResult:
    data: bytes
    content_type: str
    filename: str


def describe_document(data: bytes):
    if data.startswith(PDF_MAGIC):
        return "application/pdf", "medical-record.pdf"
    return "application/octet-stream", "medical-record.bin"


class ExchangeService:
    """
    Composes verifier, access engine, ledger client and store. Built once at
    start-up; holds no per-request state, so concurrent requests share it
    freely.
    """

    def __init__(
        self,
        store,
        ledger,
        verifier: Optional[SignatureVerifier] = None,
        max_upload_bytes: int = config.MAX_UPLOAD_BYTES,
        allowed_content_types: Sequence[str] = config.ALLOWED_CONTENT_TYPES,
    ):
        self.store = store
        self.ledger = ledger
        self.verifier = verifier or SignatureVerifier()
        self.max_upload_bytes = max_upload_bytes
        self.allowed_content_types = tuple(t.lower() for t in allowed_content_types)

    # -------- Upload --------
    def upload(
        self,
        headers: Mapping[str, str],
        data: Optional[bytes],
        patient_address: Optional[str],
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> UploadResult:
        with self._stage("upload", PipelineState.AUTHENTICATING):
            identity = self._authenticate(headers, Action.UPLOAD)

        with self._stage("upload", PipelineState.VALIDATING):
            if not data:
                raise ParamsMissing("No file uploaded")
            patient = self._require_address(patient_address, "patientAddress")
            if len(data) > self.max_upload_bytes:
                raise PayloadTooLarge(f"File exceeds the {self.max_upload_bytes} byte limit")
            if self.allowed_content_types:
                mime = (content_type or "").split(";")[0].strip().lower()
                if mime not in self.allowed_content_types:
                    raise UnsupportedMediaType(
                        f"Only {', '.join(self.allowed_content_types)} files are allowed"
                    )

        with self._stage("upload", PipelineState.AUTHORIZING):
            if not self.ledger.is_verified_issuer(identity.address):
                raise Forbidden("not a verified issuer")

        with self._stage("upload", PipelineState.STORE_CHECK):
            self._require_store()

        with self._stage("upload", PipelineState.PROCESSING):
            log.info("Encrypting file: %s (%d bytes)", filename, len(data))
            envelope, key = seal(data)
            storage_address = self.store.put(frame(envelope))

        with self._stage("upload", PipelineState.RESPONDING):
            return UploadResult(
                storage_address=storage_address,
                key=key,
                original_name=filename,
                original_size=len(data),
                patient_address=patient,
                requester_address=identity.address,
            )

    # -------- Retrieve --------
    def retrieve(
        self,
        headers: Mapping[str, str],
        storage_address: Optional[str],
        key: Optional[str],
        patient_address: Optional[str],
    ) -> RetrieveResult:
        with self._stage("retrieve", PipelineState.AUTHENTICATING):
            identity = self._authenticate(headers, Action.RETRIEVE)

        with self._stage("retrieve", PipelineState.VALIDATING):
            if not storage_address or not key:
                raise ParamsMissing("storageAddress and key are required")
            patient = self._require_address(patient_address, "patientAddress")

        with self._stage("retrieve", PipelineState.AUTHORIZING):
            decision = decide(identity.address, patient, self.ledger)
            log.info("Access %s for %s on records of %s: %s",
                     "granted" if decision.authorized else "denied",
                     identity.address, patient, decision.reason)
            if not decision.authorized:
                raise Forbidden(decision.reason)

        with self._stage("retrieve", PipelineState.STORE_CHECK):
            self._require_store()

        with self._stage("retrieve", PipelineState.PROCESSING):
            plaintext = open_envelope(unframe(self.store.get(storage_address)), key)

        with self._stage("retrieve", PipelineState.RESPONDING):
            content_type, name = describe_document(plaintext)
            return RetrieveResult(data=plaintext, content_type=content_type, filename=name)

    # -------- helpers --------
    def store_available(self) -> bool:
        return self.store.is_available()

    def _authenticate(self, headers: Mapping[str, str], expected: Action) -> VerifiedIdentity:
        identity = self.verifier.verify(headers)
        if identity.action is not expected:
            raise ActionMismatch(
                f"Signed action '{identity.action.value}' does not match this endpoint ('{expected.value}')"
            )
        return identity

    def _require_address(self, value: Optional[str], field: str) -> str:
        if not value or not Web3.is_address(value):
            raise ParamsMissing(f"{field} is required and must be a wallet address")
        return Web3.to_checksum_address(value)

    def _require_store(self) -> None:
        if not self.store.is_available():
            raise ServiceUnavailable(
                f"{getattr(self.store, 'name', 'storage')} service unavailable. Please ensure it is running on the configured endpoint"
            )

    @contextmanager
    def _stage(self, pipeline: str, state: PipelineState):
        log.debug("%s: %s", pipeline, state.value)
        try:
            yield
        except ExchangeError as e:
            if e.state is None:
                e.state = state
            log.info("%s failed in %s: %s (%s)", pipeline, state.value, e.kind, e.message)
            raise
