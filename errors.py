"""
Failure taxonomy for the record exchange.

Every pipeline stage raises one of these; the HTTP layer renders them with
``status_code``. ``state`` is filled in by the pipeline with the stage that
failed.
"""
from typing import Optional


class ExchangeError(Exception):
    status_code = 500
    error = "Request failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.error
        self.state = None
        super().__init__(self.message)

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        out = {"error": self.error, "message": self.message, "kind": self.kind}
        if self.state is not None:
            out["state"] = getattr(self.state, "value", self.state)
        return out


# ----- authentication (401) -----
class AuthError(ExchangeError):
    status_code = 401
    error = "Authentication failed"


class HeadersMissing(AuthError):
    error = "Authentication required"


class Expired(AuthError):
    error = "Authentication expired"


class Malformed(AuthError):
    error = "Malformed authentication"


class SignatureMismatch(AuthError):
    error = "Invalid signature"


# ----- validation (400 family) -----
class ValidationFailed(ExchangeError):
    status_code = 400
    error = "Bad request"


class ActionMismatch(ValidationFailed):
    error = "Action mismatch"


class ParamsMissing(ValidationFailed):
    error = "Missing parameters"


class PayloadTooLarge(ValidationFailed):
    status_code = 413
    error = "Payload too large"


class UnsupportedMediaType(ValidationFailed):
    status_code = 415
    error = "Unsupported file type"


# ----- authorization (403) -----
class Forbidden(ExchangeError):
    status_code = 403
    error = "Access denied"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Access denied: {reason}")

    def to_dict(self) -> dict:
        out = super().to_dict()
        out["reason"] = self.reason
        return out


# ----- upstream dependencies (503) -----
class UpstreamUnavailable(ExchangeError):
    status_code = 503
    error = "Temporarily unavailable"


class OracleUnavailable(UpstreamUnavailable):
    error = "Permission ledger unavailable"


class ServiceUnavailable(UpstreamUnavailable):
    error = "Storage service unavailable"


# ----- record level -----
class RecordNotFound(ExchangeError):
    status_code = 404
    error = "Record not found"


class DecryptionFailed(ExchangeError):
    """Wrong key, wrong IV, tampered data and garbled framing all look the same."""
    status_code = 422
    error = "Decryption failed"

    def __init__(self):
        super().__init__("The record could not be decrypted with the supplied key")
