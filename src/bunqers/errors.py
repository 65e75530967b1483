"""Exception taxonomy for the bunqers client."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from bunqers.types import ApiErrorDescription


class BunqersError(Exception):
    """Base class for every error raised by this package."""


class KeyGenerationError(BunqersError):
    pass


class KeyFormatError(BunqersError):
    pass


class TransportError(BunqersError):
    def __init__(self, message: str, *, method: str, path: str):
        super().__init__(f"{method} {path}: {message}")
        self.method = method
        self.path = path


class RateLimited(BunqersError):
    def __init__(self, *, method: str, path: str, attempts: int):
        super().__init__(f"{method} {path}: still rate limited after {attempts} attempts")
        self.method = method
        self.path = path
        self.attempts = attempts


class SignatureInvalid(BunqersError):
    pass


class MessengerStateError(BunqersError, RuntimeError):
    pass


class EnvelopeError(BunqersError):
    pass


class MalformedJson(EnvelopeError):
    pass


class ShapeMismatch(EnvelopeError):
    """Response body does not have the shape the caller asked for.

    ``path`` points at the offending element, e.g. ``Response[0].UserPerson.id``.
    """

    def __init__(self, message: str, path: str = ""):
        self.message = message
        self.path = path
        super().__init__(f"{path}: {message}" if path else message)

    def prefixed(self, prefix: str) -> ShapeMismatch:
        if not self.path:
            return ShapeMismatch(self.message, prefix)
        joiner = "" if self.path.startswith("[") else "."
        return ShapeMismatch(self.message, f"{prefix}{joiner}{self.path}")


class ApiError(BunqersError):
    def __init__(self, errors: list[ApiErrorDescription], status_code: int | None = None):
        self.errors = errors
        self.status_code = status_code
        summary = "; ".join(error.description for error in errors) or "no description"
        prefix = f"HTTP {status_code}: " if status_code is not None else ""
        super().__init__(f"{prefix}{summary}")


class CredentialStoreError(BunqersError):
    pass


class BuildErrorReason(str, Enum):
    KEY_SERIALIZATION = "key_serialization"
    KEY_DESERIALIZATION = "key_deserialization"
    TRANSPORT = "transport"
    API_ERROR = "api_error"
    RESPONSE = "response"
    OWNER_MISMATCH = "owner_mismatch"


class BuildError(BunqersError):
    """A credential stage transition failed.

    ``stage`` is the credential the transition was called with, unchanged, so
    the caller can retry it or fall back with :meth:`fallback`.
    """

    def __init__(self, reason: BuildErrorReason, stage: Any, cause: Exception | None = None):
        self.reason = reason
        self.stage = stage
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"{type(stage).__name__} transition failed ({reason.value}){detail}")

    @property
    def api_errors(self) -> list[ApiErrorDescription]:
        if isinstance(self.cause, ApiError):
            return self.cause.errors
        return []

    def fallback(self) -> Any:
        return self.stage.downgrade()
