"""Error types raised by the session manager and its service clients."""

from enum import Enum
from typing import Any, Optional

import httpx


class ErrorCode(str, Enum):
    """Error codes surfaced to callers.

    Codes sent by the identity service are passed through verbatim, so an
    `AuthServiceError.code` is not guaranteed to be a member of this enum.
    """

    # Session lifecycle
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    REFRESH_TOKEN_EXPIRED = "REFRESH_TOKEN_EXPIRED"
    NO_REFRESH_TOKEN = "NO_REFRESH_TOKEN"
    EMAIL_NOT_VERIFIED = "EMAIL_NOT_VERIFIED"

    # Generic
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    STORAGE_ERROR = "STORAGE_ERROR"

    # Per-operation fallbacks
    REGISTRATION_ERROR = "REGISTRATION_ERROR"
    LOGIN_ERROR = "LOGIN_ERROR"
    PROFILE_ERROR = "PROFILE_ERROR"
    PROFILE_UPDATE_ERROR = "PROFILE_UPDATE_ERROR"
    PASSWORD_RESET_ERROR = "PASSWORD_RESET_ERROR"
    PASSWORD_CHANGE_ERROR = "PASSWORD_CHANGE_ERROR"
    EMAIL_CHANGE_ERROR = "EMAIL_CHANGE_ERROR"
    DELETE_ACCOUNT_ERROR = "DELETE_ACCOUNT_ERROR"
    VERIFICATION_ERROR = "VERIFICATION_ERROR"
    RESEND_ERROR = "RESEND_ERROR"
    EMAIL_CHANGE_VERIFICATION_ERROR = "EMAIL_CHANGE_VERIFICATION_ERROR"

    # Specific server-side conditions
    INVALID_RESET_TOKEN = "INVALID_RESET_TOKEN"
    EXPIRED_RESET_TOKEN = "EXPIRED_RESET_TOKEN"
    SAME_EMAIL = "SAME_EMAIL"
    PENDING_EMAIL_CHANGE_EXISTS = "PENDING_EMAIL_CHANGE_EXISTS"
    EMAIL_ALREADY_EXISTS = "EMAIL_ALREADY_EXISTS"
    PASSWORD_MISMATCH = "PASSWORD_MISMATCH"
    PASSWORD_TOO_SHORT = "PASSWORD_TOO_SHORT"
    PASSWORD_TOO_WEAK = "PASSWORD_TOO_WEAK"
    SAME_PASSWORD = "SAME_PASSWORD"
    INVALID_CURRENT_PASSWORD = "INVALID_CURRENT_PASSWORD"
    INVALID_CONFIRMATION = "INVALID_CONFIRMATION"


class TransportError(Exception):
    """Exception raised when an identity service call fails.

    `status_code` is None when the request never produced a response
    (connection refused, timeout, ...).
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        payload: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload or {}

    @classmethod
    def from_response(cls, response: httpx.Response) -> "TransportError":
        """Build from a failed response, tolerating non-JSON bodies."""
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}
        return cls(
            f"{response.request.method} {response.request.url.path} failed "
            f"with status {response.status_code}",
            status_code=response.status_code,
            payload=payload,
        )

    @property
    def code(self) -> Optional[str]:
        """Error code reported by the identity service, if any."""
        code = self.payload.get("code")
        return code if isinstance(code, str) else None

    @property
    def server_message(self) -> Optional[str]:
        """Human-readable error reported by the identity service, if any."""
        message = self.payload.get("error")
        return message if isinstance(message, str) else None


class AuthServiceError(Exception):
    """Normalized failure surfaced to the session manager and the UI."""

    def __init__(
        self,
        message: str,
        code: str,
        *,
        details: Optional[list[Any]] = None,
        requires_verification: bool = False,
        remaining_seconds: Optional[int] = None,
        retry_after: Optional[int] = None,
        field: Optional[str] = None,
        email: Optional[str] = None,
        pending_email: Optional[str] = None,
        expired: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code.value if isinstance(code, ErrorCode) else code
        self.details = details or []
        self.requires_verification = requires_verification
        self.remaining_seconds = remaining_seconds
        self.retry_after = retry_after
        self.field = field
        self.email = email
        self.pending_email = pending_email
        self.expired = expired

    @property
    def rate_limited(self) -> bool:
        return self.code == ErrorCode.RATE_LIMIT_EXCEEDED.value

    @classmethod
    def from_transport(
        cls,
        error: TransportError,
        fallback_message: str,
        fallback_code: ErrorCode,
        **kwargs: Any,
    ) -> "AuthServiceError":
        """Normalize a transport failure, preferring the server's message and code.

        A failure that never produced a response is reported as NETWORK_ERROR.
        """
        details = error.payload.get("details")
        if error.status_code is None:
            fallback_code = ErrorCode.NETWORK_ERROR
        return cls(
            error.server_message or fallback_message,
            error.code or fallback_code,
            details=details if isinstance(details, list) else [],
            **kwargs,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the `{message, code, details?}` shape used by the UI."""
        data: dict[str, Any] = {"message": self.message, "code": self.code}
        if self.details:
            data["details"] = self.details
        if self.requires_verification:
            data["requiresVerification"] = True
        if self.remaining_seconds is not None:
            data["remainingSeconds"] = self.remaining_seconds
        if self.retry_after is not None:
            data["retryAfter"] = self.retry_after
        if self.field:
            data["field"] = self.field
        if self.email:
            data["email"] = self.email
        if self.pending_email:
            data["pendingEmail"] = self.pending_email
        if self.expired:
            data["expired"] = True
        return data

    def __repr__(self) -> str:
        return f"AuthServiceError(code={self.code!r}, message={self.message!r})"
