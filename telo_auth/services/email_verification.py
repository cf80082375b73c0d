"""Email verification service client.

Provides functionality to:
- Verify an email address from the token in a verification link
- Resend the verification email (rate limited by the identity service)
- Request and confirm an email address change
"""

import re
from dataclasses import dataclass
from typing import Optional

from pydantic import ValidationError

from telo_auth.errors import AuthServiceError, ErrorCode, TransportError
from telo_auth.schemas.auth import ActionResult, AuthResult, TokenPair, UserRecord
from telo_auth.services.transport import AuthenticatedTransport, response_body
from telo_auth.storage.token_store import TokenStore
from telo_auth.utils.logging import get_logger

logger = get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# Used when a 429 response omits remainingSeconds
DEFAULT_RATE_LIMIT_SECONDS = 60


def is_valid_email(email: Optional[str]) -> bool:
    """Check email format before calling the identity service."""
    if not email:
        return False
    return EMAIL_PATTERN.match(email.strip()) is not None


def normalize_email(email: str) -> str:
    return email.strip().lower()


def format_email_for_display(email: Optional[str]) -> str:
    """Partially mask an email address, e.g. "jo***n@example.com".

    Local parts of three characters or fewer are left unmasked.
    """
    if not email:
        return ""

    local, _, domain = email.partition("@")
    if not local or not domain:
        return email

    if len(local) <= 3:
        return email

    return f"{local[:2]}***{local[-1]}@{domain}"


@dataclass
class VerificationStatus:
    """Verification state derived from the cached user record."""

    is_verified: bool
    email: Optional[str]
    has_user: bool


def get_verification_status(store: TokenStore) -> VerificationStatus:
    user = store.get_user()
    if user is None:
        return VerificationStatus(is_verified=False, email=None, has_user=False)
    return VerificationStatus(
        is_verified=user.is_email_verified, email=user.email, has_user=True
    )


def _hint(e: TransportError, default: str) -> str:
    """Return the service's follow-up hint for the user, or a default."""
    hint = e.payload.get("message")
    return hint if isinstance(hint, str) and hint else default


def _code(e: TransportError, default: ErrorCode) -> str:
    if e.code:
        return e.code
    return (ErrorCode.NETWORK_ERROR if e.status_code is None else default).value


def _rate_limit_error(e: TransportError, fallback_message: str) -> AuthServiceError:
    remaining = e.payload.get("remainingSeconds")
    if not isinstance(remaining, int) or remaining <= 0:
        remaining = DEFAULT_RATE_LIMIT_SECONDS
    return AuthServiceError(
        e.payload.get("message") or e.server_message or fallback_message,
        ErrorCode.RATE_LIMIT_EXCEEDED,
        remaining_seconds=remaining,
    )


class EmailVerificationService:
    """Client for the identity service's email verification endpoints."""

    def __init__(self, transport: AuthenticatedTransport) -> None:
        self.transport = transport

    async def verify_email(self, token: str) -> AuthResult:
        """Verify an email address from a verification link token.

        Returns:
            AuthResult with the verified user and, when the service mints a
            session, its token pair. Nothing is stored here.
        """
        try:
            response = await self.transport.get(f"/auth/verify-email/{token}")
        except TransportError as e:
            raise AuthServiceError(
                e.server_message or "Email verification failed",
                _code(e, ErrorCode.VERIFICATION_ERROR),
                details=[_hint(e, "Please try again or request a new verification email.")],
            ) from e

        body = response_body(response)
        try:
            user = UserRecord.model_validate(body.get("user"))
        except ValidationError as e:
            logger.error(f"Verification response carried no usable user: {e}")
            raise AuthServiceError(
                "Email verification failed", ErrorCode.VERIFICATION_ERROR
            ) from e

        tokens: Optional[TokenPair] = None
        if body.get("accessToken") and body.get("refreshToken"):
            tokens = TokenPair.model_validate(body)

        return AuthResult(
            success=True,
            user=user,
            message=body.get("message"),
            tokens=tokens,
            already_verified=bool(body.get("alreadyVerified", False)),
        )

    async def resend_verification(self, email: str) -> ActionResult:
        """Ask the identity service to send a new verification email.

        Raises:
            AuthServiceError: RATE_LIMIT_EXCEEDED with `remaining_seconds` when
                called again inside the rate-limit window.
        """
        try:
            response = await self.transport.post(
                "/auth/resend-verification", json={"email": normalize_email(email)}
            )
        except TransportError as e:
            if e.status_code == 429:
                raise _rate_limit_error(e, "Too many requests") from e
            raise AuthServiceError(
                e.server_message or "Failed to resend verification email",
                _code(e, ErrorCode.RESEND_ERROR),
                details=[_hint(e, "Please check your email address and try again.")],
            ) from e

        body = response_body(response)
        return ActionResult(
            success=True,
            message=body.get("message"),
            sent_to=body.get("sentTo"),
            expires_in=body.get("expiresIn"),
            already_verified=bool(body.get("alreadyVerified", False)),
        )

    async def request_email_change(self, new_email: str) -> ActionResult:
        try:
            response = await self.transport.post(
                "/auth/request-email-change", json={"newEmail": normalize_email(new_email)}
            )
        except TransportError as e:
            if e.status_code == 409:
                raise AuthServiceError(
                    "Email address already in use",
                    ErrorCode.EMAIL_ALREADY_EXISTS,
                    details=["Please choose a different email address."],
                ) from e
            if e.status_code == 429:
                raise _rate_limit_error(e, "Too many email change requests") from e
            raise AuthServiceError(
                e.server_message or "Failed to request email change",
                _code(e, ErrorCode.EMAIL_CHANGE_ERROR),
                details=[_hint(e, "Please try again later.")],
            ) from e

        body = response_body(response)
        return ActionResult(
            success=True,
            message=body.get("message"),
            new_email=body.get("newEmail"),
            current_email=body.get("currentEmail"),
            expires_in=body.get("expiresIn"),
        )

    async def verify_email_change(self, token: str) -> ActionResult:
        try:
            response = await self.transport.get(f"/auth/verify-email-change/{token}")
        except TransportError as e:
            raise AuthServiceError(
                e.server_message or "Email change verification failed",
                _code(e, ErrorCode.EMAIL_CHANGE_VERIFICATION_ERROR),
                details=[_hint(e, "Please try requesting a new email change.")],
            ) from e

        body = response_body(response)
        return ActionResult(
            success=True,
            message=body.get("message"),
            email=body.get("oldEmail"),
            new_email=body.get("newEmail"),
        )
