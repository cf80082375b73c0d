"""User authentication service client.

Wraps the identity service's /auth endpoints: registration and login,
profile management, password and email changes, and account deletion.
Every failure is normalized into AuthServiceError.
"""

from typing import Any, Optional, TypeVar

from pydantic import BaseModel, ValidationError

from telo_auth.auth.refresh import RefreshedSession, RefreshError
from telo_auth.errors import AuthServiceError, ErrorCode, TransportError
from telo_auth.schemas.auth import (
    ActionResult,
    AuthResult,
    Credentials,
    PasswordChange,
    ProfileUpdate,
    RegistrationData,
    TokenPair,
    UserRecord,
)
from telo_auth.services.transport import AuthenticatedTransport, response_body
from telo_auth.storage.token_store import TokenStore
from telo_auth.utils.logging import get_logger

logger = get_logger(__name__)

TModel = TypeVar("TModel", bound=BaseModel)

DELETE_CONFIRMATION = "DELETE"


def _parse(
    model: type[TModel], data: Any, fallback_message: str, code: ErrorCode
) -> TModel:
    """Validate a success payload, treating a malformed body as a failure."""
    try:
        return model.model_validate(data)
    except ValidationError as e:
        logger.error(f"Unexpected {model.__name__} payload from identity service: {e}")
        raise AuthServiceError(fallback_message, code) from e


class AuthApiService:
    """Client for the identity service's user authentication endpoints."""

    def __init__(self, transport: AuthenticatedTransport, store: TokenStore) -> None:
        self.transport = transport
        self.store = store

    async def register(self, data: RegistrationData) -> AuthResult:
        """Register a new account.

        When the service requires email verification no tokens are stored;
        otherwise (legacy path) the session is established immediately with
        remember-me enabled.
        """
        try:
            response = await self.transport.post("/auth/register", json=data.to_wire())
        except TransportError as e:
            raise AuthServiceError.from_transport(
                e, "Registration failed", ErrorCode.REGISTRATION_ERROR
            ) from e

        body = response_body(response)

        if body.get("requiresVerification"):
            user_data = body.get("user")
            return AuthResult(
                success=True,
                user=UserRecord.model_validate(user_data) if user_data else None,
                message=body.get("message"),
                requires_verification=True,
                email=body.get("email") or data.email,
                email_send_failed=bool(body.get("emailSendFailed", False)),
            )

        tokens = _parse(TokenPair, body, "Registration failed", ErrorCode.REGISTRATION_ERROR)
        user = _parse(
            UserRecord, body.get("user"), "Registration failed", ErrorCode.REGISTRATION_ERROR
        )
        self.store.put(tokens, remember_me=True)
        self.store.put_user(user)

        return AuthResult(
            success=True,
            user=user,
            message=body.get("message"),
            tokens=tokens,
        )

    async def login(self, credentials: Credentials, remember_me: bool = True) -> AuthResult:
        """Log in with email and password.

        An unverified account yields a result with `requires_verification`
        set and nothing stored, whether the service reports it in a 200 body
        or as 403 EMAIL_NOT_VERIFIED.
        """
        try:
            response = await self.transport.post("/auth/login", json=credentials.to_wire())
        except TransportError as e:
            if e.status_code == 403 and e.code == ErrorCode.EMAIL_NOT_VERIFIED.value:
                return AuthResult(
                    success=False,
                    message=e.server_message or "Please verify your email address",
                    requires_verification=True,
                    email=e.payload.get("email") or credentials.email,
                    code=e.code,
                )
            raise AuthServiceError.from_transport(
                e, "Login failed", ErrorCode.LOGIN_ERROR
            ) from e

        body = response_body(response)

        if body.get("requiresVerification"):
            return AuthResult(
                success=False,
                message=body.get("error") or "Please verify your email address",
                requires_verification=True,
                email=body.get("email") or credentials.email,
                code=body.get("code"),
            )

        tokens = _parse(TokenPair, body, "Login failed", ErrorCode.LOGIN_ERROR)
        user = _parse(UserRecord, body.get("user"), "Login failed", ErrorCode.LOGIN_ERROR)
        self.store.put(tokens, remember_me)
        self.store.put_user(user)

        logger.info(f"User {user.id} logged in (remember_me={remember_me})")
        return AuthResult(
            success=True,
            user=user,
            message=body.get("message"),
            tokens=tokens,
        )

    async def logout(self) -> None:
        """Invalidate the session remotely (best effort) and clear local state."""
        await self.transport.refresher.wait_idle()
        try:
            await self.transport.post("/auth/logout")
        except (TransportError, AuthServiceError) as e:
            logger.warning(f"Logout API call failed: {e}")
        finally:
            self.store.clear()

    async def get_current_user(self) -> UserRecord:
        """Fetch the authoritative profile and refresh the cached copy."""
        generation = self.store.generation
        try:
            response = await self.transport.get("/auth/me")
        except TransportError as e:
            if e.status_code == 403 and e.code == ErrorCode.EMAIL_NOT_VERIFIED.value:
                raise AuthServiceError(
                    e.server_message or "Email verification required",
                    ErrorCode.EMAIL_NOT_VERIFIED,
                    requires_verification=True,
                ) from e
            raise AuthServiceError.from_transport(
                e, "Failed to get user profile", ErrorCode.PROFILE_ERROR
            ) from e

        user = _parse(
            UserRecord,
            response_body(response).get("user"),
            "Failed to get user profile",
            ErrorCode.PROFILE_ERROR,
        )
        # Skip caching if the session was cleared while the call was in flight.
        if self.store.generation == generation:
            self.store.put_user(user)
        return user

    async def update_profile(self, data: ProfileUpdate) -> AuthResult:
        try:
            response = await self.transport.put("/auth/profile", json=data.to_wire())
        except TransportError as e:
            raise AuthServiceError.from_transport(
                e, "Profile update failed", ErrorCode.PROFILE_UPDATE_ERROR
            ) from e

        body = response_body(response)
        user = _parse(
            UserRecord, body.get("user"), "Profile update failed", ErrorCode.PROFILE_UPDATE_ERROR
        )
        self.store.put_user(user)
        return AuthResult(success=True, user=user, message=body.get("message"))

    async def refresh_token(self) -> RefreshedSession:
        """Explicitly refresh the token pair.

        Raises:
            AuthServiceError: REFRESH_TOKEN_EXPIRED or EMAIL_NOT_VERIFIED; the
                store has been cleared.
        """
        outcome = await self.transport.refresher.refresh()
        if outcome.is_ok():
            return outcome.unwrap()

        reason = outcome.unwrap_err()
        if reason is RefreshError.EMAIL_NOT_VERIFIED:
            raise AuthServiceError(
                "Email verification required",
                ErrorCode.EMAIL_NOT_VERIFIED,
                requires_verification=True,
            )
        raise AuthServiceError(
            "Session expired. Please login again.",
            ErrorCode.REFRESH_TOKEN_EXPIRED,
        )

    def is_authenticated(self) -> bool:
        """True when a token and a verified cached user are both stored."""
        user = self.store.get_user()
        return bool(self.store.get_access_token() and user and user.is_email_verified)

    def has_tokens_but_unverified(self) -> bool:
        user = self.store.get_user()
        return bool(self.store.get_access_token() and user and not user.is_email_verified)

    def get_cached_user(self) -> Optional[UserRecord]:
        return self.store.get_user()

    def clear_session(self) -> None:
        self.store.clear()

    def handle_email_verification(
        self, user: UserRecord, tokens: Optional[TokenPair] = None
    ) -> AuthResult:
        """Store the session minted by an email verification link."""
        if tokens is not None:
            self.store.put(tokens, self.store.remember_me())
        self.store.put_user(user)
        return AuthResult(
            success=True,
            user=user,
            message="Email verified successfully",
            tokens=tokens,
        )

    async def request_password_reset(self, email: str) -> ActionResult:
        try:
            response = await self.transport.post(
                "/auth/forgot-password", json={"email": email}
            )
        except TransportError as e:
            if e.status_code == 429:
                raise AuthServiceError(
                    e.server_message or "Too many requests",
                    ErrorCode.RATE_LIMIT_EXCEEDED,
                    retry_after=e.payload.get("retryAfter"),
                ) from e
            raise AuthServiceError.from_transport(
                e, "Failed to send password reset email", ErrorCode.PASSWORD_RESET_ERROR
            ) from e

        body = response_body(response)
        return ActionResult(success=True, message=body.get("message"), email=body.get("email"))

    async def reset_password(
        self, token: str, new_password: str, confirm_password: str
    ) -> ActionResult:
        try:
            response = await self.transport.post(
                f"/auth/reset-password/{token}",
                json={"newPassword": new_password, "confirmPassword": confirm_password},
            )
        except TransportError as e:
            if e.status_code == 400 and e.code in (
                ErrorCode.INVALID_RESET_TOKEN.value,
                ErrorCode.EXPIRED_RESET_TOKEN.value,
            ):
                raise AuthServiceError(
                    e.server_message or "Reset link is invalid or has expired",
                    e.code,
                    expired=True,
                ) from e
            raise AuthServiceError.from_transport(
                e, "Failed to reset password", ErrorCode.PASSWORD_RESET_ERROR
            ) from e

        body = response_body(response)
        return ActionResult(success=True, message=body.get("message"), email=body.get("email"))

    async def change_email(self, new_email: str) -> ActionResult:
        """Start an email change; the new address must be verified."""
        try:
            response = await self.transport.post(
                "/auth/change-email", json={"newEmail": new_email}
            )
        except TransportError as e:
            raise self._email_change_error(e) from e

        body = response_body(response)
        return ActionResult(
            success=True, message=body.get("message"), new_email=body.get("newEmail")
        )

    @staticmethod
    def _email_change_error(e: TransportError) -> AuthServiceError:
        if e.status_code == 400 and e.code == ErrorCode.SAME_EMAIL.value:
            return AuthServiceError(
                "New email address is the same as your current email",
                ErrorCode.SAME_EMAIL,
            )
        if e.status_code == 400 and e.code == ErrorCode.PENDING_EMAIL_CHANGE_EXISTS.value:
            return AuthServiceError(
                e.server_message or "An email change is already pending",
                ErrorCode.PENDING_EMAIL_CHANGE_EXISTS,
                pending_email=e.payload.get("pendingEmail"),
            )
        if e.status_code == 409:
            return AuthServiceError(
                "This email address is already associated with another account",
                ErrorCode.EMAIL_ALREADY_EXISTS,
            )
        if e.status_code == 429:
            return AuthServiceError(
                e.server_message or "Too many requests",
                ErrorCode.RATE_LIMIT_EXCEEDED,
                retry_after=e.payload.get("retryAfter"),
            )
        return AuthServiceError.from_transport(
            e, "Failed to initiate email change", ErrorCode.EMAIL_CHANGE_ERROR
        )

    async def change_password(self, data: PasswordChange) -> ActionResult:
        try:
            response = await self.transport.post(
                "/auth/change-password", json=data.to_wire()
            )
        except TransportError as e:
            raise self._password_change_error(e) from e

        return ActionResult(success=True, message=response_body(response).get("message"))

    @staticmethod
    def _password_change_error(e: TransportError) -> AuthServiceError:
        field_errors = {
            ErrorCode.PASSWORD_MISMATCH.value: (
                "New password and confirmation do not match",
                "confirmPassword",
            ),
            ErrorCode.PASSWORD_TOO_SHORT.value: (
                "Password must be at least 8 characters long",
                "newPassword",
            ),
            ErrorCode.PASSWORD_TOO_WEAK.value: (
                "Password must contain uppercase, lowercase and number",
                "newPassword",
            ),
            ErrorCode.SAME_PASSWORD.value: (
                "New password must be different from current password",
                "newPassword",
            ),
        }
        if e.status_code == 400 and e.code in field_errors:
            message, field = field_errors[e.code]
            return AuthServiceError(message, e.code, field=field)
        if e.status_code == 401:
            return AuthServiceError(
                "Current password is incorrect",
                ErrorCode.INVALID_CURRENT_PASSWORD,
                field="currentPassword",
            )
        return AuthServiceError.from_transport(
            e, "Failed to change password", ErrorCode.PASSWORD_CHANGE_ERROR
        )

    async def delete_account(self, confirmation_text: str = DELETE_CONFIRMATION) -> ActionResult:
        """Permanently delete the account and clear the local session."""
        try:
            response = await self.transport.delete(
                "/auth/account", json={"confirmationText": confirmation_text}
            )
        except TransportError as e:
            if e.status_code == 400:
                raise AuthServiceError(
                    f"Account deletion requires typing '{DELETE_CONFIRMATION}' as confirmation",
                    ErrorCode.INVALID_CONFIRMATION,
                ) from e
            raise AuthServiceError.from_transport(
                e, "Failed to delete account", ErrorCode.DELETE_ACCOUNT_ERROR
            ) from e

        self.store.clear()
        return ActionResult(success=True, message=response_body(response).get("message"))
