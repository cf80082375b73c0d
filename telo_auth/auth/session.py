"""Session state machine.

Holds the process-wide session (current user plus a named status) and routes
every user-initiated account action through the service clients. The status
changes only through the transitions listed in ALLOWED_TRANSITIONS:

    INITIALIZING -> ANONYMOUS | AUTHENTICATED | UNVERIFIED | ERROR
    ANONYMOUS    -> AUTHENTICATED | UNVERIFIED
    AUTHENTICATED <-> UNVERIFIED
    AUTHENTICATED | UNVERIFIED -> ANONYMOUS
    ERROR        -> ANONYMOUS | AUTHENTICATED | UNVERIFIED

INITIALIZING is left exactly once and never re-entered.
"""

import dataclasses
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Any, Awaitable, Callable, Optional, TypeVar

from telo_auth.config import get_settings
from telo_auth.errors import AuthServiceError, ErrorCode
from telo_auth.events import SessionEventBus, TokenExpired, VerificationRequired
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
from telo_auth.services.auth_api import DELETE_CONFIRMATION, AuthApiService
from telo_auth.services.email_verification import EmailVerificationService
from telo_auth.services.transport import AuthenticatedTransport
from telo_auth.storage.token_store import TokenStore
from telo_auth.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class SessionStatus(str, Enum):
    """Named session states.

    UNVERIFIED normally means a stored token pair for a user whose email is
    not verified. After the identity service rejects a call with
    EMAIL_NOT_VERIFIED the tokens are already cleared, but the user is kept
    in UNVERIFIED so the gate can route to email verification rather than
    login. Any operation needing a token then ends in ANONYMOUS.
    """

    INITIALIZING = "initializing"
    ANONYMOUS = "anonymous"
    AUTHENTICATED = "authenticated"
    UNVERIFIED = "unverified"
    ERROR = "error"


ALLOWED_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.INITIALIZING: frozenset(
        {
            SessionStatus.ANONYMOUS,
            SessionStatus.AUTHENTICATED,
            SessionStatus.UNVERIFIED,
            SessionStatus.ERROR,
        }
    ),
    SessionStatus.ANONYMOUS: frozenset(
        {SessionStatus.AUTHENTICATED, SessionStatus.UNVERIFIED}
    ),
    SessionStatus.AUTHENTICATED: frozenset(
        {SessionStatus.ANONYMOUS, SessionStatus.UNVERIFIED}
    ),
    SessionStatus.UNVERIFIED: frozenset(
        {SessionStatus.ANONYMOUS, SessionStatus.AUTHENTICATED}
    ),
    SessionStatus.ERROR: frozenset(
        {
            SessionStatus.ANONYMOUS,
            SessionStatus.AUTHENTICATED,
            SessionStatus.UNVERIFIED,
        }
    ),
}


class InvalidSessionTransition(RuntimeError):
    """Raised when code attempts a transition outside ALLOWED_TRANSITIONS."""

    def __init__(self, source: SessionStatus, target: SessionStatus):
        super().__init__(f"Invalid session transition: {source.value} -> {target.value}")
        self.source = source
        self.target = target


@dataclass(frozen=True)
class ErrorInfo:
    """Error shown to the user for the last failed action."""

    message: str
    code: str
    details: tuple[Any, ...] = ()

    @classmethod
    def from_exception(cls, error: AuthServiceError) -> "ErrorInfo":
        return cls(message=error.message, code=error.code, details=tuple(error.details))


@dataclass(frozen=True)
class Session:
    """Immutable snapshot of the session."""

    status: SessionStatus
    user: Optional[UserRecord] = None
    is_loading: bool = False
    error: Optional[ErrorInfo] = None

    @property
    def is_authenticated(self) -> bool:
        return self.status is SessionStatus.AUTHENTICATED

    @property
    def is_email_verified(self) -> bool:
        return self.user is not None and self.user.is_email_verified

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "user": self.user.model_dump(mode="json", by_alias=True) if self.user else None,
            "isAuthenticated": self.is_authenticated,
            "isLoading": self.is_loading,
            "error": dataclasses.asdict(self.error) if self.error else None,
        }


SessionListener = Callable[[Session], None]


class SessionManager:
    """Process-wide session state machine."""

    def __init__(
        self,
        api: AuthApiService,
        email_service: EmailVerificationService,
        bus: SessionEventBus,
    ) -> None:
        self.api = api
        self.email_service = email_service
        self.bus = bus
        self._session = Session(status=SessionStatus.INITIALIZING, is_loading=True)
        self._listeners: list[SessionListener] = []

        bus.subscribe(TokenExpired, self._on_token_expired)
        bus.subscribe(VerificationRequired, self._on_verification_required)

    # ------------------------------------------------------------------
    # State access
    # ------------------------------------------------------------------

    @property
    def session(self) -> Session:
        return self._session

    @property
    def status(self) -> SessionStatus:
        return self._session.status

    @property
    def user(self) -> Optional[UserRecord]:
        return self._session.user

    @property
    def is_authenticated(self) -> bool:
        return self._session.is_authenticated

    def is_email_verified(self) -> bool:
        return self._session.is_email_verified

    def favorites_count(self) -> int:
        return self._session.user.favorites_count if self._session.user else 0

    def user_email(self) -> Optional[str]:
        return self._session.user.email if self._session.user else None

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register a listener called with every new snapshot.

        Returns:
            A callable that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def clear_error(self) -> None:
        self._update(error=None)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> Session:
        """Restore the session from the token store.

        A cached, verified user with a stored access token is trusted
        immediately (no network call) and then re-validated against the
        identity service in the same call.
        """
        if self.status is not SessionStatus.INITIALIZING:
            logger.warning("Session already initialized")
            return self._session

        try:
            user = self.api.get_cached_user()
            has_token = self.api.store.get_access_token() is not None
        except OSError as e:
            logger.error(f"Session storage unavailable: {e}")
            self._transition(
                SessionStatus.ERROR,
                error=ErrorInfo("Session storage unavailable", ErrorCode.STORAGE_ERROR.value),
            )
            return self._session

        if not (has_token and user is not None and user.is_email_verified):
            if has_token or user is not None:
                logger.info("Discarding unverified or incomplete cached session")
                self.api.clear_session()
            self._transition(SessionStatus.ANONYMOUS)
            return self._session

        self._transition(SessionStatus.AUTHENTICATED, user=user)
        await self._revalidate_user()
        return self._session

    async def _revalidate_user(self) -> None:
        try:
            fresh = await self.api.get_current_user()
        except AuthServiceError as e:
            if e.code == ErrorCode.EMAIL_NOT_VERIFIED.value:
                self._end_session()
            else:
                logger.warning(f"Failed to fetch fresh user data: {e.message}")
            return

        if not fresh.is_email_verified:
            logger.info("Cached user is no longer verified, signing out")
            self._end_session()
        elif self.status is SessionStatus.AUTHENTICATED:
            self._update(user=fresh)

    async def register(self, data: RegistrationData) -> AuthResult:
        """Register a new account.

        With email verification required the session stays anonymous and
        the result tells the UI to show the "check your email" flow.
        """
        self._begin()
        try:
            result = await self.api.register(data)
        except AuthServiceError as e:
            self._fail(e)
            raise

        if result.requires_verification:
            result.registration_complete = True
            self._transition(SessionStatus.ANONYMOUS)
            return result

        self._establish(result.user)
        return result

    async def login(self, credentials: Credentials, remember_me: bool = True) -> AuthResult:
        """Log in. An unverified account gets a result, not a session."""
        self._begin()
        try:
            result = await self.api.login(credentials, remember_me)
        except AuthServiceError as e:
            self._fail(e)
            raise

        if result.requires_verification:
            result.credentials_valid = True
            self._update(is_loading=False)
            return result

        self._establish(result.user)
        return result

    def handle_email_verified(
        self, user: UserRecord, tokens: Optional[TokenPair] = None
    ) -> AuthResult:
        """Adopt the session minted by an email verification link.

        Tokens are stored with the persisted remember-me decision. Without
        supplied or previously stored tokens there is no session to adopt and
        the state becomes anonymous.
        """
        result = self.api.handle_email_verification(user, tokens)

        if self.api.store.get_access_token() is None:
            logger.info("Email verified without a session on this device")
            self._transition(SessionStatus.ANONYMOUS)
            return result

        self._establish(user)
        return result

    async def verify_email(self, token: str) -> AuthResult:
        """Verify an email address from a link token and adopt its session."""
        result = await self._guarded(self.email_service.verify_email(token))
        if result.user is not None:
            self.handle_email_verified(result.user, result.tokens)
        return result

    async def logout(self) -> None:
        """Sign out. Remote invalidation is best effort; local state is always cleared."""
        self._update(is_loading=True)
        try:
            await self.api.logout()
        finally:
            self._transition(SessionStatus.ANONYMOUS)

    async def refresh_user(self) -> Optional[UserRecord]:
        """Re-fetch the profile in the background.

        Failures are logged and leave the state untouched, except for a
        revoked verification which ends the session.
        """
        if not self.is_authenticated:
            return None

        try:
            fresh = await self.api.get_current_user()
        except AuthServiceError as e:
            logger.error(f"Failed to refresh user data: {e.message}")
            if e.code == ErrorCode.EMAIL_NOT_VERIFIED.value:
                self._end_session()
            return None

        if not fresh.is_email_verified:
            logger.info("User verification revoked, signing out")
            self._end_session()
            return None

        if self.status is SessionStatus.AUTHENTICATED:
            self._update(user=fresh)
        return fresh

    # ------------------------------------------------------------------
    # Account actions
    # ------------------------------------------------------------------

    async def update_profile(self, data: ProfileUpdate) -> AuthResult:
        result = await self._guarded(self.api.update_profile(data))
        if result.user is not None and self._session.user is not None:
            self._update(user=result.user)
        return result

    async def change_email(self, new_email: str) -> ActionResult:
        return await self._guarded(self.api.change_email(new_email))

    async def request_email_change(self, new_email: str) -> ActionResult:
        return await self._guarded(self.email_service.request_email_change(new_email))

    async def verify_email_change(self, token: str) -> ActionResult:
        result = await self._guarded(self.email_service.verify_email_change(token))
        await self.refresh_user()
        return result

    async def change_password(self, data: PasswordChange) -> ActionResult:
        return await self._guarded(self.api.change_password(data))

    async def request_password_reset(self, email: str) -> ActionResult:
        return await self._guarded(self.api.request_password_reset(email))

    async def reset_password(
        self, token: str, new_password: str, confirm_password: str
    ) -> ActionResult:
        return await self._guarded(
            self.api.reset_password(token, new_password, confirm_password)
        )

    async def resend_verification(self, email: str) -> ActionResult:
        return await self._guarded(self.email_service.resend_verification(email))

    async def delete_account(self, confirmation_text: str = DELETE_CONFIRMATION) -> ActionResult:
        result = await self._guarded(self.api.delete_account(confirmation_text))
        self._transition(SessionStatus.ANONYMOUS)
        return result

    async def aclose(self) -> None:
        await self.api.transport.aclose()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def _on_token_expired(self, event: TokenExpired) -> None:
        logger.info(f"Session expired ({event.reason}), signing out")
        self._transition(SessionStatus.ANONYMOUS)

    async def _on_verification_required(self, event: VerificationRequired) -> None:
        user = self._session.user
        if user is None:
            self._transition(SessionStatus.ANONYMOUS)
            return

        logger.info("Identity service requires email verification")
        self._transition(
            SessionStatus.UNVERIFIED,
            user=user.model_copy(update={"is_email_verified": False}),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _guarded(self, operation: Awaitable[T]) -> T:
        """Run a user-initiated action, recording its failure in the session."""
        self._update(error=None)
        try:
            return await operation
        except AuthServiceError as e:
            self._update(error=ErrorInfo.from_exception(e))
            raise

    def _begin(self) -> None:
        self._update(is_loading=True, error=None)

    def _fail(self, error: AuthServiceError) -> None:
        self._update(is_loading=False, error=ErrorInfo.from_exception(error))

    def _establish(self, user: Optional[UserRecord]) -> None:
        if user is None:
            raise AuthServiceError("Identity service returned no user", ErrorCode.LOGIN_ERROR)
        if user.is_email_verified:
            self._transition(SessionStatus.AUTHENTICATED, user=user)
        else:
            self._transition(SessionStatus.UNVERIFIED, user=user)

    def _end_session(self) -> None:
        self.api.clear_session()
        self._transition(SessionStatus.ANONYMOUS)

    def _transition(
        self,
        target: SessionStatus,
        *,
        user: Optional[UserRecord] = None,
        error: Optional[ErrorInfo] = None,
    ) -> None:
        source = self._session.status
        if target is not source and target not in ALLOWED_TRANSITIONS[source]:
            raise InvalidSessionTransition(source, target)

        if target is SessionStatus.AUTHENTICATED and (
            user is None or not user.is_email_verified
        ):
            raise InvalidSessionTransition(source, target)
        if target is SessionStatus.UNVERIFIED and user is None:
            raise InvalidSessionTransition(source, target)

        if target is not source:
            logger.info(f"Session {source.value} -> {target.value}")

        self._set(Session(status=target, user=user, is_loading=False, error=error))

    def _update(self, **changes: Any) -> None:
        self._set(dataclasses.replace(self._session, **changes))

    def _set(self, session: Session) -> None:
        self._session = session
        for listener in list(self._listeners):
            try:
                listener(session)
            except Exception as e:
                logger.error(f"Session listener failed: {e}", exc_info=True)


def build_session_manager(
    store: Optional[TokenStore] = None,
    transport: Optional[AuthenticatedTransport] = None,
    bus: Optional[SessionEventBus] = None,
) -> SessionManager:
    """Wire a session manager from settings, with optional overrides."""
    settings = get_settings()
    bus = bus or SessionEventBus()
    store = store or TokenStore.from_settings(settings)
    transport = transport or AuthenticatedTransport.from_settings(settings, store, bus)
    return SessionManager(
        AuthApiService(transport, store),
        EmailVerificationService(transport),
        bus,
    )


@lru_cache
def get_session_manager() -> SessionManager:
    """Get the process-wide session manager."""
    return build_session_manager()
