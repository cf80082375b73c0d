"""Verification gate for protected routes."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional
from urllib.parse import quote

from fastapi import Depends, HTTPException, Request, status

from telo_auth.auth.session import SessionManager, SessionStatus, get_session_manager
from telo_auth.schemas.auth import UserRecord
from telo_auth.storage.tiers import StorageTier
from telo_auth.utils.logging import get_logger

logger = get_logger(__name__)

LOGIN_URL = "/?showLogin=true"
VERIFY_URL = "/verify-email"
RETURN_URL_KEY = "returnUrl"


class GateDecision(str, Enum):
    """Outcome of evaluating a protected path."""

    WAIT = "wait"
    REDIRECT_LOGIN = "redirect_login"
    REDIRECT_VERIFY = "redirect_verify"
    ALLOW = "allow"


class GateError(str, Enum):
    """Error types returned by the gate dependency."""

    SESSION_INITIALIZING = "session_initializing"


@dataclass(frozen=True)
class GateResult:
    decision: GateDecision
    location: Optional[str] = None


class VerificationGate:
    """Admits only authenticated, verified users.

    Denied paths are remembered in the ephemeral tier so the UI can return
    there after login or verification.
    """

    def __init__(self, manager: SessionManager, return_urls: StorageTier) -> None:
        self.manager = manager
        self.return_urls = return_urls

    def evaluate(self, path: str) -> GateResult:
        session = self.manager.session
        if session.is_loading or session.status is SessionStatus.INITIALIZING:
            return GateResult(GateDecision.WAIT)

        user = session.user
        if user is None:
            self._remember(path)
            return GateResult(GateDecision.REDIRECT_LOGIN, LOGIN_URL)

        if not user.is_email_verified:
            self._remember(path)
            location = f"{VERIFY_URL}?email={quote(user.email, safe='')}" if user.email else VERIFY_URL
            return GateResult(GateDecision.REDIRECT_VERIFY, location)

        if not session.is_authenticated:
            self._remember(path)
            return GateResult(GateDecision.REDIRECT_LOGIN, LOGIN_URL)

        return GateResult(GateDecision.ALLOW)

    def pop_return_url(self) -> Optional[str]:
        """Return the remembered path once, then forget it."""
        url = self.return_urls.get(RETURN_URL_KEY)
        if url is not None:
            self.return_urls.remove(RETURN_URL_KEY)
        return url

    def _remember(self, path: str) -> None:
        self.return_urls.set(RETURN_URL_KEY, path)


def get_verification_gate(
    manager: SessionManager = Depends(get_session_manager),
) -> VerificationGate:
    return VerificationGate(manager, manager.api.store.ephemeral)


async def require_verified_user(
    request: Request,
    gate: VerificationGate = Depends(get_verification_gate),
) -> UserRecord:
    """
    Apply the verification gate to a route.

    Returns:
        The verified user.

    Raises:
        HTTPException: 503 while the session is initializing, 307 redirect
            to login or email verification otherwise.
    """
    path = request.url.path
    if request.url.query:
        path = f"{path}?{request.url.query}"
    result = gate.evaluate(path)

    if result.decision is GateDecision.WAIT:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": GateError.SESSION_INITIALIZING.value},
        )

    if result.decision is not GateDecision.ALLOW:
        logger.info(f"Gate redirected {path}: {result.decision.value}")
        raise HTTPException(
            status_code=status.HTTP_307_TEMPORARY_REDIRECT,
            headers={"Location": result.location or LOGIN_URL},
        )

    return gate.manager.user
