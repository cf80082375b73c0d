"""Refresh procedure for minting a new token pair."""

import asyncio
from dataclasses import dataclass
from enum import Enum

import httpx
from result import Err, Ok, Result

from telo_auth.errors import ErrorCode, TransportError
from telo_auth.schemas.auth import TokenPair, UserRecord
from telo_auth.storage.token_store import TokenStore
from telo_auth.utils.logging import get_logger

logger = get_logger(__name__)

REFRESH_PATH = "/auth/refresh"


class RefreshError(str, Enum):
    """Refresh failure types. Every one of them ends the session."""

    NO_REFRESH_TOKEN = "no_refresh_token"
    REFRESH_TOKEN_EXPIRED = "refresh_token_expired"
    EMAIL_NOT_VERIFIED = "email_not_verified"
    SESSION_ENDED = "session_ended"


@dataclass
class RefreshedSession:
    """Tokens (and optionally a fresh profile) returned by a refresh."""

    tokens: TokenPair
    user: UserRecord | None = None


class TokenRefresher:
    """Exchanges the stored refresh token for a new token pair.

    Concurrent callers share one in-flight refresh: only a single
    POST /auth/refresh is outstanding at any time and every caller receives
    its result.
    """

    def __init__(self, client: httpx.AsyncClient, store: TokenStore) -> None:
        self._client = client
        self._store = store
        self._in_flight: asyncio.Task[Result[RefreshedSession, RefreshError]] | None = None

    @property
    def in_flight(self) -> bool:
        return self._in_flight is not None and not self._in_flight.done()

    async def refresh(self) -> Result[RefreshedSession, RefreshError]:
        """Refresh the session, joining an in-flight refresh if there is one.

        Returns:
            Result containing the new session tokens or the failure reason.
            On failure the token store has already been cleared.
        """
        if self._in_flight is None:
            task = asyncio.create_task(self._refresh_once())
            task.add_done_callback(self._forget)
            self._in_flight = task
        else:
            logger.debug("Joining in-flight token refresh")

        return await asyncio.shield(self._in_flight)

    async def wait_idle(self) -> None:
        """Wait for an in-flight refresh, if any, to settle."""
        task = self._in_flight
        if task is not None and not task.done():
            await asyncio.wait({task})

    def _forget(self, task: asyncio.Task) -> None:
        if self._in_flight is task:
            self._in_flight = None

    async def _refresh_once(self) -> Result[RefreshedSession, RefreshError]:
        refresh_token = self._store.get_refresh_token()
        if not refresh_token:
            logger.warning("Token refresh requested without a stored refresh token")
            self._store.clear()
            return Err(RefreshError.NO_REFRESH_TOKEN)

        generation = self._store.generation
        remember_me = self._store.remember_me()

        try:
            response = await self._client.post(
                REFRESH_PATH, json={"refreshToken": refresh_token}
            )
        except httpx.HTTPError as e:
            logger.warning(f"Token refresh request failed: {e}")
            return self._fail(generation, RefreshError.REFRESH_TOKEN_EXPIRED)

        if not response.is_success:
            error = TransportError.from_response(response)
            logger.warning(
                f"Token refresh rejected: {response.status_code} {error.code}"
            )
            if (
                response.status_code == 403
                and error.code == ErrorCode.EMAIL_NOT_VERIFIED.value
            ):
                return self._fail(generation, RefreshError.EMAIL_NOT_VERIFIED)
            return self._fail(generation, RefreshError.REFRESH_TOKEN_EXPIRED)

        try:
            data = response.json()
            if not isinstance(data, dict):
                raise ValueError("refresh response is not a JSON object")
            tokens = TokenPair.model_validate(data)
            user_data = data.get("user")
            user = UserRecord.model_validate(user_data) if user_data else None
        except ValueError as e:
            logger.error(f"Malformed token refresh response: {e}")
            return self._fail(generation, RefreshError.REFRESH_TOKEN_EXPIRED)

        if self._store.generation != generation:
            logger.info("Discarding token refresh that completed after the session ended")
            return Err(RefreshError.SESSION_ENDED)

        self._store.put(tokens, remember_me)
        if user is not None:
            self._store.put_user(user)

        logger.info("Access token refreshed")
        return Ok(RefreshedSession(tokens=tokens, user=user))

    def _fail(
        self, generation: int, reason: RefreshError
    ) -> Result[RefreshedSession, RefreshError]:
        # A newer session may have been established while the request was out.
        if self._store.generation != generation:
            return Err(RefreshError.SESSION_ENDED)
        self._store.clear()
        return Err(reason)
