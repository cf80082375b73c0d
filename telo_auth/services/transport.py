"""Authenticated transport for identity service calls.

Attaches the current access token to every request and turns two failure
shapes into recovery actions:

- 403 EMAIL_NOT_VERIFIED (except on login): end the session and publish
  VerificationRequired
- 401 TOKEN_EXPIRED: refresh once and retry; on refresh failure end the
  session and publish TokenExpired

Every other failure is raised as TransportError for the caller to normalize.
"""

from typing import Any, NoReturn, Optional

import httpx

from telo_auth.auth.refresh import RefreshError, TokenRefresher
from telo_auth.config import Settings
from telo_auth.errors import AuthServiceError, ErrorCode, TransportError
from telo_auth.events import SessionEventBus, TokenExpired, VerificationRequired
from telo_auth.storage.token_store import TokenStore
from telo_auth.utils.logging import get_logger

logger = get_logger(__name__)

LOGIN_PATH = "/auth/login"


def response_body(response: httpx.Response) -> dict[str, Any]:
    """Parse a JSON object body; anything else reads as empty."""
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


class AuthenticatedTransport:
    """HTTP client wrapper for the identity service."""

    def __init__(
        self,
        base_url: str,
        store: TokenStore,
        bus: SessionEventBus,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize the transport.

        Args:
            base_url: Identity service base URL, e.g. http://localhost:3000/api
            store: Token store read on every request
            bus: Event bus that receives session-ending events
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport override (used by tests)
        """
        self.store = store
        self.bus = bus
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            transport=transport,
        )
        self.refresher = TokenRefresher(self._client, store)

    @classmethod
    def from_settings(
        cls, settings: Settings, store: TokenStore, bus: SessionEventBus
    ) -> "AuthenticatedTransport":
        return cls(
            settings.api_base_url,
            store,
            bus,
            timeout=settings.request_timeout,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", path, **kwargs)

    async def put(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PUT", path, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("DELETE", path, **kwargs)

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[dict[str, Any]] = None,
    ) -> httpx.Response:
        """Send an authenticated request.

        Returns:
            The successful response

        Raises:
            AuthServiceError: The session ended (verification required or
                refresh failed)
            TransportError: Any other failure, including network errors
        """
        return await self._dispatch(method, path, json, params, access_token=None)

    async def _dispatch(
        self,
        method: str,
        path: str,
        json: Any,
        params: Optional[dict[str, Any]],
        access_token: Optional[str],
        retried: bool = False,
    ) -> httpx.Response:
        token = access_token or self.store.get_access_token()
        response = await self._send(method, path, json, params, token)

        if response.is_success:
            return response

        error = TransportError.from_response(response)

        if (
            response.status_code == 403
            and error.code == ErrorCode.EMAIL_NOT_VERIFIED.value
            and not path.startswith(LOGIN_PATH)
        ):
            await self._end_for_verification(error)

        if (
            response.status_code == 401
            and error.code == ErrorCode.TOKEN_EXPIRED.value
            and not retried
        ):
            logger.info(f"Access token expired on {method} {path}, refreshing")
            outcome = await self.refresher.refresh()
            if outcome.is_err():
                await self._end_for_expiry(outcome.unwrap_err())

            tokens = outcome.unwrap().tokens
            return await self._dispatch(
                method, path, json, params, tokens.access_token, retried=True
            )

        raise error

    async def _send(
        self,
        method: str,
        path: str,
        json: Any,
        params: Optional[dict[str, Any]],
        token: Optional[str],
    ) -> httpx.Response:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        try:
            return await self._client.request(
                method, path, json=json, params=params, headers=headers
            )
        except httpx.HTTPError as e:
            logger.error(f"Identity service request failed: {method} {path}: {e}")
            raise TransportError(str(e) or type(e).__name__) from e

    async def _end_for_verification(self, error: TransportError) -> NoReturn:
        self.store.clear()
        email = error.payload.get("email")
        await self.bus.publish(
            VerificationRequired(email=email, message=error.server_message)
        )
        raise AuthServiceError(
            error.server_message or "Email verification required",
            ErrorCode.EMAIL_NOT_VERIFIED,
            requires_verification=True,
            email=email,
        )

    async def _end_for_expiry(self, reason: RefreshError) -> NoReturn:
        # The refresher has already cleared the store.
        if reason is RefreshError.SESSION_ENDED:
            raise AuthServiceError(
                "Session ended while the request was in flight",
                ErrorCode.REFRESH_TOKEN_EXPIRED,
            )

        await self.bus.publish(TokenExpired(reason=reason.value))
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
