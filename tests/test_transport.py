"""Tests for the authenticated transport."""

import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest

from conftest import FakeIdentityService, token_payload, user_payload
from telo_auth.errors import AuthServiceError, TransportError
from telo_auth.events import SessionEventBus, TokenExpired, VerificationRequired
from telo_auth.schemas.auth import TokenPair
from telo_auth.services.transport import AuthenticatedTransport
from telo_auth.storage.token_store import TokenStore

PAIR = TokenPair(access_token="access-1", refresh_token="refresh-1")
EXPIRED = {"error": "Token expired", "code": "TOKEN_EXPIRED"}
UNVERIFIED = {
    "error": "Please verify your email",
    "code": "EMAIL_NOT_VERIFIED",
    "email": "jane@example.com",
}


class TestTokenAttachment:
    """Authorization header tests."""

    @pytest.mark.asyncio
    async def test_attaches_current_access_token(
        self,
        identity: FakeIdentityService,
        store: TokenStore,
        transport: AuthenticatedTransport,
    ) -> None:
        """Requests should carry the stored access token as a bearer token."""
        store.put(PAIR, remember_me=True)
        identity.on("GET", "/auth/me", 200, {"user": user_payload()})

        response = await transport.get("/auth/me")

        assert response.status_code == 200
        request = identity.calls("GET", "/auth/me")[0]
        assert request.headers["Authorization"] == "Bearer access-1"

    @pytest.mark.asyncio
    async def test_no_header_without_token(
        self, identity: FakeIdentityService, transport: AuthenticatedTransport
    ) -> None:
        """Anonymous requests should not carry an Authorization header."""
        identity.on("POST", "/auth/login", 200, {})

        await transport.post("/auth/login", json={"email": "a@b.co"})

        assert "Authorization" not in identity.requests[0].headers

    @pytest.mark.asyncio
    async def test_other_failures_raise_transport_error(
        self,
        identity: FakeIdentityService,
        store: TokenStore,
        transport: AuthenticatedTransport,
    ) -> None:
        """Non-recoverable failures should surface as TransportError."""
        store.put(PAIR, remember_me=True)
        identity.on("PUT", "/auth/profile", 500, {"error": "Internal error"})

        with pytest.raises(TransportError) as exc_info:
            await transport.put("/auth/profile", json={})

        assert exc_info.value.status_code == 500
        assert exc_info.value.server_message == "Internal error"
        assert store.get_tokens() == PAIR

    @pytest.mark.asyncio
    async def test_network_failure_has_no_status(
        self, identity: FakeIdentityService, transport: AuthenticatedTransport
    ) -> None:
        """A request that never got a response should have no status code."""

        def unreachable(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        identity.on("GET", "/auth/me", handler=unreachable)

        with pytest.raises(TransportError) as exc_info:
            await transport.get("/auth/me")

        assert exc_info.value.status_code is None


class TestExpiredTokenRetry:
    """401 TOKEN_EXPIRED recovery tests."""

    @pytest.mark.asyncio
    async def test_refreshes_and_retries_once(
        self,
        identity: FakeIdentityService,
        store: TokenStore,
        transport: AuthenticatedTransport,
    ) -> None:
        """An expired token should be refreshed and the request replayed."""
        store.put(PAIR, remember_me=True)
        identity.on("GET", "/auth/me", 401, EXPIRED)
        identity.on("GET", "/auth/me", 200, {"user": user_payload()})
        identity.on("POST", "/auth/refresh", 200, token_payload("access-2", "refresh-2"))

        response = await transport.get("/auth/me")

        assert response.status_code == 200
        calls = identity.calls("GET", "/auth/me")
        assert len(calls) == 2
        assert calls[1].headers["Authorization"] == "Bearer access-2"
        assert len(identity.calls("POST", "/auth/refresh")) == 1

    @pytest.mark.asyncio
    async def test_second_expiry_is_terminal(
        self,
        identity: FakeIdentityService,
        store: TokenStore,
        transport: AuthenticatedTransport,
    ) -> None:
        """A retried request that fails again should not refresh again."""
        store.put(PAIR, remember_me=True)
        identity.on("GET", "/auth/me", 401, EXPIRED)
        identity.on("POST", "/auth/refresh", 200, token_payload("access-2", "refresh-2"))

        with pytest.raises(TransportError) as exc_info:
            await transport.get("/auth/me")

        assert exc_info.value.status_code == 401
        assert len(identity.calls("GET", "/auth/me")) == 2
        assert len(identity.calls("POST", "/auth/refresh")) == 1

    @pytest.mark.asyncio
    async def test_plain_401_is_not_refreshed(
        self,
        identity: FakeIdentityService,
        store: TokenStore,
        transport: AuthenticatedTransport,
    ) -> None:
        """A 401 without TOKEN_EXPIRED should be returned to the caller."""
        store.put(PAIR, remember_me=True)
        identity.on("POST", "/auth/change-password", 401, {"error": "Wrong password"})

        with pytest.raises(TransportError):
            await transport.post("/auth/change-password", json={})

        assert identity.calls("POST", "/auth/refresh") == []

    @pytest.mark.asyncio
    async def test_refresh_failure_ends_session(
        self,
        identity: FakeIdentityService,
        store: TokenStore,
        bus: SessionEventBus,
        transport: AuthenticatedTransport,
    ) -> None:
        """A failed refresh should clear the store and publish TokenExpired."""
        store.put(PAIR, remember_me=True)
        handler = AsyncMock()
        bus.subscribe(TokenExpired, handler)
        identity.on("GET", "/auth/me", 401, EXPIRED)

        def unreachable(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        identity.on("POST", "/auth/refresh", handler=unreachable)

        with pytest.raises(AuthServiceError) as exc_info:
            await transport.get("/auth/me")

        assert exc_info.value.code == "REFRESH_TOKEN_EXPIRED"
        assert exc_info.value.message == "Session expired. Please login again."
        assert store.get_tokens() is None
        handler.assert_awaited_once()
        assert handler.await_args.args[0].reason == "refresh_token_expired"

    @pytest.mark.asyncio
    async def test_concurrent_expiries_share_one_refresh(
        self,
        identity: FakeIdentityService,
        store: TokenStore,
        transport: AuthenticatedTransport,
    ) -> None:
        """Simultaneous expired requests should trigger a single refresh."""
        store.put(PAIR, remember_me=True)

        def me(request: httpx.Request) -> httpx.Response:
            if request.headers["Authorization"] == "Bearer access-1":
                return httpx.Response(401, json=EXPIRED)
            return httpx.Response(200, json={"user": user_payload()})

        async def slow_refresh(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(0.01)
            return httpx.Response(200, json=token_payload("access-2", "refresh-2"))

        identity.on("GET", "/auth/me", handler=me)
        identity.on("POST", "/auth/refresh", handler=slow_refresh)

        responses = await asyncio.gather(
            transport.get("/auth/me"), transport.get("/auth/me")
        )

        assert [r.status_code for r in responses] == [200, 200]
        assert len(identity.calls("POST", "/auth/refresh")) == 1


class TestVerificationRequired:
    """403 EMAIL_NOT_VERIFIED handling tests."""

    @pytest.mark.asyncio
    async def test_ends_session_and_publishes(
        self,
        identity: FakeIdentityService,
        store: TokenStore,
        bus: SessionEventBus,
        transport: AuthenticatedTransport,
    ) -> None:
        """An unverified rejection should clear the store and notify listeners."""
        store.put(PAIR, remember_me=True)
        handler = AsyncMock()
        bus.subscribe(VerificationRequired, handler)
        identity.on("GET", "/auth/me", 403, UNVERIFIED)

        with pytest.raises(AuthServiceError) as exc_info:
            await transport.get("/auth/me")

        assert exc_info.value.requires_verification is True
        assert exc_info.value.code == "EMAIL_NOT_VERIFIED"
        assert store.get_tokens() is None
        event = handler.await_args.args[0]
        assert event.email == "jane@example.com"

    @pytest.mark.asyncio
    async def test_login_rejection_is_left_to_caller(
        self,
        identity: FakeIdentityService,
        store: TokenStore,
        bus: SessionEventBus,
        transport: AuthenticatedTransport,
    ) -> None:
        """Login's own verification response must not end any session."""
        store.put(PAIR, remember_me=True)
        handler = AsyncMock()
        bus.subscribe(VerificationRequired, handler)
        identity.on("POST", "/auth/login", 403, UNVERIFIED)

        with pytest.raises(TransportError) as exc_info:
            await transport.post("/auth/login", json={})

        assert exc_info.value.status_code == 403
        assert store.get_tokens() == PAIR
        handler.assert_not_awaited()
