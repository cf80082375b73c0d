"""Shared fixtures: an in-process fake of the identity service."""

import inspect
from typing import Any, Callable, Optional

import httpx
import pytest

from telo_auth.auth.session import SessionManager
from telo_auth.events import SessionEventBus
from telo_auth.services.auth_api import AuthApiService
from telo_auth.services.email_verification import EmailVerificationService
from telo_auth.services.transport import AuthenticatedTransport
from telo_auth.storage.tiers import MemoryTier
from telo_auth.storage.token_store import TokenStore

BASE_URL = "http://identity.test/api"


def user_payload(**overrides: Any) -> dict:
    user = {
        "id": "user-1",
        "email": "jane@example.com",
        "name": "Jane Doe",
        "isEmailVerified": True,
        "favoritesCount": 2,
    }
    user.update(overrides)
    return user


def token_payload(access: str = "access-1", refresh: str = "refresh-1", **extra: Any) -> dict:
    return {"accessToken": access, "refreshToken": refresh, **extra}


class FakeIdentityService:
    """MockTransport handler serving queued responses per (method, path).

    Responses queued for a route are served in order; the last one repeats.
    An entry may be a callable taking the request and returning (or
    awaiting to) an httpx.Response.
    """

    def __init__(self) -> None:
        self._routes: dict[tuple[str, str], list[Any]] = {}
        self.requests: list[httpx.Request] = []

    def on(
        self,
        method: str,
        path: str,
        status_code: int = 200,
        json: Any = None,
        *,
        handler: Optional[Callable[[httpx.Request], Any]] = None,
    ) -> None:
        self._routes.setdefault((method, path), []).append(handler or (status_code, json))

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [
            r
            for r in self.requests
            if r.method == method and r.url.path.removeprefix("/api") == path
        ]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/api")
        queue = self._routes.get((request.method, path))
        if not queue:
            return httpx.Response(404, json={"error": "Not found"})

        entry = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(entry):
            response = entry(request)
            if inspect.isawaitable(response):
                response = await response
            return response

        status_code, body = entry
        return httpx.Response(status_code, json=body)


@pytest.fixture
def identity() -> FakeIdentityService:
    return FakeIdentityService()


@pytest.fixture
def store() -> TokenStore:
    return TokenStore(durable=MemoryTier(), ephemeral=MemoryTier())


@pytest.fixture
def bus() -> SessionEventBus:
    return SessionEventBus()


@pytest.fixture
def transport(
    identity: FakeIdentityService, store: TokenStore, bus: SessionEventBus
) -> AuthenticatedTransport:
    return AuthenticatedTransport(
        BASE_URL, store, bus, transport=httpx.MockTransport(identity)
    )


@pytest.fixture
def api(transport: AuthenticatedTransport, store: TokenStore) -> AuthApiService:
    return AuthApiService(transport, store)


@pytest.fixture
def email_service(transport: AuthenticatedTransport) -> EmailVerificationService:
    return EmailVerificationService(transport)


@pytest.fixture
def manager(
    api: AuthApiService,
    email_service: EmailVerificationService,
    bus: SessionEventBus,
) -> SessionManager:
    return SessionManager(api, email_service, bus)
