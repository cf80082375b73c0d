"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import Depends, FastAPI

from telo_auth.auth.gate import require_verified_user
from telo_auth.auth.session import SessionManager, get_session_manager
from telo_auth.config import get_settings
from telo_auth.schemas.auth import UserRecord
from telo_auth.utils.logging import configure_logging, get_logger

# Configure logging (must be called before other modules use loggers)
configure_logging()

logger = get_logger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Restore the session on startup and release the HTTP client on shutdown."""
    manager = get_session_manager()
    session = await manager.initialize()
    logger.info(f"Session restored as {session.status.value}")
    yield
    await manager.aclose()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    debug=settings.debug,
    lifespan=lifespan,
)


@app.get("/")
async def root() -> dict:
    """Return application information."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
    }


@app.get("/health")
async def health_check() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/session")
async def current_session(
    manager: SessionManager = Depends(get_session_manager),
) -> dict:
    """Return the current session snapshot."""
    return manager.session.to_dict()


@app.get("/account")
async def account(user: UserRecord = Depends(require_verified_user)) -> dict:
    """Return the verified user's profile."""
    return user.model_dump(mode="json", by_alias=True)
