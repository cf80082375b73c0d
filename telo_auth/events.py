"""Session events and the in-process bus that delivers them.

The authenticated transport publishes these events when a session ends
outside of a user action; the session manager subscribes to them. Neither
side imports the other.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, TypeVar
from uuid import uuid4

from telo_auth.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class SessionEvent:
    """Base class for session events."""

    event_id: str = field(default_factory=lambda: str(uuid4()), kw_only=True)
    occurred_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc), kw_only=True
    )


@dataclass(frozen=True)
class TokenExpired(SessionEvent):
    """The refresh procedure failed; the stored session is gone."""

    reason: str


@dataclass(frozen=True)
class VerificationRequired(SessionEvent):
    """The identity service rejected a call because the email is unverified."""

    email: Optional[str] = None
    message: Optional[str] = None


TEvent = TypeVar("TEvent", bound=SessionEvent)


class SessionEventBus:
    """In-memory event bus.

    Handlers are awaited in subscription order. A failing handler is logged
    and does not prevent the remaining handlers from running.
    """

    def __init__(self) -> None:
        self._handlers: Dict[Type[SessionEvent], List[Callable[[Any], Awaitable[None]]]] = {}

    def subscribe(
        self,
        event_type: Type[TEvent],
        handler: Callable[[TEvent], Awaitable[None]],
    ) -> None:
        """Subscribe an async handler to an event type."""
        self._handlers.setdefault(event_type, []).append(handler)
        logger.debug(
            "Handler subscribed",
            extra={"event_type": event_type.__name__},
        )

    def unsubscribe(
        self,
        event_type: Type[TEvent],
        handler: Callable[[TEvent], Awaitable[None]],
    ) -> bool:
        """Remove the first subscription of `handler`.

        Returns:
            True if handler was found and removed, False otherwise
        """
        handlers = self._handlers.get(event_type)
        if not handlers:
            return False

        try:
            handlers.remove(handler)
        except ValueError:
            return False
        return True

    async def publish(self, event: SessionEvent) -> None:
        """Deliver an event to every handler subscribed to its type."""
        event_type = type(event)
        handlers = list(self._handlers.get(event_type, []))

        if not handlers:
            logger.debug(
                "No handlers for event",
                extra={"event_type": event_type.__name__},
            )
            return

        logger.info(
            f"Publishing {event_type.__name__} to {len(handlers)} handler(s)"
        )

        for handler in handlers:
            try:
                await handler(event)
            except Exception as e:
                logger.error(
                    f"Event handler failed for {event_type.__name__}: {e}",
                    exc_info=True,
                )

    def clear(self) -> None:
        """Remove all subscriptions."""
        self._handlers.clear()

    def get_handler_count(self, event_type: Type[SessionEvent]) -> int:
        return len(self._handlers.get(event_type, []))
