"""
Notification fan-out.

The review state machine publishes one NotificationEvent per terminal
transition; transports (push, websockets, the notification bell) register
async callbacks. Every event is also kept per user so a client that was
offline can fetch what it missed.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Awaitable, Callable

from chapal.logging import get_logger
from chapal.review.models import NotificationEvent

logger = get_logger(__name__)

NotificationCallback = Callable[[NotificationEvent], Awaitable[None]]

REVIEW_RESOLVED_EVENT = "human-review-resolved"


class NotificationHub:
    """In-process publish/subscribe for review outcomes."""

    def __init__(self):
        self._subscribers: list[NotificationCallback] = []
        self._events: dict[str, list[NotificationEvent]] = defaultdict(list)

    def subscribe(self, callback: NotificationCallback) -> Callable[[], None]:
        """Register a callback; returns a function that removes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def publish(self, event: NotificationEvent) -> None:
        self._events[event.user_id].append(event)
        logger.info(
            "notification_published",
            event_name=REVIEW_RESOLVED_EVENT,
            channel=event.channel,
            message_id=event.message_id,
            action=event.action.value,
        )
        for callback in list(self._subscribers):
            try:
                await callback(event)
            except Exception as e:
                logger.error("notification_callback_error", error=str(e))

    def events_for(self, user_id: str) -> list[NotificationEvent]:
        return list(self._events.get(user_id, []))
