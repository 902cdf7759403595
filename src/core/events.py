"""
Lightweight event bus for change notifications.

Services emit an event after a state change has been committed; the
presentation layer (or anything else) subscribes to react to it. Handlers
are isolated from each other: one failing handler is logged and does not
stop the rest or undo the change that triggered it.
"""

import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

EventHandler = Callable[..., None]

EVENT_WORKOUT_LOGGED = "workout.logged"
EVENT_CREDIT_CONSUMED = "credit.consumed"
EVENT_CREDIT_EMPTY = "credit.empty"
EVENT_CREDIT_GRANTED = "credit.granted"
EVENT_SUBSCRIPTION_APPROVED = "subscription.approved"
EVENT_SUBSCRIPTION_REJECTED = "subscription.rejected"


class EventBus:
    """In-process publish/subscribe keyed by event name."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}

    def subscribe(self, event_name: str, handler: EventHandler) -> Callable[[], None]:
        """
        Register handler for event_name.

        Returns a callable that removes the subscription again.
        """
        self._handlers.setdefault(event_name, []).append(handler)
        logger.debug("Subscribed handler to event", extra={"event": event_name})

        def unsubscribe() -> None:
            handlers = self._handlers.get(event_name, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def emit(self, event_name: str, **payload: Any) -> None:
        for handler in list(self._handlers.get(event_name, [])):
            try:
                handler(**payload)
            except Exception as e:
                logger.error(
                    "Error in event handler",
                    extra={"event": event_name, "error": str(e)},
                    exc_info=True,
                )
