"""In-process event broadcaster for external observers."""
import asyncio
import inspect
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Set

logger = logging.getLogger(__name__)

EventHandler = Callable[[int, str, Dict[str, Any]], Any]


class EventBroadcaster:
    """Account-scoped publish/subscribe. Never raises to protect the caller."""

    def __init__(self) -> None:
        self._handlers: List[EventHandler] = []
        self._pending: Set[asyncio.Task] = set()

    def subscribe(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def broadcast_to_account(self, account_id: int, event: str, data: Dict[str, Any]) -> None:
        """
        Publish an event to every subscriber.

        Async handlers are scheduled on the running loop and not awaited.
        """
        payload = dict(data)
        payload.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
        for handler in list(self._handlers):
            try:
                result = handler(account_id, event, payload)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(self._on_done)
            except Exception as e:
                logger.warning(f"Event handler failed for {event} on account {account_id}: {e}")

    def _on_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Async event handler failed: {task.exception()}")
