"""
Event fan-out for session channels.

Channels publish typed inbound events by their ``type`` name; listeners
register per type or for every event with the ``"*"`` wildcard.
"""

import asyncio
from collections import defaultdict
from collections.abc import Callable
from typing import Any

from core.logger import get_logger

logger = get_logger(__name__)

EventHandlerCallback = Callable[[Any], Any]

# Handlers registered under this name receive every event
WILDCARD = "*"


class EventHandler:
    """
    Listener registry with on(), off(), wait_for_next() and dispatch().

    Coroutine handlers are scheduled as tasks; plain callables run inline
    so delivery order matches publish order.
    """

    def __init__(self):
        self._event_handlers: dict[str, list[EventHandlerCallback]] = defaultdict(list)
        self._event_waiters: dict[str, list[asyncio.Future]] = defaultdict(list)

    def on(self, event_type: str, callback: EventHandlerCallback) -> EventHandlerCallback:
        """
        Register ``callback`` for ``event_type`` (or ``"*"`` for all).

        Returns:
            The callback, so it can later be passed to off()
        """
        self._event_handlers[event_type].append(callback)
        return callback

    def off(self, event_type: str, callback: EventHandlerCallback | None = None) -> bool:
        """
        Remove ``callback`` (or every callback when None) for ``event_type``.

        Returns:
            True if anything was removed
        """
        handlers = self._event_handlers.get(event_type)
        if not handlers:
            return False
        if callback is None:
            handlers.clear()
            return True
        if callback in handlers:
            handlers.remove(callback)
            return True
        return False

    async def wait_for_next(self, event_type: str, timeout: float | None = None) -> Any:
        """
        Wait for the next event of ``event_type``.

        Raises:
            asyncio.TimeoutError: If nothing arrives within ``timeout``
        """
        future = asyncio.get_running_loop().create_future()
        self._event_waiters[event_type].append(future)
        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            if future in self._event_waiters[event_type]:
                self._event_waiters[event_type].remove(future)
            raise

    def dispatch(self, event_type: str, event: Any = None) -> None:
        """
        Deliver ``event`` to its type's handlers, then to wildcard handlers.

        A failing handler is logged and does not stop delivery to the rest.
        """
        handlers = list(self._event_handlers.get(event_type, ()))
        if event_type != WILDCARD:
            handlers.extend(self._event_handlers.get(WILDCARD, ()))

        for handler in handlers:
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    asyncio.create_task(result)
            except Exception as e:
                logger.error(f"Error in handler for '{event_type}' event: {e}", exc_info=True)

        for future in self._event_waiters.pop(event_type, []):
            if not future.done():
                future.set_result(event)
