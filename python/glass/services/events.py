"""In-process notification bus.

Events are broadcast fire-and-forget: every listener registered at emit time
is invoked in registration order, sync or async, and a failing listener is
logged without affecting the others or the emitter.

Listeners take one positional argument, the payload (None when absent).

Event names:
    model-state-updated      payload: public model state
    settings-updated         no payload
    force-show-apikey-header no payload
    user-state-changed       payload: current user dict
    migration-completed      payload: {"user_id": ...}
"""

import inspect
from collections import defaultdict
from collections.abc import Callable
from typing import Any

from glass.logging import get_logger

logger = get_logger(__name__)

MODEL_STATE_UPDATED = "model-state-updated"
SETTINGS_UPDATED = "settings-updated"
FORCE_SHOW_APIKEY_HEADER = "force-show-apikey-header"
USER_STATE_CHANGED = "user-state-changed"
MIGRATION_COMPLETED = "migration-completed"

Listener = Callable[..., Any]


class EventBus:
    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    def subscribe(self, event: str, listener: Listener) -> Callable[[], None]:
        """Register a listener. Returns a function that unregisters it."""
        self._listeners[event].append(listener)

        def unsubscribe() -> None:
            try:
                self._listeners[event].remove(listener)
            except ValueError:
                pass

        return unsubscribe

    async def emit(self, event: str, payload: Any = None) -> None:
        # Snapshot so listeners may unsubscribe while being called
        for listener in list(self._listeners.get(event, ())):
            try:
                result = listener(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    "event_listener_failed",
                    event_name=event,
                    listener=getattr(listener, "__qualname__", repr(listener)),
                    error=str(e),
                    exc_info=True,
                )
        logger.debug("event_emitted", event_name=event)
