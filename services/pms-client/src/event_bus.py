from __future__ import annotations

import inspect
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, DefaultDict, List, Type, Union

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class PmsJobUploaded:
    """Published after any successful file upload or manual submission."""

    client_id: str | None = None
    entry_type: str | None = None


class EventBus:
    """
    In-process publish/subscribe keyed by event class.

    Handlers run in subscription order. A failing handler is logged and does not
    stop delivery to the others.
    """

    def __init__(self) -> None:
        self._handlers: DefaultDict[Type[Any], List[Handler]] = defaultdict(list)

    def subscribe(self, event_type: Type[Any], handler: Handler) -> Callable[[], None]:
        self._handlers[event_type].append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event_type)
            if handlers and handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    async def publish(self, event: Any) -> None:
        for handler in list(self._handlers.get(type(event), ())):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.error(
                    {
                        "event": "event_handler_failed",
                        "event_type": type(event).__name__,
                        "handler": getattr(handler, "__qualname__", repr(handler)),
                        "error": str(exc),
                    }
                )

    def handler_count(self, event_type: Type[Any]) -> int:
        return len(self._handlers.get(event_type, ()))
