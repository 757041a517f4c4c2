"""
Event Notifier

DESIGN DECISION: Engines tell the rest of the app that something changed
through an explicitly injected notifier, not a global emitter.

The notifier:
- Logs every event locally (structured JSON)
- Calls listeners subscribed to the event type, sync or async
- Isolates listener failures (a broken listener never fails the
  mutation that already committed)
"""

import inspect
import logging
from typing import Awaitable, Callable, Optional, Union

import structlog

from pennyledger.models.events import LedgerEvent, LedgerEventType


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(level: str = "INFO") -> None:
    """Route structured logs to stderr at `level` and above."""
    logging.basicConfig(format="%(message)s")
    logging.getLogger("pennyledger").setLevel(level.upper())


Listener = Callable[[LedgerEvent], Union[None, Awaitable[None]]]


class EventNotifier:
    """
    Typed observer registry for ledger events.

    One instance is shared by all engines of an app; tests build their own.
    """

    def __init__(self):
        self._listeners: dict[LedgerEventType, list[Listener]] = {}
        self._logger = structlog.get_logger(__name__)

    def subscribe(
        self,
        event_type: LedgerEventType,
        listener: Listener,
    ) -> Callable[[], None]:
        """
        Register a listener for one event type.

        Returns:
            A callable that removes the listener again
        """
        self._listeners.setdefault(event_type, []).append(listener)

        def unsubscribe() -> None:
            self.unsubscribe(event_type, listener)

        return unsubscribe

    def unsubscribe(self, event_type: LedgerEventType, listener: Listener) -> None:
        listeners = self._listeners.get(event_type, [])
        self._listeners[event_type] = [l for l in listeners if l is not listener]

    def listener_count(self, event_type: Optional[LedgerEventType] = None) -> int:
        if event_type is not None:
            return len(self._listeners.get(event_type, []))
        return sum(len(listeners) for listeners in self._listeners.values())

    async def emit(self, event: LedgerEvent) -> int:
        """
        Publish an event.

        Returns the number of listeners that handled it without raising.
        """
        self._logger.info("ledger_event", **event.to_log_dict())

        delivered = 0
        for listener in list(self._listeners.get(event.event_type, [])):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "event_listener_failed",
                    event_type=event.event_type.value,
                    event_id=str(event.event_id),
                    error=str(e),
                )
        return delivered
