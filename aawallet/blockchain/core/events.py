"""
Event system for host lifecycle events.

Transactions publish `tx_confirmed` / `tx_failed` with the receipt as
payload; contract logs are republished as `log` events.
"""
from typing import Dict, List, Callable, Any
import logging

logger = logging.getLogger(__name__)

TX_CONFIRMED = "tx_confirmed"
TX_FAILED = "tx_failed"
LOG = "log"


class EventBus:
    """
    Synchronous pub/sub. Listener errors are logged and never reach the
    publishing transaction.
    """

    def __init__(self):
        self.listeners: Dict[str, List[Callable]] = {}

    def subscribe(self, event_type: str, callback: Callable) -> None:
        self.listeners.setdefault(event_type, []).append(callback)
        logger.debug(f"Subscribed to event: {event_type}")

    def unsubscribe(self, event_type: str, callback: Callable) -> None:
        try:
            self.listeners.get(event_type, []).remove(callback)
            logger.debug(f"Unsubscribed from event: {event_type}")
        except ValueError:
            logger.warning(f"Callback not found for event: {event_type}")

    def emit(self, event_type: str, **data: Any) -> None:
        """
        Deliver an event to all subscribers, in subscription order.

        Args:
            event_type: Event name
            **data: Event data as keyword arguments
        """
        listeners = list(self.listeners.get(event_type, []))
        if not listeners:
            return

        logger.debug(f"Emitting event: {event_type} to {len(listeners)} listener(s)")
        for callback in listeners:
            try:
                callback(**data)
            except Exception as e:
                logger.error(f"Error in event callback for {event_type}: {e}", exc_info=True)

    def clear(self, event_type: str = None) -> None:
        if event_type:
            self.listeners.pop(event_type, None)
        else:
            self.listeners.clear()


# Global event bus instance
event_bus = EventBus()
