"""Order notification port and the two adapters orderflow ships with.

Delivery (email, SMS, push) lives outside this service. The workflow only
says what happened; a notifier failure never affects the order.
"""

from abc import ABC, abstractmethod

import structlog

logger = structlog.get_logger(__name__)


class OrderNotifier(ABC):
    """Abstract interface for customer-facing order notifications."""

    @abstractmethod
    def notify(self, event: str, order, **context) -> None:
        """Announce ``event`` (order_confirmed, order_cancelled, ...) for ``order``."""
        ...


class LoggingNotifier(OrderNotifier):
    """Writes each notification to the structured log."""

    def notify(self, event: str, order, **context) -> None:
        logger.info(
            "order_notification",
            notification=event,
            order_id=str(order.id),
            order_number=order.order_number,
            customer_id=str(order.customer_id),
            **context,
        )


class RecordingNotifier(OrderNotifier):
    """Notifier that records messages in memory for test assertions."""

    def __init__(self):
        self.sent: list[dict] = []
        self.should_succeed = True

    def configure(self, should_succeed: bool = True):
        self.should_succeed = should_succeed

    def notify(self, event: str, order, **context) -> None:
        if not self.should_succeed:
            raise RuntimeError("Notification channel unavailable")
        self.sent.append({"event": event, "order_id": str(order.id), **context})

    def events_for(self, order_id) -> list[str]:
        return [record["event"] for record in self.sent if record["order_id"] == str(order_id)]

    def reset(self):
        self.sent.clear()
        self.should_succeed = True
