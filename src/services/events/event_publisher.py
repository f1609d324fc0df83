"""
Reconciliation event publishing.

The core never talks to a UI directly. Every state change it makes is
published as a typed event; the presentation layer (or any other consumer)
subscribes in-process, and events can additionally be forwarded to an
Azure Service Bus queue or topic for downstream systems:
- Accounting exports can pick up verified invoice/statement pairs
- Audit trails can record every status change, including manual overrides
"""

import json
from datetime import datetime, UTC
from typing import Callable, Optional
from dataclasses import dataclass, asdict, field
from loguru import logger


@dataclass
class ReconciliationEvent:
    """Base event; subclasses set event_type"""

    event_type: str = field(default="ReconciliationEvent", init=False)
    timestamp: Optional[str] = field(default=None, kw_only=True)

    def __post_init__(self):
        """Set timestamp if not provided"""
        if self.timestamp is None:
            self.timestamp = datetime.now(UTC).isoformat()

    def to_dict(self) -> dict:
        """
        Convert event to dictionary for JSON serialization.

        Returns:
            Dictionary representation suitable for a Service Bus message body
        """
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


@dataclass
class StatementsImported(ReconciliationEvent):
    statement_ids: list[str] = field(default_factory=list)
    skipped_duplicates: int = 0
    skipped_invalid: int = 0
    skipped_blacklisted: int = 0
    event_type: str = field(default="StatementsImported", init=False)


@dataclass
class StatementLinked(ReconciliationEvent):
    statement_id: str = ""
    invoice_id: Optional[str] = None  # None when unlinked
    automatic: bool = False
    event_type: str = field(default="StatementLinked", init=False)


@dataclass
class InvoiceStatusChanged(ReconciliationEvent):
    invoice_id: str = ""
    old_status: str = ""
    new_status: str = ""
    manual_override: bool = False
    event_type: str = field(default="InvoiceStatusChanged", init=False)


@dataclass
class ExtractionFinished(ReconciliationEvent):
    document_id: str = ""
    outcome: str = "succeeded"  # succeeded | failed | cancelled
    new_document_id: Optional[str] = None
    error: Optional[str] = None
    event_type: str = field(default="ExtractionFinished", init=False)


Subscriber = Callable[[ReconciliationEvent], None]


class EventPublisher:
    """
    Publishes reconciliation events to in-process subscribers and,
    optionally, to Azure Service Bus.

    Usage:
        publisher = EventPublisher()
        publisher.subscribe(on_event)                          # every event
        publisher.subscribe(on_link, event_type="StatementLinked")

        # Forward to a Service Bus queue as well
        from azure.servicebus import ServiceBusClient
        client = ServiceBusClient.from_connection_string(conn_str)
        sender = client.get_queue_sender(queue_name="reconciliation-events")
        publisher = EventPublisher(service_bus_sender=sender)
    """

    def __init__(
        self,
        service_bus_sender: Optional[object] = None,
        entity_name: str = "reconciliation-events"
    ):
        self.service_bus_sender = service_bus_sender
        self.entity_name = entity_name
        self._subscribers: list[tuple[Optional[str], Subscriber]] = []

    def subscribe(self, callback: Subscriber, event_type: Optional[str] = None) -> Callable[[], None]:
        """
        Register a callback for all events or for one event type.

        Returns:
            A function removing the subscription
        """
        entry = (event_type, callback)
        self._subscribers.append(entry)

        def unsubscribe():
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    def publish(self, event: ReconciliationEvent) -> None:
        """
        Deliver an event to matching subscribers, then to Service Bus.

        A failing subscriber is logged and skipped; publishing never breaks
        the operation that produced the event.
        """
        for event_type, callback in list(self._subscribers):
            if event_type is not None and event_type != event.event_type:
                continue
            try:
                callback(event)
            except Exception as e:
                logger.warning("Event subscriber failed", event_type=event.event_type, error=str(e))

        if self.service_bus_sender is None:
            return

        from azure.servicebus import ServiceBusMessage

        try:
            message = ServiceBusMessage(event.to_json(), content_type="application/json")
            self.service_bus_sender.send_messages(message)
        except Exception as e:
            logger.warning("Failed to forward event to Service Bus", event_type=event.event_type, error=str(e))


def create_event_publisher() -> EventPublisher:
    """
    Build a publisher from settings; Service Bus forwarding is enabled only
    when a connection string is configured.
    """
    from ...core.config import settings

    if not settings.service_bus_connection_string:
        return EventPublisher(service_bus_sender=None, entity_name=settings.service_bus_entity)

    from azure.servicebus import ServiceBusClient

    client = ServiceBusClient.from_connection_string(settings.service_bus_connection_string)
    sender = client.get_queue_sender(queue_name=settings.service_bus_entity)
    return EventPublisher(service_bus_sender=sender, entity_name=settings.service_bus_entity)
