from .event_publisher import (
    EventPublisher,
    ExtractionFinished,
    InvoiceStatusChanged,
    ReconciliationEvent,
    StatementLinked,
    StatementsImported,
    create_event_publisher,
)

__all__ = [
    "EventPublisher",
    "ExtractionFinished",
    "InvoiceStatusChanged",
    "ReconciliationEvent",
    "StatementLinked",
    "StatementsImported",
    "create_event_publisher",
]
