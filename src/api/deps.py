from typing import Optional
from fastapi import Request
from pydantic import BaseModel
from ..core.config import settings
from ..models.invoice import Invoice, InvoiceStatus
from ..models.statement import Statement, StatementStatus, derive_statement_status
from ..models.tag import Tag
from ..services.documents import FilesystemDocumentStore
from ..services.events import create_event_publisher
from ..services.extraction import BatchResult, ExtractionCoordinator
from ..services.form_recognizer import extract_invoice_fields
from ..services.reconciliation import ReconciliationService
from ..services.statement_import import ImportResult
from ..services.storage import InMemoryLedger, LedgerBase


def build_service() -> ReconciliationService:
    """Compose the service from settings"""
    publisher = create_event_publisher()
    store = FilesystemDocumentStore(
        settings.documents_root,
        invoices_folder=settings.invoices_folder,
        statements_folder=settings.statements_folder,
    )
    coordinator = ExtractionCoordinator(store, extract_invoice_fields, publisher)
    return ReconciliationService(InMemoryLedger(), store, coordinator, publisher)


def get_service(request: Request) -> ReconciliationService:
    # Built on first use so importing the app has no filesystem side effects
    if request.app.state.service is None:
        request.app.state.service = build_service()
    return request.app.state.service


class StatementResponse(Statement):
    status: StatementStatus

    @classmethod
    def build(cls, ledger: LedgerBase, statement: Statement) -> "StatementResponse":
        invoice = ledger.invoice_for_statement(statement)
        return cls(**statement.model_dump(), status=derive_statement_status(statement, invoice))


class InvoiceResponse(Invoice):
    status_label: str
    tax_warning: bool = False

    @classmethod
    def build(cls, invoice: Invoice) -> "InvoiceResponse":
        return cls(
            **invoice.model_dump(),
            status_label=invoice.status.label,
            tax_warning=invoice.tax_mismatch() is not None,
        )


class ImportResponse(BaseModel):
    created: int
    skipped_duplicates: int
    skipped_invalid: int
    skipped_blacklisted: int
    statement_ids: list[str]

    @classmethod
    def build(cls, result: ImportResult) -> "ImportResponse":
        return cls(
            created=result.created,
            skipped_duplicates=result.skipped_duplicates,
            skipped_invalid=result.skipped_invalid,
            skipped_blacklisted=result.skipped_blacklisted,
            statement_ids=[s.id for s in result.statements],
        )


class LinkPair(BaseModel):
    statement_id: str
    invoice_id: str


class AutoLinkResponse(BaseModel):
    links: list[LinkPair]


class LinkRequest(BaseModel):
    invoice_id: str


class ApproveLinkRequest(BaseModel):
    invoice_id: Optional[str] = None


class LinkResponse(BaseModel):
    statement: StatementResponse
    invoice: InvoiceResponse


class StatusUpdateRequest(BaseModel):
    status: InvoiceStatus


class TagsUpdateRequest(BaseModel):
    tags: list[Tag]


class BatchResponse(BaseModel):
    total: int
    completed: int
    succeeded: list[str]
    failed: dict[str, str]
    cancelled: int
    stopped: bool

    @classmethod
    def build(cls, result: BatchResult) -> "BatchResponse":
        return cls(
            total=result.total,
            completed=result.completed,
            succeeded=result.succeeded,
            failed=result.failed,
            cancelled=result.cancelled,
            stopped=result.stopped,
        )


class ProcessingResponse(BaseModel):
    document_ids: list[str]
    invoice_ids: list[str]


class CancelResponse(BaseModel):
    cancelled_operations: int
    cancelled_batches: int
