"""
Reconciliation service.

The single owner of invoice and statement mutation. API handlers and other
callers go through this class; it runs on the event loop thread and
applies extraction results handed back by the coordinator.

Usage:
    service = ReconciliationService(ledger, store, coordinator, publisher)
    invoice = service.register_document("scan.pdf", data)
    await service.process_invoice(invoice.id)
    service.import_statements(csv_text)
    service.auto_link()
"""

import datetime as dt
from typing import Callable, Optional
from loguru import logger
from pydantic import BaseModel
from . import export, matcher, workflow
from .csv_parser import Delimiter
from .documents.store_base import (
    DocumentBusyError,
    DocumentExistsError,
    DocumentKind,
    DocumentNotFoundError,
    DocumentStoreBase,
)
from .events.event_publisher import EventPublisher
from .extraction.coordinator import (
    BatchProgress,
    BatchResult,
    CancellationToken,
    ExtractionCompletion,
    ExtractionCoordinator,
)
from .review_checks import ReviewReport, review_link
from .search import parse_invoice_tokens, parse_statement_tokens, search_invoices, search_statements
from .statement_import import ColumnMapping, ImportResult, StatementImporter
from .storage.ledger_base import LedgerBase
from ..core.config import settings
from ..models.invoice import Invoice, InvoiceStatus
from ..models.statement import Statement, StatementStatus
from ..models.tag import Tag


class StatementPreview(BaseModel):
    """What the import dialog shows before the user confirms a mapping"""
    delimiter: Delimiter
    column_count: int
    row_count: int
    rows: list[list[str]]
    mapping: ColumnMapping
    date_format_mismatch: bool


class ReconciliationService:
    def __init__(
        self,
        ledger: LedgerBase,
        store: DocumentStoreBase,
        coordinator: ExtractionCoordinator,
        publisher: Optional[EventPublisher] = None,
        window_days: Optional[int] = None,
    ):
        self.ledger = ledger
        self.store = store
        self.coordinator = coordinator
        self.publisher = publisher
        self.window_days = window_days if window_days is not None else settings.match_window_days

    # Invoices

    def register_document(self, filename: str, data: bytes) -> Invoice:
        """
        Store an invoice document and create a new invoice bound to it.

        Raises:
            DocumentExistsError: a document with identical content is stored
            UnsupportedDocumentTypeError: not a PDF or image
        """
        duplicate = self.store.find_duplicate(data, DocumentKind.INVOICE)
        if duplicate is not None:
            logger.info("Duplicate invoice document", filename=filename, existing=duplicate.document_id)
            raise DocumentExistsError(duplicate.document_id)

        document = self.store.import_document(filename, data, DocumentKind.INVOICE)
        invoice = self.ledger.add_invoice(Invoice(path=document.document_id))
        logger.info("Invoice registered", invoice_id=invoice.id, document_id=document.document_id)
        return invoice

    async def process_invoice(self, invoice_id: str, token: Optional[CancellationToken] = None) -> Invoice:
        """
        Extract the invoice document and apply the result.

        Concurrent calls for the same document share one extraction. The
        result is applied while the document is still in flight, so no
        other request sees the renamed document under the old path.

        Raises:
            ExtractionError: extraction or rename failed
            ExtractionCancelled: cancelled through the token or cancel_processing()
        """
        invoice = self.ledger.require_invoice(invoice_id)
        if invoice.path is None:
            raise workflow.WorkflowError(f"Invoice {invoice_id} has no document to process")

        await self.coordinator.process(invoice.path, token=token, on_complete=self._completion_handler(invoice_id))
        return self.ledger.require_invoice(invoice_id)

    def _completion_handler(self, invoice_id: str) -> Callable[[ExtractionCompletion], None]:
        def apply(completion: ExtractionCompletion) -> None:
            invoice = self.ledger.get_invoice(invoice_id)
            if invoice is None:
                # Deleted while extracting; the renamed document has no owner left
                logger.warning(
                    "Invoice gone after extraction, deleting document",
                    invoice_id=invoice_id,
                    document_id=completion.document_id,
                )
                self.store.delete(completion.document_id, DocumentKind.INVOICE)
                return
            workflow.apply_extraction(invoice, completion.fields, completion.document_id, self.publisher)

        return apply

    async def process_new_invoices(
        self,
        token: CancellationToken,
        on_progress: Optional[Callable[[BatchProgress], None]] = None,
    ) -> BatchResult:
        """Process every invoice still in 'new', one at a time"""
        invoice_ids = [i.id for i in self.ledger.invoices_with_status(InvoiceStatus.NEW) if i.path]
        logger.info("Processing new invoices", count=len(invoice_ids))
        return await self.coordinator.run_batch(
            invoice_ids,
            token,
            process=lambda invoice_id: self.process_invoice(invoice_id, token),
            on_progress=on_progress,
        )

    def cancel_processing(self) -> int:
        return self.coordinator.cancel_all()

    def processing_invoice_ids(self) -> list[str]:
        processing = self.coordinator.processing
        return [i.id for i in self.ledger.list_invoices() if i.path in processing]

    def approve_review(self, invoice_id: str) -> Invoice:
        return workflow.approve_review(self.ledger.require_invoice(invoice_id), self.publisher)

    def override_status(self, invoice_id: str, status: InvoiceStatus) -> Invoice:
        return workflow.override_status(self.ledger.require_invoice(invoice_id), status, self.publisher)

    def set_tags(self, invoice_id: str, tags: list[Tag]) -> Invoice:
        """Replace the invoice tags; repeated tags are kept once"""
        invoice = self.ledger.require_invoice(invoice_id)
        invoice.tags = list(dict.fromkeys(tags))
        logger.info("Invoice tags set", invoice_id=invoice_id, tags=invoice.tag_titles())
        return invoice

    def find_invoices(self, queries: list[str]) -> list[Invoice]:
        """Invoices matching every "field:value" query"""
        return search_invoices(self.ledger.list_invoices(), parse_invoice_tokens(queries))

    def delete_invoice(self, invoice_id: str) -> None:
        """
        Delete an invoice together with its document.

        Raises:
            DocumentBusyError: the document is being extracted
        """
        invoice = self.ledger.require_invoice(invoice_id)
        if invoice.path is not None:
            if self.coordinator.is_processing(invoice.path):
                raise DocumentBusyError(invoice.path)
            try:
                self.store.delete(invoice.path, DocumentKind.INVOICE)
            except DocumentNotFoundError:
                logger.warning("Invoice document already missing", invoice_id=invoice_id, document_id=invoice.path)

        self.ledger.delete_invoice(invoice_id)
        logger.info("Invoice deleted", invoice_id=invoice_id)

    # Statements

    def _importer(self, text: str, delimiter: Optional[Delimiter]) -> StatementImporter:
        return StatementImporter(
            text,
            delimiter=delimiter,
            sample_rows=settings.csv_sample_rows,
            sample_lines=settings.csv_sample_lines,
        )

    def _default_mapping(self, importer: StatementImporter, account: Optional[str]) -> ColumnMapping:
        return importer.suggest_mapping(
            decimal_separator=settings.statement_decimal_separator,
            account=account,
            blacklist=settings.blacklist_tokens(),
            fallback_date_format=settings.statement_date_format,
        )

    def preview_statements(
        self,
        text: str,
        delimiter: Optional[Delimiter] = None,
        account: Optional[str] = None,
        limit: int = 10,
    ) -> StatementPreview:
        importer = self._importer(text, delimiter)
        mapping = self._default_mapping(importer, account)
        return StatementPreview(
            delimiter=importer.delimiter,
            column_count=importer.column_count,
            row_count=len(importer.rows),
            rows=[list(row) for row in importer.rows[:limit]],
            mapping=mapping,
            date_format_mismatch=importer.date_format_mismatch(mapping),
        )

    def import_statements(
        self,
        text: str,
        mapping: Optional[ColumnMapping] = None,
        delimiter: Optional[Delimiter] = None,
        account: Optional[str] = None,
    ) -> ImportResult:
        importer = self._importer(text, delimiter)
        if mapping is None:
            mapping = self._default_mapping(importer, account)
        return importer.import_into(self.ledger, mapping, self.publisher)

    def find_statements(self, queries: list[str]) -> list[Statement]:
        return search_statements(self.ledger, parse_statement_tokens(queries))

    def statement_status(self, statement_id: str) -> StatementStatus:
        return workflow.statement_status(self.ledger, self.ledger.require_statement(statement_id))

    def delete_statement(self, statement_id: str) -> None:
        self.ledger.require_statement(statement_id)
        self.ledger.delete_statement(statement_id)
        logger.info("Statement deleted", statement_id=statement_id)

    # Reconciliation

    def auto_link(self) -> list[tuple[str, str]]:
        return matcher.auto_link_ledger(self.ledger, self.publisher, self.window_days)

    def link(self, statement_id: str, invoice_id: str) -> tuple[Statement, Invoice]:
        return workflow.link(self.ledger, statement_id, invoice_id, self.publisher)

    def unlink(self, statement_id: str) -> Statement:
        return workflow.unlink(self.ledger, statement_id, self.publisher)

    def approve_link(self, statement_id: str, invoice_id: Optional[str] = None) -> tuple[Statement, Invoice]:
        return workflow.approve_link(self.ledger, statement_id, invoice_id, self.publisher)

    def review(self, statement_id: str, invoice_id: Optional[str] = None) -> ReviewReport:
        statement = self.ledger.require_statement(statement_id)
        target_id = invoice_id or statement.matched_invoice_id
        if target_id is None:
            raise workflow.WorkflowError(f"Statement {statement_id} has no invoice to review")

        invoice = self.ledger.require_invoice(target_id)
        document_exists = self.store.exists(invoice.path, DocumentKind.INVOICE) if invoice.path else None
        return review_link(statement, invoice, document_exists)

    def export_linked_csv(
        self,
        date_from: Optional[dt.date] = None,
        date_to: Optional[dt.date] = None,
        by: export.DateFilterColumn = export.DateFilterColumn.STATEMENT_DATE,
    ) -> str:
        return export.export_linked_csv(self.ledger, date_from, date_to, by)
