"""
Invoice and statement status lifecycle.

Invoices move forward only under the automated flow:

    new -> processed -> ocrVerified -> statementVerified

- new -> processed: an extraction result is applied
- processed -> ocrVerified: the user approves the extracted fields
- any lower state -> statementVerified: a statement link is approved,
  always together with setting both link references

Users may still override the status manually to any value. Statement
status is derived from the link and the linked invoice, never stored.
"""

from typing import Optional
from loguru import logger
from .events.event_publisher import EventPublisher, InvoiceStatusChanged, StatementLinked
from .invoice_types import ExtractedFields
from .storage.ledger_base import LedgerBase
from ..models.invoice import Invoice, InvoiceStatus
from ..models.statement import Statement, StatementStatus, derive_statement_status


class WorkflowError(Exception):
    """Base class for rejected workflow actions"""


class InvalidTransitionError(WorkflowError):
    def __init__(self, invoice_id: str, current: InvoiceStatus, target: InvoiceStatus, reason: str):
        super().__init__(
            f"Cannot move invoice {invoice_id} from {current.value} to {target.value}: {reason}"
        )
        self.invoice_id = invoice_id
        self.current = current
        self.target = target


def _set_status(
    invoice: Invoice,
    status: InvoiceStatus,
    publisher: Optional[EventPublisher],
    manual_override: bool = False,
) -> bool:
    old = invoice.status
    if old == status:
        return False
    invoice.status = status
    logger.info(
        "Invoice status changed",
        invoice_id=invoice.id,
        old_status=old.value,
        new_status=status.value,
        manual_override=manual_override,
    )
    if publisher is not None:
        publisher.publish(InvoiceStatusChanged(
            invoice_id=invoice.id,
            old_status=old.value,
            new_status=status.value,
            manual_override=manual_override,
        ))
    return True


def _advance(invoice: Invoice, status: InvoiceStatus, publisher: Optional[EventPublisher]) -> bool:
    """Move forward to status; never moves backwards"""
    if invoice.status.rank >= status.rank:
        return False
    return _set_status(invoice, status, publisher)


def apply_extraction(
    invoice: Invoice,
    fields: ExtractedFields,
    document_id: Optional[str] = None,
    publisher: Optional[EventPublisher] = None,
) -> Invoice:
    """
    Copy extracted fields onto the invoice and mark it processed.

    Args:
        invoice: Invoice bound to the extracted document
        fields: Extraction result
        document_id: Document id after the post-extraction rename
    """
    invoice.vendor_name = fields.vendor_name
    invoice.date = fields.date
    invoice.invoice_number = fields.invoice_number
    invoice.total_amount = fields.total_amount
    invoice.pre_tax_amount = fields.pre_tax_amount
    invoice.tax_rate = fields.tax_rate
    invoice.currency = fields.currency
    invoice.direction = fields.direction
    if document_id is not None:
        invoice.path = document_id
    _advance(invoice, InvoiceStatus.PROCESSED, publisher)
    return invoice


def approve_review(invoice: Invoice, publisher: Optional[EventPublisher] = None) -> Invoice:
    """User confirmed the extracted fields: processed -> ocrVerified"""
    if invoice.status == InvoiceStatus.NEW:
        raise InvalidTransitionError(
            invoice.id, invoice.status, InvoiceStatus.OCR_VERIFIED, "invoice has not been processed"
        )
    invoice.is_manually_checked = True
    _advance(invoice, InvoiceStatus.OCR_VERIFIED, publisher)
    return invoice


def override_status(
    invoice: Invoice,
    status: InvoiceStatus,
    publisher: Optional[EventPublisher] = None,
) -> Invoice:
    """Manual override; any status is allowed"""
    _set_status(invoice, status, publisher, manual_override=True)
    return invoice


def link(
    ledger: LedgerBase,
    statement_id: str,
    invoice_id: str,
    publisher: Optional[EventPublisher] = None,
    automatic: bool = False,
) -> tuple[Statement, Invoice]:
    """
    Link a statement and an invoice, keeping the link one-to-one.

    Any previous partner of either side loses its back reference.
    """
    statement = ledger.require_statement(statement_id)
    invoice = ledger.require_invoice(invoice_id)

    if statement.matched_invoice_id and statement.matched_invoice_id != invoice.id:
        previous_invoice = ledger.get_invoice(statement.matched_invoice_id)
        if previous_invoice is not None:
            previous_invoice.matched_statement_id = None

    if invoice.matched_statement_id and invoice.matched_statement_id != statement.id:
        previous_statement = ledger.get_statement(invoice.matched_statement_id)
        if previous_statement is not None:
            previous_statement.matched_invoice_id = None

    statement.matched_invoice_id = invoice.id
    invoice.matched_statement_id = statement.id

    if publisher is not None:
        publisher.publish(StatementLinked(
            statement_id=statement.id,
            invoice_id=invoice.id,
            automatic=automatic,
        ))
    return statement, invoice


def unlink(
    ledger: LedgerBase,
    statement_id: str,
    publisher: Optional[EventPublisher] = None,
) -> Statement:
    statement = ledger.require_statement(statement_id)
    if statement.matched_invoice_id is None:
        return statement

    invoice = ledger.get_invoice(statement.matched_invoice_id)
    if invoice is not None and invoice.matched_statement_id == statement.id:
        invoice.matched_statement_id = None
    statement.matched_invoice_id = None

    if publisher is not None:
        publisher.publish(StatementLinked(statement_id=statement.id, invoice_id=None))
    return statement


def approve_link(
    ledger: LedgerBase,
    statement_id: str,
    invoice_id: Optional[str] = None,
    publisher: Optional[EventPublisher] = None,
) -> tuple[Statement, Invoice]:
    """
    Finalize a statement/invoice link.

    Sets both references (to invoice_id, or the statement's current match)
    and moves the invoice to statementVerified.
    """
    statement = ledger.require_statement(statement_id)
    target_id = invoice_id or statement.matched_invoice_id
    if target_id is None:
        raise WorkflowError(f"Statement {statement_id} has no invoice to approve")

    statement, invoice = link(ledger, statement.id, target_id, publisher)
    _advance(invoice, InvoiceStatus.STATEMENT_VERIFIED, publisher)
    return statement, invoice


def statement_status(ledger: LedgerBase, statement: Statement) -> StatementStatus:
    return derive_statement_status(statement, ledger.invoice_for_statement(statement))
