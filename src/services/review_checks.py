"""
Checks shown while reviewing a statement/invoice link before approval.

None of these block approval; they point the reviewer at data that looks
inconsistent so a wrong link or a bad extraction is caught by a human.
"""

from typing import Dict, Optional
from loguru import logger
from pydantic import BaseModel
from .amounts import format_amount
from ..models.invoice import Direction, Invoice, InvoiceStatus
from ..models.statement import Statement


class ReviewReport(BaseModel):
    """Result of the review checks with one message per failed check"""
    checks: Dict[str, bool]
    warnings: list[str] = []

    @property
    def clean(self) -> bool:
        return all(self.checks.values())


def amount_mismatch_warning(invoice: Invoice) -> Optional[str]:
    mismatch = invoice.tax_mismatch()
    if mismatch is None:
        return None
    expected, total = mismatch
    currency = (invoice.currency or "").strip() or None
    return (
        "Pre-tax + tax does not match total. "
        f"Expected {format_amount(expected, currency)}, got {format_amount(total, currency)}."
    )


def direction_mismatch_warning(invoice: Invoice, statement: Statement) -> Optional[str]:
    if invoice.direction is None or not statement.amount:
        return None
    if invoice.direction == Direction.INCOMING:
        mismatch = statement.amount < 0
    else:
        mismatch = statement.amount > 0
    if not mismatch:
        return None
    return "Invoice direction does not match the bank statement amount sign."


def missing_document_warning(invoice: Invoice, document_exists: Optional[bool]) -> Optional[str]:
    if invoice.path is None or document_exists is None or document_exists:
        return None
    return "The document file could not be found. The invoice may need re-import."


def verified_without_statement_warning(invoice: Invoice) -> Optional[str]:
    if invoice.status != InvoiceStatus.STATEMENT_VERIFIED or invoice.matched_statement_id is not None:
        return None
    return "This invoice is marked as linked, but no bank statement is attached."


def review_link(
    statement: Statement,
    invoice: Invoice,
    document_exists: Optional[bool] = None,
) -> ReviewReport:
    """
    Run all review checks for a statement and its linked invoice.

    Args:
        statement: Statement under review
        invoice: Invoice linked (or about to be linked) to it
        document_exists: Whether the invoice document is still in the store;
            None skips the check

    Returns:
        ReviewReport with per-check results and warning messages
    """
    results = {
        "tax_consistent": amount_mismatch_warning(invoice),
        "direction_matches_sign": direction_mismatch_warning(invoice, statement),
        "document_present": missing_document_warning(invoice, document_exists),
        "verified_has_statement": verified_without_statement_warning(invoice),
    }
    checks = {name: warning is None for name, warning in results.items()}
    warnings = [warning for warning in results.values() if warning is not None]

    if warnings:
        logger.info(
            "Link review found warnings",
            statement_id=statement.id,
            invoice_id=invoice.id,
            checks=checks,
        )

    return ReviewReport(checks=checks, warnings=warnings)
