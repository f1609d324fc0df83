"""
Automatic invoice <-> bank statement matching.

Precision over recall: a statement is linked only when exactly one invoice
matches on currency, exact signed amount and a date within the window.
Zero or several candidates leave the statement unlinked for manual review.
"""

import datetime as dt
from typing import Iterable, Optional, Sequence
from loguru import logger
from . import workflow
from .amounts import normalize_currency
from .events.event_publisher import EventPublisher
from .storage.ledger_base import LedgerBase
from ..models.invoice import Invoice, InvoiceStatus
from ..models.statement import Statement

DEFAULT_WINDOW_DAYS = 7


def within_window(statement_date: dt.date, invoice_date: dt.date, window_days: int = DEFAULT_WINDOW_DAYS) -> bool:
    """Calendar-day distance check; time of day is ignored"""
    if isinstance(statement_date, dt.datetime):
        statement_date = statement_date.date()
    if isinstance(invoice_date, dt.datetime):
        invoice_date = invoice_date.date()
    return abs((statement_date - invoice_date).days) <= window_days


def is_match(statement: Statement, invoice: Invoice, window_days: int = DEFAULT_WINDOW_DAYS) -> bool:
    if invoice.status == InvoiceStatus.STATEMENT_VERIFIED:
        return False
    if invoice.date is None or statement.date is None:
        return False

    invoice_amount = invoice.signed_total()
    if invoice_amount is None or statement.amount is None:
        return False

    invoice_currency = normalize_currency(invoice.currency)
    statement_currency = normalize_currency(statement.currency)
    if invoice_currency is None or statement_currency is None or invoice_currency != statement_currency:
        return False

    # Exact comparison: no tolerance for rounding
    if invoice_amount != statement.amount:
        return False

    return within_window(statement.date, invoice.date, window_days)


def candidates_for(
    statement: Statement,
    invoices: Iterable[Invoice],
    window_days: int = DEFAULT_WINDOW_DAYS,
) -> list[Invoice]:
    return [invoice for invoice in invoices if is_match(statement, invoice, window_days)]


def auto_link(
    statements: Sequence[Statement],
    invoices: Sequence[Invoice],
    window_days: int = DEFAULT_WINDOW_DAYS,
) -> list[tuple[str, str]]:
    """
    Propose one-to-one links, greedily per statement in input order.

    Statements that already have a match are skipped, and an invoice used
    by an earlier statement is unavailable to later ones.

    Returns:
        (statement_id, invoice_id) pairs in the order they were decided
    """
    available = [
        invoice for invoice in invoices
        if invoice.status != InvoiceStatus.STATEMENT_VERIFIED and invoice.matched_statement_id is None
    ]
    links: list[tuple[str, str]] = []

    for statement in statements:
        if statement.matched_invoice_id is not None:
            continue

        matches = candidates_for(statement, available, window_days)
        if len(matches) != 1:
            if len(matches) > 1:
                logger.debug(
                    "Ambiguous statement left unlinked",
                    statement_id=statement.id,
                    candidates=len(matches),
                )
            continue

        match = matches[0]
        links.append((statement.id, match.id))
        available = [invoice for invoice in available if invoice.id != match.id]

    return links


def auto_link_ledger(
    ledger: LedgerBase,
    publisher: Optional[EventPublisher] = None,
    window_days: int = DEFAULT_WINDOW_DAYS,
) -> list[tuple[str, str]]:
    """
    Run auto_link over the unmatched records of a ledger and apply the links.

    Invoice status is left alone: a link still needs approval before the
    invoice becomes statementVerified.
    """
    links = auto_link(ledger.unmatched_statements(), ledger.unmatched_invoices(), window_days)
    for statement_id, invoice_id in links:
        workflow.link(ledger, statement_id, invoice_id, publisher, automatic=True)

    logger.info("Auto-link finished", links=len(links))
    return links
