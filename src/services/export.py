"""
CSV export of linked statement/invoice pairs for the accountant.
"""

import csv
import datetime as dt
import io
from enum import Enum
from typing import Optional, Sequence
from .storage.ledger_base import LedgerBase
from ..models.invoice import Direction, Invoice
from ..models.statement import Statement

HEADER = [
    "Statement Date",
    "Statement Reference",
    "Statement Amount",
    "Statement Account",
    "Statement Notes",
    "Invoice Date",
    "Invoice Vendor",
    "Invoice Number",
    "Invoice Amount",
    "Invoice Pre-Tax Amount",
    "Invoice Tax Percentage",
    "Invoice Tax Amount",
    "Invoice Status",
    "Invoice File Path",
    "Invoice Tags",
]


class DateFilterColumn(str, Enum):
    STATEMENT_DATE = "statementDate"
    INVOICE_DATE = "invoiceDate"


def linked_pairs(ledger: LedgerBase) -> list[tuple[Statement, Invoice]]:
    pairs = []
    for statement in ledger.list_statements():
        invoice = ledger.invoice_for_statement(statement)
        if invoice is not None:
            pairs.append((statement, invoice))
    return pairs


def filter_pairs(
    pairs: Sequence[tuple[Statement, Invoice]],
    date_from: Optional[dt.date] = None,
    date_to: Optional[dt.date] = None,
    by: DateFilterColumn = DateFilterColumn.STATEMENT_DATE,
) -> list[tuple[Statement, Invoice]]:
    """
    Keep pairs whose statement (or invoice) date lies in the inclusive range.

    A reversed range is swapped; pairs without a date are dropped whenever
    a bound is given.
    """
    if date_from and date_to and date_from > date_to:
        date_from, date_to = date_to, date_from

    selected = []
    for statement, invoice in pairs:
        date = statement.date if by == DateFilterColumn.STATEMENT_DATE else invoice.date
        if date_from is None and date_to is None:
            selected.append((statement, invoice))
            continue
        if date is None:
            continue
        if date_from is not None and date < date_from:
            continue
        if date_to is not None and date > date_to:
            continue
        selected.append((statement, invoice))
    return selected


def _signed(amount: Optional[float], invoice: Invoice) -> Optional[float]:
    # Exported from the bookkeeping point of view: incoming invoices are costs
    if amount is None:
        return None
    return -amount if invoice.direction == Direction.INCOMING else amount


def _amount(amount: Optional[float], currency: Optional[str]) -> str:
    if amount is None:
        return ""
    formatted = f"{amount:.2f}"
    return f"{formatted} {currency}" if currency else formatted


def _number(value: Optional[float]) -> str:
    return "" if value is None else f"{value:g}"


def _date(value: Optional[dt.date]) -> str:
    return value.isoformat() if value else ""


def export_row(statement: Statement, invoice: Invoice) -> list[str]:
    tax_percentage = invoice.tax_rate * 100 if invoice.tax_rate is not None else None
    return [
        _date(statement.date),
        statement.reference or "",
        _amount(statement.amount, statement.currency),
        statement.account or "",
        statement.notes,
        _date(invoice.date),
        invoice.vendor_name or "",
        invoice.invoice_number or "",
        _amount(_signed(invoice.total_amount, invoice), invoice.currency),
        _amount(_signed(invoice.pre_tax_amount, invoice), invoice.currency),
        _number(round(tax_percentage, 4) if tax_percentage is not None else None),
        _amount(_signed(invoice.tax_amount(), invoice), invoice.currency),
        invoice.status.label,
        invoice.path or "",
        ", ".join(invoice.tag_titles()),
    ]


def write_linked_csv(pairs: Sequence[tuple[Statement, Invoice]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(HEADER)
    for statement, invoice in pairs:
        writer.writerow(export_row(statement, invoice))
    return buffer.getvalue()


def export_linked_csv(
    ledger: LedgerBase,
    date_from: Optional[dt.date] = None,
    date_to: Optional[dt.date] = None,
    by: DateFilterColumn = DateFilterColumn.STATEMENT_DATE,
) -> str:
    return write_linked_csv(filter_pairs(linked_pairs(ledger), date_from, date_to, by))
