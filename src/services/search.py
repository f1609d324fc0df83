"""
Field-scoped search over invoices and bank statements.

A search is a list of tokens such as "vendor:acme" or "total:119". A token
without a known field prefix searches every field. A record is kept only
when all tokens match.

Text fields match case-insensitive substrings. Amounts match when the
formatted absolute amount starts with the searched text, or when the
searched number lies within 5% of the absolute amount.
"""

import datetime as dt
from enum import Enum
from typing import Callable, Dict, Iterable, Optional, Sequence, Type, TypeVar
from loguru import logger
from pydantic import BaseModel
from .storage.ledger_base import LedgerBase
from ..models.invoice import Invoice
from ..models.statement import Statement, derive_statement_status

AMOUNT_TOLERANCE = 0.05

F = TypeVar("F", bound=Enum)


class InvoiceSearchField(str, Enum):
    ALL = "all"
    STATUS = "status"
    VENDOR = "vendor"
    FILENAME = "filename"
    INVOICE_NUMBER = "invoiceNo"
    PRE_TAX = "preTax"
    TAX = "tax"
    TOTAL = "total"
    DATE = "date"
    TAG = "tag"


class StatementSearchField(str, Enum):
    ALL = "all"
    STATUS = "status"
    ACCOUNT = "account"
    REFERENCE = "reference"
    AMOUNT = "amount"
    CURRENCY = "currency"
    NOTES = "notes"
    LINKED_INVOICE = "linkedInvoice"
    DATE = "date"


def contains(text: Optional[str], value: str) -> bool:
    return text is not None and value.lower() in text.lower()


def amount_matches(amount: Optional[float], value: str) -> bool:
    """Prefix match on the two-decimal absolute amount, then 5% tolerance"""
    if amount is None:
        return False
    magnitude = abs(amount)
    formatted = f"{magnitude:.2f}"
    normalized = value.replace(",", ".")
    if formatted.startswith(value) or formatted.startswith(normalized):
        return True
    try:
        wanted = float(normalized)
    except ValueError:
        return False
    return abs(wanted - magnitude) <= magnitude * AMOUNT_TOLERANCE


def date_matches(date: Optional[dt.date], value: str) -> bool:
    # Both the display form (dd.MM.yyyy) and ISO dates are searchable
    if date is None:
        return False
    return contains(date.strftime("%d.%m.%Y"), value) or contains(date.isoformat(), value)


def tax_matches(tax_rate: Optional[float], value: str) -> bool:
    if tax_rate is None:
        return False
    return contains(f"{tax_rate * 100:.0f}%", value)


_INVOICE_MATCHERS: Dict[InvoiceSearchField, Callable[[Invoice, str], bool]] = {
    InvoiceSearchField.STATUS: lambda i, v: contains(i.status.label, v),
    InvoiceSearchField.VENDOR: lambda i, v: contains(i.vendor_name, v),
    InvoiceSearchField.FILENAME: lambda i, v: contains(i.path, v),
    InvoiceSearchField.INVOICE_NUMBER: lambda i, v: contains(i.invoice_number, v),
    InvoiceSearchField.PRE_TAX: lambda i, v: amount_matches(i.pre_tax_amount, v),
    InvoiceSearchField.TAX: lambda i, v: tax_matches(i.tax_rate, v),
    InvoiceSearchField.TOTAL: lambda i, v: amount_matches(i.total_amount, v),
    InvoiceSearchField.DATE: lambda i, v: date_matches(i.date, v),
    InvoiceSearchField.TAG: lambda i, v: any(contains(t.title, v) for t in i.tags),
}


class InvoiceSearchToken(BaseModel):
    field: InvoiceSearchField = InvoiceSearchField.ALL
    value: str

    def matches(self, invoice: Invoice) -> bool:
        if self.field == InvoiceSearchField.ALL:
            return any(match(invoice, self.value) for match in _INVOICE_MATCHERS.values())
        return _INVOICE_MATCHERS[self.field](invoice, self.value)


def _linked_path(invoice: Optional[Invoice]) -> Optional[str]:
    return invoice.path if invoice is not None else None


_STATEMENT_MATCHERS: Dict[StatementSearchField, Callable[[Statement, Optional[Invoice], str], bool]] = {
    StatementSearchField.STATUS: lambda s, i, v: contains(derive_statement_status(s, i).label, v),
    StatementSearchField.ACCOUNT: lambda s, i, v: contains(s.account, v),
    StatementSearchField.REFERENCE: lambda s, i, v: contains(s.reference, v),
    StatementSearchField.AMOUNT: lambda s, i, v: amount_matches(s.amount, v),
    StatementSearchField.CURRENCY: lambda s, i, v: contains(s.currency, v),
    StatementSearchField.NOTES: lambda s, i, v: contains(s.notes, v),
    StatementSearchField.LINKED_INVOICE: lambda s, i, v: contains(_linked_path(i), v),
    StatementSearchField.DATE: lambda s, i, v: date_matches(s.date, v),
}


class StatementSearchToken(BaseModel):
    field: StatementSearchField = StatementSearchField.ALL
    value: str

    def matches(self, statement: Statement, invoice: Optional[Invoice] = None) -> bool:
        """invoice is the one linked to the statement, if any"""
        if self.field == StatementSearchField.ALL:
            return any(match(statement, invoice, self.value) for match in _STATEMENT_MATCHERS.values())
        return _STATEMENT_MATCHERS[self.field](statement, invoice, self.value)


def split_token(text: str, fields: Type[F]) -> tuple[F, str]:
    """
    Split "field:value" into its field and value.

    The field name is case-insensitive. Text without a known field prefix
    is returned whole with the 'all' field, so values containing a colon
    still search.
    """
    name, sep, value = text.partition(":")
    if sep:
        wanted = name.strip().lower()
        for field in fields:
            if field.value.lower() == wanted:
                return field, value.strip()
    return fields("all"), text.strip()


def parse_invoice_tokens(queries: Iterable[str]) -> list[InvoiceSearchToken]:
    tokens = []
    for query in queries:
        field, value = split_token(query, InvoiceSearchField)
        if value:
            tokens.append(InvoiceSearchToken(field=field, value=value))
    return tokens


def parse_statement_tokens(queries: Iterable[str]) -> list[StatementSearchToken]:
    tokens = []
    for query in queries:
        field, value = split_token(query, StatementSearchField)
        if value:
            tokens.append(StatementSearchToken(field=field, value=value))
    return tokens


def search_invoices(invoices: Sequence[Invoice], tokens: Sequence[InvoiceSearchToken]) -> list[Invoice]:
    result = [i for i in invoices if all(t.matches(i) for t in tokens)]
    if tokens:
        logger.debug("Invoice search", tokens=len(tokens), matched=len(result), total=len(invoices))
    return result


def search_statements(ledger: LedgerBase, tokens: Sequence[StatementSearchToken]) -> list[Statement]:
    """Statements in ledger order that match every token"""
    result = []
    statements = ledger.list_statements()
    for statement in statements:
        invoice = ledger.invoice_for_statement(statement)
        if all(t.matches(statement, invoice) for t in tokens):
            result.append(statement)
    if tokens:
        logger.debug("Statement search", tokens=len(tokens), matched=len(result), total=len(statements))
    return result
