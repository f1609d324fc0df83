"""
In-memory ledger (for tests and single-process use).
Persistence is left to whatever composes the service.
"""
import datetime as dt
from typing import Dict, Optional
from .ledger_base import LedgerBase
from ...models.invoice import Invoice
from ...models.statement import Statement


class InMemoryLedger(LedgerBase):
    def __init__(self):
        self._invoices: Dict[str, Invoice] = {}
        self._statements: Dict[str, Statement] = {}

    def add_invoice(self, invoice: Invoice) -> Invoice:
        self._invoices[invoice.id] = invoice
        return invoice

    def add_statement(self, statement: Statement) -> Statement:
        self._statements[statement.id] = statement
        return statement

    def get_invoice(self, invoice_id: str) -> Optional[Invoice]:
        return self._invoices.get(invoice_id)

    def get_statement(self, statement_id: str) -> Optional[Statement]:
        return self._statements.get(statement_id)

    def list_invoices(self) -> list[Invoice]:
        return list(self._invoices.values())

    def list_statements(self) -> list[Statement]:
        # sorted() is stable, so same-day statements keep import order
        return sorted(self._statements.values(), key=lambda s: s.date or dt.date.max)

    def delete_invoice(self, invoice_id: str) -> bool:
        invoice = self._invoices.pop(invoice_id, None)
        if invoice is None:
            return False
        for statement in self._statements.values():
            if statement.matched_invoice_id == invoice_id:
                statement.matched_invoice_id = None
        return True

    def delete_statement(self, statement_id: str) -> bool:
        statement = self._statements.pop(statement_id, None)
        if statement is None:
            return False
        for invoice in self._invoices.values():
            if invoice.matched_statement_id == statement_id:
                invoice.matched_statement_id = None
        return True

    def clear(self) -> None:
        self._invoices.clear()
        self._statements.clear()
