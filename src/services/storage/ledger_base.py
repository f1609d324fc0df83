"""
Abstract base class for the invoice/statement ledger.

Invoices and statements reference each other by id only; every lookup goes
through a ledger, so there are no object cycles and any storage backend can
sit behind this interface.
"""

from abc import ABC, abstractmethod
from typing import Optional
from ...models.invoice import Invoice, InvoiceStatus
from ...models.statement import DedupKey, Statement


class UnknownEntityError(LookupError):
    """Raised when an invoice or statement id is not in the ledger"""

    def __init__(self, kind: str, entity_id: str):
        super().__init__(f"{kind} not found: {entity_id}")
        self.kind = kind
        self.entity_id = entity_id


class LedgerBase(ABC):
    """
    Abstract base class for invoice and statement storage.

    Implementations only need single-record atomicity; no transactions
    spanning several records are assumed.
    """

    @abstractmethod
    def add_invoice(self, invoice: Invoice) -> Invoice:
        pass

    @abstractmethod
    def add_statement(self, statement: Statement) -> Statement:
        pass

    @abstractmethod
    def get_invoice(self, invoice_id: str) -> Optional[Invoice]:
        pass

    @abstractmethod
    def get_statement(self, statement_id: str) -> Optional[Statement]:
        pass

    @abstractmethod
    def list_invoices(self) -> list[Invoice]:
        """All invoices in insertion order"""
        pass

    @abstractmethod
    def list_statements(self) -> list[Statement]:
        """All statements ordered by date, then insertion order"""
        pass

    @abstractmethod
    def delete_invoice(self, invoice_id: str) -> bool:
        """
        Delete an invoice and clear the back reference of its statement.

        Returns:
            True if deleted, False if the invoice was not found
        """
        pass

    @abstractmethod
    def delete_statement(self, statement_id: str) -> bool:
        """
        Delete a statement and clear the back reference of its invoice.

        Returns:
            True if deleted, False if the statement was not found
        """
        pass

    def require_invoice(self, invoice_id: str) -> Invoice:
        invoice = self.get_invoice(invoice_id)
        if invoice is None:
            raise UnknownEntityError("Invoice", invoice_id)
        return invoice

    def require_statement(self, statement_id: str) -> Statement:
        statement = self.get_statement(statement_id)
        if statement is None:
            raise UnknownEntityError("Statement", statement_id)
        return statement

    def unmatched_statements(self) -> list[Statement]:
        return [s for s in self.list_statements() if s.matched_invoice_id is None]

    def unmatched_invoices(self) -> list[Invoice]:
        return [i for i in self.list_invoices() if i.matched_statement_id is None]

    def invoices_with_status(self, status: InvoiceStatus) -> list[Invoice]:
        return [i for i in self.list_invoices() if i.status == status]

    def statement_dedup_keys(self) -> set[DedupKey]:
        return {s.dedup_key() for s in self.list_statements()}

    def invoice_for_statement(self, statement: Statement) -> Optional[Invoice]:
        if statement.matched_invoice_id is None:
            return None
        return self.get_invoice(statement.matched_invoice_id)

    def invoice_by_path(self, path: str) -> Optional[Invoice]:
        return next((i for i in self.list_invoices() if i.path == path), None)
