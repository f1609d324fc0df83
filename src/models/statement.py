import datetime as dt
import uuid
from enum import Enum
from pydantic import BaseModel, Field
from .invoice import Invoice, InvoiceStatus

DedupKey = tuple[str, str, str, float, str]


class StatementStatus(str, Enum):
    UNLINKED = "unlinked"
    LINKED = "linked"
    VERIFIED = "verified"

    @property
    def label(self) -> str:
        return {
            StatementStatus.UNLINKED: "Unlinked",
            StatementStatus.LINKED: "Linked to Invoice",
            StatementStatus.VERIFIED: "Linked & Verified",
        }[self]

    @property
    def rank(self) -> int:
        return list(StatementStatus).index(self)

    # str defines every comparison, so each one is overridden to use rank
    def __lt__(self, other):
        if not isinstance(other, StatementStatus):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, StatementStatus):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, StatementStatus):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, StatementStatus):
            return NotImplemented
        return self.rank >= other.rank


class Statement(BaseModel):
    """One bank transaction imported from a CSV statement"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    account: str | None = None
    date: dt.date
    reference: str | None = None
    amount: float  # Signed: money received > 0, money paid < 0
    currency: str | None = None
    notes: str = ""
    matched_invoice_id: str | None = None

    def dedup_key(self) -> DedupKey:
        return statement_key(self.account, self.date, self.reference, self.amount, self.currency)


def statement_key(
    account: str | None,
    date: dt.date,
    reference: str | None,
    amount: float,
    currency: str | None,
) -> DedupKey:
    """Composite key identifying the same transaction across imports"""
    return (account or "", date.isoformat(), reference or "", round(amount, 6), currency or "")


def derive_statement_status(statement: Statement, invoice: Invoice | None) -> StatementStatus:
    if statement.matched_invoice_id is None or invoice is None:
        return StatementStatus.UNLINKED
    if invoice.status == InvoiceStatus.STATEMENT_VERIFIED:
        return StatementStatus.VERIFIED
    return StatementStatus.LINKED
