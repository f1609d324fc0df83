import datetime as dt
import uuid
from enum import Enum
from pydantic import BaseModel, Field
from .tag import Tag, TagGroup


class Direction(str, Enum):
    """Whether money is owed to the user (incoming) or by the user (outgoing)"""
    INCOMING = "incoming"
    OUTGOING = "outgoing"


class InvoiceStatus(str, Enum):
    NEW = "new"
    PROCESSED = "processed"
    OCR_VERIFIED = "ocrVerified"
    STATEMENT_VERIFIED = "statementVerified"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]


_STATUS_ORDER = [
    InvoiceStatus.NEW,
    InvoiceStatus.PROCESSED,
    InvoiceStatus.OCR_VERIFIED,
    InvoiceStatus.STATEMENT_VERIFIED,
]

_STATUS_LABELS = {
    InvoiceStatus.NEW: "New",
    InvoiceStatus.PROCESSED: "Processed",
    InvoiceStatus.OCR_VERIFIED: "Verified",
    InvoiceStatus.STATEMENT_VERIFIED: "Linked & Verified",
}


class Invoice(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    path: str | None = None  # Document id (filename) in the document store
    vendor_name: str | None = None
    date: dt.date | None = None
    invoice_number: str | None = None
    total_amount: float | None = None
    pre_tax_amount: float | None = None
    tax_rate: float | None = None  # Fraction, e.g. 0.19
    currency: str | None = None
    direction: Direction | None = None
    status: InvoiceStatus = InvoiceStatus.NEW
    matched_statement_id: str | None = None
    is_manually_checked: bool = False
    tags: list[Tag] = Field(default_factory=list)

    def signed_total(self) -> float | None:
        """Total as it should appear on a bank statement (received > 0, paid < 0)"""
        if self.total_amount is None:
            return None
        if self.direction == Direction.INCOMING:
            return abs(self.total_amount)
        if self.direction == Direction.OUTGOING:
            return -abs(self.total_amount)
        return self.total_amount

    def tags_for(self, group: TagGroup) -> list[Tag]:
        return [t for t in self.tags if t.group == group]

    def tag_titles(self) -> list[str]:
        return sorted(t.title for t in self.tags)

    def tax_amount(self) -> float | None:
        if self.total_amount is None or self.pre_tax_amount is None:
            return None
        return self.total_amount - self.pre_tax_amount

    def tax_mismatch(self) -> tuple[float, float] | None:
        """
        Check total == pre-tax * (1 + tax rate).

        Returns (expected, total) when the difference exceeds
        max(0.01, expected * 0.005), otherwise None. A mismatch is a
        warning for the reviewer, the invoice stays valid.
        """
        if self.pre_tax_amount is None or self.tax_rate is None or self.total_amount is None:
            return None
        expected = self.pre_tax_amount * (1 + self.tax_rate)
        tolerance = max(0.01, expected * 0.005)
        if abs(expected - self.total_amount) <= tolerance:
            return None
        return expected, self.total_amount
