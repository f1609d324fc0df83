import datetime as dt
from pydantic import BaseModel
from ..models.invoice import Direction

class ExtractedFields(BaseModel):
    vendor_name: str | None = None
    date: dt.date | None = None
    invoice_number: str | None = None
    total_amount: float | None = None
    pre_tax_amount: float | None = None
    tax_rate: float | None = None  # Fraction, e.g. 0.07 for 7%
    currency: str | None = None
    direction: Direction | None = None
    confidence: float = 0.0
    raw_chars: int = 0
    content: str | None = None  # Full OCR text content
