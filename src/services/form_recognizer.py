import datetime as dt
from typing import Optional
from loguru import logger
from azure.ai.documentintelligence import DocumentIntelligenceClient
from azure.core.credentials import AzureKeyCredential
from azure.core.exceptions import AzureError
from .amounts import extract_currency, parse_amount
from .documents.store_base import INVOICE_CONTENT_TYPES
from .extraction.errors import ExtractionServiceError, MissingCredentialError, UnsupportedFileTypeError
from .invoice_types import ExtractedFields
from ..core.config import settings
from ..models.invoice import Direction


def _field(fields, name: str):
    if not fields or name not in fields:
        return None
    return fields[name]


def _field_content(fields, name: str) -> Optional[str]:
    field = _field(fields, name)
    if field is None:
        return None
    if getattr(field, "value_string", None):
        return field.value_string
    if getattr(field, "content", None):
        return field.content
    return None


def _field_amount(fields, name: str) -> tuple[Optional[float], Optional[str]]:
    """Amount and currency symbol of a currency field"""
    field = _field(fields, name)
    if field is None:
        return None, None

    currency_value = getattr(field, "value_currency", None)
    if currency_value is not None and getattr(currency_value, "amount", None) is not None:
        symbol = currency_value.currency_symbol or extract_currency(currency_value.currency_code or "")
        return float(currency_value.amount), symbol

    if getattr(field, "value_number", None) is not None:
        return float(field.value_number), None

    # Fall back to the raw text, e.g. "$123.45" or "1.234,56 EUR"
    content = getattr(field, "content", None)
    if not content:
        return None, None
    separator = "," if content.rfind(",") > content.rfind(".") else "."
    parsed = parse_amount(content, separator)
    return parsed.amount, parsed.currency


def _field_date(fields, name: str) -> Optional[dt.date]:
    field = _field(fields, name)
    if field is None:
        return None
    value = getattr(field, "value_date", None)
    if isinstance(value, dt.date):
        return value
    content = getattr(field, "content", None)
    if content:
        try:
            return dt.date.fromisoformat(content.strip())
        except ValueError:
            logger.warning("Could not parse invoice date", field=name, raw=content)
    return None


def _same_party(name: Optional[str], user: Optional[str]) -> bool:
    if not name or not user:
        return False
    name, user = name.strip().lower(), user.strip().lower()
    return bool(name) and bool(user) and (user in name or name in user)


def infer_direction(vendor: Optional[str], customer: Optional[str], user_display_name: Optional[str]) -> Optional[Direction]:
    """
    Incoming when the user is billed, outgoing when the user issued the
    invoice; None when the user appears on neither side.
    """
    if _same_party(customer, user_display_name):
        return Direction.INCOMING
    if _same_party(vendor, user_display_name):
        return Direction.OUTGOING
    return None


def tax_rate_from(pre_tax: Optional[float], tax: Optional[float]) -> Optional[float]:
    if pre_tax is None or tax is None or pre_tax == 0:
        return None
    return round(tax / pre_tax, 4)


def extract_invoice_fields(file_bytes: bytes, mime_hint: Optional[str]) -> ExtractedFields:
    """
    Extract invoice fields with the Azure Document Intelligence invoice model.

    Args:
        file_bytes: Document content
        mime_hint: Content type of the document (PDF or image)

    Raises:
        UnsupportedFileTypeError: not a PDF or a supported image
        MissingCredentialError: endpoint or key not configured
        ExtractionServiceError: the service call failed
    """
    if mime_hint not in INVOICE_CONTENT_TYPES.values():
        raise UnsupportedFileTypeError(mime_hint or "unknown")

    if not (settings.az_di_endpoint and settings.az_di_api_key):
        logger.warning("Azure Document Intelligence not configured, refusing extraction")
        raise MissingCredentialError()

    endpoint = settings.az_di_endpoint
    logger.info(
        "Using Azure Document Intelligence for invoice extraction",
        endpoint=endpoint[:50] + "..." if len(endpoint) > 50 else endpoint,
        size_bytes=len(file_bytes),
        model=settings.az_di_model,
    )

    try:
        client = DocumentIntelligenceClient(
            endpoint=endpoint,
            credential=AzureKeyCredential(settings.az_di_api_key)
        )
        poller = client.begin_analyze_document(
            settings.az_di_model,
            body=file_bytes,
            content_type=mime_hint
        )
        result = poller.result()
    except AzureError as e:
        logger.error("Azure DI extraction failed", error=str(e))
        raise ExtractionServiceError(f"Invoice extraction failed: {e}") from e

    ocr_content = getattr(result, "content", None) or None

    if not result.documents:
        # Quote, receipt or any other non-invoice document
        logger.warning("Azure DI found no structured invoice data")
        return ExtractedFields(raw_chars=len(file_bytes), content=ocr_content)

    doc = result.documents[0]
    fields = doc.fields or {}

    vendor_name = _field_content(fields, "VendorName")
    customer_name = _field_content(fields, "CustomerName") or _field_content(fields, "BillingAddressRecipient")
    total, total_currency = _field_amount(fields, "InvoiceTotal")
    pre_tax, _ = _field_amount(fields, "SubTotal")
    tax, _ = _field_amount(fields, "TotalTax")

    currency = total_currency
    currency_code = _field_content(fields, "CurrencyCode")
    if currency is None and currency_code:
        currency = extract_currency(currency_code) or currency_code.upper()

    extracted = ExtractedFields(
        vendor_name=vendor_name,
        date=_field_date(fields, "InvoiceDate"),
        invoice_number=_field_content(fields, "InvoiceId"),
        total_amount=abs(total) if total is not None else None,
        pre_tax_amount=abs(pre_tax) if pre_tax is not None else None,
        tax_rate=tax_rate_from(pre_tax, tax),
        currency=currency,
        direction=infer_direction(vendor_name, customer_name, settings.user_display_name),
        confidence=getattr(doc, "confidence", None) or 0.0,
        raw_chars=len(file_bytes),
        content=ocr_content,
    )

    logger.info(
        "Successfully extracted invoice data from Azure DI",
        vendor=extracted.vendor_name,
        invoice_number=extracted.invoice_number,
        direction=extracted.direction.value if extracted.direction else None,
        confidence=extracted.confidence,
    )
    return extracted
