import datetime as dt
from typing import Optional
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import Response
from loguru import logger
from ..deps import (
    ApproveLinkRequest,
    AutoLinkResponse,
    ImportResponse,
    InvoiceResponse,
    LinkPair,
    LinkRequest,
    LinkResponse,
    StatementResponse,
    get_service,
)
from ...services.csv_parser import Delimiter
from ...services.export import DateFilterColumn
from ...services.reconciliation import ReconciliationService, StatementPreview
from ...services.review_checks import ReviewReport

router = APIRouter(prefix="/statements", tags=["statements"])


async def _read_csv(file: UploadFile) -> str:
    data = await file.read()
    if not data:
        raise HTTPException(status_code=422, detail="Empty CSV file")
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        # Older bank exports are often Windows-1252/Latin-1
        logger.info("CSV is not UTF-8, decoding as Latin-1", filename=file.filename)
        return data.decode("latin-1")


def _link_response(service: ReconciliationService, statement, invoice) -> LinkResponse:
    return LinkResponse(
        statement=StatementResponse.build(service.ledger, statement),
        invoice=InvoiceResponse.build(invoice),
    )


@router.post("/preview", response_model=StatementPreview)
async def preview(
    file: UploadFile = File(...),
    delimiter: Optional[Delimiter] = Form(None),
    account: Optional[str] = Form(None),
    service: ReconciliationService = Depends(get_service),
):
    """
    Detect the delimiter and guess a column mapping for a bank CSV.

    Nothing is imported; the returned mapping can be adjusted and sent
    to /statements/import.
    """
    return service.preview_statements(await _read_csv(file), delimiter=delimiter, account=account)


@router.post("/import", response_model=ImportResponse)
async def import_statements(
    file: UploadFile = File(...),
    delimiter: Optional[Delimiter] = Form(None),
    account: Optional[str] = Form(None),
    row_start: Optional[int] = Form(None),
    row_end: Optional[int] = Form(None),
    date_column: Optional[int] = Form(None),
    reference_column: Optional[int] = Form(None),
    amount_column: Optional[int] = Form(None),
    currency_column: Optional[int] = Form(None),
    date_format: Optional[str] = Form(None),
    decimal_separator: Optional[str] = Form(None),
    blacklist: Optional[str] = Form(None),
    service: ReconciliationService = Depends(get_service),
):
    """
    Import statements from a bank CSV.

    Mapping fields that are not sent fall back to the guessed mapping.
    blacklist is a comma-separated list of reference tokens.
    Re-importing the same file creates no duplicates.
    """
    text = await _read_csv(file)
    mapping = service.preview_statements(text, delimiter=delimiter, account=account).mapping

    overrides = {
        "row_start": row_start,
        "row_end": row_end,
        "date_column": date_column,
        "reference_column": reference_column,
        "amount_column": amount_column,
        "currency_column": currency_column,
        "date_format": date_format,
        "decimal_separator": decimal_separator,
    }
    if blacklist is not None:
        overrides["blacklist"] = [token for token in blacklist.split(",") if token.strip()]
    mapping = mapping.model_copy(update={k: v for k, v in overrides.items() if v is not None})

    result = service.import_statements(text, mapping=mapping, delimiter=delimiter)
    return ImportResponse.build(result)


@router.get("", response_model=list[StatementResponse])
async def list_statements(
    search: list[str] = Query(default=[]),
    service: ReconciliationService = Depends(get_service),
):
    """
    List statements by date, optionally filtered.

    Search values are "field:value" (status, account, reference, amount,
    currency, notes, linkedInvoice, date) or plain text matching any field.
    """
    return [StatementResponse.build(service.ledger, s) for s in service.find_statements(search)]


@router.get("/export.csv")
async def export_csv(
    date_from: Optional[dt.date] = None,
    date_to: Optional[dt.date] = None,
    by: DateFilterColumn = DateFilterColumn.STATEMENT_DATE,
    service: ReconciliationService = Depends(get_service),
):
    """Linked statement/invoice pairs as CSV, filtered by an inclusive date range"""
    content = service.export_linked_csv(date_from, date_to, by)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="linked-statements.csv"'},
    )


@router.post("/auto-link", response_model=AutoLinkResponse)
async def auto_link(service: ReconciliationService = Depends(get_service)):
    """Link statements that have exactly one matching invoice"""
    links = service.auto_link()
    return AutoLinkResponse(links=[LinkPair(statement_id=s, invoice_id=i) for s, i in links])


@router.post("/{statement_id}/link", response_model=LinkResponse)
async def link(statement_id: str, req: LinkRequest, service: ReconciliationService = Depends(get_service)):
    """Manually link any invoice; the link still needs approval"""
    statement, invoice = service.link(statement_id, req.invoice_id)
    return _link_response(service, statement, invoice)


@router.delete("/{statement_id}/link", response_model=StatementResponse)
async def unlink(statement_id: str, service: ReconciliationService = Depends(get_service)):
    statement = service.unlink(statement_id)
    return StatementResponse.build(service.ledger, statement)


@router.post("/{statement_id}/approve", response_model=LinkResponse)
async def approve(
    statement_id: str,
    req: Optional[ApproveLinkRequest] = None,
    service: ReconciliationService = Depends(get_service),
):
    """Finalize the link; the invoice becomes statementVerified"""
    invoice_id = req.invoice_id if req is not None else None
    statement, invoice = service.approve_link(statement_id, invoice_id)
    return _link_response(service, statement, invoice)


@router.get("/{statement_id}/review", response_model=ReviewReport)
async def review(
    statement_id: str,
    invoice_id: Optional[str] = None,
    service: ReconciliationService = Depends(get_service),
):
    """Warnings to show before approving a link"""
    return service.review(statement_id, invoice_id)


@router.delete("/{statement_id}", status_code=204)
async def delete_statement(statement_id: str, service: ReconciliationService = Depends(get_service)):
    service.delete_statement(statement_id)
    return Response(status_code=204)
