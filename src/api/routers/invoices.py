from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import Response
from ..deps import (
    BatchResponse,
    CancelResponse,
    InvoiceResponse,
    ProcessingResponse,
    StatusUpdateRequest,
    TagsUpdateRequest,
    get_service,
)
from ...services.extraction import CancellationToken
from ...services.reconciliation import ReconciliationService

router = APIRouter(prefix="/invoices", tags=["invoices"])


@router.post("", response_model=InvoiceResponse, status_code=201)
async def upload(
    request: Request,
    file: UploadFile = File(None),
    service: ReconciliationService = Depends(get_service),
):
    """
    Store an invoice document and create an invoice in status 'new'.

    Accepts either:
    - multipart/form-data (file upload via form)
    - a raw PDF/image body with the filename in the X-Filename header
    """
    if file:
        content = await file.read()
        filename = file.filename or "invoice.pdf"
    else:
        content = await request.body()
        filename = request.headers.get("x-filename", "invoice.pdf")

    if not content:
        raise HTTPException(status_code=422, detail="No file provided (either multipart or raw body)")

    invoice = service.register_document(filename, content)
    return InvoiceResponse.build(invoice)


@router.get("", response_model=list[InvoiceResponse])
async def list_invoices(
    search: list[str] = Query(default=[]),
    service: ReconciliationService = Depends(get_service),
):
    """
    List invoices, optionally filtered.

    Each search value is "field:value" (status, vendor, filename, invoiceNo,
    preTax, tax, total, date, tag) or plain text matching any field.
    Repeated search parameters must all match.
    """
    return [InvoiceResponse.build(i) for i in service.find_invoices(search)]


@router.get("/processing", response_model=ProcessingResponse)
async def processing(service: ReconciliationService = Depends(get_service)):
    """Documents with a running extraction, for disabling duplicate submissions"""
    return ProcessingResponse(
        document_ids=sorted(service.coordinator.processing),
        invoice_ids=service.processing_invoice_ids(),
    )


@router.post("/process-new", response_model=BatchResponse)
async def process_new(request: Request, service: ReconciliationService = Depends(get_service)):
    """Extract every invoice in status 'new', one at a time"""
    token = CancellationToken()
    request.app.state.batch_tokens.add(token)
    try:
        result = await service.process_new_invoices(token)
    finally:
        request.app.state.batch_tokens.discard(token)
    return BatchResponse.build(result)


@router.post("/cancel", response_model=CancelResponse)
async def cancel(request: Request, service: ReconciliationService = Depends(get_service)):
    """Stop running batches and cancel every in-flight extraction"""
    tokens = list(request.app.state.batch_tokens)
    for token in tokens:
        token.cancel()
    cancelled = service.cancel_processing()
    return CancelResponse(cancelled_operations=cancelled, cancelled_batches=len(tokens))


@router.post("/{invoice_id}/process", response_model=InvoiceResponse)
async def process(invoice_id: str, service: ReconciliationService = Depends(get_service)):
    """
    Extract fields from the invoice document.

    A request for a document that is already being processed waits for
    the running extraction instead of starting another one.
    """
    invoice = await service.process_invoice(invoice_id)
    return InvoiceResponse.build(invoice)


@router.post("/{invoice_id}/approve-review", response_model=InvoiceResponse)
async def approve_review(invoice_id: str, service: ReconciliationService = Depends(get_service)):
    """User confirmed the extracted fields"""
    return InvoiceResponse.build(service.approve_review(invoice_id))


@router.put("/{invoice_id}/status", response_model=InvoiceResponse)
async def set_status(
    invoice_id: str,
    req: StatusUpdateRequest,
    service: ReconciliationService = Depends(get_service),
):
    """Manual status override; any status is accepted"""
    return InvoiceResponse.build(service.override_status(invoice_id, req.status))


@router.put("/{invoice_id}/tags", response_model=InvoiceResponse)
async def set_tags(
    invoice_id: str,
    req: TagsUpdateRequest,
    service: ReconciliationService = Depends(get_service),
):
    return InvoiceResponse.build(service.set_tags(invoice_id, req.tags))


@router.delete("/{invoice_id}", status_code=204)
async def delete_invoice(invoice_id: str, service: ReconciliationService = Depends(get_service)):
    """Delete the invoice and its document"""
    service.delete_invoice(invoice_id)
    return Response(status_code=204)
