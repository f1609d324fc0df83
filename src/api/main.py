from typing import Optional
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from ..core.logging import setup_logging
from ..core.config import settings
from ..services.documents import (
    DocumentBusyError,
    DocumentExistsError,
    DocumentNotFoundError,
    DocumentStoreError,
    UnsupportedDocumentTypeError,
)
from ..services.extraction import (
    ExtractionCancelled,
    ExtractionError,
    MissingCredentialError,
    UnsupportedFileTypeError,
)
from ..services.reconciliation import ReconciliationService
from ..services.storage import UnknownEntityError
from ..services.workflow import WorkflowError
from .routers import health, invoices, statements

logger = setup_logging()


def _error(status_code: int, exc: Exception, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc), **extra})


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.error("Validation error", errors=str(exc.errors()), path=request.url.path)
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": exc.errors(), "body": str(await request.body())},
        )

    @app.exception_handler(UnknownEntityError)
    async def unknown_entity_handler(request: Request, exc: UnknownEntityError):
        return _error(status.HTTP_404_NOT_FOUND, exc)

    @app.exception_handler(DocumentStoreError)
    async def document_store_handler(request: Request, exc: DocumentStoreError):
        if isinstance(exc, DocumentNotFoundError):
            return _error(status.HTTP_404_NOT_FOUND, exc)
        if isinstance(exc, (DocumentExistsError, DocumentBusyError)):
            return _error(status.HTTP_409_CONFLICT, exc)
        if isinstance(exc, UnsupportedDocumentTypeError):
            return _error(status.HTTP_415_UNSUPPORTED_MEDIA_TYPE, exc)
        logger.error("Document store error", error=str(exc), path=request.url.path)
        return _error(status.HTTP_400_BAD_REQUEST, exc)

    @app.exception_handler(WorkflowError)
    async def workflow_handler(request: Request, exc: WorkflowError):
        return _error(status.HTTP_409_CONFLICT, exc)

    @app.exception_handler(ExtractionCancelled)
    async def cancelled_handler(request: Request, exc: ExtractionCancelled):
        # Not a failure: the client asked for it
        return _error(status.HTTP_409_CONFLICT, exc, outcome="cancelled")

    @app.exception_handler(ExtractionError)
    async def extraction_handler(request: Request, exc: ExtractionError):
        if isinstance(exc, UnsupportedFileTypeError):
            return _error(status.HTTP_415_UNSUPPORTED_MEDIA_TYPE, exc, outcome="failed")
        if isinstance(exc, MissingCredentialError):
            return _error(status.HTTP_503_SERVICE_UNAVAILABLE, exc, outcome="failed")
        return _error(status.HTTP_502_BAD_GATEWAY, exc, outcome="failed")


def create_app(service: Optional[ReconciliationService] = None) -> FastAPI:
    """
    Build the API around a reconciliation service.

    Without a service one is composed from settings on first request.
    """
    app = FastAPI(title="Invoice Reconciliation Core")
    app.state.service = service
    app.state.batch_tokens = set()

    register_exception_handlers(app)

    # Configure CORS to allow frontend access
    # CORS_ORIGINS can be set in .env as comma-separated list
    # Example: CORS_ORIGINS=http://localhost:3000,https://your-frontend.com
    allowed_origins = [origin.strip() for origin in settings.cors_origins.split(",")]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(statements.router)
    app.include_router(invoices.router)
    return app


app = create_app()
