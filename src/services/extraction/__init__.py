from .coordinator import (
    BatchProgress,
    BatchResult,
    CancellationToken,
    ExtractionCompletion,
    ExtractionCoordinator,
    canonical_invoice_name,
)
from .errors import (
    ExtractionCancelled,
    ExtractionError,
    ExtractionServiceError,
    MissingCredentialError,
    RenameFailedError,
    UnsupportedFileTypeError,
)

__all__ = [
    "BatchProgress",
    "BatchResult",
    "CancellationToken",
    "ExtractionCancelled",
    "ExtractionCompletion",
    "ExtractionCoordinator",
    "ExtractionError",
    "ExtractionServiceError",
    "MissingCredentialError",
    "RenameFailedError",
    "UnsupportedFileTypeError",
    "canonical_invoice_name",
]
