class ExtractionError(Exception):
    """Extraction failed; surfaced to every caller of the coordinator"""


class MissingCredentialError(ExtractionError):
    def __init__(self, message: str = "Azure Document Intelligence is not configured. Set AZ_DI_ENDPOINT and AZ_DI_API_KEY."):
        super().__init__(message)


class UnsupportedFileTypeError(ExtractionError):
    def __init__(self, hint: str):
        super().__init__(f"Unsupported file type: {hint}. Only PDF and image files are supported for invoices.")
        self.hint = hint


class ExtractionServiceError(ExtractionError):
    """The extraction service call failed"""


class RenameFailedError(ExtractionError):
    """Fields were extracted but the document could not be renamed afterwards"""

    def __init__(self, document_id: str, reason: str):
        super().__init__(f"Extraction of {document_id} succeeded but renaming the document failed: {reason}")
        self.document_id = document_id


class ExtractionCancelled(Exception):
    """
    Outcome of cancelled work. Not an ExtractionError: callers treat it as
    a quiet stop, never as a failure to report.
    """

    def __init__(self, document_id: str | None = None):
        super().__init__(f"Extraction cancelled: {document_id}" if document_id else "Extraction cancelled")
        self.document_id = document_id
