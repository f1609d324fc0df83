from .store_base import (
    INVOICE_CONTENT_TYPES,
    DocumentBusyError,
    DocumentExistsError,
    DocumentFile,
    DocumentKind,
    DocumentNotFoundError,
    DocumentStoreBase,
    DocumentStoreError,
    UnsupportedDocumentTypeError,
    mime_hint_for,
)
from .filesystem import FilesystemDocumentStore, unique_filename

__all__ = [
    "INVOICE_CONTENT_TYPES",
    "DocumentBusyError",
    "DocumentExistsError",
    "DocumentFile",
    "DocumentKind",
    "DocumentNotFoundError",
    "DocumentStoreBase",
    "DocumentStoreError",
    "FilesystemDocumentStore",
    "UnsupportedDocumentTypeError",
    "mime_hint_for",
    "unique_filename",
]
