"""
Abstract base class for document stores.

Documents are identified by their filename inside a kind-specific folder.
The reconciliation core only reads, lists, renames and deletes them; how
the bytes are stored is up to the implementation.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from pathlib import PurePath
from typing import Optional
from pydantic import BaseModel


class DocumentKind(str, Enum):
    INVOICE = "invoice"
    BANK_STATEMENT = "bankStatement"

    @property
    def display_name(self) -> str:
        return "Invoice" if self == DocumentKind.INVOICE else "Bank Statement"


# Invoices must be PDFs or images; statements can be anything a bank exports
INVOICE_CONTENT_TYPES = {
    ".pdf": "application/pdf",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".heic": "image/heic",
    ".gif": "image/gif",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
    ".bmp": "image/bmp",
    ".webp": "image/webp",
}


def mime_hint_for(document_id: str) -> Optional[str]:
    """Content type for a supported invoice filename, else None"""
    return INVOICE_CONTENT_TYPES.get(PurePath(document_id).suffix.lower())


class DocumentFile(BaseModel):
    document_id: str
    kind: DocumentKind
    size: int
    modified: datetime

    @property
    def display_name(self) -> str:
        return PurePath(self.document_id).stem

    @property
    def extension(self) -> str:
        return PurePath(self.document_id).suffix.lstrip(".")


class DocumentStoreError(Exception):
    """Base class for document store failures"""


class DocumentNotFoundError(DocumentStoreError):
    def __init__(self, document_id: str):
        super().__init__(f"Document not found: {document_id}")
        self.document_id = document_id


class DocumentExistsError(DocumentStoreError):
    def __init__(self, document_id: str):
        super().__init__(f"A file named '{document_id}' already exists")
        self.document_id = document_id


class DocumentBusyError(DocumentStoreError):
    """The document is owned by an in-flight extraction"""

    def __init__(self, document_id: str):
        super().__init__(f"Document {document_id} is being processed")
        self.document_id = document_id


class UnsupportedDocumentTypeError(DocumentStoreError):
    def __init__(self, extension: str):
        super().__init__(
            f"Unsupported file type: .{extension}. Only PDF and image files are supported for invoices."
        )
        self.extension = extension


class DocumentStoreBase(ABC):
    """
    Abstract base class for document stores.

    Implementations must provide the abstract methods below; existence
    checks and duplicate lookup build on them.
    """

    @abstractmethod
    def read(self, document_id: str, kind: DocumentKind = DocumentKind.INVOICE) -> bytes:
        """
        Read a document's bytes.

        Raises:
            DocumentNotFoundError: if the document does not exist
        """
        pass

    @abstractmethod
    def list(self, kind: DocumentKind = DocumentKind.INVOICE) -> list[DocumentFile]:
        """List documents of one kind, newest first"""
        pass

    @abstractmethod
    def stat(self, document_id: str, kind: DocumentKind = DocumentKind.INVOICE) -> DocumentFile:
        """
        Size and modification time of a document.

        Raises:
            DocumentNotFoundError: if the document does not exist
        """
        pass

    @abstractmethod
    def rename(self, document_id: str, new_base_name: str, kind: DocumentKind = DocumentKind.INVOICE) -> str:
        """
        Rename a document, keeping its extension.

        Returns:
            The new document id; a numeric suffix is added if the name is taken
        """
        pass

    @abstractmethod
    def delete(self, document_id: str, kind: DocumentKind = DocumentKind.INVOICE) -> None:
        pass

    def exists(self, document_id: str, kind: DocumentKind = DocumentKind.INVOICE) -> bool:
        try:
            self.stat(document_id, kind)
        except DocumentNotFoundError:
            return False
        return True

    def find_duplicate(self, data: bytes, kind: DocumentKind = DocumentKind.INVOICE) -> Optional[DocumentFile]:
        """
        Find a stored document with exactly the same content.

        Compares sizes first and reads only same-size documents.
        """
        candidates = [document for document in self.list(kind) if document.size == len(data)]
        for document in candidates:
            try:
                if self.read(document.document_id, kind) == data:
                    return document
            except DocumentNotFoundError:
                continue
        return None
