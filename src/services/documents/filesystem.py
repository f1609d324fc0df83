"""
Local folder document store.

Layout under the root folder:

    <root>/Invoices/          invoice PDFs and images
    <root>/BankStatements/    statement exports (any file type)
"""

import time
from datetime import datetime, UTC
from pathlib import Path
from loguru import logger
from .store_base import (
    INVOICE_CONTENT_TYPES,
    DocumentExistsError,
    DocumentFile,
    DocumentKind,
    DocumentNotFoundError,
    DocumentStoreBase,
    DocumentStoreError,
    UnsupportedDocumentTypeError,
)


def unique_filename(original: str) -> str:
    """name.ext -> name_<unix millis>.ext"""
    path = Path(original)
    timestamp = int(time.time() * 1000)
    return f"{path.stem}_{timestamp}{path.suffix}"


class FilesystemDocumentStore(DocumentStoreBase):
    def __init__(
        self,
        root: str | Path,
        invoices_folder: str = "Invoices",
        statements_folder: str = "BankStatements",
    ):
        self.root = Path(root)
        self._folders = {
            DocumentKind.INVOICE: self.root / invoices_folder,
            DocumentKind.BANK_STATEMENT: self.root / statements_folder,
        }
        for kind, folder in self._folders.items():
            if not folder.exists():
                folder.mkdir(parents=True, exist_ok=True)
                logger.info("Created document folder", kind=kind.value, folder=str(folder))

    def _path(self, document_id: str, kind: DocumentKind) -> Path:
        if not document_id or Path(document_id).name != document_id or document_id in (".", ".."):
            raise DocumentStoreError(f"Invalid document id: {document_id!r}")
        return self._folders[kind] / document_id

    def _existing_path(self, document_id: str, kind: DocumentKind) -> Path:
        path = self._path(document_id, kind)
        if not path.is_file():
            raise DocumentNotFoundError(document_id)
        return path

    def _describe(self, path: Path, kind: DocumentKind) -> DocumentFile:
        info = path.stat()
        return DocumentFile(
            document_id=path.name,
            kind=kind,
            size=info.st_size,
            modified=datetime.fromtimestamp(info.st_mtime, UTC),
        )

    def read(self, document_id: str, kind: DocumentKind = DocumentKind.INVOICE) -> bytes:
        return self._existing_path(document_id, kind).read_bytes()

    def stat(self, document_id: str, kind: DocumentKind = DocumentKind.INVOICE) -> DocumentFile:
        return self._describe(self._existing_path(document_id, kind), kind)

    def list(self, kind: DocumentKind = DocumentKind.INVOICE) -> list[DocumentFile]:
        folder = self._folders[kind]
        if not folder.exists():
            logger.warning("Document folder does not exist yet", kind=kind.value)
            return []

        documents = []
        for path in folder.iterdir():
            if path.name.startswith(".") or not path.is_file():
                continue
            try:
                documents.append(self._describe(path, kind))
            except OSError as e:
                logger.warning("Failed to read document attributes", document_id=path.name, error=str(e))

        documents.sort(key=lambda document: document.modified, reverse=True)
        return documents

    def import_document(self, filename: str, data: bytes, kind: DocumentKind = DocumentKind.INVOICE) -> DocumentFile:
        """
        Store new document bytes under a unique timestamped filename.

        Raises:
            UnsupportedDocumentTypeError: invoice that is not a PDF or image
            DocumentExistsError: the generated name is already taken
        """
        original = Path(filename).name
        if kind == DocumentKind.INVOICE and Path(original).suffix.lower() not in INVOICE_CONTENT_TYPES:
            raise UnsupportedDocumentTypeError(Path(original).suffix.lstrip("."))

        document_id = unique_filename(original)
        path = self._path(document_id, kind)
        if path.exists():
            raise DocumentExistsError(document_id)

        path.write_bytes(data)
        logger.info("Document imported", kind=kind.value, document_id=document_id, size=len(data))
        return self._describe(path, kind)

    def import_file(self, source: str | Path, kind: DocumentKind = DocumentKind.INVOICE) -> DocumentFile:
        source = Path(source)
        try:
            data = source.read_bytes()
        except OSError as e:
            raise DocumentStoreError(f"Unable to read the selected file: {e}") from e
        return self.import_document(source.name, data, kind)

    def rename(self, document_id: str, new_base_name: str, kind: DocumentKind = DocumentKind.INVOICE) -> str:
        source = self._existing_path(document_id, kind)
        suffix = source.suffix

        candidate = f"{new_base_name}{suffix}"
        counter = 2
        while candidate != document_id and self._path(candidate, kind).exists():
            candidate = f"{new_base_name}_{counter}{suffix}"
            counter += 1

        if candidate == document_id:
            return document_id

        source.rename(self._path(candidate, kind))
        logger.info("Document renamed", kind=kind.value, old_id=document_id, new_id=candidate)
        return candidate

    def delete(self, document_id: str, kind: DocumentKind = DocumentKind.INVOICE) -> None:
        self._existing_path(document_id, kind).unlink()
        logger.info("Document deleted", kind=kind.value, document_id=document_id)
