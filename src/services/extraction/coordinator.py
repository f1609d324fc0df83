"""
Extraction coordinator.

Runs invoice extractions with at most one in-flight operation per document.
A second request for a document that is already being processed joins the
running operation and receives the same result or the same failure.

After a successful extraction the document is renamed to a canonical
"Vendor_date" name. The operation only succeeds once the rename did; the
invoice must never point at a path the extraction no longer owns.

Extraction work runs in worker threads and returns values only. The owner
of the ledger applies results through on_complete, on the event loop and
before the document leaves the in-flight set.

Usage:
    coordinator = ExtractionCoordinator(store, extract_invoice_fields, publisher)
    completion = await coordinator.process("scan_1700000000000.pdf")

    token = CancellationToken()
    result = await coordinator.run_batch(document_ids, token, on_progress=print)
"""

import asyncio
import datetime as dt
import functools
import inspect
import re
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Awaitable, Callable, Dict, Iterable, Optional, Union
from loguru import logger
from .errors import ExtractionCancelled, ExtractionError, RenameFailedError
from ..documents.store_base import DocumentKind, DocumentStoreBase, mime_hint_for
from ..events.event_publisher import EventPublisher, ExtractionFinished
from ..invoice_types import ExtractedFields

Extractor = Callable[[bytes, Optional[str]], Union[ExtractedFields, Awaitable[ExtractedFields]]]

_UNSAFE_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f]')
_WHITESPACE = re.compile(r"\s+")
_DASHES = re.compile(r"-{2,}")


def canonical_invoice_name(vendor: Optional[str], date: Optional[dt.date]) -> str:
    """
    Base filename for an extracted invoice: "Vendor-Name_yyyy-MM-dd".

    Characters that are not allowed in filenames are dropped; a missing
    vendor or date becomes "Unknown".
    """
    cleaned = _UNSAFE_CHARS.sub("", vendor or "").strip().strip(".")
    cleaned = _DASHES.sub("-", _WHITESPACE.sub("-", cleaned))
    vendor_part = cleaned or "Unknown"
    date_part = date.isoformat() if date is not None else "Unknown"
    return f"{vendor_part}_{date_part}"


class CancellationToken:
    """Cooperative cancellation flag passed into long-running operations"""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self, document_id: Optional[str] = None) -> None:
        if self._cancelled:
            raise ExtractionCancelled(document_id)


@dataclass(frozen=True)
class ExtractionCompletion:
    fields: ExtractedFields
    document_id: str  # After the rename
    original_document_id: str


@dataclass(frozen=True)
class BatchProgress:
    completed: int
    total: int


@dataclass
class BatchResult:
    total: int
    completed: int = 0
    succeeded: list[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    cancelled: int = 0
    stopped: bool = False  # Token cancelled before every item was started


class ExtractionCoordinator:
    def __init__(
        self,
        store: DocumentStoreBase,
        extractor: Extractor,
        publisher: Optional[EventPublisher] = None,
    ):
        self.store = store
        self.extractor = extractor
        self.publisher = publisher
        self._in_flight: Dict[str, asyncio.Task] = {}

    @property
    def processing(self) -> frozenset[str]:
        """Document ids with an unsettled extraction"""
        return frozenset(key for key, task in self._in_flight.items() if not task.done())

    def is_processing(self, document_id: str) -> bool:
        task = self._in_flight.get(document_id)
        return task is not None and not task.done()

    def cancel_all(self) -> int:
        """
        Cancel every in-flight extraction.

        Every caller joined on a cancelled operation gets ExtractionCancelled.

        Returns:
            Number of operations cancelled
        """
        tasks = [task for task in self._in_flight.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            logger.info("Cancelling in-flight extractions", count=len(tasks))
        return len(tasks)

    async def process(
        self,
        document_id: str,
        on_extract: Optional[Extractor] = None,
        token: Optional[CancellationToken] = None,
        on_complete: Optional[Callable[[ExtractionCompletion], None]] = None,
    ) -> ExtractionCompletion:
        """
        Extract fields from a document, joining an in-flight run if any.

        Args:
            document_id: Invoice document to process
            on_extract: Extractor for this call instead of the default;
                unused when an operation for the document is already running
            token: This caller's cancellation token, checked before starting
                or joining and after the operation settles. Cancelling it
                never cancels the shared operation; only cancel_all() does.
            on_complete: Called on the loop with the completion after the
                rename and before the document is released; unused when
                joining. If it raises, the rename is rolled back.

        Raises:
            ExtractionError: extraction or rename failed
            ExtractionCancelled: the operation or this caller was cancelled
        """
        if token is not None:
            token.raise_if_cancelled(document_id)

        # No await between lookup and insert: single-flight on the loop thread
        existing = self._in_flight.get(document_id)
        if existing is not None and not existing.done():
            logger.info("Joining in-flight extraction", document_id=document_id)
            return await self._join(existing, document_id, token)

        task = asyncio.create_task(
            self._run(document_id, on_extract or self.extractor, on_complete),
            name=f"extract:{document_id}",
        )
        self._in_flight[document_id] = task
        task.add_done_callback(functools.partial(self._settle, document_id))
        return await self._join(task, document_id, token)

    def _settle(self, document_id: str, task: asyncio.Task) -> None:
        if self._in_flight.get(document_id) is task:
            del self._in_flight[document_id]

    async def _join(
        self,
        task: asyncio.Task,
        document_id: str,
        token: Optional[CancellationToken],
    ) -> ExtractionCompletion:
        try:
            completion = await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                raise ExtractionCancelled(document_id) from None
            # The caller itself was cancelled, the shared operation keeps running
            raise

        if token is not None and token.cancelled:
            # Only this caller stops; the result stays applied for everyone else
            logger.info("Caller cancelled after extraction settled", document_id=document_id)
            raise ExtractionCancelled(document_id)
        return completion

    async def _call_extractor(self, extractor: Extractor, data: bytes, mime_hint: Optional[str]) -> ExtractedFields:
        # Async callables (functions or objects with an async __call__) run on the loop
        if inspect.iscoroutinefunction(extractor) or inspect.iscoroutinefunction(getattr(extractor, "__call__", None)):
            return await extractor(data, mime_hint)
        return await asyncio.to_thread(extractor, data, mime_hint)

    def _rollback_rename(self, completion: ExtractionCompletion) -> None:
        original_name = PurePath(completion.original_document_id).stem
        try:
            restored = self.store.rename(completion.document_id, original_name, DocumentKind.INVOICE)
        except Exception as e:
            logger.error("Rename rollback failed", document_id=completion.document_id, error=str(e))
            return
        logger.info("Rename rolled back", document_id=completion.document_id, restored=restored)

    async def _run(
        self,
        document_id: str,
        extractor: Extractor,
        on_complete: Optional[Callable[[ExtractionCompletion], None]],
    ) -> ExtractionCompletion:
        logger.info("Processing invoice", document_id=document_id)
        try:
            data = await asyncio.to_thread(self.store.read, document_id, DocumentKind.INVOICE)
            fields = await self._call_extractor(extractor, data, mime_hint_for(document_id))

            # From here on there is no suspension point: cancel_all() cannot
            # land between the rename, the apply and the returned completion
            new_name = canonical_invoice_name(fields.vendor_name, fields.date)
            try:
                new_id = self.store.rename(document_id, new_name, DocumentKind.INVOICE)
            except Exception as e:
                raise RenameFailedError(document_id, str(e)) from e

            completion = ExtractionCompletion(fields=fields, document_id=new_id, original_document_id=document_id)
            if on_complete is not None:
                try:
                    on_complete(completion)
                except Exception:
                    self._rollback_rename(completion)
                    raise

        except (asyncio.CancelledError, ExtractionCancelled):
            logger.info("Extraction cancelled", document_id=document_id)
            self._publish(document_id, "cancelled")
            raise
        except ExtractionError as e:
            logger.error("Extraction failed", document_id=document_id, error=str(e))
            self._publish(document_id, "failed", error=str(e))
            raise
        except Exception as e:
            logger.error("Extraction failed", document_id=document_id, error=str(e))
            self._publish(document_id, "failed", error=str(e))
            raise ExtractionError(str(e)) from e

        logger.info("Invoice processed successfully", document_id=document_id, new_document_id=new_id)
        self._publish(document_id, "succeeded", new_document_id=new_id)
        return completion

    def _publish(self, document_id: str, outcome: str, **kwargs) -> None:
        if self.publisher is not None:
            self.publisher.publish(ExtractionFinished(document_id=document_id, outcome=outcome, **kwargs))

    async def run_batch(
        self,
        ids: Iterable[str],
        token: CancellationToken,
        process: Optional[Callable[[str], Awaitable[object]]] = None,
        on_progress: Optional[Callable[[BatchProgress], None]] = None,
    ) -> BatchResult:
        """
        Process documents one at a time.

        Stops before the next item once the token is cancelled; items
        already running are only cancelled through cancel_all(). Failures
        are recorded per item and do not stop the batch.

        Args:
            ids: Document ids (or any item ids handled by process) in order
            token: Batch cancellation token
            process: Per-item coroutine, defaults to process(item_id, token=token)
            on_progress: Called with (completed, total) after every item
        """
        ids = list(ids)
        result = BatchResult(total=len(ids))
        run_item = process or (lambda item_id: self.process(item_id, token=token))

        if on_progress is not None:
            on_progress(BatchProgress(completed=0, total=result.total))

        for item_id in ids:
            if token.cancelled:
                result.stopped = True
                logger.info("Batch stopped", completed=result.completed, total=result.total)
                break

            try:
                await run_item(item_id)
                result.succeeded.append(item_id)
            except ExtractionCancelled:
                result.cancelled += 1
            except Exception as e:
                logger.warning("Batch item failed", item_id=item_id, error=str(e))
                result.failed[item_id] = str(e)

            result.completed += 1
            if on_progress is not None:
                on_progress(BatchProgress(completed=result.completed, total=result.total))

            # Let cancellation requests run before the next item starts
            await asyncio.sleep(0)

        return result
