"""
Tests for the extraction coordinator.

Extractors here are gated with asyncio events so tests control exactly
when an extraction finishes while other callers join or cancel.
"""

import asyncio
import datetime as dt
import pytest
from src.services.documents import DocumentKind, FilesystemDocumentStore
from src.services.events import EventPublisher
from src.services.extraction import (
    BatchProgress,
    CancellationToken,
    ExtractionCancelled,
    ExtractionCoordinator,
    ExtractionError,
    ExtractionServiceError,
    RenameFailedError,
    canonical_invoice_name,
)
from src.services.invoice_types import ExtractedFields

FIELDS = ExtractedFields(vendor_name="ACME GmbH", date=dt.date(2024, 1, 10), total_amount=119.0)


class GatedExtractor:
    """Async extractor that blocks until released and counts calls"""

    def __init__(self, result=FIELDS, error=None):
        self.result = result
        self.error = error
        self.calls = 0
        self.gate = asyncio.Event()

    async def __call__(self, data, mime_hint):
        self.calls += 1
        await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.result

    async def wait_for_calls(self, count):
        while self.calls < count:
            await asyncio.sleep(0.01)


class FailingRenameStore(FilesystemDocumentStore):
    def rename(self, document_id, new_base_name, kind=DocumentKind.INVOICE):
        raise OSError("read-only file system")


@pytest.fixture
def store(tmp_path):
    return FilesystemDocumentStore(tmp_path)


@pytest.fixture
def document_id(store):
    return store.import_document("scan.pdf", b"%PDF-1.4 invoice").document_id


@pytest.fixture
def events():
    return []


@pytest.fixture
def publisher(events):
    p = EventPublisher()
    p.subscribe(events.append, event_type="ExtractionFinished")
    return p


class TestCanonicalName:
    def test_vendor_and_date(self):
        assert canonical_invoice_name("ACME GmbH", dt.date(2024, 1, 10)) == "ACME-GmbH_2024-01-10"

    def test_unknown_fallbacks(self):
        assert canonical_invoice_name(None, None) == "Unknown_Unknown"
        assert canonical_invoice_name("  ", dt.date(2024, 1, 10)) == "Unknown_2024-01-10"

    def test_unsafe_characters_are_dropped(self):
        assert canonical_invoice_name('A/B: C*  "Ltd"', dt.date(2024, 1, 10)) == "AB-C-Ltd_2024-01-10"


class TestProcess:
    @pytest.mark.asyncio
    async def test_success_renames_document(self, store, document_id, publisher, events):
        extractor = GatedExtractor()
        extractor.gate.set()
        coordinator = ExtractionCoordinator(store, extractor, publisher)

        completion = await coordinator.process(document_id)

        assert completion.fields == FIELDS
        assert completion.original_document_id == document_id
        assert completion.document_id == "ACME-GmbH_2024-01-10.pdf"
        assert store.exists("ACME-GmbH_2024-01-10.pdf")
        assert not store.exists(document_id)
        assert coordinator.processing == frozenset()
        assert [(e.outcome, e.new_document_id) for e in events] == [("succeeded", "ACME-GmbH_2024-01-10.pdf")]

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_one_extraction(self, store, document_id):
        extractor = GatedExtractor()
        coordinator = ExtractionCoordinator(store, extractor)

        first = asyncio.create_task(coordinator.process(document_id))
        await extractor.wait_for_calls(1)
        second = asyncio.create_task(coordinator.process(document_id))
        await asyncio.sleep(0)

        assert coordinator.is_processing(document_id)
        assert coordinator.processing == frozenset({document_id})

        extractor.gate.set()
        one, two = await asyncio.gather(first, second)

        assert extractor.calls == 1
        assert one == two
        assert not coordinator.is_processing(document_id)

    @pytest.mark.asyncio
    async def test_joined_callers_share_the_failure(self, store, document_id, publisher, events):
        extractor = GatedExtractor(error=ExtractionServiceError("service unavailable"))
        coordinator = ExtractionCoordinator(store, extractor, publisher)

        first = asyncio.create_task(coordinator.process(document_id))
        await extractor.wait_for_calls(1)
        second = asyncio.create_task(coordinator.process(document_id))
        await asyncio.sleep(0)
        extractor.gate.set()

        results = await asyncio.gather(first, second, return_exceptions=True)

        assert extractor.calls == 1
        assert all(isinstance(r, ExtractionServiceError) for r in results)
        assert results[0] is results[1]
        assert store.exists(document_id)
        assert events[0].outcome == "failed"

    @pytest.mark.asyncio
    async def test_new_request_after_settle_runs_again(self, store, document_id):
        extractor = GatedExtractor(error=ExtractionServiceError("boom"))
        extractor.gate.set()
        coordinator = ExtractionCoordinator(store, extractor)

        with pytest.raises(ExtractionServiceError):
            await coordinator.process(document_id)
        with pytest.raises(ExtractionServiceError):
            await coordinator.process(document_id)
        assert extractor.calls == 2

    @pytest.mark.asyncio
    async def test_rename_failure_fails_the_extraction(self, tmp_path):
        store = FailingRenameStore(tmp_path)
        document_id = store.import_document("scan.pdf", b"%PDF").document_id
        extractor = GatedExtractor()
        extractor.gate.set()
        coordinator = ExtractionCoordinator(store, extractor)

        with pytest.raises(RenameFailedError) as exc_info:
            await coordinator.process(document_id)

        assert isinstance(exc_info.value, ExtractionError)
        assert "read-only" in str(exc_info.value)
        assert coordinator.processing == frozenset()

    @pytest.mark.asyncio
    async def test_sync_extractor_runs_in_thread(self, store, document_id):
        seen = []

        def extractor(data, mime_hint):
            seen.append((data, mime_hint))
            return FIELDS

        coordinator = ExtractionCoordinator(store, extractor)
        await coordinator.process(document_id)
        assert seen == [(b"%PDF-1.4 invoice", "application/pdf")]

    @pytest.mark.asyncio
    async def test_on_extract_overrides_default(self, store, document_id):
        default = GatedExtractor()
        override = GatedExtractor(result=ExtractedFields(vendor_name="Other"))
        override.gate.set()
        coordinator = ExtractionCoordinator(store, default)

        completion = await coordinator.process(document_id, on_extract=override)

        assert default.calls == 0
        assert completion.document_id == "Other_Unknown.pdf"

    @pytest.mark.asyncio
    async def test_on_complete_runs_while_document_is_in_flight(self, store, document_id):
        extractor = GatedExtractor()
        extractor.gate.set()
        coordinator = ExtractionCoordinator(store, extractor)
        seen = []

        def on_complete(completion):
            seen.append((completion.document_id, coordinator.is_processing(document_id)))

        await coordinator.process(document_id, on_complete=on_complete)

        assert seen == [("ACME-GmbH_2024-01-10.pdf", True)]
        assert coordinator.processing == frozenset()

    @pytest.mark.asyncio
    async def test_on_complete_failure_rolls_back_rename(self, store, document_id, publisher, events):
        extractor = GatedExtractor()
        extractor.gate.set()
        coordinator = ExtractionCoordinator(store, extractor, publisher)

        def on_complete(completion):
            raise ValueError("ledger rejected the result")

        with pytest.raises(ExtractionError, match="ledger rejected"):
            await coordinator.process(document_id, on_complete=on_complete)

        assert store.exists(document_id)
        assert not store.exists("ACME-GmbH_2024-01-10.pdf")
        assert events[0].outcome == "failed"

    @pytest.mark.asyncio
    async def test_missing_document_is_an_extraction_error(self, store):
        coordinator = ExtractionCoordinator(store, GatedExtractor())
        with pytest.raises(ExtractionError):
            await coordinator.process("missing.pdf")


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_all_reaches_every_joined_caller(self, store, publisher, events):
        a = store.import_document("a.pdf", b"%PDF a").document_id
        b = store.import_document("b.pdf", b"%PDF b").document_id
        extractor = GatedExtractor()
        coordinator = ExtractionCoordinator(store, extractor, publisher)

        callers = [
            asyncio.create_task(coordinator.process(a)),
            asyncio.create_task(coordinator.process(b)),
        ]
        await extractor.wait_for_calls(2)
        callers.append(asyncio.create_task(coordinator.process(a)))
        await asyncio.sleep(0)

        assert coordinator.cancel_all() == 2
        results = await asyncio.gather(*callers, return_exceptions=True)

        assert all(isinstance(r, ExtractionCancelled) for r in results)
        assert not any(isinstance(r, ExtractionError) for r in results)
        assert coordinator.processing == frozenset()
        assert store.exists(a) and store.exists(b)
        assert sorted(e.outcome for e in events) == ["cancelled", "cancelled"]

    @pytest.mark.asyncio
    async def test_cancelled_token_skips_extraction(self, store, document_id):
        extractor = GatedExtractor()
        token = CancellationToken()
        token.cancel()
        coordinator = ExtractionCoordinator(store, extractor)

        with pytest.raises(ExtractionCancelled):
            await coordinator.process(document_id, token=token)
        assert extractor.calls == 0

    @pytest.mark.asyncio
    async def test_token_cancelled_during_extraction_only_stops_that_caller(self, store, document_id, publisher, events):
        token = CancellationToken()
        applied = []

        def extractor(data, mime_hint):
            token.cancel()
            return FIELDS

        coordinator = ExtractionCoordinator(store, extractor, publisher)
        with pytest.raises(ExtractionCancelled):
            await coordinator.process(document_id, token=token, on_complete=applied.append)

        # The operation itself finished; only the caller stopped waiting for it
        assert [c.document_id for c in applied] == ["ACME-GmbH_2024-01-10.pdf"]
        assert store.exists("ACME-GmbH_2024-01-10.pdf")
        assert [e.outcome for e in events] == ["succeeded"]

    @pytest.mark.asyncio
    async def test_batch_token_does_not_cancel_joined_caller(self, store, document_id):
        extractor = GatedExtractor()
        coordinator = ExtractionCoordinator(store, extractor)
        batch_token = CancellationToken()

        batch = asyncio.create_task(coordinator.process(document_id, token=batch_token))
        await extractor.wait_for_calls(1)
        interactive = asyncio.create_task(coordinator.process(document_id))
        await asyncio.sleep(0)

        batch_token.cancel()
        extractor.gate.set()
        results = await asyncio.gather(batch, interactive, return_exceptions=True)

        assert extractor.calls == 1
        assert isinstance(results[0], ExtractionCancelled)
        assert results[1].document_id == "ACME-GmbH_2024-01-10.pdf"

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_shared_operation(self, store, document_id):
        extractor = GatedExtractor()
        coordinator = ExtractionCoordinator(store, extractor)

        impatient = asyncio.create_task(coordinator.process(document_id))
        await extractor.wait_for_calls(1)
        patient = asyncio.create_task(coordinator.process(document_id))
        await asyncio.sleep(0)

        impatient.cancel()
        with pytest.raises(asyncio.CancelledError):
            await impatient

        extractor.gate.set()
        completion = await patient
        assert completion.document_id == "ACME-GmbH_2024-01-10.pdf"


class TestRunBatch:
    @pytest.mark.asyncio
    async def test_progress_and_per_item_failures(self, store):
        processed = []

        async def process(item_id):
            processed.append(item_id)
            if item_id == "bad":
                raise ExtractionServiceError("unreadable")

        progress = []
        coordinator = ExtractionCoordinator(store, GatedExtractor())
        result = await coordinator.run_batch(["a", "bad", "c"], CancellationToken(), process, progress.append)

        assert processed == ["a", "bad", "c"]
        assert progress == [BatchProgress(0, 3), BatchProgress(1, 3), BatchProgress(2, 3), BatchProgress(3, 3)]
        assert result.succeeded == ["a", "c"]
        assert result.failed == {"bad": "unreadable"}
        assert result.stopped is False

    @pytest.mark.asyncio
    async def test_stops_before_next_item_after_cancel(self, store):
        token = CancellationToken()
        processed = []

        async def process(item_id):
            processed.append(item_id)
            token.cancel()

        coordinator = ExtractionCoordinator(store, GatedExtractor())
        result = await coordinator.run_batch(["a", "b", "c"], token, process)

        assert processed == ["a"]
        assert result.completed == 1
        assert result.total == 3
        assert result.stopped is True

    @pytest.mark.asyncio
    async def test_cancellations_are_counted_separately(self, store):
        async def process(item_id):
            raise ExtractionCancelled(item_id)

        coordinator = ExtractionCoordinator(store, GatedExtractor())
        result = await coordinator.run_batch(["a", "b"], CancellationToken(), process)

        assert result.cancelled == 2
        assert result.failed == {}

    @pytest.mark.asyncio
    async def test_default_process_uses_coordinator(self, store, document_id):
        extractor = GatedExtractor()
        extractor.gate.set()
        coordinator = ExtractionCoordinator(store, extractor)

        result = await coordinator.run_batch([document_id], CancellationToken())

        assert result.succeeded == [document_id]
        assert store.exists("ACME-GmbH_2024-01-10.pdf")
