import asyncio

import pytest

from app.core.exceptions import UnknownRecord
from app.core.metrics import MetricsStore
from app.models import ErrorKind, ProcessingState
from app.services.backends import BackendFailure, SimulatedBackend, estimate_compressed_size
from app.services.pipeline import ProcessingPipeline
from app.services.session_store import NewEntry, SessionStore


class ManualBackend:
    """Backend whose calls stay pending until the test resolves them."""

    def __init__(self):
        self.calls = []

    async def process(self, original_size_bytes, level, lossless):
        future = asyncio.get_running_loop().create_future()
        self.calls.append(((original_size_bytes, level, lossless), future))
        return await future

    def resolve(self, index, value):
        self.calls[index][1].set_result(value)

    def fail(self, index, exc):
        self.calls[index][1].set_exception(exc)


class InstantBackend:
    def __init__(self, value):
        self.value = value

    async def process(self, original_size_bytes, level, lossless):
        return self.value


async def _settle():
    for _ in range(5):
        await asyncio.sleep(0)


def _setup(backend, *sizes, **kwargs):
    store = SessionStore(session_id="test")
    records = store.add_files(NewEntry(f"f{i}.png", "image/png", size) for i, size in enumerate(sizes))
    return store, records, ProcessingPipeline(store, backend, **kwargs)


def test_completed_scenario_reports_savings():
    backend = ManualBackend()

    async def scenario():
        store, [record], pipeline = _setup(backend, 1_000_000)
        store.set_level(record.id, 70)
        assert pipeline.process(record.id) is True
        assert record.processing_state == ProcessingState.PROCESSING
        await _settle()
        assert backend.calls[0][0] == (1_000_000, 70, False)
        backend.resolve(0, 250_000)
        await pipeline.wait_idle()
        return store, record

    store, record = asyncio.run(scenario())
    assert record.processing_state == ProcessingState.COMPLETED
    assert record.compressed_size_bytes == 250_000
    assert record.last_error is None
    assert store.derive_aggregates().savings_percent == 75.0


def test_result_is_never_applied_synchronously():
    async def scenario():
        store, [record], pipeline = _setup(InstantBackend(10), 100)
        pipeline.process(record.id)
        assert record.processing_state == ProcessingState.PROCESSING
        assert record.compressed_size_bytes is None
        await pipeline.wait_idle()
        return record

    record = asyncio.run(scenario())
    assert record.processing_state == ProcessingState.COMPLETED


def test_process_unknown_record_raises():
    async def scenario():
        _, _, pipeline = _setup(ManualBackend(), 100)
        with pytest.raises(UnknownRecord):
            pipeline.process("missing")

    asyncio.run(scenario())


def test_process_outside_event_loop_leaves_record_untouched():
    store, [record], pipeline = _setup(InstantBackend(10), 100)
    with pytest.raises(RuntimeError):
        pipeline.process(record.id)
    assert record.processing_state == ProcessingState.IDLE
    assert pipeline.generation(record.id) == 0

    async def scenario():
        assert pipeline.process(record.id) is True
        await pipeline.wait_idle()

    asyncio.run(scenario())
    assert record.processing_state == ProcessingState.COMPLETED
    assert record.compressed_size_bytes == 10


def test_identical_retrigger_while_processing_is_noop():
    backend = ManualBackend()

    async def scenario():
        store, [record], pipeline = _setup(backend, 1000)
        assert pipeline.process(record.id) is True
        assert pipeline.process(record.id) is False
        await _settle()
        assert len(backend.calls) == 1
        assert pipeline.generation(record.id) == 1
        backend.resolve(0, 400)
        await pipeline.wait_idle()

    asyncio.run(scenario())


def test_stale_result_is_discarded_after_supersession():
    backend = ManualBackend()

    async def scenario():
        store, [record], pipeline = _setup(backend, 1000)
        pipeline.process(record.id)
        store.set_level(record.id, 90)
        assert pipeline.process(record.id) is True
        await _settle()
        assert [call[0][1] for call in backend.calls] == [50, 90]

        backend.resolve(1, 300)
        await _settle()
        assert record.processing_state == ProcessingState.COMPLETED
        assert record.compressed_size_bytes == 300

        backend.resolve(0, 700)
        await pipeline.wait_idle()
        return record

    record = asyncio.run(scenario())
    assert record.compressed_size_bytes == 300


def test_stale_failure_does_not_clobber_newer_request():
    backend = ManualBackend()

    async def scenario():
        store, [record], pipeline = _setup(backend, 1000)
        pipeline.process(record.id)
        store.set_lossless(True)
        pipeline.process(record.id)
        await _settle()
        backend.fail(0, RuntimeError("codec crashed"))
        await _settle()
        assert record.processing_state == ProcessingState.PROCESSING
        backend.resolve(1, 800)
        await pipeline.wait_idle()
        return record

    record = asyncio.run(scenario())
    assert record.processing_state == ProcessingState.COMPLETED
    assert record.last_error is None


@pytest.mark.parametrize("value", [0, -5, 2000, None, "small"])
def test_invalid_results_fail_the_record(value):
    async def scenario():
        store, [record], pipeline = _setup(InstantBackend(value), 1000)
        pipeline.process(record.id)
        await pipeline.wait_idle()
        return record

    record = asyncio.run(scenario())
    assert record.processing_state == ProcessingState.FAILED
    assert record.last_error.kind == ErrorKind.INVALID_RESULT
    assert record.compressed_size_bytes is None
    assert record.original_size_bytes == 1000


def test_backend_exception_is_captured():
    backend = ManualBackend()
    metrics = MetricsStore()

    async def scenario():
        store, [record], pipeline = _setup(backend, 1000, metrics=metrics)
        pipeline.process(record.id)
        await _settle()
        backend.fail(0, RuntimeError("codec crashed"))
        await pipeline.wait_idle()
        return record

    record = asyncio.run(scenario())
    assert record.processing_state == ProcessingState.FAILED
    assert record.last_error.kind == ErrorKind.BACKEND_ERROR
    assert "codec crashed" in record.last_error.message
    assert metrics.snapshot()["failed"] == 1


def test_backend_can_classify_its_failure():
    backend = ManualBackend()

    async def scenario():
        store, [record], pipeline = _setup(backend, 1000)
        pipeline.process(record.id)
        await _settle()
        backend.fail(0, BackendFailure("deadline passed", kind=ErrorKind.TIMEOUT))
        await pipeline.wait_idle()
        return record

    record = asyncio.run(scenario())
    assert record.last_error.kind == ErrorKind.TIMEOUT


def test_timeout_marks_record_failed():
    async def scenario():
        store, [record], pipeline = _setup(ManualBackend(), 1000, timeout_seconds=0.01)
        pipeline.process(record.id)
        await pipeline.wait_idle()
        return record

    record = asyncio.run(scenario())
    assert record.processing_state == ProcessingState.FAILED
    assert record.last_error.kind == ErrorKind.TIMEOUT


def test_reprocessing_keeps_previous_result_visible_until_superseded():
    backend = ManualBackend()

    async def scenario():
        store, [record], pipeline = _setup(backend, 1000)
        pipeline.process(record.id)
        await _settle()
        backend.resolve(0, 600)
        await _settle()

        pipeline.process(record.id)
        assert record.processing_state == ProcessingState.PROCESSING
        assert record.compressed_size_bytes == 600
        await _settle()
        backend.resolve(1, 0)
        await pipeline.wait_idle()
        return record

    record = asyncio.run(scenario())
    assert record.processing_state == ProcessingState.FAILED
    assert record.compressed_size_bytes is None


def test_failed_record_can_be_retried():
    backend = ManualBackend()

    async def scenario():
        store, [record], pipeline = _setup(backend, 1000)
        pipeline.process(record.id)
        await _settle()
        backend.fail(0, RuntimeError("boom"))
        await _settle()
        assert record.processing_state == ProcessingState.FAILED

        assert pipeline.process(record.id) is True
        await _settle()
        backend.resolve(1, 500)
        await pipeline.wait_idle()
        return record

    record = asyncio.run(scenario())
    assert record.processing_state == ProcessingState.COMPLETED
    assert record.last_error is None


def test_process_all_isolates_failures():
    backend = ManualBackend()

    async def scenario():
        store, records, pipeline = _setup(backend, 1000, 2000, 3000)
        assert pipeline.process_all() == [r.id for r in records]
        await _settle()
        backend.resolve(0, 500)
        backend.fail(1, RuntimeError("boom"))
        backend.resolve(2, 1500)
        await pipeline.wait_idle()
        return store, records

    store, records = asyncio.run(scenario())
    assert [r.processing_state for r in records] == [
        ProcessingState.COMPLETED,
        ProcessingState.FAILED,
        ProcessingState.COMPLETED,
    ]
    aggregates = store.derive_aggregates()
    assert aggregates.processed_count == 2
    assert aggregates.total_compressed == 500 + 2000 + 1500


def test_result_for_removed_record_is_dropped():
    backend = ManualBackend()

    async def scenario():
        store, records, pipeline = _setup(backend, 1000, 2000)
        pipeline.process(records[0].id)
        await _settle()
        store.remove_file(records[0].id)
        backend.resolve(0, 100)
        await pipeline.wait_idle()
        return store

    store = asyncio.run(scenario())
    assert store.derive_aggregates().processed_count == 0


def test_forget_drops_bookkeeping_for_removed_record():
    async def scenario():
        store, [record], pipeline = _setup(InstantBackend(10), 100)
        pipeline.process(record.id)
        await pipeline.wait_idle()
        assert pipeline.generation(record.id) == 1
        store.remove_file(record.id)
        pipeline.forget(record.id)
        return pipeline, record

    pipeline, record = asyncio.run(scenario())
    assert pipeline.generation(record.id) == 0
    assert record.id not in pipeline._inflight



def test_simulated_backend_matches_size_estimate():
    result = asyncio.run(SimulatedBackend(delay_seconds=0).process(1_000_000, 70, False))
    assert result == estimate_compressed_size(1_000_000, 70) == 440_000


def test_size_estimate_is_gentler_when_lossless():
    assert estimate_compressed_size(1000, 100) == 200
    assert estimate_compressed_size(1000, 100, lossless=True) == 600
    assert estimate_compressed_size(1000, 0) == 1000
