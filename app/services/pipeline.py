from __future__ import annotations

import asyncio
import logging
from typing import Optional

from app.core.metrics import MetricsStore
from app.models import ErrorKind, FileRecord, ProcessingError, ProcessingState
from app.services.backends import BackendFailure, ProcessingBackend
from app.services.session_store import SessionStore

logger = logging.getLogger("compression_studio")


class ProcessingPipeline:
    """Runs backend calls for one session's records and reports results into its store.

    Every accepted request bumps a per-record generation counter; a result is
    only applied while its generation is still the current one for the same
    live record, so a slow superseded call can never overwrite a newer result.
    """

    def __init__(
        self,
        store: SessionStore,
        backend: ProcessingBackend,
        timeout_seconds: float = 0,
        metrics: Optional[MetricsStore] = None,
    ) -> None:
        self._store = store
        self._backend = backend
        self._timeout = timeout_seconds
        self._metrics = metrics
        self._generations: dict[str, int] = {}
        self._inflight: dict[str, tuple[int, bool]] = {}
        self._tasks: set[asyncio.Task] = set()

    def generation(self, file_id: str) -> int:
        return self._generations.get(file_id, 0)

    def process(self, file_id: str) -> bool:
        """Start processing ``file_id``; returns False when an identical request is already running.

        Must be called from the event loop. Raises UnknownRecord for absent ids.
        """
        loop = asyncio.get_running_loop()
        record = self._store.get(file_id)
        params = (record.compression_level, self._store.lossless)
        if record.processing_state == ProcessingState.PROCESSING and self._inflight.get(file_id) == params:
            return False

        self._store.begin_processing(file_id)
        generation = self._generations.get(file_id, 0) + 1
        self._generations[file_id] = generation
        self._inflight[file_id] = params

        task = loop.create_task(
            self._run(record, generation, record.original_size_bytes, *params)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.info(
            "event=processing_started session_id=%s file_id=%s generation=%s level=%s lossless=%s",
            self._store.session_id,
            file_id,
            generation,
            params[0],
            params[1],
        )
        return True

    def forget(self, file_id: str) -> None:
        """Drop bookkeeping for a record that left the store."""
        self._generations.pop(file_id, None)
        self._inflight.pop(file_id, None)

    def process_all(self) -> list[str]:
        return [record.id for record in self._store.records if self.process(record.id)]

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._inflight.clear()

    async def _run(
        self,
        record: FileRecord,
        generation: int,
        original_size: int,
        level: int,
        lossless: bool,
    ) -> None:
        result: Optional[int] = None
        error: Optional[ProcessingError] = None
        try:
            call = self._backend.process(original_size, level, lossless)
            if self._timeout > 0:
                result = await asyncio.wait_for(call, self._timeout)
            else:
                result = await call
        except asyncio.TimeoutError:
            error = ProcessingError(
                kind=ErrorKind.TIMEOUT, message=f"Backend did not answer within {self._timeout}s"
            )
        except BackendFailure as exc:
            error = ProcessingError(kind=exc.kind, message=str(exc))
        except Exception as exc:
            error = ProcessingError(kind=ErrorKind.BACKEND_ERROR, message=str(exc) or type(exc).__name__)

        if not self._is_current(record, generation):
            logger.info(
                "event=processing_result_discarded session_id=%s file_id=%s generation=%s current=%s",
                self._store.session_id,
                record.id,
                generation,
                self._generations.get(record.id),
            )
            return

        if error is None and not _valid_size(result, original_size):
            error = ProcessingError(
                kind=ErrorKind.INVALID_RESULT,
                message=f"Backend reported {result!r} bytes for a {original_size} byte file",
            )

        self._inflight.pop(record.id, None)
        if error is not None:
            self._store.fail_processing(record, error)
            if self._metrics is not None:
                self._metrics.record_failure()
            logger.warning(
                "event=processing_failed session_id=%s file_id=%s kind=%s error=%s",
                self._store.session_id,
                record.id,
                error.kind.value,
                error.message,
            )
            return

        self._store.complete_processing(record, result)
        if self._metrics is not None:
            self._metrics.record_processed(original_size - result)
        logger.info(
            "event=processing_completed session_id=%s file_id=%s original_bytes=%s compressed_bytes=%s",
            self._store.session_id,
            record.id,
            original_size,
            result,
        )

    def _is_current(self, record: FileRecord, generation: int) -> bool:
        if record.id not in self._store or self._store.get(record.id) is not record:
            if self._generations.get(record.id) == generation:
                self._generations.pop(record.id, None)
                self._inflight.pop(record.id, None)
            return False
        return self._generations.get(record.id) == generation


def _valid_size(result: object, original_size: int) -> bool:
    if isinstance(result, bool) or not isinstance(result, int):
        return False
    return 0 < result <= original_size
