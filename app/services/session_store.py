from __future__ import annotations

import logging
from typing import Callable, Iterable, NamedTuple, Optional

from app.core.exceptions import UnknownRecord
from app.models import (
    FileRecord,
    ProcessingError,
    ProcessingState,
    SessionAggregates,
    clamp_level,
)
from app.services.stats import derive_aggregates
from app.storage import generate_id

logger = logging.getLogger("compression_studio")


class NewEntry(NamedTuple):
    name: str
    mime_type: str
    size_bytes: int
    preview_handle: Optional[str] = None


class SessionStore:
    """Sole owner of one session's records, selection cursor and edit mode."""

    def __init__(
        self,
        session_id: str = "",
        release_preview: Optional[Callable[[str], None]] = None,
        default_level: int = 50,
    ) -> None:
        self.session_id = session_id
        self._release_preview = release_preview
        self._default_level = clamp_level(default_level)
        self._records: dict[str, FileRecord] = {}
        self._selected_id: Optional[str] = None
        self._batch_mode = False
        self._lossless = False

    @property
    def records(self) -> list[FileRecord]:
        return list(self._records.values())

    @property
    def selected_id(self) -> Optional[str]:
        return self._selected_id

    @property
    def selected(self) -> Optional[FileRecord]:
        if self._selected_id is None:
            return None
        return self._records[self._selected_id]

    @property
    def default_level(self) -> int:
        return self._default_level

    @property
    def batch_mode(self) -> bool:
        return self._batch_mode

    @property
    def lossless(self) -> bool:
        return self._lossless

    def __contains__(self, file_id: str) -> bool:
        return file_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    def get(self, file_id: str) -> FileRecord:
        record = self._records.get(file_id)
        if record is None:
            raise UnknownRecord(file_id)
        return record

    def add_files(self, entries: Iterable[NewEntry]) -> list[FileRecord]:
        added: list[FileRecord] = []
        for entry in entries:
            entry = NewEntry(*entry)
            record = FileRecord(
                id=generate_id(taken=self._records),
                name=entry.name,
                mime_type=entry.mime_type,
                original_size_bytes=entry.size_bytes,
                preview_handle=entry.preview_handle,
                compression_level=self._default_level,
            )
            self._records[record.id] = record
            added.append(record)
            logger.info(
                "event=record_added session_id=%s file_id=%s name=%s size_bytes=%s",
                self.session_id,
                record.id,
                record.name,
                record.original_size_bytes,
            )

        if self._selected_id is None and added:
            self._selected_id = added[0].id
        return added

    def remove_file(self, file_id: str) -> bool:
        if file_id not in self._records:
            return False

        order = list(self._records)
        position = order.index(file_id)
        self._destroy(self._records[file_id])
        del self._records[file_id]

        if self._selected_id == file_id:
            remaining = order[:position] + order[position + 1:]
            if not remaining:
                self._selected_id = None
            else:
                self._selected_id = remaining[min(position, len(remaining) - 1)]

        logger.info("event=record_removed session_id=%s file_id=%s", self.session_id, file_id)
        return True

    def set_level(self, file_id: Optional[str], level: float) -> list[FileRecord]:
        """Apply a clamped level; returns the records that were updated.

        In batch mode ``file_id`` is ignored and every record is updated.
        Otherwise only the selected record can be changed.
        """
        value = clamp_level(level)
        if self._batch_mode:
            targets = list(self._records.values())
        elif file_id is not None and file_id == self._selected_id:
            targets = [self._records[file_id]]
        else:
            return []

        for record in targets:
            record.compression_level = value
        return targets

    def select_file(self, file_id: str) -> FileRecord:
        record = self.get(file_id)
        self._selected_id = file_id
        return record

    def set_batch_mode(self, enabled: bool) -> None:
        self._batch_mode = bool(enabled)

    def set_lossless(self, enabled: bool) -> None:
        self._lossless = bool(enabled)

    def derive_aggregates(self) -> SessionAggregates:
        return derive_aggregates(self._records.values())

    def completed_records(self) -> list[FileRecord]:
        return [r for r in self._records.values() if r.processing_state == ProcessingState.COMPLETED]

    def clear(self) -> int:
        count = len(self._records)
        for record in list(self._records.values()):
            self._destroy(record)
        self._records.clear()
        self._selected_id = None
        return count

    # Processing state is only written by the pipeline through these.

    def begin_processing(self, file_id: str) -> FileRecord:
        record = self.get(file_id)
        record.processing_state = ProcessingState.PROCESSING
        return record

    def complete_processing(self, record: FileRecord, compressed_size_bytes: int) -> None:
        record.compressed_size_bytes = compressed_size_bytes
        record.last_error = None
        record.processing_state = ProcessingState.COMPLETED

    def fail_processing(self, record: FileRecord, error: ProcessingError) -> None:
        record.compressed_size_bytes = None
        record.last_error = error
        record.processing_state = ProcessingState.FAILED

    def _destroy(self, record: FileRecord) -> None:
        if record.preview_handle and self._release_preview is not None:
            self._release_preview(record.preview_handle)
        record.preview_handle = None
