from __future__ import annotations

from typing import Iterable

from app.models import FileRecord, ProcessingState, SessionAggregates


def derive_aggregates(records: Iterable[FileRecord]) -> SessionAggregates:
    total_original = 0
    total_compressed = 0
    processed = 0
    for record in records:
        total_original += record.original_size_bytes
        if record.processing_state == ProcessingState.COMPLETED and record.compressed_size_bytes:
            total_compressed += record.compressed_size_bytes
            processed += 1
        else:
            total_compressed += record.original_size_bytes

    savings = 0.0
    if total_original > 0:
        savings = round((total_original - total_compressed) / total_original * 100, 1)

    return SessionAggregates(
        total_original=total_original,
        total_compressed=total_compressed,
        savings_percent=savings,
        processed_count=processed,
    )


def human_bytes(value: int) -> str:
    units = ["B", "KB", "MB", "GB", "TB"]
    size = float(max(value, 0))
    for unit in units:
        if size < 1024 or unit == units[-1]:
            formatted = f"{size:.2f}".rstrip("0").rstrip(".")
            return f"{formatted or '0'} {unit}"
        size /= 1024
    return "0 B"
