from __future__ import annotations

import math
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel

MIN_LEVEL = 0
MAX_LEVEL = 100


def clamp_level(level: float) -> int:
    if math.isnan(level):
        raise ValueError("Compression level must be a number")
    return int(round(max(MIN_LEVEL, min(MAX_LEVEL, level))))


class ProcessingState(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ErrorKind(str, Enum):
    BACKEND_ERROR = "backend_error"
    INVALID_RESULT = "invalid_result"
    TIMEOUT = "timeout"


class ProcessingError(SQLModel):
    kind: ErrorKind
    message: str = ""


class FileRecord(SQLModel):
    """One uploaded file and its compression state.

    ``processing_state``, ``compressed_size_bytes`` and ``last_error`` are only
    written through the processing pipeline.
    """

    id: str
    name: str
    mime_type: str
    original_size_bytes: int
    preview_handle: Optional[str] = Field(default=None)
    compression_level: int = Field(default=50)
    processing_state: ProcessingState = Field(default=ProcessingState.IDLE)
    compressed_size_bytes: Optional[int] = Field(default=None)
    last_error: Optional[ProcessingError] = Field(default=None)


class SessionAggregates(SQLModel):
    total_original: int = 0
    total_compressed: int = 0
    savings_percent: float = 0.0
    processed_count: int = 0


_QUALITY_BANDS = [
    (20, "Highest Quality", "Minimal compression, largest files"),
    (40, "High Quality", "Light compression, good balance"),
    (60, "Balanced", "Moderate compression, decent quality"),
    (80, "High Compression", "Strong compression, smaller files"),
]


def quality_label(level: int) -> dict[str, str]:
    for upper, label, description in _QUALITY_BANDS:
        if level <= upper:
            return {"label": label, "description": description}
    return {"label": "Maximum Compression", "description": "Highest compression, smallest files"}
