from __future__ import annotations

import asyncio
from typing import Protocol

from app.models import ErrorKind

# Percent of the level applied as size reduction, and the floor as percent of the original.
LOSSY_FACTOR = 80
LOSSLESS_FACTOR = 40
MIN_PERCENT = 10


class BackendFailure(Exception):
    """Raised by a backend that can classify its own failure."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.BACKEND_ERROR) -> None:
        super().__init__(message)
        self.kind = kind


class ProcessingBackend(Protocol):
    async def process(self, original_size_bytes: int, level: int, lossless: bool) -> int:
        """Return the compressed size in bytes for a file of ``original_size_bytes``."""
        ...


def estimate_compressed_size(original_size_bytes: int, level: int, lossless: bool = False) -> int:
    factor = LOSSLESS_FACTOR if lossless else LOSSY_FACTOR
    reduced = original_size_bytes * (10000 - level * factor) // 10000
    minimum = -(-original_size_bytes * MIN_PERCENT // 100)
    return max(reduced, minimum)


class SimulatedBackend:
    """Stand-in codec: waits ``delay_seconds`` and reports a size derived from the level."""

    def __init__(self, delay_seconds: float = 2.0) -> None:
        self.delay_seconds = max(delay_seconds, 0.0)

    async def process(self, original_size_bytes: int, level: int, lossless: bool) -> int:
        await asyncio.sleep(self.delay_seconds)
        return estimate_compressed_size(original_size_bytes, level, lossless)
