from __future__ import annotations

import threading
from typing import Dict


class MetricsStore:
    """Thread-safe in-memory metrics."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: Dict[str, int] = {
            "uploads": 0,
            "bytes_uploaded": 0,
            "removed": 0,
            "processed": 0,
            "failed": 0,
            "bytes_saved": 0,
            "sessions_created": 0,
            "sessions_reaped": 0,
        }

    def record_upload(self, size_bytes: int) -> None:
        with self._lock:
            self._counters["uploads"] += 1
            self._counters["bytes_uploaded"] += size_bytes

    def record_removals(self, count: int) -> None:
        if count <= 0:
            return
        with self._lock:
            self._counters["removed"] += count

    def record_processed(self, bytes_saved: int) -> None:
        with self._lock:
            self._counters["processed"] += 1
            self._counters["bytes_saved"] += max(bytes_saved, 0)

    def record_failure(self) -> None:
        with self._lock:
            self._counters["failed"] += 1

    def record_session_created(self) -> None:
        with self._lock:
            self._counters["sessions_created"] += 1

    def record_sessions_reaped(self, count: int) -> None:
        if count <= 0:
            return
        with self._lock:
            self._counters["sessions_reaped"] += count

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counters)


metrics = MetricsStore()
