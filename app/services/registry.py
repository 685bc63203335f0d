from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from time import monotonic
from typing import Callable, Optional

from app.core.exceptions import UnknownSession
from app.core.metrics import MetricsStore
from app.core.quantized import QuantizedControl
from app.services.backends import ProcessingBackend
from app.services.comparison import ComparisonView
from app.services.pipeline import ProcessingPipeline
from app.services.session_store import SessionStore
from app.storage import generate_id

logger = logging.getLogger("compression_studio")

SESSION_ID_LENGTH = 16


@dataclass
class Session:
    id: str
    store: SessionStore
    pipeline: ProcessingPipeline
    comparison: ComparisonView
    level_control: QuantizedControl
    last_seen: float = field(default_factory=monotonic)
    batch_level: int = 50

    def current_comparison(self) -> ComparisonView:
        self.comparison.inspect(self.store.selected_id)
        return self.comparison

    def change_level(
        self, file_id: str, *, value: Optional[float] = None, key: Optional[str] = None
    ) -> Optional[int]:
        """Route pointer ``value`` or keyboard ``key`` input through the level control.

        Returns the stored level, or None when nothing was stored: an ignored
        key, or a record that is not selected outside batch mode. In batch mode
        keyboard steps start from the shared ``batch_level``.
        """
        updated = []
        control = replace(
            self.level_control,
            on_change=lambda level: updated.extend(self.store.set_level(file_id, level)),
        )
        if key is not None:
            current = self.batch_level if self.store.batch_mode else self.store.get(file_id).compression_level
            committed = control.press_key(key, current)
        elif value is not None:
            committed = control.set_value(value)
        else:
            raise ValueError("Either value or key is required")
        return self._stored(committed, updated)

    def reset_level(self, file_id: str) -> Optional[int]:
        """Put the level back to the session default, bypassing snapping."""
        level = self.store.default_level
        return self._stored(level, self.store.set_level(file_id, level))

    def remove_file(self, file_id: str) -> bool:
        removed = self.store.remove_file(file_id)
        if removed:
            self.pipeline.forget(file_id)
        return removed

    def _stored(self, committed: Optional[int], updated: list) -> Optional[int]:
        if committed is None or not updated:
            return None
        if self.store.batch_mode:
            self.batch_level = committed
        return committed


class SessionRegistry:
    def __init__(
        self,
        backend_factory: Callable[[], ProcessingBackend],
        *,
        release_preview: Optional[Callable[[str], None]] = None,
        default_level: int = 50,
        timeout_seconds: float = 0,
        control_factory: Callable[[], QuantizedControl] = QuantizedControl,
        metrics: Optional[MetricsStore] = None,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        self._backend_factory = backend_factory
        self._release_preview = release_preview
        self._default_level = default_level
        self._timeout = timeout_seconds
        self._control_factory = control_factory
        self._metrics = metrics
        self._clock = clock
        self._sessions: dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self) -> Session:
        session_id = generate_id(SESSION_ID_LENGTH, taken=self._sessions)
        store = SessionStore(
            session_id=session_id,
            release_preview=self._release_preview,
            default_level=self._default_level,
        )
        session = Session(
            id=session_id,
            store=store,
            pipeline=ProcessingPipeline(
                store, self._backend_factory(), timeout_seconds=self._timeout, metrics=self._metrics
            ),
            comparison=ComparisonView(),
            level_control=self._control_factory(),
            batch_level=store.default_level,
            last_seen=self._clock(),
        )
        self._sessions[session_id] = session
        if self._metrics is not None:
            self._metrics.record_session_created()
        logger.info("event=session_created session_id=%s", session_id)
        return session

    def get(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise UnknownSession(session_id)
        session.last_seen = self._clock()
        return session

    def teardown(self, session_id: str) -> int:
        session = self._sessions.pop(session_id, None)
        if session is None:
            raise UnknownSession(session_id)
        session.pipeline.cancel_all()
        destroyed = session.store.clear()
        logger.info("event=session_teardown session_id=%s records=%s", session_id, destroyed)
        return destroyed

    def teardown_all(self) -> None:
        for session_id in list(self._sessions):
            self.teardown(session_id)

    def reap_idle(self, max_idle_seconds: float) -> int:
        cutoff = self._clock() - max_idle_seconds
        expired = [sid for sid, s in self._sessions.items() if s.last_seen < cutoff]
        for session_id in expired:
            self.teardown(session_id)
        return len(expired)
