from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

PAGE_STEP = 10

_DECREMENT_KEYS = {"ArrowLeft", "ArrowDown"}
_INCREMENT_KEYS = {"ArrowRight", "ArrowUp"}


@dataclass
class QuantizedControl:
    """Maps raw pointer or keyboard input onto a committed integer in ``[minimum, maximum]``.

    Pointer input is pulled onto the first configured snap point within
    ``snap_threshold``; snap points are scanned in configured order, so the
    first match wins even when a later one is closer. Keyboard stepping never
    snaps. The committed value belongs to the caller; the control only reports
    it through ``on_change``.
    """

    minimum: int = 0
    maximum: int = 100
    step: int = 1
    snap_points: Sequence[int] = field(default_factory=tuple)
    snap_threshold: float = 5
    on_change: Optional[Callable[[int], None]] = None

    def clamp(self, value: float) -> int:
        if math.isnan(value):
            raise ValueError("Control value must be a number")
        return int(round(max(self.minimum, min(self.maximum, value))))

    def set_value(self, raw: float) -> int:
        committed = None
        for snap in self.snap_points:
            if abs(raw - snap) <= self.snap_threshold:
                committed = snap
                break
        if committed is None:
            committed = self.clamp(raw)
        self._commit(committed)
        return committed

    def press_key(self, key: str, current: int) -> Optional[int]:
        """Step from ``current`` for an arrow or page key; other keys return None."""
        if key in _DECREMENT_KEYS:
            committed = max(self.minimum, current - self.step)
        elif key in _INCREMENT_KEYS:
            committed = min(self.maximum, current + self.step)
        elif key == "PageUp":
            committed = min(self.maximum, current + PAGE_STEP)
        elif key == "PageDown":
            committed = max(self.minimum, current - PAGE_STEP)
        else:
            return None
        self._commit(committed)
        return committed

    def _commit(self, value: int) -> None:
        if self.on_change is not None:
            self.on_change(value)
