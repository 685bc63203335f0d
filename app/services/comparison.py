from __future__ import annotations

from typing import Optional

DEFAULT_POSITION = 50.0


def _clamp(value: float) -> float:
    return max(0.0, min(100.0, value))


class ComparisonView:
    """Before/after reveal cursor, local to the view and reset for every newly inspected record."""

    def __init__(self) -> None:
        self.inspected_id: Optional[str] = None
        self.position = DEFAULT_POSITION

    def inspect(self, file_id: Optional[str]) -> None:
        if file_id != self.inspected_id:
            self.inspected_id = file_id
            self.position = DEFAULT_POSITION

    def set_position(self, position: float) -> float:
        self.position = _clamp(position)
        return self.position

    def drag(self, offset_x: float, width: float) -> float:
        """Move the cursor to a pointer at ``offset_x`` inside an inspector ``width`` wide."""
        if width <= 0:
            return self.position
        return self.set_position(offset_x / width * 100)
