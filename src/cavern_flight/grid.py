from __future__ import annotations

import numpy as np

MODEL_WIDTH = 30
MODEL_HEIGHT = 20

MIN_TOP = 2
MAX_BOTTOM = 18
MIN_CLEARANCE = 4  # smaller values carve a tighter cave

PLAYER_COLUMN = 15
PLAYER_START_ROW = 11
TIMER_INTERVAL_MS = 100

OPEN = 0
BLOCKED = 1


def _rng(seed: int | None) -> np.random.Generator:
    return np.random.default_rng(seed)


class CavernGrid:
    """Scrolling W x H obstacle grid stored as a ring buffer.

    Logical column 0 is the oldest (left-most) column and column ``width - 1``
    the newest far-horizon column. ``advance`` recycles column 0 in O(1) by
    rotating ``_offset`` instead of moving data.

    The open band of the next column follows a bounded random walk on
    ``(top, bottom)``: each bound steps +-1 per call, then both are clamped so
    that ``MIN_TOP <= top``, ``bottom <= MAX_BOTTOM`` and
    ``bottom - top >= MIN_CLEARANCE``.
    """

    def __init__(
        self,
        *,
        width: int = MODEL_WIDTH,
        height: int = MODEL_HEIGHT,
        seed: int | None = None,
        rng: np.random.Generator | None = None,
    ):
        self.width = int(width)
        self.height = int(height)
        self.rng = rng if rng is not None else _rng(seed)
        self._cells = np.zeros((self.width, self.height), dtype=np.uint8)
        self._offset = 0
        self.top = MIN_TOP
        self.bottom = MAX_BOTTOM

    def __len__(self) -> int:
        return self.width

    @property
    def bounds(self) -> tuple[int, int]:
        return self.top, self.bottom

    def _physical(self, column: int) -> int:
        return (self._offset + column) % self.width

    def advance(self) -> tuple[int, int]:
        """Scroll by one column and carve the new far-horizon column.

        Returns the ``(top, bottom)`` band carved into the new column.
        """
        recycled = self._offset
        self._offset = (self._offset + 1) % self.width

        col = self._cells[recycled]
        col.fill(BLOCKED)

        top = self.top + (1 if self.rng.random() < 0.5 else -1)
        bottom = self.bottom + (1 if self.rng.random() < 0.5 else -1)
        # bottom may have stepped past MAX_BOTTOM; cap it before it limits top,
        # otherwise the final clamp could leave less than MIN_CLEARANCE rows.
        top = max(MIN_TOP, min(top, min(bottom, MAX_BOTTOM) - MIN_CLEARANCE))
        bottom = min(MAX_BOTTOM, max(bottom, top + MIN_CLEARANCE))

        col[top:bottom] = OPEN
        self.top, self.bottom = top, bottom
        return top, bottom

    def collides_at(self, column: int, row: int) -> bool:
        return bool(self._cells[self._physical(column), row] == BLOCKED)

    def column(self, column: int) -> np.ndarray:
        """Copy of one logical column, shape (height,)."""
        return self._cells[self._physical(column)].copy()

    def snapshot(self) -> np.ndarray:
        """Copy of the grid in logical order, shape (width, height)."""
        return np.roll(self._cells, -self._offset, axis=0)

    def reset(self) -> None:
        self._cells.fill(OPEN)
        self._offset = 0
        self.top = MIN_TOP
        self.bottom = MAX_BOTTOM
