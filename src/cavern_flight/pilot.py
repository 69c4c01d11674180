from __future__ import annotations

import numpy as np

from .grid import OPEN, PLAYER_COLUMN, CavernGrid
from .schemas import DOWN, STAY, UP, Decision


def open_band(column: np.ndarray) -> tuple[int, int] | None:
    """``(top, bottom)`` of the open rows in a column, ``None`` if fully blocked."""
    rows = np.flatnonzero(column == OPEN)
    if rows.size == 0:
        return None
    return int(rows[0]), int(rows[-1]) + 1


class ExpertPilot:
    """Scripted pilot used to label data without a human at the keyboard.

    Looks ``lookahead`` columns ahead (the column that reaches the player on the
    next tick when ``lookahead == 1``) and steers toward the middle of its open
    band. Rows grow downwards, so moving toward a larger row index is DOWN.
    """

    kind = "expert"

    def __init__(self, *, lookahead: int = 1, slack: float = 1.0):
        self.lookahead = int(lookahead)
        self.slack = float(slack)

    def decide(self, grid: CavernGrid, player_row: int) -> Decision:
        col = min(PLAYER_COLUMN + self.lookahead, grid.width - 1)
        band = open_band(grid.column(col))
        if band is None:
            return Decision(step=STAY)
        top, bottom = band
        centre = (top + bottom - 1) / 2.0
        if player_row < centre - self.slack:
            return Decision(step=DOWN)
        if player_row > centre + self.slack:
            return Decision(step=UP)
        return Decision(step=STAY)
