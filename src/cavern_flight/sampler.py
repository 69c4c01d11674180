from __future__ import annotations

import numpy as np

from .grid import PLAYER_COLUMN, CavernGrid

LOGGING_HORIZON = 10
INFERENCE_HORIZON = 3
RECORD_FEATURES = 200  # LOGGING_HORIZON x MODEL_HEIGHT
INFERENCE_VECTOR_SIZE = 61  # INFERENCE_HORIZON x MODEL_HEIGHT + player row


def sample_full(grid: CavernGrid) -> np.ndarray:
    """Whole grid flattened column-major, (W*H,) float64."""
    return grid.snapshot().astype(np.float64).reshape(-1)


def sample_horizon(grid: CavernGrid, width: int, *, player_column: int = PLAYER_COLUMN) -> np.ndarray:
    """Flatten the ``width`` columns strictly ahead of the player.

    Columns past the right edge of the grid are dropped, so the result has
    ``width * H`` values except near the boundary.
    """
    start = player_column + 1
    stop = min(start + max(0, int(width)), grid.width)
    if stop <= start:
        return np.zeros((0,), dtype=np.float64)
    window = grid.snapshot()[start:stop]
    return window.astype(np.float64).reshape(-1)


def normalized_row(grid: CavernGrid, player_row: int) -> float:
    return float(player_row) / float(grid.height)


def build_inference_vector(
    grid: CavernGrid,
    player_row: int,
    *,
    player_column: int = PLAYER_COLUMN,
) -> np.ndarray:
    """3-column horizon + normalised player row, always 61 values.

    The network is trained on exactly this layout; changing it requires
    retraining.
    """
    n_features = INFERENCE_VECTOR_SIZE - 1
    horizon = sample_horizon(grid, INFERENCE_HORIZON, player_column=player_column)
    vec = np.zeros((INFERENCE_VECTOR_SIZE,), dtype=np.float64)
    n = min(horizon.shape[0], n_features)
    vec[:n] = horizon[:n]
    vec[n_features] = normalized_row(grid, player_row)
    return vec
