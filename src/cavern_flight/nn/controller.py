from __future__ import annotations

from typing import Literal, Protocol

import numpy as np

from ..errors import ModelNotReadyError
from ..grid import CavernGrid
from ..pilot import ExpertPilot
from ..sampler import build_inference_vector
from ..schemas import DOWN, STAY, UP, Decision
from .model import INPUT_SIZE, CavernNet


class Controller(Protocol):
    kind: str

    def decide(self, grid: CavernGrid, player_row: int) -> Decision: ...


def predict_step(model: CavernNet | None, vector: np.ndarray) -> Decision:
    """Winner-takes-all over the two outputs; a tie goes to UP."""
    if model is None:
        raise ModelNotReadyError("no trained network loaded")
    vector = np.asarray(vector, dtype=np.float64)
    if vector.shape != (INPUT_SIZE,):
        raise ValueError(f"Invalid input size: expected {INPUT_SIZE}, got {vector.size}")
    up, down = (float(v) for v in model.compute(vector)[:2])
    step = UP if up >= down else DOWN
    return Decision(step=step, ready=True, up=up, down=down)


class RandomController:
    kind = "random"

    def __init__(self, rng: np.random.Generator | None = None, *, seed: int | None = None):
        self.rng = rng if rng is not None else np.random.default_rng(seed)

    def decide(self, grid: CavernGrid, player_row: int) -> Decision:
        return Decision(step=int(self.rng.integers(-1, 2)))


class LearnedController:
    kind = "learned"

    def __init__(self, model: CavernNet | None):
        self.model = model

    @property
    def ready(self) -> bool:
        return self.model is not None

    def decide(self, grid: CavernGrid, player_row: int) -> Decision:
        try:
            return predict_step(self.model, build_inference_vector(grid, player_row))
        except ModelNotReadyError:
            return Decision(step=STAY, ready=False)


def make_controller(
    kind: Literal["random", "learned", "expert"],
    *,
    model: CavernNet | None = None,
    rng: np.random.Generator | None = None,
) -> Controller:
    if kind == "random":
        return RandomController(rng)
    if kind == "learned":
        return LearnedController(model)
    if kind == "expert":
        return ExpertPilot()
    raise ValueError(f"Unsupported controller: {kind!r} (expected 'random', 'learned' or 'expert')")
