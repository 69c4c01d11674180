from __future__ import annotations

from dataclasses import dataclass

UP = -1
STAY = 0
DOWN = 1
ACTIONS = (UP, STAY, DOWN)


@dataclass(frozen=True)
class TrainingRecord:
    """One logged player move: wide horizon + normalised row + signed action."""

    features: tuple[float, ...]  # LOGGING_HORIZON columns x MODEL_HEIGHT rows, column-major
    player_pos: float  # player_row / MODEL_HEIGHT
    action: int  # UP (-1) or DOWN (+1); STAY is never logged

    def to_fields(self) -> list[str]:
        fields = [str(float(x)) for x in self.features]
        fields.append(str(float(self.player_pos)))
        fields.append(str(int(self.action)))
        return fields

    def to_line(self) -> str:
        return ",".join(self.to_fields())


@dataclass(frozen=True)
class Decision:
    step: int
    ready: bool = True
    up: float | None = None
    down: float | None = None
