from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Iterable

import numpy as np

from .errors import DataFormatError
from .grid import CavernGrid
from .sampler import INFERENCE_HORIZON, INFERENCE_VECTOR_SIZE, LOGGING_HORIZON, RECORD_FEATURES, normalized_row, sample_horizon
from .schemas import DOWN, STAY, UP, TrainingRecord

logger = logging.getLogger(__name__)

RECORD_FIELDS = RECORD_FEATURES + 2  # features + playerPos + action


def make_record(grid: CavernGrid, player_row: int, action: int) -> TrainingRecord:
    horizon = sample_horizon(grid, LOGGING_HORIZON)
    features = np.zeros((RECORD_FEATURES,), dtype=np.float64)
    features[: horizon.shape[0]] = horizon[:RECORD_FEATURES]
    return TrainingRecord(
        features=tuple(float(x) for x in features),
        player_pos=normalized_row(grid, player_row),
        action=int(action),
    )


def append_records(path: str | Path, records: Iterable[TrainingRecord]) -> int:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    n = 0
    with path.open("a", encoding="utf-8") as f:
        for rec in records:
            if rec.action == STAY:
                continue
            f.write(rec.to_line())
            f.write("\n")
            n += 1
    return n


class RecordWriter:
    """Append-only writer for the training record file.

    Each record is flushed as soon as it is written so that an interrupted
    session never leaves half a line behind.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._fh: IO[str] | None = None
        self.n_written = 0

    @property
    def is_open(self) -> bool:
        return self._fh is not None

    def open(self) -> "RecordWriter":
        if self._fh is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = self.path.open("a", encoding="utf-8")
        return self

    def write(self, record: TrainingRecord) -> bool:
        if self._fh is None:
            raise RuntimeError(f"RecordWriter for {self.path} is not open")
        if record.action == STAY:
            return False
        self._fh.write(record.to_line() + "\n")
        self._fh.flush()
        self.n_written += 1
        return True

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None

    def __enter__(self) -> "RecordWriter":
        return self.open()

    def __exit__(self, *exc) -> None:
        self.close()


def parse_record(line: str, *, line_no: int | None = None) -> tuple[np.ndarray, int]:
    """Parse one record line into ``(input_vector, action)``.

    The input vector uses the first ``INFERENCE_HORIZON`` columns of the logged
    horizon plus the player position, i.e. the inference layout. Extra fields in
    the middle of a long line are ignored; position and action are always the
    last two fields.
    """
    parts = line.strip().split(",")
    if len(parts) < RECORD_FIELDS:
        raise DataFormatError(
            f"expected at least {RECORD_FIELDS} fields, got {len(parts)}",
            line_no=line_no,
            n_fields=len(parts),
        )

    n_features = INFERENCE_HORIZON * (RECORD_FEATURES // LOGGING_HORIZON)
    try:
        x = np.empty((INFERENCE_VECTOR_SIZE,), dtype=np.float64)
        x[:n_features] = [float(p) for p in parts[:n_features]]
        x[n_features] = float(parts[-2])
        action_f = float(parts[-1])
    except ValueError as e:
        raise DataFormatError(f"non-numeric field: {e}", line_no=line_no, n_fields=len(parts)) from e

    if not np.all(np.isfinite(x)) or action_f not in (UP, STAY, DOWN):
        raise DataFormatError(f"invalid values (action={parts[-1]!r})", line_no=line_no, n_fields=len(parts))
    return x, int(action_f)


@dataclass(frozen=True)
class LoadedDataset:
    inputs: np.ndarray  # (N, 61) float64
    targets: np.ndarray  # (N, 2) float64 one-hot [UP, DOWN]
    n_malformed: int
    n_stay: int

    def __len__(self) -> int:
        return int(self.inputs.shape[0])

    @property
    def n_skipped(self) -> int:
        return self.n_malformed + self.n_stay


def load_records(path: str | Path) -> LoadedDataset:
    """Read the record file, skipping malformed lines and STAY actions."""
    path = Path(path)
    inputs: list[np.ndarray] = []
    targets: list[list[float]] = []
    n_malformed = 0
    n_stay = 0
    with path.open("r", encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                x, action = parse_record(line, line_no=line_no)
            except DataFormatError as e:
                n_malformed += 1
                logger.debug("skip line %d: %s", line_no, e)
                continue
            if action == STAY:
                n_stay += 1
                continue
            inputs.append(x)
            targets.append([1.0, 0.0] if action == UP else [0.0, 1.0])

    if n_malformed:
        logger.warning("Skipped %d malformed lines in %s", n_malformed, path)

    if inputs:
        x_arr = np.stack(inputs).astype(np.float64)
        y_arr = np.asarray(targets, dtype=np.float64)
    else:
        x_arr = np.zeros((0, INFERENCE_VECTOR_SIZE), dtype=np.float64)
        y_arr = np.zeros((0, 2), dtype=np.float64)
    return LoadedDataset(inputs=x_arr, targets=y_arr, n_malformed=n_malformed, n_stay=n_stay)
