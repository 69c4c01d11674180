import numpy as np
import pytest

from cavern_flight.dataset import RECORD_FIELDS
from cavern_flight.sampler import RECORD_FEATURES


def record_line(features, player_pos, action):
    fields = [str(float(x)) for x in features] + [str(float(player_pos)), str(int(action))]
    return ",".join(fields)


@pytest.fixture
def write_lines(tmp_path):
    """Write raw lines to a CSV file under tmp_path and return its path."""

    def _write(lines, name="training_data.csv"):
        path = tmp_path / name
        path.write_text("".join(line + "\n" for line in lines), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def separable_lines():
    """100 records: UP rows have feature 0 set, DOWN rows have it cleared."""
    rng = np.random.default_rng(7)
    lines = []
    for i in range(100):
        action = -1 if i % 2 == 0 else 1
        features = rng.integers(0, 2, size=RECORD_FEATURES).astype(float)
        features[0] = 1.0 if action == -1 else 0.0
        lines.append(record_line(features, rng.integers(0, 20) / 20.0, action))
    assert all(len(line.split(",")) == RECORD_FIELDS for line in lines)
    return lines


@pytest.fixture
def contradictory_lines():
    """Identical inputs labelled both ways; the error can never drop below 0.25."""
    features = np.zeros(RECORD_FEATURES)
    return [record_line(features, 0.5, -1 if i % 2 == 0 else 1) for i in range(20)]
