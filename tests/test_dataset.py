import numpy as np
import pytest

from cavern_flight.dataset import (
    RECORD_FIELDS,
    RecordWriter,
    append_records,
    load_records,
    make_record,
    parse_record,
)
from cavern_flight.errors import DataFormatError
from cavern_flight.grid import PLAYER_COLUMN, CavernGrid
from cavern_flight.sampler import RECORD_FEATURES, sample_horizon
from cavern_flight.schemas import DOWN, STAY, UP, TrainingRecord


def _record(action, first=1.0, pos=0.5):
    features = [0.0] * RECORD_FEATURES
    features[0] = first
    return TrainingRecord(features=tuple(features), player_pos=pos, action=action)


@pytest.fixture
def grid():
    g = CavernGrid(seed=11)
    for _ in range(35):
        g.advance()
    return g


class TestRecordFormat:
    def test_make_record_uses_wide_horizon(self, grid):
        rec = make_record(grid, 9, DOWN)
        assert len(rec.features) == RECORD_FEATURES
        np.testing.assert_array_equal(np.asarray(rec.features), sample_horizon(grid, 10))
        assert rec.player_pos == pytest.approx(0.45)
        assert rec.action == DOWN

    def test_line_has_202_fields(self, grid):
        line = make_record(grid, 9, UP).to_line()
        parts = line.split(",")
        assert len(parts) == RECORD_FIELDS == 202
        assert set(parts[:RECORD_FEATURES]) <= {"0.0", "1.0"}
        assert parts[-2] == "0.45"
        assert parts[-1] == "-1"

    def test_parse_uses_narrow_horizon_and_position(self, grid):
        rec = make_record(grid, 4, DOWN)
        x, action = parse_record(rec.to_line())
        assert x.shape == (61,)
        np.testing.assert_array_equal(x[:60], np.asarray(rec.features[:60]))
        assert x[60] == pytest.approx(0.2)
        assert action == DOWN

    def test_parse_rejects_short_line(self):
        with pytest.raises(DataFormatError) as exc:
            parse_record(",".join(["0.0"] * 150), line_no=3)
        assert exc.value.n_fields == 150
        assert exc.value.line_no == 3

    def test_parse_rejects_bad_numbers_and_actions(self):
        bad_value = _record(UP).to_fields()
        bad_value[5] = "wall"
        with pytest.raises(DataFormatError):
            parse_record(",".join(bad_value))

        bad_action = _record(UP).to_fields()
        bad_action[-1] = "2"
        with pytest.raises(DataFormatError):
            parse_record(",".join(bad_action))


class TestLoadRecords:
    def test_short_line_is_counted_not_raised(self, write_lines):
        lines = [_record(UP).to_line(), ",".join(["1.0"] * 150), _record(DOWN, first=0.0).to_line()]
        ds = load_records(write_lines(lines))
        assert len(ds) == 2
        assert ds.n_malformed == 1
        assert ds.n_stay == 0

    def test_stay_records_are_dropped(self, write_lines):
        lines = [_record(STAY).to_line(), _record(UP).to_line(), _record(STAY).to_line()]
        ds = load_records(write_lines(lines))
        assert len(ds) == 1
        assert ds.n_stay == 2
        assert ds.n_skipped == 2

    def test_targets_are_one_hot_up_down(self, write_lines):
        ds = load_records(write_lines([_record(UP).to_line(), _record(DOWN).to_line()]))
        np.testing.assert_array_equal(ds.targets, [[1.0, 0.0], [0.0, 1.0]])
        assert ds.inputs.shape == (2, 61)
        assert ds.inputs.dtype == np.float64

    def test_blank_lines_ignored(self, write_lines):
        ds = load_records(write_lines(["", _record(UP).to_line(), "   "]))
        assert len(ds) == 1
        assert ds.n_malformed == 0

    def test_long_line_uses_last_two_fields(self, write_lines):
        fields = _record(UP).to_fields()
        long_line = ",".join(fields[:-2] + ["0.0", "0.0"] + ["0.75", "1"])
        ds = load_records(write_lines([long_line]))
        assert len(ds) == 1
        assert ds.inputs[0, 60] == pytest.approx(0.75)
        np.testing.assert_array_equal(ds.targets[0], [0.0, 1.0])

    def test_only_stay_gives_empty_dataset(self, write_lines):
        ds = load_records(write_lines([_record(STAY).to_line()] * 5))
        assert len(ds) == 0
        assert ds.inputs.shape == (0, 61)

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_records(tmp_path / "nope.csv")


class TestWriters:
    def test_record_writer_appends_across_sessions(self, tmp_path):
        path = tmp_path / "resources" / "training_data.csv"
        with RecordWriter(path) as w:
            assert w.write(_record(UP))
            assert not w.write(_record(STAY))
        with RecordWriter(path) as w:
            w.write(_record(DOWN))
        lines = path.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 2
        assert lines[0].endswith(",-1")
        assert lines[1].endswith(",1")

    def test_closed_writer_refuses(self, tmp_path):
        w = RecordWriter(tmp_path / "x.csv")
        with pytest.raises(RuntimeError):
            w.write(_record(UP))

    def test_append_records_skips_stay(self, tmp_path):
        path = tmp_path / "data.csv"
        n = append_records(path, [_record(UP), _record(STAY), _record(DOWN)])
        assert n == 2
        assert len(load_records(path)) == 2

    def test_player_column_is_not_in_record(self, grid):
        rec = make_record(grid, 0, UP)
        np.testing.assert_array_equal(np.asarray(rec.features[:20]), grid.column(PLAYER_COLUMN + 1))
