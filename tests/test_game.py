from dataclasses import replace

import pytest

from cavern_flight.dataset import RECORD_FIELDS
from cavern_flight.game import CavernGame, GameConfig
from cavern_flight.grid import MODEL_HEIGHT, PLAYER_START_ROW
from cavern_flight.nn.controller import LearnedController, RandomController
from cavern_flight.nn.model import CavernNet
from cavern_flight.nn.persist import save_model
from cavern_flight.nn.train import Stage, TrainConfig
from cavern_flight.pilot import ExpertPilot
from cavern_flight.schemas import DOWN, STAY, UP


@pytest.fixture
def game_cfg(tmp_path):
    return GameConfig(
        data_path=str(tmp_path / "resources" / "training_data.csv"),
        model_path=str(tmp_path / "resources" / "neural_network.pt"),
        seed=5,
    )


@pytest.fixture
def game(game_cfg):
    with CavernGame(game_cfg) as g:
        yield g


class TestTicks:
    def test_initial_state(self, game):
        assert game.player_row == PLAYER_START_ROW
        assert game.ticks == 0
        assert not game.crashed
        assert not game.auto
        assert not game.collecting_data
        assert game.training_stage is Stage.IDLE

    def test_elapsed_time_follows_ticks(self, game):
        for _ in range(5):
            assert game.advance_tick()
        assert game.ticks == 5
        assert game.elapsed_seconds == pytest.approx(0.5)

    def test_crash_into_ceiling(self, game):
        for _ in range(PLAYER_START_ROW + 3):
            game.apply_move(UP)
        assert game.player_row == 0

        # the first carved column reaches the player on tick 15
        survived = 0
        while game.advance_tick():
            survived += 1
        assert game.crashed
        assert game.ticks == 15
        assert survived == 14

        assert not game.advance_tick()
        assert game.ticks == 15

    def test_reset(self, game):
        game.apply_move(DOWN)
        for _ in range(20):
            game.advance_tick()
        game.reset_game()
        assert game.ticks == 0
        assert game.player_row == PLAYER_START_ROW
        assert not game.crashed
        assert not game.is_collided()
        assert game.grid.bounds == (2, 18)


class TestMoves:
    def test_row_is_clamped(self, game):
        for _ in range(MODEL_HEIGHT + 5):
            game.apply_move(DOWN)
        assert game.player_row == MODEL_HEIGHT - 1

    def test_invalid_step(self, game):
        with pytest.raises(ValueError):
            game.apply_move(2)


class TestDataCollection:
    def test_only_moves_are_recorded(self, game, game_cfg):
        assert game.toggle_data_collection()
        game.apply_move(UP)
        game.apply_move(STAY)
        game.apply_move(DOWN)
        assert game.records_written == 2
        assert not game.toggle_data_collection()

        with open(game_cfg.data_path, encoding="utf-8") as f:
            lines = f.read().splitlines()
        assert len(lines) == 2
        assert all(len(line.split(",")) == RECORD_FIELDS for line in lines)
        assert lines[0].endswith(",-1")

    def test_autopilot_moves_are_not_recorded(self, game_cfg):
        cfg = replace(game_cfg, controller="random", auto=True)
        with CavernGame(cfg) as game:
            assert game.auto
            game.toggle_data_collection()
            for _ in range(10):
                game.advance_tick()
            assert game.records_written == 0

    def test_training_refused_while_collecting(self, game):
        game.toggle_data_collection()
        assert game.start_training() is None


class TestAutopilot:
    def test_learned_without_network_refuses(self, game):
        assert not game.toggle_autopilot()
        assert not game.auto

    def test_auto_start_without_network_holds(self, game_cfg):
        cfg = replace(game_cfg, auto=True)
        with CavernGame(cfg) as game:
            assert isinstance(game.controller, LearnedController)
            for _ in range(5):
                game.advance_tick()
            assert game.player_row == PLAYER_START_ROW
            assert game.last_decision.step == STAY
            assert not game.last_decision.ready

    def test_random_controller_needs_no_network(self, game_cfg):
        cfg = replace(game_cfg, controller="random")
        with CavernGame(cfg) as game:
            assert isinstance(game.controller, RandomController)
            assert game.toggle_autopilot()
            assert not game.toggle_autopilot()

    def test_train_then_fly(self, game, game_cfg, write_lines, separable_lines):
        data = write_lines(separable_lines)
        cfg = TrainConfig(data_path=str(data), model_path=game_cfg.model_path, max_epochs=5, plot=False)
        future = game.start_training(cfg)
        assert future is not None
        result = future.result(timeout=120)

        assert result.ok
        assert result.persisted
        assert game.training_stage is Stage.PERSISTED
        assert not game.training_running

        assert game.toggle_autopilot()
        game.advance_tick()
        assert game.last_decision.ready
        assert game.last_decision.step in (UP, DOWN)

    def test_wrong_shape_network_is_not_flown(self, game_cfg):
        save_model(CavernNet(10, 5, 2), game_cfg.model_path)
        with CavernGame(game_cfg) as game:
            assert not game.toggle_autopilot()
            assert not game.auto

        with CavernGame(replace(game_cfg, auto=True)) as game:
            assert not game.controller.ready
            for _ in range(3):
                assert game.advance_tick()
            assert not game.last_decision.ready
            assert game.player_row == PLAYER_START_ROW

    def test_injected_controller_is_used(self, game_cfg):
        pilot = ExpertPilot()
        with CavernGame(game_cfg, controller=pilot) as game:
            assert game.controller is pilot
            assert not game.auto
            assert game.toggle_autopilot()
            game.advance_tick()
            assert game.last_decision is not None
