from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, replace

import numpy as np

from .dataset import RecordWriter, make_record
from .grid import MODEL_HEIGHT, PLAYER_COLUMN, PLAYER_START_ROW, TIMER_INTERVAL_MS, CavernGrid
from .nn.controller import Controller, LearnedController, make_controller
from .nn.persist import try_load_model
from .nn.train import Stage, TrainConfig, TrainingPipeline, TrainingResult
from .schemas import ACTIONS, STAY, Decision

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GameConfig:
    data_path: str = "resources/training_data.csv"
    model_path: str = "resources/neural_network.pt"

    # Where training writes metrics.jsonl / plots (None: no run outputs)
    run_dir: str | None = None

    # Autopilot source: "learned" reloads the persisted network, "random" needs nothing
    controller: str = "learned"
    auto: bool = False
    seed: int | None = None


class CavernGame:
    """Headless game session driven one tick at a time by an external timer.

    All methods except ``start_training`` run on the tick thread. Training runs
    on a single background worker with its own network; the autopilot only
    ever uses networks reloaded from ``model_path``.
    """

    def __init__(self, cfg: GameConfig | None = None, *, controller: Controller | None = None):
        self.cfg = cfg or GameConfig()
        self.rng = np.random.default_rng(self.cfg.seed)
        self.grid = CavernGrid(rng=self.rng)

        self.player_row = PLAYER_START_ROW
        self.ticks = 0
        self.crashed = False
        self.last_decision: Decision | None = None

        self._writer = RecordWriter(self.cfg.data_path)
        self._executor: ThreadPoolExecutor | None = None
        self._training: Future[TrainingResult] | None = None
        self._pipeline: TrainingPipeline | None = None
        self._not_ready_reported = False

        self.auto = False
        if controller is not None:
            self.controller = controller
        elif self.cfg.controller == "learned" and self.cfg.auto:
            model = try_load_model(self.cfg.model_path)
            if model is None:
                logger.warning("No trained network found. Train first or use manual mode.")
            self.controller = LearnedController(model)
        else:
            self.controller = make_controller(self.cfg.controller, rng=self.rng)
        self.auto = bool(self.cfg.auto)

    @property
    def elapsed_seconds(self) -> float:
        return self.ticks * (TIMER_INTERVAL_MS / 1000.0)

    @property
    def collecting_data(self) -> bool:
        return self._writer.is_open

    @property
    def records_written(self) -> int:
        return self._writer.n_written

    @property
    def training_running(self) -> bool:
        return self._training is not None and not self._training.done()

    @property
    def training_stage(self) -> Stage:
        return Stage.IDLE if self._pipeline is None else self._pipeline.stage

    def advance_tick(self) -> bool:
        """One timer tick. Returns False once the player has crashed."""
        if self.crashed:
            return False
        self.ticks += 1
        self.grid.advance()
        if self.auto:
            decision = self.controller.decide(self.grid, self.player_row)
            self.last_decision = decision
            if not decision.ready and not self._not_ready_reported:
                logger.warning("Autopilot has no trained network; holding position")
                self._not_ready_reported = True
            self.apply_move(decision.step)
        self.crashed = self.is_collided()
        return not self.crashed

    def apply_move(self, step: int) -> None:
        if step not in ACTIONS:
            raise ValueError(f"step must be one of {ACTIONS}, got {step!r}")
        self.player_row = min(MODEL_HEIGHT - 1, max(0, self.player_row + int(step)))

        if self.collecting_data and not self.auto and step != STAY:
            self._writer.write(make_record(self.grid, self.player_row, step))

    def is_collided(self) -> bool:
        return self.grid.collides_at(PLAYER_COLUMN, self.player_row)

    def reset_game(self) -> None:
        self.grid.reset()
        self.player_row = PLAYER_START_ROW
        self.ticks = 0
        self.crashed = False
        self.last_decision = None

    def toggle_data_collection(self) -> bool:
        if self.collecting_data:
            self._writer.close()
            logger.info("Data collection stopped (%d records)", self._writer.n_written)
            return False
        if self.training_running:
            logger.warning("Training in progress; data collection stays off")
            return False
        try:
            self._writer.open()
        except OSError as e:
            logger.error("Failed to start data collection: %s", e)
            return False
        logger.info("Data collection started -> %s", self._writer.path)
        return True

    def start_training(self, cfg: TrainConfig | None = None) -> Future[TrainingResult] | None:
        """Start background training; returns a future resolving to the result.

        Returns ``None`` while data collection is on, since training reads the
        file that collection appends to.
        """
        if self.collecting_data:
            logger.warning("Stop data collection before training")
            return None
        if self._training is not None and not self._training.done():
            return self._training

        if cfg is None:
            cfg = TrainConfig(
                data_path=self.cfg.data_path,
                model_path=self.cfg.model_path,
                out_dir=self.cfg.run_dir,
                progress=False,
            )
        else:
            cfg = replace(cfg, progress=False)

        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="cavern-train")
        self._pipeline = TrainingPipeline(cfg)
        self._training = self._executor.submit(self._pipeline.run)
        return self._training

    def toggle_autopilot(self) -> bool:
        if self.auto:
            self.auto = False
            logger.info("Manual mode")
            return False

        if isinstance(self.controller, LearnedController):
            model = try_load_model(self.cfg.model_path)
            if model is None:
                logger.warning("No trained network - train first")
                return False
            self.controller = LearnedController(model)
            self._not_ready_reported = False

        self.auto = True
        logger.info("Autopilot mode (%s)", self.controller.kind)
        return True

    def close(self) -> None:
        self._writer.close()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self) -> "CavernGame":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
