from __future__ import annotations

import json
import logging
import math
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

import numpy as np
import torch
import torch.nn.functional as F
from tqdm import tqdm

from ..dataset import LoadedDataset, load_records
from ..errors import EmptyDatasetError, PersistenceError
from .model import TOPOLOGY, CavernNet, create_network
from .persist import save_model, try_load_model
from .plots import plot_metrics, write_metric

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SHUFFLING = "shuffling"
    TRAINING = "training"
    CONVERGED = "converged"
    STAGNANT = "stagnant"
    TIMED_OUT = "timed_out"
    MAX_EPOCHS = "max_epochs"
    PERSISTED = "persisted"
    ABORTED = "aborted"


STOP_STAGES = (Stage.CONVERGED, Stage.STAGNANT, Stage.TIMED_OUT, Stage.MAX_EPOCHS)


@dataclass(frozen=True)
class TrainConfig:
    data_path: str
    model_path: str

    # metrics.jsonl / config.json / plots; None disables run outputs
    out_dir: str | None = None

    # Stopping rules, checked in this order after every epoch
    target_error: float = 0.01
    stagnation_delta: float = 1e-5
    stagnation_patience: int = 200  # stop once more than this many flat epochs in a row
    time_limit_s: float = 120.0
    max_epochs: int = 3000

    # Rprop
    lr: float = 0.1  # initial per-weight step size
    etas: tuple[float, float] = (0.5, 1.2)
    step_sizes: tuple[float, float] = (1e-6, 50.0)

    # Continue from the persisted network when its topology matches
    resume: bool = True

    seed: int | None = 0
    progress: bool = True
    plot: bool = True


@dataclass(frozen=True)
class TrainingResult:
    stage: Stage
    stop_reason: Stage | None = None
    epochs: int = 0
    final_error: float | None = None
    n_samples: int = 0
    n_malformed: int = 0
    n_stay: int = 0
    elapsed_s: float = 0.0
    persisted: bool = False
    model_path: str | None = None
    error: Exception | None = None
    model: CavernNet | None = field(default=None, repr=False, compare=False)

    @property
    def ok(self) -> bool:
        return self.stop_reason in STOP_STAGES

    def summary(self) -> dict[str, object]:
        return {
            "stage": self.stage.value,
            "stop_reason": None if self.stop_reason is None else self.stop_reason.value,
            "epochs": self.epochs,
            "final_error": self.final_error,
            "n_samples": self.n_samples,
            "n_malformed": self.n_malformed,
            "n_stay": self.n_stay,
            "elapsed_s": self.elapsed_s,
            "persisted": self.persisted,
            "model_path": self.model_path,
            "error": None if self.error is None else f"{type(self.error).__name__}: {self.error}",
        }


def _set_seed(seed: int | None) -> None:
    if seed is None:
        return
    torch.manual_seed(seed)
    np.random.seed(seed)


def check_stop(
    *,
    cfg: TrainConfig,
    epoch: int,
    error: float,
    stagnant_epochs: int,
    elapsed_s: float,
) -> Stage | None:
    if error <= cfg.target_error:
        return Stage.CONVERGED
    if stagnant_epochs > cfg.stagnation_patience:
        return Stage.STAGNANT
    if elapsed_s > cfg.time_limit_s:
        return Stage.TIMED_OUT
    if epoch >= cfg.max_epochs:
        return Stage.MAX_EPOCHS
    return None


def shuffle_pairs(inputs: np.ndarray, targets: np.ndarray, seed: int | None) -> tuple[np.ndarray, np.ndarray]:
    """Shuffle inputs and targets with one shared permutation."""
    if inputs.shape[0] != targets.shape[0]:
        raise ValueError(f"inputs/targets length mismatch: {inputs.shape[0]} != {targets.shape[0]}")
    perm = np.random.default_rng(seed).permutation(inputs.shape[0])
    return inputs[perm], targets[perm]


class TrainingPipeline:
    """Load -> shuffle -> Rprop -> persist, reporting a terminal status.

    The pipeline owns its network for the whole run. Nothing raised inside
    ``run`` escapes it; failures come back as an ``ABORTED`` result.
    """

    def __init__(
        self,
        cfg: TrainConfig,
        *,
        model: CavernNet | None = None,
        clock: Callable[[], float] = time.monotonic,
        on_stage: Callable[[Stage], None] | None = None,
    ):
        self.cfg = cfg
        self.model = model
        self.clock = clock
        self.on_stage = on_stage
        self._stage = Stage.IDLE

    @property
    def stage(self) -> Stage:
        return self._stage

    def _enter(self, stage: Stage) -> None:
        self._stage = stage
        if self.on_stage is not None:
            self.on_stage(stage)

    def _prepare_model(self) -> CavernNet:
        if self.model is not None and self.model.topology == TOPOLOGY:
            return self.model
        if self.cfg.resume:
            loaded = try_load_model(self.cfg.model_path)
            if loaded is not None:
                logger.info("Resuming from %s", self.cfg.model_path)
                return loaded
        model = create_network()
        logger.info("Binary action network created: %s (UP/DOWN only)", "-".join(str(n) for n in TOPOLOGY))
        return model

    def run(self) -> TrainingResult:
        cfg = self.cfg
        t0 = self.clock()
        ds: LoadedDataset | None = None
        try:
            _set_seed(cfg.seed)
            if cfg.max_epochs < 1:
                raise ValueError(f"max_epochs must be >= 1, got {cfg.max_epochs}")

            self._enter(Stage.LOADING)
            ds = load_records(cfg.data_path)
            logger.info("Loaded %d training samples (%d malformed, %d stay)", len(ds), ds.n_malformed, ds.n_stay)
            if len(ds) == 0:
                raise EmptyDatasetError(f"No training data found in {cfg.data_path}")

            self._enter(Stage.SHUFFLING)
            inputs, targets = shuffle_pairs(ds.inputs, ds.targets, cfg.seed)

            self.model = self._prepare_model()
            self._enter(Stage.TRAINING)
            stop, epochs, final_error = self._optimize(self.model, inputs, targets)
        except Exception as e:
            logger.error("Training aborted: %s", e)
            self._enter(Stage.ABORTED)
            return TrainingResult(
                stage=Stage.ABORTED,
                n_samples=0 if ds is None else len(ds),
                n_malformed=0 if ds is None else ds.n_malformed,
                n_stay=0 if ds is None else ds.n_stay,
                elapsed_s=self.clock() - t0,
                model_path=cfg.model_path,
                error=e,
                model=self.model,
            )

        self._enter(stop)
        logger.info("Training stopped (%s) after %d epochs, error %.6f", stop.value, epochs, final_error)

        persisted = False
        save_error: Exception | None = None
        try:
            save_model(self.model, cfg.model_path)
            persisted = True
            self._enter(Stage.PERSISTED)
        except PersistenceError as e:
            logger.error("%s", e)
            save_error = e

        return TrainingResult(
            stage=self._stage,
            stop_reason=stop,
            epochs=epochs,
            final_error=final_error,
            n_samples=len(ds),
            n_malformed=ds.n_malformed,
            n_stay=ds.n_stay,
            elapsed_s=self.clock() - t0,
            persisted=persisted,
            model_path=cfg.model_path,
            error=save_error,
            model=self.model,
        )

    def _optimize(self, model: CavernNet, inputs: np.ndarray, targets: np.ndarray) -> tuple[Stage, int, float]:
        cfg = self.cfg

        metrics_path: Path | None = None
        if cfg.out_dir is not None:
            out_dir = Path(cfg.out_dir)
            out_dir.mkdir(parents=True, exist_ok=True)
            (out_dir / "config.json").write_text(json.dumps(asdict(cfg), ensure_ascii=False, indent=2), encoding="utf-8")
            metrics_path = out_dir / "metrics.jsonl"
            if metrics_path.exists():
                metrics_path.unlink()

        x = torch.as_tensor(inputs, dtype=torch.float64)
        y = torch.as_tensor(targets, dtype=torch.float64)
        opt = torch.optim.Rprop(model.parameters(), lr=cfg.lr, etas=cfg.etas, step_sizes=cfg.step_sizes)

        start = self.clock()
        last_error = math.inf
        stagnant_epochs = 0
        stop: Stage | None = None
        error = math.inf
        epoch = 0

        with tqdm(range(1, cfg.max_epochs + 1), desc="Rprop", disable=not cfg.progress) as pbar:
            for epoch in pbar:
                model.train()
                opt.zero_grad(set_to_none=True)
                loss = F.mse_loss(model(x), y)
                loss.backward()
                opt.step()

                error = float(loss.item())
                if not math.isfinite(error):
                    raise FloatingPointError(f"training error became {error} at epoch {epoch}")

                delta = abs(last_error - error)
                if delta < cfg.stagnation_delta:
                    stagnant_epochs += 1
                else:
                    stagnant_epochs = 0
                last_error = error

                if metrics_path is not None:
                    write_metric(path=metrics_path, phase="rprop", epoch=epoch, name="error", value=error)
                    if math.isfinite(delta):
                        write_metric(path=metrics_path, phase="rprop", epoch=epoch, name="error_delta", value=delta)
                pbar.set_postfix({"error": f"{error:.6f}"})

                stop = check_stop(
                    cfg=cfg,
                    epoch=epoch,
                    error=error,
                    stagnant_epochs=stagnant_epochs,
                    elapsed_s=self.clock() - start,
                )
                if stop is not None:
                    break
        model.eval()

        if metrics_path is not None and cfg.plot:
            try:
                plot_metrics(metrics_path, cfg.out_dir, subdir="plots")
            except Exception as e:
                logger.warning("Plotting skipped: %s", e)

        assert stop is not None
        return stop, epoch, error


def train(cfg: TrainConfig, *, model: CavernNet | None = None) -> TrainingResult:
    return TrainingPipeline(cfg, model=model).run()
