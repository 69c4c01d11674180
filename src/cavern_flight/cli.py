from __future__ import annotations

import json
import logging
from pathlib import Path

import numpy as np
import pandas as pd
import typer
from tqdm import tqdm

from .game import CavernGame, GameConfig
from .nn.controller import make_controller

app = typer.Typer(no_args_is_help=True)


@app.callback()
def _root(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level"),
) -> None:
    """Cavern flight: headless game, data collection, Rprop training, autopilot."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command("collect")
def collect(
    out: Path = typer.Option(Path("resources/training_data.csv"), help="Record file to append to"),
    ticks: int = typer.Option(5000, help="Number of ticks to simulate"),
    seed: int = typer.Option(0, help="Random seed (cave + random pilot)"),
    pilot: str = typer.Option("expert", help="Who flies while recording: expert or random"),
) -> None:
    """Fly headless with a scripted pilot and append every UP/DOWN move as a record."""

    if pilot not in ("expert", "random"):
        raise typer.BadParameter(f"pilot must be 'expert' or 'random', got {pilot!r}")

    ctrl = make_controller(pilot, rng=np.random.default_rng(seed))
    cfg = GameConfig(data_path=str(out), seed=seed)

    crashes = 0
    with CavernGame(cfg, controller=ctrl) as game:
        if not game.toggle_data_collection():
            typer.echo(f"Cannot open {out} for appending")
            raise typer.Exit(code=1)
        for _ in tqdm(range(ticks), desc="Collecting"):
            decision = ctrl.decide(game.grid, game.player_row)
            game.apply_move(decision.step)
            if not game.advance_tick():
                crashes += 1
                game.reset_game()
        n_written = game.records_written
        game.toggle_data_collection()

    typer.echo(f"Wrote {n_written} records -> {out} ({crashes} crashes in {ticks} ticks)")


@app.command("train-nn")
def train_nn(
    data: Path = typer.Option(Path("resources/training_data.csv"), help="Training record file (CSV, 202 fields/line)"),
    model: Path = typer.Option(Path("resources/neural_network.pt"), help="Network artifact to write (and resume from)"),
    out_dir: Path | None = typer.Option(None, help="Run directory for metrics.jsonl / config.json / plots"),
    target_error: float = typer.Option(0.01, help="Stop once the training error reaches this value"),
    max_epochs: int = typer.Option(3000, help="Hard cap on Rprop iterations"),
    time_limit: float = typer.Option(120.0, help="Wall-clock limit in seconds"),
    stagnation_delta: float = typer.Option(1e-5, help="Error change below this counts as a flat epoch"),
    stagnation_patience: int = typer.Option(200, help="Stop after more than this many flat epochs in a row"),
    resume: bool = typer.Option(True, help="Continue from the existing artifact when its topology matches"),
    seed: int = typer.Option(0, help="Random seed (init + shuffle)"),
) -> None:
    """Train the 61-80-2 autopilot network with full-batch Rprop."""

    from .nn.train import TrainConfig, train

    cfg = TrainConfig(
        data_path=str(data),
        model_path=str(model),
        out_dir=None if out_dir is None else str(out_dir),
        target_error=float(target_error),
        max_epochs=int(max_epochs),
        time_limit_s=float(time_limit),
        stagnation_delta=float(stagnation_delta),
        stagnation_patience=int(stagnation_patience),
        resume=bool(resume),
        seed=int(seed),
    )
    result = train(cfg)
    summary = result.summary()
    typer.echo(json.dumps(summary, ensure_ascii=False, indent=2))

    if out_dir is not None:
        out_dir.mkdir(parents=True, exist_ok=True)
        (out_dir / "result.json").write_text(json.dumps(summary, ensure_ascii=False, indent=2), encoding="utf-8")

    if not result.ok:
        raise typer.Exit(code=1)
    if not result.persisted:
        typer.echo(f"WARN: network trained but not saved ({result.error})")
        raise typer.Exit(code=2)
    typer.echo(f"Training done ({result.stop_reason.value}). Network: {result.model_path}")


@app.command("play")
def play(
    model: Path = typer.Option(Path("resources/neural_network.pt"), help="Network artifact (learned controller)"),
    controller: str = typer.Option("learned", help="Autopilot: learned, random or expert"),
    episodes: int = typer.Option(10, min=1, help="Number of games"),
    max_ticks: int = typer.Option(2000, help="Stop an episode after this many ticks"),
    seed: int = typer.Option(0, help="Random seed"),
    out_summary: Path | None = typer.Option(None, help="Optional per-episode CSV"),
) -> None:
    """Let an autopilot fly and report how long it survives."""

    if controller not in ("learned", "random", "expert"):
        raise typer.BadParameter(f"controller must be learned, random or expert, got {controller!r}")

    cfg = GameConfig(model_path=str(model), controller=controller, seed=seed)
    rows = []
    with CavernGame(cfg) as game:
        if not game.toggle_autopilot():
            typer.echo(f"No trained network at {model} - run train-nn first")
            raise typer.Exit(code=1)
        for ep in tqdm(range(episodes), desc="Playing"):
            game.reset_game()
            while game.ticks < max_ticks and game.advance_tick():
                pass
            rows.append(
                {
                    "episode": ep,
                    "ticks": game.ticks,
                    "seconds": game.elapsed_seconds,
                    "crashed": game.crashed,
                }
            )

    df = pd.DataFrame(rows)
    typer.echo(
        f"{controller}: mean survival {df['seconds'].mean():.1f}s over {len(df)} episodes "
        f"(best {df['seconds'].max():.1f}s, {int(df['crashed'].sum())} crashes)"
    )
    if out_summary is not None:
        out_summary.parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(out_summary, index=False)
        typer.echo(f"Wrote {len(df)} rows -> {out_summary}")


@app.command("plot-run")
def plot_run(
    run_dir: Path = typer.Option(..., help="Run directory containing metrics.jsonl"),
) -> None:
    """Re-render the training curves of a run."""

    from .nn.plots import plot_metrics

    saved = plot_metrics(run_dir / "metrics.jsonl", run_dir, subdir="plots")
    if not saved:
        typer.echo(f"No metrics in {run_dir}")
        raise typer.Exit(code=1)
    for p in saved:
        typer.echo(f"Wrote {p}")


@app.command("version")
def version() -> None:
    from . import __version__

    typer.echo(__version__)


if __name__ == "__main__":
    app()
