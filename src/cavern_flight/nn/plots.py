from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class MetricRow:
    phase: str
    epoch: int
    name: str
    value: float


def read_metrics(path: str | Path) -> list[MetricRow]:
    rows: list[MetricRow] = []
    p = Path(path)
    if not p.exists():
        return rows
    with p.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            d = json.loads(line)
            if "name" not in d:
                continue
            rows.append(
                MetricRow(
                    phase=str(d.get("phase", "?")),
                    epoch=int(d.get("epoch", 0)),
                    name=str(d["name"]),
                    value=float(d["value"]),
                )
            )
    return rows


def write_metric(*, path: Path, phase: str, epoch: int, name: str, value: float) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    row = {"phase": phase, "epoch": int(epoch), "name": name, "value": float(value)}
    with path.open("a", encoding="utf-8") as f:
        f.write(json.dumps(row, ensure_ascii=False) + "\n")


def plot_metrics(metrics_path: str | Path, out_dir: str | Path, *, subdir: str = "plots") -> list[Path]:
    """Render the training error curve(s) from metrics.jsonl into out_dir/plots."""

    # Import lazily to keep training usable without plotting deps.
    import matplotlib

    matplotlib.use("Agg")
    import matplotlib.pyplot as plt

    for style in ["seaborn-v0_8-whitegrid", "seaborn-whitegrid", "ggplot"]:
        try:
            plt.style.use(style)
            break
        except Exception:
            pass

    rows = read_metrics(metrics_path)
    if not rows:
        return []

    out = Path(out_dir) / subdir
    out.mkdir(parents=True, exist_ok=True)

    def _series(name: str) -> tuple[list[int], list[float]]:
        pts = sorted((r.epoch, r.value) for r in rows if r.name == name)
        return [p[0] for p in pts], [p[1] for p in pts]

    saved: list[Path] = []
    for name, log_y in [("error", True), ("error_delta", True)]:
        xs, ys = _series(name)
        if not xs:
            continue
        plt.figure()
        if log_y and all(y > 0 for y in ys):
            plt.semilogy(xs, ys, linewidth=2)
        else:
            plt.plot(xs, ys, linewidth=2)
        plt.title(name)
        plt.xlabel("epoch")
        plt.ylabel(name)
        plt.grid(True, alpha=0.25)
        plt.tight_layout()
        p = out / f"{name}.png"
        plt.savefig(p, dpi=160)
        plt.close()
        saved.append(p)
    return saved
