from __future__ import annotations

import contextlib
import logging
import os
from pathlib import Path

import torch

from ..errors import PersistenceError
from .model import TOPOLOGY, CavernNet

logger = logging.getLogger(__name__)

ARTIFACT_FORMAT = "cavern-flight-mlp"
ARTIFACT_VERSION = 1


def save_model(model: CavernNet, path: str | Path) -> Path:
    """Write topology + weights, replacing any previous artifact at ``path``."""
    path = Path(path)
    payload = {
        "format": ARTIFACT_FORMAT,
        "version": ARTIFACT_VERSION,
        "topology": list(model.topology),
        "state_dict": {k: v.detach().cpu().clone() for k, v in model.state_dict().items()},
    }
    tmp = path.with_name(path.name + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        torch.save(payload, tmp)
        os.replace(tmp, path)
    except (OSError, RuntimeError) as e:
        with contextlib.suppress(OSError):
            tmp.unlink()
        raise PersistenceError(f"Failed to save network to {path}: {e}") from e
    return path


def load_model(path: str | Path) -> CavernNet | None:
    """Rebuild a network from ``path``; ``None`` when nothing was saved yet."""
    path = Path(path)
    if not path.exists():
        return None
    try:
        payload = torch.load(path, map_location="cpu", weights_only=True)
    except Exception as e:
        raise PersistenceError(f"Failed to load network from {path}: {e}") from e

    if not isinstance(payload, dict) or payload.get("format") != ARTIFACT_FORMAT:
        raise PersistenceError(f"Not a cavern-flight network artifact: {path}")
    topology = tuple(int(x) for x in payload.get("topology", ()))
    if topology != TOPOLOGY:
        raise PersistenceError(f"Network in {path} has topology {topology}, expected {TOPOLOGY}")

    model = CavernNet(*topology)
    try:
        model.load_state_dict(payload["state_dict"])
    except (KeyError, RuntimeError) as e:
        raise PersistenceError(f"Weights in {path} do not match topology {topology}: {e}") from e
    model.eval()
    return model


def try_load_model(path: str | Path) -> CavernNet | None:
    """``load_model`` that reports failures and treats them as "no model"."""
    try:
        return load_model(path)
    except PersistenceError as e:
        logger.error("%s", e)
        return None
