"""Model and feature-importance files."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Sequence

import numpy as np

from .config import GbmConfig
from .model import Ensemble


class GbmPredictor:
    """Lightweight predictor that depends only on a serialised model."""

    def __init__(self, ensemble: Ensemble) -> None:
        self._ensemble = ensemble

    @classmethod
    def from_json(cls, path: str | Path) -> "GbmPredictor":
        return cls(load_model(path))

    def to_json(self, path: str | Path) -> None:
        dump_model(path, self._ensemble)

    def predict(self, X: np.ndarray) -> np.ndarray:
        return self._ensemble.predict(np.asarray(X, dtype=np.float64))

    @property
    def ensemble(self) -> Ensemble:
        return self._ensemble


def dump_model(path: str | Path, ensemble: Ensemble) -> None:
    Path(path).write_text(json.dumps(ensemble.to_dict(), indent=2))


def load_model(path: str | Path) -> Ensemble:
    """Read a model file written by :func:`dump_model`.

    ``OSError`` propagates for unreadable files and ``ValueError`` for
    malformed content.
    """
    try:
        payload: Any = json.loads(Path(path).read_text())
    except json.JSONDecodeError as exc:
        raise ValueError(f"{path}: not valid JSON ({exc})") from exc
    if not isinstance(payload, dict) or "trees" not in payload:
        raise ValueError(f"{path}: model document must be an object with a 'trees' field")
    try:
        return Ensemble.from_dict(payload)
    except (KeyError, TypeError) as exc:
        raise ValueError(f"{path}: malformed tree ({exc})") from exc


def dump_fimps(path: str | Path, config: GbmConfig, fimps: Sequence[float] | np.ndarray) -> None:
    """Write one ``fid<TAB>importance<TAB>name`` line per feature."""
    with open(path, "w") as fs:
        for fid in range(config.num_features):
            fs.write(f"{fid}\t{float(fimps[fid])!r}\t{config.get_feature_name(fid)}\n")
