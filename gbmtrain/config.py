"""Configuration objects for gbmtrain."""

from __future__ import annotations

import json
import math
import numbers
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Sequence


class ConfigError(ValueError):
    """Raised when a configuration file or value is unusable."""


@dataclass(frozen=True, slots=True)
class GbmConfig:
    """Hyper-parameters and input layout steering training and evaluation.

    Parameters
    ----------
    feature_columns:
        Zero-based column indices of the features in each delimited row. The
        position in this sequence is the feature id.
    feature_names:
        Optional human readable names, one per feature. Defaults to ``f<fid>``.
    target_column:
        Column holding the regression target.
    score_column:
        Optional column holding a previously logged model score. Only used by
        evaluation to check that freshly computed scores agree with it.
    delimiter:
        Field separator of the raw data files.
    num_trees:
        Number of boosting rounds (trees grown after the constant initial tree).
    num_leaves:
        Maximum number of leaves per tree, grown best-first.
    learning_rate:
        Shrinkage applied to leaf values.
    min_leaf_examples:
        Minimum number of sampled rows required in each child of a split.
    example_sampling_rate:
        Fraction of rows sampled per tree for split finding.
    feature_sampling_rate:
        Fraction of features sampled uniformly without replacement per tree.
    max_buckets:
        Maximum number of buckets per feature used to compress the dataset.
    loss_function:
        Name of the loss function, see :func:`gbmtrain.loss.make_loss_function`.
    random_state:
        Optional seed controlling row and feature sampling.
    """

    feature_columns: Sequence[int]
    feature_names: Sequence[str] | None = None
    target_column: int = 0
    score_column: int | None = None
    delimiter: str = "\t"
    num_trees: int = 100
    num_leaves: int = 12
    learning_rate: float = 0.1
    min_leaf_examples: int = 20
    example_sampling_rate: float = 1.0
    feature_sampling_rate: float = 1.0
    max_buckets: int = 255
    loss_function: str = "least_squares"
    random_state: int | None = None

    def __post_init__(self) -> None:
        if isinstance(self.feature_columns, (str, bytes)):
            raise ConfigError("feature_columns must be a list of column indices")
        for c in self.feature_columns:
            _check_int("feature_columns entry", c)
        columns = tuple(int(c) for c in self.feature_columns)
        for name in ("target_column", "num_trees", "num_leaves", "min_leaf_examples", "max_buckets"):
            object.__setattr__(self, name, _check_int(name, getattr(self, name)))
        for name in ("score_column", "random_state"):
            if getattr(self, name) is not None:
                object.__setattr__(self, name, _check_int(name, getattr(self, name)))
        for name in ("delimiter", "loss_function"):
            if not isinstance(getattr(self, name), str):
                raise ConfigError(f"{name} must be a string")
        for name in ("learning_rate", "example_sampling_rate", "feature_sampling_rate"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, numbers.Real):
                raise ConfigError(f"{name} must be a number")

        if not columns:
            raise ConfigError("feature_columns must name at least one column")
        if min(columns) < 0:
            raise ConfigError("feature_columns must be non-negative")
        object.__setattr__(self, "feature_columns", columns)

        if self.feature_names is not None:
            names = tuple(str(n) for n in self.feature_names)
            if len(names) != len(columns):
                raise ConfigError(
                    f"feature_names has {len(names)} entries but there are {len(columns)} features"
                )
            object.__setattr__(self, "feature_names", names)

        if self.target_column < 0:
            raise ConfigError("target_column must be non-negative")
        if self.score_column is not None and self.score_column < 0:
            raise ConfigError("score_column must be non-negative")
        if not self.delimiter:
            raise ConfigError("delimiter must not be empty")
        if self.num_trees < 0:
            raise ConfigError("num_trees must be non-negative")
        if self.num_leaves < 1:
            raise ConfigError("num_leaves must be at least 1")
        if not math.isfinite(self.learning_rate) or self.learning_rate <= 0:
            raise ConfigError("learning_rate must be positive")
        if self.min_leaf_examples < 1:
            raise ConfigError("min_leaf_examples must be at least 1")
        for name in ("example_sampling_rate", "feature_sampling_rate"):
            rate = getattr(self, name)
            if not 0.0 < rate <= 1.0:
                raise ConfigError(f"{name} must lie in (0, 1]")
        if not 2 <= self.max_buckets <= 65536:
            raise ConfigError("max_buckets must lie in [2, 65536]")

    @property
    def num_features(self) -> int:
        return len(self.feature_columns)

    @property
    def max_column(self) -> int:
        """Largest column index a row must contain."""
        cols = [*self.feature_columns, self.target_column]
        if self.score_column is not None:
            cols.append(self.score_column)
        return max(cols)

    def get_feature_name(self, fid: int) -> str:
        if self.feature_names is None:
            return f"f{fid}"
        return self.feature_names[fid]

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "GbmConfig":
        """Create a config from a decoded JSON object, rejecting unknown keys."""
        if not isinstance(payload, dict):
            raise ConfigError("config must be a JSON object")
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(payload) - known)
        if unknown:
            raise ConfigError(f"unknown config keys: {', '.join(unknown)}")
        if "feature_columns" not in payload:
            raise ConfigError("config is missing feature_columns")
        try:
            return cls(**payload)
        except ConfigError:
            raise
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"invalid config value: {exc}") from exc


def _check_int(name: str, value: Any) -> int:
    # bool is an int subclass; JSON true/false is never a count or column
    if isinstance(value, bool) or not isinstance(value, numbers.Integral):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    return int(value)


def load_config(path: str | Path) -> GbmConfig:
    """Read a JSON config file. ``OSError`` propagates for unreadable files."""
    text = Path(path).read_text()
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"{path}: not valid JSON ({exc})") from exc
    return GbmConfig.from_dict(payload)
