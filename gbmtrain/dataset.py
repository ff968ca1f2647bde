"""Training data storage: row parsing and quantile bucketization."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from .config import GbmConfig

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ParsedRow:
    """One successfully parsed data line."""

    features: np.ndarray
    target: float
    logged_score: float | None = None


def compute_bucket_edges(X: np.ndarray, max_buckets: int) -> list[np.ndarray]:
    """Return de-duplicated quantile edges per column of ``X``.

    Feature ``j`` of a row falls in bucket ``searchsorted(edges[j], x, "left")``,
    so at most ``max_buckets`` buckets are used.
    """
    n_features = X.shape[1]
    if X.shape[0] == 0:
        return [np.empty(0, dtype=np.float64) for _ in range(n_features)]
    quantiles = np.linspace(0.0, 1.0, max_buckets + 1, dtype=np.float64)[1:-1]
    edges: list[np.ndarray] = []
    for j in range(n_features):
        column = X[:, j]
        column = column[np.isfinite(column)]
        if column.size == 0:
            edges.append(np.empty(0, dtype=np.float64))
            continue
        col_edges = np.quantile(column, quantiles, method="linear")
        edges.append(np.unique(col_edges).astype(np.float64, copy=False))
    return edges


def apply_buckets(X: np.ndarray, bucket_edges: Sequence[np.ndarray], dtype: np.dtype) -> np.ndarray:
    """Bucketize ``X`` using previously-computed ``bucket_edges``."""
    X_float = np.asarray(X, dtype=np.float64)
    if X_float.ndim == 1:
        X_float = X_float.reshape(1, -1)
    bins = np.empty(X_float.shape, dtype=dtype)
    for j, column_edges in enumerate(bucket_edges):
        bins[:, j] = np.searchsorted(column_edges, X_float[:, j], side="left")
    return bins


class DataSet:
    """Bucketized training corpus.

    The first ``num_examples_for_bucketing`` accepted rows are buffered as raw
    floats and used to estimate per-feature bucket edges; from then on every
    row is stored as bucket ids only. ``num_examples_for_training`` caps the
    number of accepted rows (``-1`` keeps everything).
    """

    def __init__(
        self,
        config: GbmConfig,
        num_examples_for_bucketing: int = 1024 * 1024 * 5,
        num_examples_for_training: int = -1,
    ) -> None:
        if num_examples_for_bucketing <= 0:
            raise ValueError("num_examples_for_bucketing must be positive")
        self.config = config
        self.num_features = config.num_features
        self._bucketing_size = int(num_examples_for_bucketing)
        self._capacity = int(num_examples_for_training)
        self._bin_dtype = np.dtype(np.uint8 if config.max_buckets <= 256 else np.uint16)

        self._raw_rows: list[np.ndarray] = []
        self._binned_rows: list[np.ndarray] = []
        self._targets: list[float] = []
        self._bucket_edges: list[np.ndarray] | None = None
        self._bins: np.ndarray | None = None
        self._targets_arr: np.ndarray | None = None
        self._closed = False

    # Parsing ------------------------------------------------------------

    def parse_row(self, line: str) -> ParsedRow | None:
        """Parse one delimited line, returning ``None`` for malformed input."""
        cfg = self.config
        cells = line.split(cfg.delimiter)
        if len(cells) <= cfg.max_column:
            return None
        try:
            target = float(cells[cfg.target_column])
            features = np.array([float(cells[c]) for c in cfg.feature_columns], dtype=np.float64)
            logged_score = None
            if cfg.score_column is not None:
                logged_score = float(cells[cfg.score_column])
        except ValueError:
            return None
        if not math.isfinite(target):
            return None
        return ParsedRow(features=features, target=target, logged_score=logged_score)

    # Storage ------------------------------------------------------------

    @property
    def num_examples(self) -> int:
        return len(self._targets)

    @property
    def closed(self) -> bool:
        return self._closed

    def add_vector(self, features: np.ndarray, target: float) -> bool:
        """Append one example. Returns ``False`` once the training cap is reached."""
        if self._closed:
            raise RuntimeError("DataSet is closed")
        if 0 <= self._capacity <= len(self._targets):
            return False
        row = np.asarray(features, dtype=np.float64)
        if row.shape != (self.num_features,):
            raise ValueError(f"expected {self.num_features} features, got shape {row.shape}")
        if self._bucket_edges is None:
            self._raw_rows.append(row.copy())
            self._targets.append(float(target))
            if len(self._raw_rows) >= self._bucketing_size:
                self._bucketize()
        else:
            self._binned_rows.append(apply_buckets(row, self._bucket_edges, self._bin_dtype)[0])
            self._targets.append(float(target))
        return True

    def _bucketize(self) -> None:
        raw = np.vstack(self._raw_rows) if self._raw_rows else np.empty((0, self.num_features))
        self._bucket_edges = compute_bucket_edges(raw, self.config.max_buckets)
        if raw.shape[0]:
            self._binned_rows.extend(apply_buckets(raw, self._bucket_edges, self._bin_dtype))
        self._raw_rows = []
        logger.info(
            "computed bucket edges from %d examples (max %d buckets per feature)",
            raw.shape[0],
            self.config.max_buckets,
        )

    def close(self) -> None:
        """Finish bucketization and freeze the dataset for training."""
        if self._closed:
            return
        if self._bucket_edges is None:
            self._bucketize()
        if self._binned_rows:
            self._bins = np.vstack(self._binned_rows).astype(self._bin_dtype, copy=False)
        else:
            self._bins = np.empty((0, self.num_features), dtype=self._bin_dtype)
        self._binned_rows = []
        self._targets_arr = np.asarray(self._targets, dtype=np.float64)
        self._closed = True

    def _require_closed(self) -> None:
        if not self._closed:
            raise RuntimeError("DataSet must be closed before it is read")

    @property
    def bins(self) -> np.ndarray:
        self._require_closed()
        assert self._bins is not None
        return self._bins

    @property
    def targets(self) -> np.ndarray:
        self._require_closed()
        assert self._targets_arr is not None
        return self._targets_arr

    @property
    def bucket_edges(self) -> list[np.ndarray]:
        self._require_closed()
        assert self._bucket_edges is not None
        return self._bucket_edges

    @property
    def num_buckets(self) -> int:
        """Upper bound on the bucket ids stored for any feature."""
        return self.config.max_buckets

    def bucket_threshold(self, feature: int, bucket: int) -> float:
        """Raw threshold equivalent to the bucket split ``bucket_id <= bucket``."""
        return float(self.bucket_edges[feature][bucket])
