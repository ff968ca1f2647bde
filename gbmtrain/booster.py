"""Least-squares gradient boosting over a bucketized :class:`DataSet`."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from time import perf_counter
from typing import List, Sequence, Tuple

import numpy as np
import torch

from .config import GbmConfig
from .dataset import DataSet
from .loss import GbmFun
from .model import Ensemble, Tree, TreeNode


class TreeBuilder:
    def __init__(self) -> None:
        self.nodes: List[TreeNode] = [TreeNode()]

    def set_leaf(self, node_id: int, value: float) -> None:
        n = self.nodes[node_id]
        n.value = float(value); n.is_leaf = True
        n.feature = -1; n.threshold = 0.0; n.left = -1; n.right = -1

    def split(self, node_id: int, feature: int, threshold: float) -> Tuple[int, int]:
        n = self.nodes[node_id]
        n.feature = int(feature); n.threshold = float(threshold); n.is_leaf = False
        l = len(self.nodes); r = l + 1
        n.left = l; n.right = r
        self.nodes.append(TreeNode()); self.nodes.append(TreeNode())
        return l, r

    def build(self) -> Tree:
        return Tree(nodes=self.nodes)


@dataclass(slots=True)
class SplitDecision:
    feature: int
    bucket: int
    gain: float


@dataclass(slots=True, eq=False)
class _Leaf:
    node_id: int
    rows: torch.Tensor  # every training row routed here
    sample_rows: torch.Tensor  # rows used for split finding and leaf values
    split: SplitDecision | None = None


class Gbm:
    """Gradient booster growing best-first trees on bucket histograms."""

    def __init__(self, config: GbmConfig, fun: GbmFun) -> None:
        self.config = config
        self.fun = fun
        self._rng = torch.Generator(device="cpu")
        if config.random_state is not None:
            self._rng.manual_seed(int(config.random_state))
        self._logger = logging.getLogger(__name__)

        self._feature_importances: np.ndarray | None = None
        self._round_metrics: list[dict[str, float]] = []

    # Public -------------------------------------------------------------

    @property
    def feature_importances(self) -> np.ndarray:
        """Total split gain per feature from the most recent ``fit`` call."""
        if self._feature_importances is None:
            raise RuntimeError("Model must be fitted first")
        return self._feature_importances

    @property
    def round_metrics(self) -> Sequence[dict[str, float]]:
        return self._round_metrics

    def fit(self, dataset: DataSet) -> Ensemble:
        if not dataset.closed:
            raise RuntimeError("DataSet must be closed before training")
        N = dataset.num_examples
        F = dataset.num_features
        if N == 0:
            raise ValueError("cannot train on an empty dataset")

        B = dataset.num_buckets
        bins = torch.from_numpy(dataset.bins.astype(np.int64))
        y = torch.from_numpy(dataset.targets)
        cfg = self.config

        self._round_metrics = []
        importances = np.zeros(F, dtype=np.float64)

        with torch.no_grad():
            f0 = self.fun.initial_prediction(y)
            trees: list[Tree] = [Tree.constant(f0)]
            preds = torch.full((N,), f0, dtype=torch.float64)

            for round_idx in range(cfg.num_trees):
                round_start = perf_counter()
                residuals = self.fun.negative_gradient(y, preds)
                sample_mask = self._sample_rows(N)
                feat_subset = self._sample_features(F)

                builder = TreeBuilder()
                all_rows = torch.arange(N, dtype=torch.int64)
                root = _Leaf(node_id=0, rows=all_rows, sample_rows=all_rows[sample_mask])
                builder.set_leaf(0, self._leaf_value(residuals, root.sample_rows))
                root.split = self._find_best_split(bins, residuals, root.sample_rows, feat_subset, B)
                leaves = [root]

                while len(leaves) < cfg.num_leaves:
                    candidates = [leaf for leaf in leaves if leaf.split is not None]
                    if not candidates:
                        break
                    best = max(candidates, key=lambda leaf: leaf.split.gain)
                    dec = best.split
                    threshold = dataset.bucket_threshold(dec.feature, dec.bucket)
                    left_id, right_id = builder.split(best.node_id, dec.feature, threshold)
                    importances[dec.feature] += dec.gain

                    go_left = bins[best.rows, dec.feature] <= dec.bucket
                    go_left_sample = bins[best.sample_rows, dec.feature] <= dec.bucket
                    children = [
                        _Leaf(left_id, best.rows[go_left], best.sample_rows[go_left_sample]),
                        _Leaf(right_id, best.rows[~go_left], best.sample_rows[~go_left_sample]),
                    ]
                    leaves.remove(best)
                    for child in children:
                        builder.set_leaf(child.node_id, self._leaf_value(residuals, child.sample_rows))
                        child.split = self._find_best_split(
                            bins, residuals, child.sample_rows, feat_subset, B
                        )
                        leaves.append(child)

                tree = builder.build()
                for leaf in leaves:
                    if leaf.rows.numel() > 0:
                        preds[leaf.rows] += tree.nodes[leaf.node_id].value
                trees.append(tree)

                train_loss = float(((y - preds) ** 2).mean().item())
                metrics = {
                    "tree": round_idx + 1,
                    "leaves": len(leaves),
                    "train_loss": train_loss,
                    "round_seconds": perf_counter() - round_start,
                }
                self._round_metrics.append(metrics)
                if self._logger.isEnabledFor(logging.INFO):
                    self._logger.info(json.dumps(metrics))

        self._feature_importances = importances
        return Ensemble(trees)

    # Internals ----------------------------------------------------------

    def _sample_rows(self, num_rows: int) -> torch.Tensor:
        rate = self.config.example_sampling_rate
        if rate >= 1.0:
            return torch.ones(num_rows, dtype=torch.bool)
        return torch.rand(num_rows, generator=self._rng, dtype=torch.float64) < rate

    def _sample_features(self, num_features: int) -> torch.Tensor:
        k = max(1, int(round(num_features * self.config.feature_sampling_rate)))
        if k >= num_features:
            return torch.arange(num_features, dtype=torch.int64)
        perm = torch.randperm(num_features, generator=self._rng)
        return torch.sort(perm[:k]).values

    def _leaf_value(self, residuals: torch.Tensor, sample_rows: torch.Tensor) -> float:
        if sample_rows.numel() == 0:
            return 0.0
        return self.config.learning_rate * self.fun.leaf_value(residuals[sample_rows])

    @staticmethod
    def _compute_histograms(
        node_bins: torch.Tensor,
        residuals: torch.Tensor,
        num_buckets: int,
    ) -> tuple[torch.Tensor, torch.Tensor]:
        """Per-feature bucket counts and residual sums, shape ``[F, B]`` each."""
        n_rows, n_feats = node_bins.shape
        offsets = torch.arange(n_feats, dtype=torch.int64) * num_buckets
        flat = (node_bins + offsets).reshape(-1)
        weights = residuals.unsqueeze(1).expand(n_rows, n_feats).reshape(-1)
        size = n_feats * num_buckets
        counts = torch.bincount(flat, minlength=size).reshape(n_feats, num_buckets)
        sums = torch.bincount(flat, weights=weights, minlength=size).reshape(n_feats, num_buckets)
        return counts.to(torch.float64), sums.to(torch.float64)

    def _find_best_split(
        self,
        bins: torch.Tensor,
        residuals: torch.Tensor,
        sample_rows: torch.Tensor,
        feat_subset: torch.Tensor,
        num_buckets: int,
    ) -> SplitDecision | None:
        min_leaf = self.config.min_leaf_examples
        n = int(sample_rows.numel())
        if n < 2 * min_leaf:
            return None

        node_bins = bins[sample_rows][:, feat_subset]
        node_res = residuals[sample_rows]
        counts, sums = self._compute_histograms(node_bins, node_res, num_buckets)

        left_count = counts[:, :-1].cumsum(dim=1)
        left_sum = sums[:, :-1].cumsum(dim=1)
        total_sum = node_res.sum()
        right_count = n - left_count
        right_sum = total_sum - left_sum

        valid = (left_count >= min_leaf) & (right_count >= min_leaf)
        gain = (
            left_sum**2 / left_count.clamp(min=1.0)
            + right_sum**2 / right_count.clamp(min=1.0)
            - total_sum**2 / n
        )
        gain = torch.where(valid, gain, torch.full_like(gain, float("-inf")))

        best = int(torch.argmax(gain).item())
        feat_pos, bucket = divmod(best, num_buckets - 1)
        best_gain = float(gain[feat_pos, bucket].item())
        if not best_gain > 0.0:
            return None
        return SplitDecision(feature=int(feat_subset[feat_pos].item()), bucket=int(bucket), gain=best_gain)
