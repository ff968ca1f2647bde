"""Model structures and inference utilities for gbmtrain."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Sequence

import numpy as np


@dataclass(slots=True)
class TreeNode:
    """Single node of a regression tree over raw feature values."""

    feature: int = -1
    threshold: float = 0.0
    left: int = -1
    right: int = -1
    value: float = 0.0
    is_leaf: bool = True


@dataclass
class Tree:
    """Regression tree stored as a flat node list rooted at index 0.

    Rows with ``features[node.feature] <= node.threshold`` go left. Leaf values
    already include shrinkage, so a tree's output is added to the ensemble
    score as is.
    """

    nodes: List[TreeNode] = field(default_factory=lambda: [TreeNode()])

    @classmethod
    def constant(cls, value: float) -> "Tree":
        return cls(nodes=[TreeNode(value=float(value))])

    def evaluate(self, features: Sequence[float] | np.ndarray) -> float:
        """Score a single feature vector."""
        node = self.nodes[0]
        while not node.is_leaf:
            if features[node.feature] <= node.threshold:
                node = self.nodes[node.left]
            else:
                node = self.nodes[node.right]
        return node.value

    def predict(self, X: np.ndarray) -> np.ndarray:
        """Vectorised routing for a 2D matrix of raw features."""
        X_arr = np.asarray(X, dtype=np.float64)
        n_rows = X_arr.shape[0]
        out = np.zeros(n_rows, dtype=np.float64)
        if n_rows == 0:
            return out

        feature = np.array([n.feature for n in self.nodes], dtype=np.int64)
        threshold = np.array([n.threshold for n in self.nodes], dtype=np.float64)
        left = np.array([n.left for n in self.nodes], dtype=np.int64)
        right = np.array([n.right for n in self.nodes], dtype=np.int64)
        value = np.array([n.value for n in self.nodes], dtype=np.float64)
        is_leaf = np.array([n.is_leaf for n in self.nodes], dtype=bool)

        node_idx = np.zeros(n_rows, dtype=np.int64)
        active = np.arange(n_rows, dtype=np.int64)
        while active.size > 0:
            nodes = node_idx[active]
            leaf_mask = is_leaf[nodes]
            if leaf_mask.any():
                out[active[leaf_mask]] = value[nodes[leaf_mask]]
                active = active[~leaf_mask]
                nodes = nodes[~leaf_mask]
                if active.size == 0:
                    break
            row_feat = X_arr[active, feature[nodes]]
            go_left = row_feat <= threshold[nodes]
            node_idx[active] = np.where(go_left, left[nodes], right[nodes])
        return out

    def to_list(self) -> List[Dict[str, object]]:
        return [
            {
                "feature": node.feature,
                "threshold": node.threshold,
                "left": node.left,
                "right": node.right,
                "value": node.value,
                "is_leaf": node.is_leaf,
            }
            for node in self.nodes
        ]

    @classmethod
    def from_list(cls, payload: Sequence[Dict[str, object]]) -> "Tree":
        nodes = [
            TreeNode(
                feature=int(node["feature"]),
                threshold=float(node["threshold"]),
                left=int(node["left"]),
                right=int(node["right"]),
                value=float(node["value"]),
                is_leaf=bool(node["is_leaf"]),
            )
            for node in payload
        ]
        if not nodes:
            raise ValueError("tree payload has no nodes")
        for idx, node in enumerate(nodes):
            if node.is_leaf:
                continue
            # children always follow their parent, which also rules out cycles
            if not (idx < node.left < len(nodes) and idx < node.right < len(nodes)):
                raise ValueError(f"node {idx} has child index outside the tree")
            if node.feature < 0:
                raise ValueError(f"node {idx} splits on negative feature {node.feature}")
        return cls(nodes=nodes)


class Ensemble:
    """Ordered sequence of trees whose outputs are summed."""

    def __init__(self, trees: Sequence[Tree]) -> None:
        self.trees: List[Tree] = list(trees)

    def __len__(self) -> int:
        return len(self.trees)

    def truncate(self, num_trees: int) -> "Ensemble":
        """Return the prefix ensemble made of the first ``num_trees`` trees."""
        if not 0 <= num_trees <= len(self.trees):
            raise ValueError(f"num_trees must lie in [0, {len(self.trees)}]")
        return Ensemble(self.trees[:num_trees])

    def predict_full(self, features: Sequence[float] | np.ndarray) -> float:
        score = 0.0
        for tree in self.trees:
            score += tree.evaluate(features)
        return score

    def predict_prefixes(self, features: Sequence[float] | np.ndarray) -> np.ndarray:
        """Scores of every prefix ensemble; entry ``k - 1`` covers the first ``k`` trees."""
        scores = np.empty(len(self.trees), dtype=np.float64)
        score = 0.0
        for i, tree in enumerate(self.trees):
            score += tree.evaluate(features)
            scores[i] = score
        return scores

    def predict(self, X: np.ndarray) -> np.ndarray:
        """Score every row of a 2D raw feature matrix."""
        X_arr = np.asarray(X, dtype=np.float64)
        if X_arr.ndim != 2:
            raise ValueError("X must be 2D")
        preds = np.zeros(X_arr.shape[0], dtype=np.float64)
        for tree in self.trees:
            preds += tree.predict(X_arr)
        return preds

    def to_dict(self) -> Dict[str, object]:
        return {"trees": [tree.to_list() for tree in self.trees]}

    @classmethod
    def from_dict(cls, payload: Dict[str, object]) -> "Ensemble":
        """Create an ensemble from ``payload`` produced by :meth:`to_dict`."""
        tree_payloads = payload["trees"]
        if not isinstance(tree_payloads, list):
            raise ValueError("'trees' must be a list")
        return cls([Tree.from_list(nodes) for nodes in tree_payloads])
