"""scikit-learn wrapper for the gbmtrain booster."""

from __future__ import annotations

from typing import Optional

import numpy as np
from sklearn.base import BaseEstimator, RegressorMixin

from .booster import Gbm
from .config import GbmConfig
from .dataset import DataSet
from .loss import make_loss_function
from .model import Ensemble


class GbmRegressor(RegressorMixin, BaseEstimator):
    """scikit-learn compatible estimator training from in-memory arrays."""

    def __init__(
        self,
        *,
        num_trees: int = 100,
        num_leaves: int = 12,
        learning_rate: float = 0.1,
        min_leaf_examples: int = 20,
        example_sampling_rate: float = 1.0,
        feature_sampling_rate: float = 1.0,
        max_buckets: int = 255,
        loss_function: str = "least_squares",
        random_state: Optional[int] = None,
    ) -> None:
        self.num_trees = num_trees
        self.num_leaves = num_leaves
        self.learning_rate = learning_rate
        self.min_leaf_examples = min_leaf_examples
        self.example_sampling_rate = example_sampling_rate
        self.feature_sampling_rate = feature_sampling_rate
        self.max_buckets = max_buckets
        self.loss_function = loss_function
        self.random_state = random_state

    def fit(self, X: np.ndarray, y: np.ndarray) -> "GbmRegressor":
        """Fit the estimator.

        Parameters
        ----------
        X: np.ndarray
            Feature matrix of shape (n_samples, n_features).
        y: np.ndarray
            Targets of shape (n_samples,).
        """
        X_np = np.asarray(X, dtype=np.float64)
        y_np = np.asarray(y, dtype=np.float64)
        if X_np.ndim != 2:
            raise ValueError("X must be 2D")
        if y_np.ndim != 1 or y_np.shape[0] != X_np.shape[0]:
            raise ValueError("y must be 1-D and aligned with X rows")
        n_features = X_np.shape[1]
        config = GbmConfig(
            feature_columns=range(n_features),
            num_trees=self.num_trees,
            num_leaves=self.num_leaves,
            learning_rate=self.learning_rate,
            min_leaf_examples=self.min_leaf_examples,
            example_sampling_rate=self.example_sampling_rate,
            feature_sampling_rate=self.feature_sampling_rate,
            max_buckets=self.max_buckets,
            loss_function=self.loss_function,
            random_state=self.random_state,
        )
        dataset = DataSet(config, num_examples_for_bucketing=max(1, X_np.shape[0]))
        for row, target in zip(X_np, y_np):
            dataset.add_vector(row, float(target))
        dataset.close()

        booster = Gbm(config, make_loss_function(self.loss_function))
        self.ensemble_: Ensemble = booster.fit(dataset)
        self.feature_importances_ = booster.feature_importances
        self.n_features_in_ = n_features
        return self

    def predict(self, X: np.ndarray) -> np.ndarray:
        if not hasattr(self, "ensemble_"):
            raise RuntimeError("Estimator has not been fitted")
        return self.ensemble_.predict(np.asarray(X, dtype=np.float64))
