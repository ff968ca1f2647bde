"""Loss functions: training gradients plus running evaluation statistics."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict

from .config import ConfigError

__all__ = ["GbmFun", "LeastSquareFun", "LOSS_FUNCTIONS", "make_loss_function"]


class GbmFun(ABC):
    """Loss family used by boosting and by test-set evaluation.

    The training hooks accept NumPy arrays or torch tensors. The evaluation
    side keeps running totals that only ever grow; use a fresh instance per
    evaluation run.
    """

    def __init__(self) -> None:
        self._num_examples = 0
        self._sum_loss = 0.0
        self._sum_y = 0.0
        self._sum_y2 = 0.0

    # Training -----------------------------------------------------------

    @abstractmethod
    def initial_prediction(self, y: Any) -> float:
        """Constant score of the first tree."""

    @abstractmethod
    def negative_gradient(self, y: Any, f: Any) -> Any:
        """Pseudo-residuals fitted by the next tree."""

    @abstractmethod
    def leaf_value(self, residuals: Any) -> float:
        """Unshrunk value of a leaf holding ``residuals``."""

    @abstractmethod
    def example_loss(self, y: float, f: float) -> float: ...

    # Evaluation ---------------------------------------------------------

    def accumulate_example_loss(self, y: float, f: float) -> None:
        self._num_examples += 1
        self._sum_y += y
        self._sum_y2 += y * y
        self._sum_loss += self.example_loss(y, f)

    @property
    def num_examples(self) -> int:
        return self._num_examples

    @property
    def loss(self) -> float:
        return self._sum_loss

    @property
    def reduction(self) -> float:
        """Fraction of the constant-mean baseline loss removed by the model."""
        baseline = self.baseline_loss
        if baseline <= 0.0:
            return 0.0
        return 1.0 - self._sum_loss / baseline

    @property
    @abstractmethod
    def baseline_loss(self) -> float:
        """Loss of the best constant predictor on the accumulated targets."""


class LeastSquareFun(GbmFun):
    """Squared error."""

    def initial_prediction(self, y: Any) -> float:
        return float(y.mean())

    def negative_gradient(self, y: Any, f: Any) -> Any:
        return y - f

    def leaf_value(self, residuals: Any) -> float:
        return float(residuals.mean())

    def example_loss(self, y: float, f: float) -> float:
        diff = y - f
        return diff * diff

    @property
    def baseline_loss(self) -> float:
        if self._num_examples == 0:
            return 0.0
        return self._sum_y2 - self._sum_y * self._sum_y / self._num_examples


LOSS_FUNCTIONS: Dict[str, Callable[[], GbmFun]] = {
    "least_squares": LeastSquareFun,
}


def make_loss_function(name: str) -> GbmFun:
    """Return a new, independent loss function instance."""
    try:
        factory = LOSS_FUNCTIONS[name]
    except KeyError:
        raise ConfigError(
            f"unknown loss_function {name!r}; expected one of {sorted(LOSS_FUNCTIONS)}"
        ) from None
    return factory()
