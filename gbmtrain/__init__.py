"""gbmtrain: gradient boosted trees with parallel data loading and prefix evaluation."""

from .booster import Gbm
from .config import ConfigError, GbmConfig, load_config
from .dataset import DataSet
from .evaluate import EvaluationReport, Evaluator
from .model import Ensemble, Tree, TreeNode

__all__ = [
    "ConfigError",
    "DataSet",
    "Ensemble",
    "EvaluationReport",
    "Evaluator",
    "Gbm",
    "GbmConfig",
    "Tree",
    "TreeNode",
    "load_config",
]
