import numpy as np
import pytest

from gbmtrain.booster import Gbm
from gbmtrain.config import GbmConfig
from gbmtrain.dataset import DataSet
from gbmtrain.loss import LeastSquareFun


def make_dataset(n_rows: int = 400, n_features: int = 4, seed: int = 42, **cfg_overrides):
    rng = np.random.default_rng(seed)
    X = rng.normal(size=(n_rows, n_features))
    y = 3.0 * X[:, 0] - X[:, 1] ** 2 + 0.1 * rng.standard_normal(n_rows)
    params = dict(
        feature_columns=range(1, n_features + 1),
        num_trees=10,
        num_leaves=6,
        learning_rate=0.3,
        min_leaf_examples=5,
        max_buckets=32,
        random_state=13,
    )
    params.update(cfg_overrides)
    config = GbmConfig(**params)
    ds = DataSet(config, num_examples_for_bucketing=n_rows)
    for row, target in zip(X, y):
        ds.add_vector(row, float(target))
    ds.close()
    return config, ds, X, y


def test_booster_fit_improves_loss():
    config, ds, X, y = make_dataset()
    booster = Gbm(config, LeastSquareFun())
    ensemble = booster.fit(ds)
    assert len(ensemble) == config.num_trees + 1
    preds = ensemble.predict(X)
    baseline_loss = float(np.mean((y - y.mean()) ** 2))
    trained_loss = float(np.mean((y - preds) ** 2))
    assert trained_loss < 0.5 * baseline_loss
    assert len(booster.round_metrics) == config.num_trees
    losses = [m["train_loss"] for m in booster.round_metrics]
    assert losses[-1] < losses[0]


def test_raw_predictions_match_training_scores():
    config, ds, X, y = make_dataset(num_trees=5)
    booster = Gbm(config, LeastSquareFun())
    ensemble = booster.fit(ds)
    preds = ensemble.predict(X)
    # trees split on buckets but predict on raw values
    assert float(np.mean((y - preds) ** 2)) == pytest.approx(booster.round_metrics[-1]["train_loss"])


def test_first_tree_is_mean():
    config, ds, X, y = make_dataset(num_trees=0)
    ensemble = Gbm(config, LeastSquareFun()).fit(ds)
    assert len(ensemble) == 1
    assert ensemble.predict_full(X[0]) == pytest.approx(float(y.mean()))


def test_leaf_budget_respected():
    config, ds, _, _ = make_dataset(num_leaves=3)
    ensemble = Gbm(config, LeastSquareFun()).fit(ds)
    for tree in ensemble.trees[1:]:
        assert sum(node.is_leaf for node in tree.nodes) <= 3


def test_feature_importances_rank_signal():
    config, ds, _, _ = make_dataset(n_features=5)
    booster = Gbm(config, LeastSquareFun())
    booster.fit(ds)
    fimps = booster.feature_importances
    assert fimps.shape == (5,)
    assert np.all(fimps >= 0)
    assert int(np.argmax(fimps)) == 0


@pytest.mark.parametrize("seed", [3, 7])
def test_sampling_determinism(seed: int):
    kwargs = dict(example_sampling_rate=0.7, feature_sampling_rate=0.5, random_state=seed)
    config, ds, X, _ = make_dataset(**kwargs)
    first = Gbm(config, LeastSquareFun()).fit(ds)
    second = Gbm(config, LeastSquareFun()).fit(ds)
    assert first.to_dict() == second.to_dict()
    np.testing.assert_array_equal(first.predict(X), second.predict(X))


def test_fit_requires_closed_dataset():
    config = GbmConfig(feature_columns=[1])
    ds = DataSet(config)
    with pytest.raises(RuntimeError):
        Gbm(config, LeastSquareFun()).fit(ds)


def test_split_thresholds_are_bucket_edges():
    config, ds, _, _ = make_dataset(num_trees=3)
    ensemble = Gbm(config, LeastSquareFun()).fit(ds)
    internal = [node for tree in ensemble.trees for node in tree.nodes if not node.is_leaf]
    assert internal
    for node in internal:
        edges = ds.bucket_edges[node.feature]
        assert node.threshold in [ds.bucket_threshold(node.feature, b) for b in range(len(edges))]
