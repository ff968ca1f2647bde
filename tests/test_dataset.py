import numpy as np
import pytest

from gbmtrain.config import GbmConfig
from gbmtrain.dataset import DataSet, apply_buckets, compute_bucket_edges


def make_config(**overrides) -> GbmConfig:
    params = dict(feature_columns=[2, 3], target_column=0, score_column=1, max_buckets=8)
    params.update(overrides)
    return GbmConfig(**params)


def test_parse_row_reads_columns():
    ds = DataSet(make_config())
    row = ds.parse_row("1.5\t0.25\t3\t-4")
    assert row is not None
    assert row.target == 1.5
    assert row.logged_score == 0.25
    np.testing.assert_array_equal(row.features, np.array([3.0, -4.0]))


@pytest.mark.parametrize("line", ["", "1\t2\t3", "a\t1\t2\t3", "1\t2\tx\t3", "nan\t1\t2\t3", "1,2,3,4"])
def test_parse_row_rejects_malformed(line):
    assert DataSet(make_config()).parse_row(line) is None


def test_parse_row_without_score_column():
    ds = DataSet(make_config(score_column=None, feature_columns=[1]))
    row = ds.parse_row("2\t7")
    assert row is not None
    assert row.logged_score is None


def test_add_vector_respects_training_cap():
    ds = DataSet(make_config(), num_examples_for_training=3)
    accepted = [ds.add_vector(np.array([float(i), 0.0]), float(i)) for i in range(5)]
    assert accepted == [True, True, True, False, False]
    assert ds.num_examples == 3


def test_add_vector_rejects_wrong_width():
    ds = DataSet(make_config())
    with pytest.raises(ValueError):
        ds.add_vector(np.zeros(3), 1.0)


def test_bucketing_switches_after_sample():
    rng = np.random.default_rng(0)
    X = rng.normal(size=(50, 2))
    ds = DataSet(make_config(), num_examples_for_bucketing=20)
    for row in X:
        ds.add_vector(row, 0.0)
    ds.close()
    assert ds.bins.shape == (50, 2)
    assert ds.bins.dtype == np.uint8
    assert int(ds.bins.max()) < 8
    expected_edges = compute_bucket_edges(X[:20], 8)
    for got, want in zip(ds.bucket_edges, expected_edges):
        np.testing.assert_array_equal(got, want)
    np.testing.assert_array_equal(ds.bins, apply_buckets(X, expected_edges, np.uint8))


def test_bucket_threshold_matches_bucket_order():
    rng = np.random.default_rng(1)
    X = rng.normal(size=(200, 2))
    ds = DataSet(make_config())
    for row in X:
        ds.add_vector(row, 0.0)
    ds.close()
    for feature in range(2):
        for bucket in range(len(ds.bucket_edges[feature])):
            threshold = ds.bucket_threshold(feature, bucket)
            np.testing.assert_array_equal(X[:, feature] <= threshold, ds.bins[:, feature] <= bucket)


def test_closed_dataset_is_frozen():
    ds = DataSet(make_config())
    with pytest.raises(RuntimeError):
        _ = ds.bins
    ds.add_vector(np.array([1.0, 2.0]), 3.0)
    ds.close()
    assert ds.num_examples == 1
    np.testing.assert_array_equal(ds.targets, np.array([3.0]))
    with pytest.raises(RuntimeError):
        ds.add_vector(np.array([1.0, 2.0]), 3.0)


def test_wide_bucket_storage():
    ds = DataSet(make_config(max_buckets=1000))
    ds.add_vector(np.array([1.0, 2.0]), 0.0)
    ds.close()
    assert ds.bins.dtype == np.uint16
