import io

import numpy as np
import pytest

from gbmtrain.chunks import DataChunk, merge_chunks, read_into_data_chunks
from gbmtrain.concurrency import WorkerPool
from gbmtrain.config import GbmConfig
from gbmtrain.dataset import DataSet


def make_config() -> GbmConfig:
    return GbmConfig(feature_columns=[1, 2, 3], target_column=0, max_buckets=16)


def make_lines(n_rows: int, seed: int = 0, malformed_every: int = 0) -> list[str]:
    rng = np.random.default_rng(seed)
    X = rng.normal(size=(n_rows, 3))
    y = X @ np.array([1.0, -2.0, 0.5]) + 0.1 * rng.standard_normal(n_rows)
    lines = []
    for i in range(n_rows):
        if malformed_every and i % malformed_every == 0:
            lines.append(f"{y[i]}\tnot-a-number\t{X[i, 1]}\t{X[i, 2]}\n")
        else:
            lines.append("\t".join(repr(float(v)) for v in (y[i], *X[i])) + "\n")
    return lines


def test_add_line_rejects_empty():
    ds = DataSet(make_config())
    chunk = DataChunk(ds.parse_row, ds.num_features)
    assert chunk.add_line("") is False
    assert chunk.line_count == 0
    assert chunk.add_line("1\t2\t3\t4") is True
    assert chunk.line_count == 1


def test_parse_drops_malformed_lines():
    ds = DataSet(make_config())
    chunk = DataChunk(ds.parse_row, ds.num_features)
    for line in ["1\t2\t3\t4", "oops", "2\t1\tx\t3", "3\t1\t2\t3"]:
        chunk.add_line(line)
    chunk.parse_lines()
    assert chunk.size == 2
    assert len(chunk.feature_vectors) == len(chunk.targets) == 2
    assert chunk.targets == [1.0, 3.0]
    assert chunk.num_dropped == 2


def test_parse_is_single_shot():
    ds = DataSet(make_config())
    chunk = DataChunk(ds.parse_row, ds.num_features)
    chunk.add_line("1\t2\t3\t4")
    chunk.parse_lines()
    with pytest.raises(RuntimeError):
        chunk.parse_lines()


def test_chunk_boundaries():
    ds = DataSet(make_config())
    lines = ["1\t2\t3\t4\n"] * 6000
    chunks = read_into_data_chunks(io.StringIO("".join(lines)), 2500, ds)
    assert [c.line_count for c in chunks] == [2500, 2500, 1000]


def test_blank_lines_are_not_buffered():
    ds = DataSet(make_config())
    stream = io.StringIO("1\t2\t3\t4\n\n\r\n2\t2\t3\t4\n")
    chunks = read_into_data_chunks(stream, 10, ds)
    assert [c.line_count for c in chunks] == [2]


def test_empty_stream_yields_no_chunks():
    ds = DataSet(make_config())
    with WorkerPool(2) as pool:
        assert read_into_data_chunks(io.StringIO(""), 10, ds, pool) == []


def test_merge_short_circuit():
    ds = DataSet(make_config(), num_examples_for_training=2)
    chunk = DataChunk(ds.parse_row, ds.num_features)
    for i in range(5):
        chunk.add_line(f"{i}\t1\t2\t3")
    chunk.parse_lines()
    assert chunk.size == 5
    assert chunk.add_to_dataset(ds) == 2
    assert ds.num_examples == 2


def test_merge_chunks_stops_at_capacity():
    ds = DataSet(make_config(), num_examples_for_training=25)
    chunks = read_into_data_chunks(io.StringIO("".join(make_lines(100))), 10, ds)
    assert merge_chunks(chunks, ds) == 25
    assert ds.num_examples == 25


def _load(lines: list[str], num_workers: int) -> DataSet:
    ds = DataSet(make_config(), num_examples_for_bucketing=300)
    stream = io.StringIO("".join(lines))
    if num_workers == 0:
        chunks = read_into_data_chunks(stream, 97, ds)
    else:
        with WorkerPool(num_workers) as pool:
            chunks = read_into_data_chunks(stream, 97, ds, pool)
    merge_chunks(chunks, ds)
    ds.close()
    return ds


def test_ingestion_is_deterministic_across_worker_counts():
    lines = make_lines(2000, seed=3, malformed_every=37)
    datasets = [_load(lines, workers) for workers in (0, 1, 8)]
    reference = datasets[0]
    assert reference.num_examples == 2000 - len(range(0, 2000, 37))
    for ds in datasets[1:]:
        assert ds.num_examples == reference.num_examples
        assert ds.bins.tobytes() == reference.bins.tobytes()
        assert ds.targets.tobytes() == reference.targets.tobytes()
        for a, b in zip(ds.bucket_edges, reference.bucket_edges):
            np.testing.assert_array_equal(a, b)


class _ExplodingDataSet:
    num_features = 1

    def parse_row(self, line):
        raise KeyError(line)


def test_worker_errors_propagate():
    with WorkerPool(2) as pool:
        with pytest.raises(KeyError):
            read_into_data_chunks(io.StringIO("a\nb\nc\n"), 1, _ExplodingDataSet(), pool)


def test_dropped_lines_are_logged(caplog):
    ds = DataSet(make_config())
    lines = make_lines(100, malformed_every=10)
    with caplog.at_level("INFO", logger="gbmtrain.chunks"):
        read_into_data_chunks(io.StringIO("".join(lines)), 30, ds)
    assert "dropped 10 malformed lines out of 100" in caplog.text
