"""Chunked, optionally parallel loading of training files into a :class:`DataSet`."""

from __future__ import annotations

import logging
from typing import Callable, Iterable, List

import numpy as np

from .concurrency import CounterMonitor, WorkerPool
from .dataset import DataSet, ParsedRow

__all__ = ["CHUNK_SIZE", "DataChunk", "merge_chunks", "read_into_data_chunks"]

logger = logging.getLogger(__name__)

CHUNK_SIZE = 2500  # lines parsed by one chunk

RowParser = Callable[[str], ParsedRow | None]


class DataChunk:
    """Batch of raw lines parsed as one unit of work.

    A chunk is filled by the loading thread, parsed exactly once (inline or by
    a single pool worker) and then only read while it is merged.
    """

    def __init__(
        self,
        row_parser: RowParser,
        num_features: int,
        monitor: CounterMonitor | None = None,
    ) -> None:
        self._row_parser = row_parser
        self._num_features = num_features
        self._monitor = monitor
        self._lines: List[str] = []
        self._feature_vectors: List[np.ndarray] = []
        self._targets: List[float] = []
        self._parsed = False

    def add_line(self, line: str) -> bool:
        if not line:
            return False
        self._lines.append(line)
        return True

    def parse_lines(self) -> None:
        if self._parsed:
            raise RuntimeError("DataChunk has already been parsed")
        self._parsed = True
        for line in self._lines:
            row = self._row_parser(line)
            if row is None or row.features.shape != (self._num_features,):
                continue
            self._feature_vectors.append(row.features)
            self._targets.append(row.target)

    def run(self) -> None:
        try:
            self.parse_lines()
        finally:
            if self._monitor is not None:
                self._monitor.decrement()

    @property
    def feature_vectors(self) -> List[np.ndarray]:
        return self._feature_vectors

    @property
    def targets(self) -> List[float]:
        return self._targets

    @property
    def line_count(self) -> int:
        return len(self._lines)

    @property
    def size(self) -> int:
        return len(self._feature_vectors)

    @property
    def num_dropped(self) -> int:
        """Lines rejected by the row parser (zero before parsing)."""
        return self.line_count - self.size if self._parsed else 0

    def add_to_dataset(self, dataset: DataSet) -> int:
        """Append parsed rows in order; stop at the first refusal.

        Returns the number of rows accepted, which is short of :attr:`size`
        when the dataset ran out of capacity.
        """
        if len(self._feature_vectors) != len(self._targets):
            raise RuntimeError("feature vectors and targets must be the same size")
        for i, (fvec, target) in enumerate(zip(self._feature_vectors, self._targets)):
            if not dataset.add_vector(fvec, target):
                return i
        return len(self._feature_vectors)


def read_into_data_chunks(
    stream: Iterable[str],
    chunk_size: int,
    dataset: DataSet,
    pool: WorkerPool | None = None,
) -> list[DataChunk]:
    """Split ``stream`` into chunks of ``chunk_size`` lines and parse them.

    Chunks are parsed on ``pool`` when it has workers, otherwise inline. The
    returned list is always in stream order.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")

    monitor = CounterMonitor(0)
    chunks: list[DataChunk] = []
    current = DataChunk(dataset.parse_row, dataset.num_features, monitor)
    for line in stream:
        current.add_line(line.rstrip("\r\n"))
        if current.line_count >= chunk_size:
            chunks.append(current)
            current = DataChunk(dataset.parse_row, dataset.num_features, monitor)
    if current.line_count > 0:
        chunks.append(current)

    if pool is not None and pool.num_workers > 0 and chunks:
        monitor.init(len(chunks))
        futures = [pool.add(chunk) for chunk in chunks]
        monitor.wait()
        for future in futures:
            # re-raise anything a worker hit while parsing
            future.result()
    else:
        for chunk in chunks:
            chunk.parse_lines()

    dropped = sum(chunk.num_dropped for chunk in chunks)
    if dropped:
        logger.info(
            "dropped %d malformed lines out of %d",
            dropped,
            sum(chunk.line_count for chunk in chunks),
        )
    return chunks


def merge_chunks(chunks: Iterable[DataChunk], dataset: DataSet) -> int:
    """Merge parsed chunks into ``dataset`` in order on the calling thread.

    Stops at the first chunk the dataset could not take completely and
    returns the total number of rows merged.
    """
    merged = 0
    for chunk in chunks:
        added = chunk.add_to_dataset(dataset)
        merged += added
        if added < chunk.size:
            logger.info(
                "dataset is full after %d examples; ignoring the remaining rows",
                dataset.num_examples,
            )
            break
    return merged
