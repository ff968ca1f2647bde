"""Command-line driver: load training data, train, dump the model, evaluate."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from contextlib import ExitStack
from time import perf_counter
from typing import Sequence

from .booster import Gbm
from .chunks import CHUNK_SIZE, merge_chunks, read_into_data_chunks
from .concurrency import WorkerPool
from .config import ConfigError, GbmConfig, load_config
from .dataset import DataSet
from .evaluate import Evaluator
from .loss import make_loss_function
from .model import Ensemble
from .predictor import GbmPredictor, dump_fimps, dump_model

logger = logging.getLogger("gbmtrain")


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="gbmtrain", description="Gbm training")
    ap.add_argument("--num-examples-for-bucketing", type=int, default=1024 * 1024 * 5,
                    help="number of data points used for data set compression")
    ap.add_argument("--config-file", type=str, default="",
                    help="file contains the configurations")
    ap.add_argument("--training-files", type=str, default="",
                    help="comma separated list of data files for training")
    ap.add_argument("--testing-files", type=str, default="",
                    help="comma separated list of data files for testing ('stdin' reads standard input)")
    ap.add_argument("--model-file", type=str, default="",
                    help="file contains the whole model")
    ap.add_argument("--eval-only", action="store_true",
                    help="eval only mode")
    ap.add_argument("--find-optimal-num-trees", action="store_true",
                    help="report test loss for every ensemble prefix to trim number of trees")
    ap.add_argument("--num-examples-for-training", type=int, default=-1,
                    help="number of data points used for training, -1 will use all available")
    ap.add_argument("--num-threads", type=int, default=os.cpu_count() or 0,
                    help="worker threads used to parse training data; 0 parses inline")
    ap.add_argument("--chunk-size", type=int, default=CHUNK_SIZE,
                    help="number of lines each data loading chunk may parse")
    ap.add_argument("--log-level", type=str, default="INFO",
                    choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return ap


def _split_files(value: str) -> list[str]:
    return [name.strip() for name in value.split(",") if name.strip()]


def _check_readable(files: Sequence[str], kind: str) -> None:
    for name in files:
        if name == "stdin":
            continue
        if not os.path.isfile(name) or not os.access(name, os.R_OK):
            raise SystemExit(f"cannot read {kind} file: {name}")


def load_training_data(
    files: Sequence[str],
    dataset: DataSet,
    chunk_size: int,
    pool: WorkerPool | None,
) -> None:
    start = perf_counter()
    for name in files:
        logger.info("loading data from: %s", name)
        with open(name) as fs:
            chunks = read_into_data_chunks(fs, chunk_size, dataset, pool)
        parsed = sum(chunk.size for chunk in chunks)
        merged = merge_chunks(chunks, dataset)
        logger.info("read %d examples in %.1f sec", dataset.num_examples, perf_counter() - start)
        if merged < parsed:
            break


def train(args: argparse.Namespace, cfg: GbmConfig, dataset: DataSet, pool: WorkerPool | None) -> Ensemble:
    try:
        load_training_data(_split_files(args.training_files), dataset, args.chunk_size, pool)
    except OSError as exc:
        raise SystemExit(f"failed to read training data: {exc}") from exc
    dataset.close()
    if dataset.num_examples == 0:
        raise SystemExit("no usable training examples were loaded")

    engine = Gbm(cfg, make_loss_function(cfg.loss_function))
    ensemble = engine.fit(dataset)

    dump_fimps(args.model_file + ".fimps", cfg, engine.feature_importances)
    dump_model(args.model_file, ensemble)
    logger.info("wrote %d trees to %s", len(ensemble), args.model_file)
    return ensemble


def evaluate(args: argparse.Namespace, cfg: GbmConfig, dataset: DataSet, ensemble: Ensemble) -> None:
    evaluator = Evaluator(
        ensemble,
        dataset.parse_row,
        loss_function=cfg.loss_function,
        find_optimal_num_trees=args.find_optimal_num_trees,
    )
    for name in _split_files(args.testing_files):
        logger.info("loading data from: %s", name)
        if name == "stdin":
            evaluator.evaluate_lines(sys.stdin)
            continue
        try:
            with open(name) as fs:
                evaluator.evaluate_lines(fs)
        except OSError as exc:
            raise SystemExit(f"failed to read testing data: {exc}") from exc

    report = evaluator.report()
    for line in report.format_lines():
        print(line)
    logger.info("test loss reduction: %r on num examples: %d", report.reduction, report.num_examples)


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info(" ".join(sys.argv if argv is None else ["gbmtrain", *argv]))

    if not args.model_file:
        raise SystemExit("--model-file is required")
    if args.chunk_size <= 0:
        raise SystemExit("--chunk-size must be positive")
    if args.num_threads < 0:
        raise SystemExit("--num-threads must be non-negative")

    logger.info("loading config")
    try:
        cfg = load_config(args.config_file)
        make_loss_function(cfg.loss_function)
    except (OSError, ConfigError) as exc:
        raise SystemExit(f"failed to load config {args.config_file!r}: {exc}") from exc

    try:
        dataset = DataSet(cfg, args.num_examples_for_bucketing, args.num_examples_for_training)
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc

    if not args.eval_only:
        if not _split_files(args.training_files):
            raise SystemExit("no --training-files given (use --eval-only to skip training)")
        _check_readable(_split_files(args.training_files), "training")
    _check_readable(_split_files(args.testing_files), "testing")

    with ExitStack() as stack:
        pool = None
        if args.num_threads > 0:
            pool = stack.enter_context(WorkerPool(args.num_threads))

        if not args.eval_only:
            ensemble = train(args, cfg, dataset, pool)
        else:
            logger.info("loading model from %s", args.model_file)
            try:
                ensemble = GbmPredictor.from_json(args.model_file).ensemble
            except (OSError, ValueError) as exc:
                raise SystemExit(f"failed to load model: {exc}") from exc
            logger.info("num trees: %d", len(ensemble))

        if args.testing_files:
            evaluate(args, cfg, dataset, ensemble)
    return 0


if __name__ == "__main__":
    sys.exit(main())
