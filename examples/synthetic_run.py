"""Train and evaluate gbmtrain end to end on synthetic tab-separated files."""

from __future__ import annotations

import json
import sys
import tempfile
from pathlib import Path

import numpy as np

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from gbmtrain.cli import main

N_TRAIN = 20000
N_TEST = 5000
N_FEATURES = 10
SEED = 123


def write_rows(path: Path, n_rows: int, rng: np.random.Generator) -> None:
    X = rng.normal(size=(n_rows, N_FEATURES))
    y = np.sin(X[:, 0]) * 2.0 + X[:, 1] * X[:, 2] + 0.1 * rng.standard_normal(n_rows)
    with path.open("w") as fs:
        for row, target in zip(X, y):
            fs.write("\t".join(f"{v:.6f}" for v in (target, *row)) + "\n")


if __name__ == "__main__":
    rng = np.random.default_rng(SEED)
    workdir = Path(tempfile.mkdtemp(prefix="gbmtrain-"))
    write_rows(workdir / "train.tsv", N_TRAIN, rng)
    write_rows(workdir / "test.tsv", N_TEST, rng)
    (workdir / "config.json").write_text(
        json.dumps(
            {
                "feature_columns": list(range(1, N_FEATURES + 1)),
                "target_column": 0,
                "num_trees": 50,
                "num_leaves": 16,
                "learning_rate": 0.1,
                "min_leaf_examples": 50,
                "random_state": SEED,
            }
        )
    )
    common = [
        "--config-file", str(workdir / "config.json"),
        "--model-file", str(workdir / "model.json"),
    ]
    main([*common, "--training-files", str(workdir / "train.tsv")])
    main([*common, "--eval-only", "--find-optimal-num-trees", "--testing-files", str(workdir / "test.tsv")])
    print(f"artifacts written to {workdir}")
