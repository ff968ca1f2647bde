"""Streaming evaluation of a trained ensemble on held-out data."""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

from .dataset import ParsedRow
from .loss import GbmFun, make_loss_function
from .model import Ensemble

__all__ = ["EvaluationReport", "Evaluator"]

logger = logging.getLogger(__name__)

SCORE_TOLERANCE = 1e-5


@dataclass
class EvaluationReport:
    """Aggregate statistics of one evaluation run."""

    num_examples: int
    loss: float
    reduction: float
    sum_y: float
    sum_y2: float
    agree_count: int
    num_rejected: int = 0
    prefix_losses: Optional[List[float]] = None

    @property
    def avg_loss(self) -> float:
        if self.num_examples == 0:
            return math.nan
        return self.loss / self.num_examples

    def format_lines(self) -> List[str]:
        lines: List[str] = []
        if self.prefix_losses is not None:
            cells = [str(len(self.prefix_losses))] + [repr(loss) for loss in self.prefix_losses]
            lines.append("Optimal num tree stats:\t" + "\t".join(cells) + "\t")
        lines.append(f"Avg loss on test: {self.avg_loss!r}")
        lines.append(
            "\t".join(
                [
                    str(self.num_examples),
                    repr(self.reduction),
                    repr(self.loss),
                    repr(self.sum_y),
                    repr(self.sum_y2),
                    str(self.agree_count),
                ]
            )
        )
        return lines


class Evaluator:
    """Scores test rows against ``ensemble`` and keeps running loss statistics.

    With ``find_optimal_num_trees`` every prefix ensemble of size ``1..N`` gets
    its own accumulator so the loss-vs-size curve can be inspected afterwards.
    One evaluator covers all test files of a run.
    """

    def __init__(
        self,
        ensemble: Ensemble,
        row_parser: Callable[[str], ParsedRow | None],
        *,
        loss_function: str = "least_squares",
        find_optimal_num_trees: bool = False,
        tolerance: float = SCORE_TOLERANCE,
        log_every: int = 1000,
    ) -> None:
        self.ensemble = ensemble
        self._row_parser = row_parser
        self._fun: GbmFun = make_loss_function(loss_function)
        self._prefix_funs: List[GbmFun] | None = None
        if find_optimal_num_trees:
            self._prefix_funs = [make_loss_function(loss_function) for _ in range(len(ensemble))]
        self.tolerance = tolerance
        self.log_every = log_every

        self.sum_y = 0.0
        self.sum_y2 = 0.0
        self.agree_count = 0
        self.num_rejected = 0

    @property
    def find_optimal_num_trees(self) -> bool:
        return self._prefix_funs is not None

    def evaluate_row(self, row: ParsedRow) -> float:
        """Accumulate one parsed row and return the full-ensemble score."""
        target = row.target
        self.sum_y += target
        self.sum_y2 += target * target

        if self._prefix_funs is not None:
            scores = self.ensemble.predict_prefixes(row.features)
            for fun, score in zip(self._prefix_funs, scores):
                fun.accumulate_example_loss(target, float(score))
            f = float(scores[-1]) if len(scores) else 0.0
        else:
            f = self.ensemble.predict_full(row.features)

        self._fun.accumulate_example_loss(target, f)
        if row.logged_score is not None and abs(row.logged_score - f) <= self.tolerance:
            self.agree_count += 1

        if self.log_every > 0 and self._fun.num_examples % self.log_every == 0:
            if logger.isEnabledFor(logging.INFO):
                logger.info(
                    json.dumps(
                        {
                            "num_examples": self._fun.num_examples,
                            "reduction": self._fun.reduction,
                            "total_loss": self._fun.loss,
                            "logged_score": row.logged_score,
                            "computed_score": f,
                        }
                    )
                )
        return f

    def evaluate_lines(self, lines: Iterable[str]) -> None:
        for line in lines:
            row = self._row_parser(line.rstrip("\r\n"))
            if row is None:
                self.num_rejected += 1
                continue
            self.evaluate_row(row)

    def report(self) -> EvaluationReport:
        prefix_losses = None
        if self._prefix_funs is not None:
            prefix_losses = [fun.loss for fun in self._prefix_funs]
        if self.num_rejected:
            logger.info("skipped %d malformed test lines", self.num_rejected)
        return EvaluationReport(
            num_examples=self._fun.num_examples,
            loss=self._fun.loss,
            reduction=self._fun.reduction,
            sum_y=self.sum_y,
            sum_y2=self.sum_y2,
            agree_count=self.agree_count,
            num_rejected=self.num_rejected,
            prefix_losses=prefix_losses,
        )
