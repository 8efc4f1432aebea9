"""
Learning-curve evaluation of a recommendation engine.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional, Sequence, Union

from ..errors import EvaluationSkippedError
from ..models import EvaluationResult, LabeledSample, RecommenderContext, samples_by_document
from .metrics import ConfusionMatrix
from .splitter import IncrementalSplitter

if TYPE_CHECKING:
    from ..recommenders.base import RecommendationEngine

logger = logging.getLogger(__name__)

EVALUATION_USER = "__evaluation__"


@dataclass(slots=True)
class EvaluationConfig:
    """Settings of one evaluation run."""

    train_fraction: float = 0.8
    step: Union[int, float] = 8
    min_samples: int = 10
    shuffle: bool = False
    seed: int = 0
    ignore_label: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "EvaluationConfig":
        """Build a config from loosely typed input. Raises ValueError/TypeError on bad values."""
        defaults = cls()
        step = float(data.get("step", defaults.step))
        return cls(
            train_fraction=float(data.get("train_fraction", defaults.train_fraction)),
            # Whole-number steps are sample counts, values below 1 a fraction of the train capacity
            step=int(step) if step >= 1 else step,
            min_samples=int(data.get("min_samples", defaults.min_samples)),
            shuffle=bool(data.get("shuffle", defaults.shuffle)),
            seed=int(data.get("seed", defaults.seed)),
            ignore_label=data.get("ignore_label", defaults.ignore_label),
        )


class EvaluationRun:
    """Lazy, finite, one-shot sequence of :class:`EvaluationResult`.

    Each step trains a fresh context on a growing prefix of the training
    samples and labels the fixed test samples. When the run cannot produce any
    result, ``skipped`` holds the reason and iteration ends immediately.
    """

    def __init__(self, engine: "RecommendationEngine", samples: Sequence[LabeledSample],
                 config: EvaluationConfig):
        self.engine = engine
        self.config = config
        self.skipped: Optional[EvaluationSkippedError] = None

        ordered = list(samples)
        if config.shuffle:
            random.Random(config.seed).shuffle(ordered)

        self.splitter = IncrementalSplitter(
            len(ordered),
            train_fraction=config.train_fraction,
            step=config.step,
            min_samples=config.min_samples,
        )
        self._train = ordered[:self.splitter.train_capacity]
        self._test = ordered[self.splitter.train_capacity:]

        if not engine.supports_evaluation:
            self.skipped = EvaluationSkippedError(f"{type(engine).__name__} does not support evaluation")
        elif self.splitter.skipped:
            self.skipped = EvaluationSkippedError(self.splitter.skip_reason)
        if self.skipped is not None:
            logger.info(f"Evaluation skipped: {self.skipped}")

    @property
    def is_skipped(self) -> bool:
        return self.skipped is not None

    def __iter__(self) -> "EvaluationRun":
        return self

    def __next__(self) -> EvaluationResult:
        if self.skipped is not None or not self.splitter.has_next():
            raise StopIteration
        step = self.splitter.next()
        train = self._train[:step.train_size]

        context = RecommenderContext(EVALUATION_USER)
        started = time.monotonic()
        self.engine.train(context, samples_by_document(train))
        context.close()
        training_ms = int((time.monotonic() - started) * 1000)

        started = time.monotonic()
        predicted = self.engine.predict_labels(context, self._test)
        classifying_ms = int((time.monotonic() - started) * 1000)

        matrix = ConfusionMatrix(ignore_label=self.config.ignore_label)
        matrix.add_all(zip((s.label for s in self._test), predicted))
        result = EvaluationResult(
            iteration=step.iteration,
            train_size=step.train_size,
            test_size=step.test_size,
            confusion=matrix.as_dict(),
            metrics=matrix.metrics(),
            training_duration_ms=training_ms,
            classifying_duration_ms=classifying_ms,
        )
        logger.debug(
            f"Evaluation step {result.iteration}: train={result.train_size} "
            f"test={result.test_size} f1={result.f1:.3f}"
        )
        return result

    def results(self) -> List[EvaluationResult]:
        """Drain the remaining steps."""
        return list(self)


def evaluate(engine: "RecommendationEngine", samples: Sequence[LabeledSample],
             config: Optional[EvaluationConfig] = None) -> EvaluationRun:
    """Start a learning-curve evaluation; nothing is trained until iterated."""
    return EvaluationRun(engine, samples, config or EvaluationConfig())
