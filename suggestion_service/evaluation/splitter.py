"""
Incremental train/test splitter for learning-curve evaluation.

The held-out test set is fixed for the whole run so that the points of the
curve are comparable; only the training prefix grows.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Union

NOT_ENOUGH_TRAINING_DATA = "not enough training data"


@dataclass(frozen=True, slots=True)
class SplitStep:
    """One point of the learning curve."""

    iteration: int
    train_size: int
    test_size: int


class IncrementalSplitter:
    """Forward-only cursor over increasing training-set sizes.

    Args:
        total: Number of available samples
        train_fraction: Share of the samples that may be used for training
        step: Increment between two train sizes; a value in (0, 1) is taken as
            a fraction of the train capacity
        min_samples: Train size of the first step; if ``total * train_fraction``
            is below it the splitter is exhausted from the start
    """

    def __init__(self, total: int, train_fraction: float = 0.8,
                 step: Union[int, float] = 8, min_samples: int = 10):
        if total < 0:
            raise ValueError("Total sample count must not be negative")
        if not 0.0 < train_fraction < 1.0:
            raise ValueError("Train fraction must be between 0 and 1 (exclusive)")

        self.total = total
        self.train_fraction = train_fraction
        self.min_samples = min_samples
        self.train_capacity = math.floor(total * train_fraction)
        self.test_size = total - self.train_capacity

        if 0 < step < 1:
            self.step = int(self.train_capacity * step)
        else:
            self.step = int(step)

        self.skip_reason: Optional[str] = None
        if total * train_fraction < min_samples:
            self.skip_reason = (
                f"{NOT_ENOUGH_TRAINING_DATA}: {self.train_capacity} training samples "
                f"available, at least {min_samples} required"
            )
        elif self.step <= 0:
            self.skip_reason = f"{NOT_ENOUGH_TRAINING_DATA}: step size computes to {self.step}"
        elif self.test_size <= 0:
            self.skip_reason = f"{NOT_ENOUGH_TRAINING_DATA}: no samples left for testing"

        self._next_size = max(min_samples, 1)
        self._iteration = 0
        self._exhausted = self.skip_reason is not None

    @property
    def skipped(self) -> bool:
        """Whether the splitter produced no steps at all for lack of data."""
        return self.skip_reason is not None

    def has_next(self) -> bool:
        return not self._exhausted

    def next(self) -> SplitStep:
        if self._exhausted:
            raise StopIteration
        size = min(self._next_size, self.train_capacity)
        if size >= self.train_capacity:
            self._exhausted = True
        else:
            self._next_size += self.step
        self._iteration += 1
        return SplitStep(iteration=self._iteration, train_size=size, test_size=self.test_size)

    def __iter__(self) -> "IncrementalSplitter":
        return self

    def __next__(self) -> SplitStep:
        return self.next()
