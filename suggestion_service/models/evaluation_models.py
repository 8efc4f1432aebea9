"""
Evaluation result models.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple


@dataclass(frozen=True)
class EvaluationResult:
    """Outcome of one incremental-split evaluation step."""

    iteration: int
    train_size: int
    test_size: int
    confusion: Dict[Tuple[Optional[str], Optional[str]], int] = field(default_factory=dict)
    metrics: Dict[str, float] = field(default_factory=dict)
    training_duration_ms: int = 0
    classifying_duration_ms: int = 0

    @property
    def accuracy(self) -> float:
        return self.metrics.get("accuracy", 0.0)

    @property
    def f1(self) -> float:
        return self.metrics.get("f1", 0.0)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "iteration": self.iteration,
            "train_size": self.train_size,
            "test_size": self.test_size,
            "metrics": dict(self.metrics),
            "confusion": [
                {"gold": gold, "predicted": predicted, "count": count}
                for (gold, predicted), count in sorted(
                    self.confusion.items(), key=lambda item: (str(item[0][0]), str(item[0][1]))
                )
            ],
            "training_duration_ms": self.training_duration_ms,
            "classifying_duration_ms": self.classifying_duration_ms,
        }
