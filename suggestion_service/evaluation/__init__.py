"""
Incremental learning-curve evaluation.
"""

from .evaluator import EvaluationConfig, EvaluationRun, evaluate
from .metrics import ConfusionMatrix
from .splitter import NOT_ENOUGH_TRAINING_DATA, IncrementalSplitter, SplitStep

__all__ = [
    "ConfusionMatrix",
    "EvaluationConfig",
    "EvaluationRun",
    "IncrementalSplitter",
    "NOT_ENOUGH_TRAINING_DATA",
    "SplitStep",
    "evaluate",
]
