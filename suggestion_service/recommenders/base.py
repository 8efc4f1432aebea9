"""
Engine interface shared by local and remote recommenders.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from ..models import (
    KEY_TRAINING_COMPLETE,
    AnnotationSuggestion,
    DocumentSnapshot,
    LabeledSample,
    Recommender,
    RecommenderContext,
)


class RecommendationEngine(ABC):
    """Trains on confirmed annotations and turns documents into suggestions.

    Engines are stateless apart from their recommender configuration; all
    learned state lives in the :class:`RecommenderContext` passed in, so one
    engine instance can serve many users concurrently.
    """

    def __init__(self, recommender: Recommender):
        self.recommender = recommender

    @abstractmethod
    def train(self, context: RecommenderContext, documents: Sequence[DocumentSnapshot]) -> None:
        """Learn from the confirmed annotations of ``documents``."""

    @abstractmethod
    def predict(self, context: RecommenderContext, document: DocumentSnapshot) -> List[AnnotationSuggestion]:
        """Suggestions for one document."""

    def is_ready_for_prediction(self, context: RecommenderContext) -> bool:
        return bool(context.get(KEY_TRAINING_COMPLETE))

    @property
    def supports_evaluation(self) -> bool:
        return False

    def status(self) -> Dict[str, Any]:
        """Engine-specific status for diagnostics, e.g. the state of a remote service."""
        return {}

    def predict_labels(self, context: RecommenderContext,
                       samples: Sequence[LabeledSample]) -> List[Optional[str]]:
        """Predicted label per sample, used by the learning-curve evaluation."""
        raise NotImplementedError(f"{type(self).__name__} does not support evaluation")
