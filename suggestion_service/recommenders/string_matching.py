"""
String matching recommender.

Remembers which labels each annotated surface string received and suggests
those labels wherever the same string occurs again.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from typing import Dict, List, Optional, Sequence

from ..models import (
    KEY_TRAINING_COMPLETE,
    AnnotationSuggestion,
    ContextKey,
    DocumentSnapshot,
    LabeledSample,
    RecommenderContext,
    span_suggestion,
)
from .base import RecommendationEngine

logger = logging.getLogger(__name__)

KEY_MODEL = ContextKey("string_matching_model", None)

TOOL_ID = "string-matching"


class StringMatchingEngine(RecommendationEngine):
    """Local reference engine. Traits: ``ignore_case`` (default False), ``min_length`` (default 1)."""

    @property
    def ignore_case(self) -> bool:
        return bool(self.recommender.traits.get("ignore_case", False))

    @property
    def min_length(self) -> int:
        return int(self.recommender.traits.get("min_length", 1))

    def _normalize(self, text: str) -> str:
        text = text.strip()
        return text.lower() if self.ignore_case else text

    def train(self, context: RecommenderContext, documents: Sequence[DocumentSnapshot]) -> None:
        model: Dict[str, Counter] = {}
        for document in documents:
            for sample in document.samples:
                if not sample.label:
                    continue
                key = self._normalize(sample.text)
                if len(key) < self.min_length:
                    continue
                model.setdefault(key, Counter())[sample.label] += 1

        context.put(KEY_MODEL, model)
        context.put(KEY_TRAINING_COMPLETE, bool(model))
        logger.info(
            f"[{self.recommender.name}] trained on {sum(sum(c.values()) for c in model.values())} "
            f"samples ({len(model)} distinct strings)"
        )

    def predict(self, context: RecommenderContext, document: DocumentSnapshot) -> List[AnnotationSuggestion]:
        model: Optional[Dict[str, Counter]] = context.get(KEY_MODEL)
        if not model:
            return []

        flags = re.IGNORECASE if self.ignore_case else 0
        suggestions = []
        for key, counts in model.items():
            total = sum(counts.values())
            pattern = re.compile(rf"(?<!\w){re.escape(key)}(?!\w)", flags)
            for match in pattern.finditer(document.text):
                for label, count in counts.items():
                    suggestions.append(span_suggestion(
                        recommender_id=self.recommender.id,
                        recommender_name=self.recommender.name,
                        layer_id=self.recommender.layer_id,
                        feature=self.recommender.feature,
                        document=document.name,
                        begin=match.start(),
                        end=match.end(),
                        label=label,
                        score=count / total,
                        score_explanation=f"Seen {count} of {total} times as [{label}]",
                        covered_text=match.group(0),
                    ))
        return suggestions

    @property
    def supports_evaluation(self) -> bool:
        return True

    def predict_labels(self, context: RecommenderContext,
                       samples: Sequence[LabeledSample]) -> List[Optional[str]]:
        model: Dict[str, Counter] = context.get(KEY_MODEL) or {}
        labels = []
        for sample in samples:
            counts = model.get(self._normalize(sample.text))
            if not counts:
                labels.append(None)
                continue
            # Most frequent label, alphabetical on ties
            labels.append(min(counts.items(), key=lambda item: (-item[1], item[0]))[0])
        return labels
