"""
Recommender backed by a remote trainable service.

Training synchronizes the local corpus into a remote dataset and then asks
the remote classifier to train on it. Prediction sends one document at a time.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from ..errors import ExternalRecommenderApiException, SyncProtocolError
from ..external import DatasetSynchronizer, ExternalRecommenderClient
from ..models import (
    KEY_DATASET,
    KEY_TRAINING_COMPLETE,
    KEY_UPLOADED_DOCUMENTS,
    NO_SCORE,
    AnnotationSuggestion,
    DocumentSnapshot,
    ExternalAnnotation,
    ExternalDocument,
    ExternalRelation,
    Recommender,
    RecommenderContext,
    SpanPosition,
    relation_suggestion,
    span_suggestion,
)
from .base import RecommendationEngine

logger = logging.getLogger(__name__)

TOOL_ID = "external"


def _in_bounds(annotation: ExternalAnnotation, text: str) -> bool:
    return 0 <= annotation.start <= annotation.end <= len(text)


def to_external_document(document: DocumentSnapshot, layer: str, feature: str) -> ExternalDocument:
    """Payload with the document text and its confirmed annotations of one layer/feature."""
    return ExternalDocument(
        text=document.text,
        version=document.version,
        layer=layer,
        feature=feature,
        annotations=[
            ExternalAnnotation(start=s.begin, end=s.end, label=s.label)
            for s in document.samples
        ],
        relations=[
            ExternalRelation(
                source=ExternalAnnotation(start=r.source.begin, end=r.source.end),
                target=ExternalAnnotation(start=r.target.begin, end=r.target.end),
                label=r.label,
            )
            for r in document.relations
        ],
    )


class ExternalRecommenderEngine(RecommendationEngine):
    """Traits: ``remote_url``, ``classifier``, ``model_name`` and optionally ``dataset``."""

    def __init__(self, recommender: Recommender, client: Optional[ExternalRecommenderClient] = None,
                 connect_timeout: float = 5.0, read_timeout: float = 60.0, verify_ssl: bool = True):
        super().__init__(recommender)
        traits = recommender.traits
        for trait in ("classifier", "model_name"):
            if not traits.get(trait):
                raise ValueError(f"Recommender [{recommender.name}] is missing trait [{trait}]")

        self.classifier = traits["classifier"]
        self.model_name = traits["model_name"]
        self.dataset = traits.get("dataset") or f"{recommender.project}-{recommender.id}"
        if client is None:
            if not traits.get("remote_url"):
                raise ValueError(f"Recommender [{recommender.name}] is missing trait [remote_url]")
            client = ExternalRecommenderClient(
                traits["remote_url"],
                connect_timeout=connect_timeout,
                read_timeout=read_timeout,
                verify_ssl=verify_ssl,
            )
        self.client = client
        self.synchronizer = DatasetSynchronizer(client)

    def to_external(self, document: DocumentSnapshot) -> ExternalDocument:
        return to_external_document(
            document,
            self.recommender.layer_name or str(self.recommender.layer_id),
            self.recommender.feature,
        )

    def status(self) -> Dict[str, Any]:
        """Remote classifier info. Raises ExternalRecommenderApiException / SyncProtocolError."""
        info = self.client.get_classifier_info(self.classifier)
        return {
            "dataset": self.dataset,
            "classifier": self.classifier,
            "model_name": self.model_name,
            "remote": info.model_dump(mode="json"),
            "model_available": not info.models or self.model_name in info.models,
        }

    def train(self, context: RecommenderContext, documents: Sequence[DocumentSnapshot]) -> None:
        payloads = {document.name: self.to_external(document) for document in documents}
        report = self.synchronizer.synchronize(self.dataset, payloads)
        context.put(KEY_DATASET, self.dataset)
        context.put(KEY_UPLOADED_DOCUMENTS, len(report.uploaded))

        self.client.train(self.classifier, self.model_name, self.dataset)
        context.put(KEY_TRAINING_COMPLETE, True)
        logger.info(
            f"[{self.recommender.name}] trained [{self.classifier}/{self.model_name}] on dataset "
            f"[{self.dataset}] ({len(report.uploaded)} documents uploaded)"
        )

    def predict(self, context: RecommenderContext, document: DocumentSnapshot) -> List[AnnotationSuggestion]:
        try:
            response = self.client.predict(self.classifier, self.model_name, self.to_external(document))
        except (ExternalRecommenderApiException, SyncProtocolError) as e:
            logger.error(f"[{self.recommender.name}] prediction for [{document.name}] failed: {e}")
            return []

        confirmed = {(s.begin, s.end, s.label) for s in document.samples}
        confirmed_relations = {
            (r.source.begin, r.source.end, r.target.begin, r.target.end, r.label)
            for r in document.relations
        }

        suggestions = []
        for annotation in response.annotations:
            if (annotation.start, annotation.end, annotation.label) in confirmed:
                continue
            if not _in_bounds(annotation, document.text):
                logger.warning(
                    f"[{self.recommender.name}] ignoring out-of-bounds prediction "
                    f"{annotation.start}-{annotation.end} in [{document.name}]"
                )
                continue
            suggestions.append(span_suggestion(
                recommender_id=self.recommender.id,
                recommender_name=self.recommender.name,
                layer_id=self.recommender.layer_id,
                feature=self.recommender.feature,
                document=document.name,
                begin=annotation.start,
                end=annotation.end,
                label=annotation.label,
                score=annotation.score if annotation.score is not None else NO_SCORE,
                score_explanation=annotation.explanation,
                covered_text=document.text[annotation.start:annotation.end],
            ))

        for relation in response.relations:
            key = (relation.source.start, relation.source.end,
                   relation.target.start, relation.target.end, relation.label)
            if key in confirmed_relations:
                continue
            if not all(_in_bounds(anchor, document.text) for anchor in (relation.source, relation.target)):
                logger.warning(
                    f"[{self.recommender.name}] ignoring out-of-bounds relation prediction "
                    f"{relation.source.start}-{relation.source.end} -> "
                    f"{relation.target.start}-{relation.target.end} in [{document.name}]"
                )
                continue
            suggestions.append(relation_suggestion(
                recommender_id=self.recommender.id,
                recommender_name=self.recommender.name,
                layer_id=self.recommender.layer_id,
                feature=self.recommender.feature,
                document=document.name,
                source=SpanPosition(relation.source.start, relation.source.end),
                target=SpanPosition(relation.target.start, relation.target.end),
                label=relation.label,
                score=relation.score if relation.score is not None else NO_SCORE,
            ))
        return suggestions
