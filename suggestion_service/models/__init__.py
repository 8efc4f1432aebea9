"""
Models package for suggestions, recommenders, evaluation results and
remote recommender payloads.
"""

from .suggestion_models import (
    NEW_ID,
    NO_SCORE,
    AnnotationSuggestion,
    DocumentSnapshot,
    LabeledRelation,
    LabeledSample,
    Position,
    RelationPosition,
    SpanPosition,
    SuggestionGroup,
    SuggestionKind,
    SuggestionState,
    group_suggestions,
    overlapping,
    relation_suggestion,
    samples_by_document,
    span_suggestion,
)

from .recommender_models import (
    KEY_DATASET,
    KEY_TRAINING_COMPLETE,
    KEY_UPLOADED_DOCUMENTS,
    ContextKey,
    Recommender,
    RecommenderContext,
    context_summary,
)

from .evaluation_models import EvaluationResult

from .external_models import (
    ClassifierInfo,
    DocumentList,
    ExternalAnnotation,
    ExternalDocument,
    ExternalRelation,
    PredictRequest,
    RemoteDatasetState,
    TrainRequest,
)

__all__ = [
    # Suggestion models
    "NEW_ID",
    "NO_SCORE",
    "AnnotationSuggestion",
    "DocumentSnapshot",
    "LabeledRelation",
    "LabeledSample",
    "Position",
    "RelationPosition",
    "SpanPosition",
    "SuggestionGroup",
    "SuggestionKind",
    "SuggestionState",
    "group_suggestions",
    "overlapping",
    "relation_suggestion",
    "samples_by_document",
    "span_suggestion",

    # Recommender models
    "KEY_DATASET",
    "KEY_TRAINING_COMPLETE",
    "KEY_UPLOADED_DOCUMENTS",
    "ContextKey",
    "Recommender",
    "RecommenderContext",
    "context_summary",

    # Evaluation models
    "EvaluationResult",

    # Remote payloads
    "ClassifierInfo",
    "DocumentList",
    "ExternalAnnotation",
    "ExternalDocument",
    "ExternalRelation",
    "PredictRequest",
    "RemoteDatasetState",
    "TrainRequest",
]
