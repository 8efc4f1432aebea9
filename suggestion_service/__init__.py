# Suggestion service package: prediction cache, suggestion actions, engines and evaluation

from .actions import (
    ActionResult,
    NavigationTarget,
    SuggestionAction,
    SuggestionActionHandler,
    SuggestionDetail,
)
from .cache import CacheKey, GenerationHandle, PredictionCache
from .errors import (
    AnnotationStorageError,
    DocumentNotFoundError,
    EvaluationSkippedError,
    ExternalRecommenderApiException,
    GenerationInProgressError,
    LayerNotFoundError,
    MalformedAddressError,
    RecommendationError,
    RecommenderNotFoundError,
    SuggestionActionError,
    SuggestionNotFoundError,
    SyncProtocolError,
)
from .learning import LearningRecord, LearningRecordLog, UserAction
from .predictions import Predictions
from .service import RecommendationService, ServiceConfig
from .storage import (
    AnnotationStorage,
    DocumentInfo,
    InMemoryAnnotationStorage,
    StoredAnnotation,
    StoredAnnotationRef,
)
from .vid import EXTENSION_ID, SuggestionVid, decode_vid, encode_vid, is_suggestion_vid
from .logging_config import (
    setup_logging,
    stop_logging,
    get_logger,
    ThreadSafeLoggingConfig,
)

__all__ = [
    "ActionResult",
    "NavigationTarget",
    "SuggestionAction",
    "SuggestionActionHandler",
    "SuggestionDetail",
    "CacheKey",
    "GenerationHandle",
    "PredictionCache",
    "AnnotationStorageError",
    "DocumentNotFoundError",
    "EvaluationSkippedError",
    "ExternalRecommenderApiException",
    "GenerationInProgressError",
    "LayerNotFoundError",
    "MalformedAddressError",
    "RecommendationError",
    "RecommenderNotFoundError",
    "SuggestionActionError",
    "SuggestionNotFoundError",
    "SyncProtocolError",
    "LearningRecord",
    "LearningRecordLog",
    "UserAction",
    "Predictions",
    "RecommendationService",
    "ServiceConfig",
    "AnnotationStorage",
    "DocumentInfo",
    "InMemoryAnnotationStorage",
    "StoredAnnotation",
    "StoredAnnotationRef",
    "EXTENSION_ID",
    "SuggestionVid",
    "decode_vid",
    "encode_vid",
    "is_suggestion_vid",
    "setup_logging",
    "stop_logging",
    "get_logger",
    "ThreadSafeLoggingConfig",
]
