"""
Factory for creating the recommendation module.
"""
from typing import Optional

from suggestion_service import (
    AnnotationStorage,
    LearningRecordLog,
    PredictionCache,
    RecommendationService,
    ServiceConfig,
)
from suggestion_service.evaluation import EvaluationConfig
from suggestion_service.recommenders import EngineRegistry
from .routes import create_recommendation_routes


def create_recommendation_module(
    storage: AnnotationStorage,
    engines: EngineRegistry,
    service_config: Optional[ServiceConfig] = None,
    evaluation_config: Optional[EvaluationConfig] = None,
    cache: Optional[PredictionCache] = None,
    learning_records: Optional[LearningRecordLog] = None,
) -> dict:
    """
    Create the recommendation module with all its components.

    Args:
        storage: Annotation storage collaborator
        engines: Registry mapping recommender tools to engines
        service_config: Prediction run settings
        evaluation_config: Defaults for evaluation requests
        cache: Optional shared prediction cache
        learning_records: Optional shared learning record log

    Returns:
        Dictionary containing:
            - service: RecommendationService instance
            - blueprint: Flask blueprint for routes
    """
    service = RecommendationService(
        storage,
        engines,
        cache=cache,
        learning_records=learning_records,
        config=service_config,
    )
    blueprint = create_recommendation_routes(service, evaluation_config or EvaluationConfig())

    return {
        "service": service,
        "blueprint": blueprint
    }
