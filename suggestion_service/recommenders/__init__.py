"""
Recommendation engines: the engine interface, a local string-matching
engine and a remote-service engine.
"""

from .base import RecommendationEngine
from .external import ExternalRecommenderEngine, to_external_document
from .registry import EngineFactory, EngineRegistry, build_default_registry
from .string_matching import StringMatchingEngine

__all__ = [
    "EngineFactory",
    "EngineRegistry",
    "ExternalRecommenderEngine",
    "RecommendationEngine",
    "StringMatchingEngine",
    "build_default_registry",
    "to_external_document",
]
