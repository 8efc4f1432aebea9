"""
Mapping from recommender tool identifiers to engine factories.
"""

import logging
import threading
from typing import Callable, Dict, List

from ..models import Recommender
from . import external, string_matching
from .base import RecommendationEngine
from .external import ExternalRecommenderEngine
from .string_matching import StringMatchingEngine

logger = logging.getLogger(__name__)

EngineFactory = Callable[[Recommender], RecommendationEngine]


class EngineRegistry:
    """Creates engines for recommenders by their ``tool`` identifier."""

    def __init__(self):
        self._factories: Dict[str, EngineFactory] = {}
        self._lock = threading.Lock()

    def register(self, tool: str, factory: EngineFactory) -> None:
        with self._lock:
            if tool in self._factories:
                logger.warning(f"Replacing engine factory for tool [{tool}]")
            self._factories[tool] = factory

    def tools(self) -> List[str]:
        with self._lock:
            return sorted(self._factories)

    def supports(self, tool: str) -> bool:
        with self._lock:
            return tool in self._factories

    def create(self, recommender: Recommender) -> RecommendationEngine:
        with self._lock:
            factory = self._factories.get(recommender.tool)
        if factory is None:
            raise ValueError(f"No engine registered for tool [{recommender.tool}]")
        return factory(recommender)


def build_default_registry(connect_timeout: float = 5.0, read_timeout: float = 60.0,
                           verify_ssl: bool = True) -> EngineRegistry:
    """Registry with the string-matching and external engines."""
    registry = EngineRegistry()
    registry.register(string_matching.TOOL_ID, StringMatchingEngine)
    registry.register(
        external.TOOL_ID,
        lambda recommender: ExternalRecommenderEngine(
            recommender,
            connect_timeout=connect_timeout,
            read_timeout=read_timeout,
            verify_ssl=verify_ssl,
        ),
    )
    return registry
