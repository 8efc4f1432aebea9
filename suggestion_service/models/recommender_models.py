"""
Recommender configuration and per-user training context.
"""

import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class Recommender(BaseModel):
    """Immutable recommender configuration, owned by the project configuration."""

    model_config = ConfigDict(frozen=True)

    id: int = Field(description="Recommender id, unique across projects")
    project: str = Field(description="Owning project")
    name: str = Field(description="Human-readable name shown next to suggestions")
    layer_id: int = Field(description="Target annotation layer id")
    layer_name: str = Field(default="", description="Target annotation layer name")
    feature: str = Field(description="Target feature on the layer")
    tool: str = Field(description="Engine identifier, e.g. 'string-matching' or 'external'")
    traits: Dict[str, Any] = Field(default_factory=dict, description="Engine-specific settings")
    enabled: bool = Field(default=True, description="Disabled recommenders are skipped")
    max_recommendations: int = Field(default=0, description="Max suggestions per document, 0 = unlimited")


@dataclass(frozen=True)
class ContextKey:
    """Typed key into a RecommenderContext."""
    name: str
    default: Any = None


class RecommenderContext:
    """Mutable state of one recommender for one user between training and prediction.

    Engines write to the context while training; once closed the context is
    read-only and may be shared with prediction threads.
    """

    def __init__(self, user: str):
        self.user = user
        self._values: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._closed = False

    def get(self, key: ContextKey) -> Any:
        with self._lock:
            return self._values.get(key.name, key.default)

    def put(self, key: ContextKey, value: Any) -> None:
        with self._lock:
            if self._closed:
                raise RuntimeError("Context is closed")
            self._values[key.name] = value

    def close(self) -> None:
        with self._lock:
            self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self._values)


KEY_TRAINING_COMPLETE = ContextKey("training_complete", False)
KEY_DATASET = ContextKey("dataset", None)
KEY_UPLOADED_DOCUMENTS = ContextKey("uploaded_documents", 0)


def context_summary(context: Optional[RecommenderContext]) -> Dict[str, Any]:
    """Flatten a context for logging and API output."""
    if context is None:
        return {}
    return {"user": context.user, "closed": context.closed, **context.snapshot()}
