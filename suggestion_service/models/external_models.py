"""
Remote recommender payload models.

Field names are snake_case in Python and camelCase on the wire.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ExternalAnnotation(_WireModel):
    """A labeled span in a remote document."""
    start: int = Field(description="Begin character offset")
    end: int = Field(description="End character offset")
    label: Optional[str] = Field(default=None, description="Feature value")
    score: Optional[float] = Field(default=None, description="Prediction confidence")
    explanation: Optional[str] = Field(default=None, description="Human-readable score explanation")


class ExternalRelation(_WireModel):
    """A labeled relation between two spans in a remote document."""
    source: ExternalAnnotation = Field(description="Source span")
    target: ExternalAnnotation = Field(description="Target span")
    label: Optional[str] = Field(default=None, description="Feature value")
    score: Optional[float] = Field(default=None, description="Prediction confidence")


class ExternalDocument(_WireModel):
    """Document payload exchanged with the remote service."""
    text: str = Field(description="Full document text")
    version: int = Field(default=-1, description="Local version, -1 if unknown")
    layer: Optional[str] = Field(default=None, description="Annotation layer name")
    feature: Optional[str] = Field(default=None, description="Annotation feature name")
    annotations: List[ExternalAnnotation] = Field(default_factory=list)
    relations: List[ExternalRelation] = Field(default_factory=list)


class DocumentList(_WireModel):
    """Parallel arrays of remote document names and versions."""
    names: List[str] = Field(default_factory=list)
    versions: List[int] = Field(default_factory=list)


class TrainRequest(_WireModel):
    model_name: str = Field(alias="modelName")
    dataset_name: str = Field(alias="datasetName")


class PredictRequest(_WireModel):
    model_name: str = Field(alias="modelName")
    document: ExternalDocument


class ClassifierInfo(_WireModel):
    """Discovery / health information of a remote classifier."""
    name: str
    status: Optional[str] = None
    models: List[str] = Field(default_factory=list)


@dataclass
class RemoteDatasetState:
    """Remote document versions of one dataset, rebuilt every synchronization pass."""
    dataset: str
    versions: Dict[str, int] = field(default_factory=dict)

    def version_of(self, document: str) -> Optional[int]:
        return self.versions.get(document)
