"""
JSON corpus files for the CLI and the development server.

A corpus describes one project: its documents with confirmed annotations and
the recommenders configured for it. Loading a corpus fills an
:class:`InMemoryAnnotationStorage`.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

from pydantic import BaseModel, Field

from .models import LabeledSample, Recommender, RelationPosition, SpanPosition
from .storage import InMemoryAnnotationStorage

logger = logging.getLogger(__name__)


class CorpusSpan(BaseModel):
    begin: int
    end: int


class CorpusAnnotation(BaseModel):
    """A confirmed span (``begin``/``end``) or relation (``source``/``target``) annotation."""
    layer_id: int
    feature: str
    label: Optional[str] = None
    begin: Optional[int] = None
    end: Optional[int] = None
    source: Optional[CorpusSpan] = None
    target: Optional[CorpusSpan] = None

    @property
    def is_relation(self) -> bool:
        return self.source is not None and self.target is not None

    def position(self) -> Union[SpanPosition, RelationPosition]:
        if self.is_relation:
            return RelationPosition(
                SpanPosition(self.source.begin, self.source.end),
                SpanPosition(self.target.begin, self.target.end),
            )
        if self.begin is None or self.end is None:
            raise ValueError("Span annotations need begin and end")
        return SpanPosition(self.begin, self.end)


class CorpusDocument(BaseModel):
    name: str
    text: str
    last_modified: Optional[datetime] = None
    annotations: List[CorpusAnnotation] = Field(default_factory=list)


class Corpus(BaseModel):
    """Contents of a corpus file."""
    project: str
    user: str = Field(default="annotator", description="Owner of the confirmed annotations")
    documents: List[CorpusDocument] = Field(default_factory=list)
    recommenders: List[Recommender] = Field(default_factory=list)

    def layer_ids(self) -> List[int]:
        layers = {r.layer_id for r in self.recommenders}
        for document in self.documents:
            layers.update(a.layer_id for a in document.annotations)
        return sorted(layers)

    def populate(self, storage: InMemoryAnnotationStorage) -> int:
        """Load documents and annotations into ``storage``. Returns the annotation count."""
        for layer_id in self.layer_ids():
            storage.add_layer(self.project, layer_id)

        created = 0
        for document in self.documents:
            storage.add_document(self.project, document.name, document.text, document.last_modified)
            for annotation in document.annotations:
                ref = storage.create_annotation(
                    self.project, document.name, self.user, annotation.layer_id, annotation.position()
                )
                storage.update_feature(ref, annotation.feature, annotation.label)
                created += 1
            if document.last_modified is not None:
                # Keep the declared version instead of the load time
                storage.add_document(self.project, document.name, document.text, document.last_modified)
        logger.info(
            f"Loaded corpus [{self.project}]: {len(self.documents)} documents, "
            f"{created} annotations, {len(self.recommenders)} recommenders"
        )
        return created

    def samples(self, layer_id: int, feature: str) -> List[LabeledSample]:
        """Labeled span samples of one layer/feature, in document order."""
        samples = []
        for document in self.documents:
            for annotation in document.annotations:
                if annotation.is_relation or annotation.layer_id != layer_id or annotation.feature != feature:
                    continue
                if annotation.label is None:
                    continue
                samples.append(LabeledSample(
                    document=document.name,
                    begin=annotation.begin,
                    end=annotation.end,
                    text=document.text[annotation.begin:annotation.end],
                    label=annotation.label,
                ))
        return samples


def load_corpus(path: Union[str, Path]) -> Corpus:
    """Read and validate a corpus file.

    Raises:
        OSError: if the file cannot be read
        json.JSONDecodeError / pydantic.ValidationError: if the content is invalid
    """
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    return Corpus.model_validate(data)
