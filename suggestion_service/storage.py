"""
Annotation storage collaborator.

The storage holds the authoritative document text and confirmed annotations.
The suggestion service only talks to it through :class:`AnnotationStorage` and
never caches committed state beyond one request.
"""

import itertools
import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Tuple

from .errors import AnnotationStorageError, DocumentNotFoundError, LayerNotFoundError
from .models import Position, RelationPosition, SpanPosition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredAnnotationRef:
    """Reference to a stored annotation, usable for selection and highlighting."""
    project: str
    document: str
    user: str
    layer_id: int
    annotation_id: int
    position: Position

    @property
    def anchor(self) -> SpanPosition:
        if isinstance(self.position, RelationPosition):
            return self.position.source
        return self.position

    def to_dict(self) -> dict:
        return {
            "project": self.project,
            "document": self.document,
            "user": self.user,
            "layer_id": self.layer_id,
            "annotation_id": self.annotation_id,
            "position": self.position.to_dict(),
        }


@dataclass
class StoredAnnotation:
    """A confirmed annotation as returned by the storage."""
    id: int
    layer_id: int
    position: Position
    features: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_relation(self) -> bool:
        return isinstance(self.position, RelationPosition)


@dataclass(frozen=True)
class DocumentInfo:
    """Document listing entry; ``last_modified`` drives remote dataset versions."""
    name: str
    last_modified: Optional[datetime] = None


class AnnotationStorage(Protocol):
    """Interface of the annotation storage consumed by the suggestion service."""

    def create_annotation(self, project: str, document: str, user: str, layer_id: int,
                          position: Position) -> StoredAnnotationRef:
        """Create an annotation without feature values."""

    def update_feature(self, ref: StoredAnnotationRef, feature: str, value: Any) -> None:
        """Set one feature value of an existing annotation."""

    def delete_annotation(self, ref: StoredAnnotationRef) -> None:
        """Delete an annotation."""

    def read_document_text(self, project: str, document: str) -> str:
        """Return the document text."""

    def list_confirmed_annotations(self, project: str, document: str, user: str,
                                   layer_id: int) -> List[StoredAnnotation]:
        """List the user's annotations on a layer of a document."""

    def list_documents(self, project: str) -> List[DocumentInfo]:
        """List the documents of a project."""


class InMemoryAnnotationStorage:
    """Thread-safe in-process storage, used by tests, the CLI and the default app."""

    def __init__(self):
        self._lock = threading.RLock()
        self._ids = itertools.count(1)
        self._layers: Dict[str, set] = {}
        # (project, document) -> (text, last_modified)
        self._documents: Dict[Tuple[str, str], Tuple[str, Optional[datetime]]] = {}
        # (project, document, user) -> annotation id -> annotation
        self._annotations: Dict[Tuple[str, str, str], Dict[int, StoredAnnotation]] = {}

    # Administration ---------------------------------------------------------

    def add_layer(self, project: str, layer_id: int) -> None:
        with self._lock:
            self._layers.setdefault(project, set()).add(layer_id)

    def remove_layer(self, project: str, layer_id: int) -> None:
        with self._lock:
            self._layers.get(project, set()).discard(layer_id)
            for (p, _, _), annotations in self._annotations.items():
                if p != project:
                    continue
                for annotation_id in [a.id for a in annotations.values() if a.layer_id == layer_id]:
                    del annotations[annotation_id]

    def add_document(self, project: str, name: str, text: str,
                     last_modified: Optional[datetime] = None) -> None:
        with self._lock:
            self._documents[(project, name)] = (text, last_modified or datetime.now(timezone.utc))

    def remove_document(self, project: str, name: str) -> None:
        with self._lock:
            self._documents.pop((project, name), None)
            for key in [k for k in self._annotations if k[0] == project and k[1] == name]:
                del self._annotations[key]

    # Checks -----------------------------------------------------------------

    def _require_document(self, project: str, document: str) -> str:
        entry = self._documents.get((project, document))
        if entry is None:
            raise DocumentNotFoundError(f"Document [{document}] not found in project [{project}]")
        return entry[0]

    def _require_layer(self, project: str, layer_id: int) -> None:
        if layer_id not in self._layers.get(project, set()):
            raise LayerNotFoundError(f"Layer [{layer_id}] not found in project [{project}]")

    def _touch(self, project: str, document: str) -> None:
        text, _ = self._documents[(project, document)]
        self._documents[(project, document)] = (text, datetime.now(timezone.utc))

    @staticmethod
    def _check_bounds(text: str, position: Position) -> None:
        spans = [position.source, position.target] if isinstance(position, RelationPosition) else [position]
        for span in spans:
            if span.begin < 0 or span.end > len(text) or span.end < span.begin:
                raise AnnotationStorageError(f"Span {span.begin}-{span.end} outside document bounds")

    def _find(self, ref: StoredAnnotationRef) -> StoredAnnotation:
        self._require_document(ref.project, ref.document)
        annotations = self._annotations.get((ref.project, ref.document, ref.user), {})
        annotation = annotations.get(ref.annotation_id)
        if annotation is None:
            raise AnnotationStorageError(f"Annotation [{ref.annotation_id}] not found in [{ref.document}]")
        return annotation

    # AnnotationStorage ------------------------------------------------------

    def create_annotation(self, project: str, document: str, user: str, layer_id: int,
                          position: Position) -> StoredAnnotationRef:
        with self._lock:
            text = self._require_document(project, document)
            self._require_layer(project, layer_id)
            self._check_bounds(text, position)
            annotation = StoredAnnotation(id=next(self._ids), layer_id=layer_id, position=position)
            self._annotations.setdefault((project, document, user), {})[annotation.id] = annotation
            self._touch(project, document)
            logger.debug(f"Created annotation {annotation.id} in [{document}] for [{user}]")
            return StoredAnnotationRef(project, document, user, layer_id, annotation.id, position)

    def update_feature(self, ref: StoredAnnotationRef, feature: str, value: Any) -> None:
        with self._lock:
            self._require_layer(ref.project, ref.layer_id)
            annotation = self._find(ref)
            annotation.features[feature] = value
            self._touch(ref.project, ref.document)

    def delete_annotation(self, ref: StoredAnnotationRef) -> None:
        with self._lock:
            self._find(ref)
            del self._annotations[(ref.project, ref.document, ref.user)][ref.annotation_id]
            self._touch(ref.project, ref.document)

    def read_document_text(self, project: str, document: str) -> str:
        with self._lock:
            return self._require_document(project, document)

    def list_confirmed_annotations(self, project: str, document: str, user: str,
                                   layer_id: int) -> List[StoredAnnotation]:
        with self._lock:
            self._require_document(project, document)
            annotations = self._annotations.get((project, document, user), {}).values()
            return [
                replace(a, features=dict(a.features))
                for a in sorted(annotations, key=lambda a: a.id)
                if a.layer_id == layer_id
            ]

    def list_documents(self, project: str) -> List[DocumentInfo]:
        with self._lock:
            return [
                DocumentInfo(name=name, last_modified=last_modified)
                for (p, name), (_, last_modified) in sorted(self._documents.items())
                if p == project
            ]
