"""
Suggestion data models.

Suggestions are immutable value objects. The two variants (span and relation)
share one dataclass and are told apart by ``kind``; variant-specific data lives
in ``position``.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union


NEW_ID = -1
NO_SCORE = -1.0


class SuggestionKind(Enum):
    """Discriminant of the suggestion variants."""
    SPAN = "span"
    RELATION = "relation"


class SuggestionState(Enum):
    """Lifecycle of one suggestion instance. ACCEPTED and REJECTED are terminal."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


@dataclass(frozen=True, slots=True)
class SpanPosition:
    """Character offsets of a span."""
    begin: int
    end: int

    def overlaps(self, other: "SpanPosition") -> bool:
        return overlapping(self.begin, self.end, other.begin, other.end)

    def to_dict(self) -> dict:
        return {"begin": self.begin, "end": self.end}


@dataclass(frozen=True, slots=True)
class RelationPosition:
    """Source and target anchors of a relation."""
    source: SpanPosition
    target: SpanPosition

    def to_dict(self) -> dict:
        return {"source": self.source.to_dict(), "target": self.target.to_dict()}


Position = Union[SpanPosition, RelationPosition]


def overlapping(a_begin: int, a_end: int, b_begin: int, b_end: int) -> bool:
    """Whether two offset ranges overlap. Zero-width ranges at the same offset count."""
    if a_begin == b_begin:
        return True
    return a_begin < b_end and b_begin < a_end


@dataclass(frozen=True, slots=True)
class AnnotationSuggestion:
    """A machine-predicted candidate annotation."""

    kind: SuggestionKind
    recommender_id: int
    recommender_name: str
    layer_id: int
    feature: str
    label: Optional[str]
    document: str
    position: Position
    id: int = NEW_ID
    score: float = NO_SCORE
    score_explanation: Optional[str] = None
    visible: bool = True
    hide_reason: Optional[str] = None
    window_begin: int = -1
    window_end: int = -1
    covered_text: str = ""
    # Stored annotation this suggestion would update instead of creating a new one
    annotation_id: Optional[int] = None

    def __post_init__(self):
        if self.kind is SuggestionKind.SPAN and not isinstance(self.position, SpanPosition):
            raise TypeError("Span suggestions require a SpanPosition")
        if self.kind is SuggestionKind.RELATION and not isinstance(self.position, RelationPosition):
            raise TypeError("Relation suggestions require a RelationPosition")

    @property
    def anchor(self) -> SpanPosition:
        """The span a caller should navigate to."""
        if isinstance(self.position, RelationPosition):
            return self.position.source
        return self.position

    @property
    def begin(self) -> int:
        return self.anchor.begin

    @property
    def end(self) -> int:
        return self.anchor.end

    @property
    def has_score(self) -> bool:
        return self.score != NO_SCORE

    @property
    def dedup_key(self) -> Tuple:
        return (
            self.recommender_id,
            self.layer_id,
            self.feature,
            self.document,
            self.position,
            self.label,
        )

    @property
    def position_key(self) -> Tuple:
        """Suggestions with the same position key are alternatives to each other."""
        return (self.layer_id, self.feature, self.document, self.position)

    def assign_id(self, suggestion_id: int) -> "AnnotationSuggestion":
        return replace(self, id=suggestion_id)

    def hide(self, reason: str) -> "AnnotationSuggestion":
        return replace(self, visible=False, hide_reason=reason)

    def label_equals(self, label: Optional[str]) -> bool:
        return (self.label or None) == (label or None)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "recommender_id": self.recommender_id,
            "recommender_name": self.recommender_name,
            "layer_id": self.layer_id,
            "feature": self.feature,
            "label": self.label,
            "document": self.document,
            "position": self.position.to_dict(),
            "score": self.score,
            "score_explanation": self.score_explanation,
            "visible": self.visible,
            "hide_reason": self.hide_reason,
            "covered_text": self.covered_text,
        }


def span_suggestion(
    recommender_id: int,
    recommender_name: str,
    layer_id: int,
    feature: str,
    document: str,
    begin: int,
    end: int,
    label: Optional[str],
    score: float = NO_SCORE,
    score_explanation: Optional[str] = None,
    covered_text: str = "",
    annotation_id: Optional[int] = None,
    window: Optional[Tuple[int, int]] = None,
) -> AnnotationSuggestion:
    """Build a span suggestion; the window defaults to the span itself."""
    window_begin, window_end = window if window else (begin, end)
    return AnnotationSuggestion(
        kind=SuggestionKind.SPAN,
        recommender_id=recommender_id,
        recommender_name=recommender_name,
        layer_id=layer_id,
        feature=feature,
        label=label,
        document=document,
        position=SpanPosition(begin, end),
        score=score,
        score_explanation=score_explanation,
        covered_text=covered_text,
        annotation_id=annotation_id,
        window_begin=window_begin,
        window_end=window_end,
    )


def relation_suggestion(
    recommender_id: int,
    recommender_name: str,
    layer_id: int,
    feature: str,
    document: str,
    source: SpanPosition,
    target: SpanPosition,
    label: Optional[str],
    score: float = NO_SCORE,
    score_explanation: Optional[str] = None,
) -> AnnotationSuggestion:
    """Build a relation suggestion; the window covers both anchors."""
    return AnnotationSuggestion(
        kind=SuggestionKind.RELATION,
        recommender_id=recommender_id,
        recommender_name=recommender_name,
        layer_id=layer_id,
        feature=feature,
        label=label,
        document=document,
        position=RelationPosition(source, target),
        score=score,
        score_explanation=score_explanation,
        window_begin=min(source.begin, target.begin),
        window_end=max(source.end, target.end),
    )


@dataclass(slots=True)
class SuggestionGroup:
    """Alternative suggestions for one position (layer, feature, document, position)."""

    position_key: Tuple
    suggestions: List[AnnotationSuggestion] = field(default_factory=list)

    @property
    def kind(self) -> SuggestionKind:
        return self.suggestions[0].kind

    @property
    def window_begin(self) -> int:
        return min(s.window_begin for s in self.suggestions)

    @property
    def window_end(self) -> int:
        return max(s.window_end for s in self.suggestions)

    def contains(self, suggestion: AnnotationSuggestion) -> bool:
        return any(s.id == suggestion.id for s in self.suggestions)

    def best_by_label(self, feature: Optional[str] = None, query: Optional[str] = None) -> List[AnnotationSuggestion]:
        """Highest-scoring suggestion per label, best first.

        ``query`` restricts the result to labels starting with it (case-insensitive).
        """
        best: Dict[Optional[str], AnnotationSuggestion] = {}
        for suggestion in self.suggestions:
            if feature is not None and suggestion.feature != feature:
                continue
            if query and not (suggestion.label or "").lower().startswith(query.lower()):
                continue
            current = best.get(suggestion.label)
            if current is None or suggestion.score > current.score:
                best[suggestion.label] = suggestion
        return sorted(best.values(), key=lambda s: s.score, reverse=True)


def group_suggestions(suggestions: Iterable[AnnotationSuggestion]) -> List[SuggestionGroup]:
    """Group suggestions by position, ordered by window begin."""
    groups: Dict[Tuple, SuggestionGroup] = {}
    for suggestion in suggestions:
        group = groups.setdefault(suggestion.position_key, SuggestionGroup(suggestion.position_key))
        group.suggestions.append(suggestion)
    return sorted(groups.values(), key=lambda g: (g.window_begin, g.window_end))


@dataclass(frozen=True, slots=True)
class LabeledSample:
    """One confirmed span annotation, used as training or evaluation data."""
    document: str
    begin: int
    end: int
    text: str
    label: Optional[str]


@dataclass(frozen=True, slots=True)
class LabeledRelation:
    """One confirmed relation annotation."""
    document: str
    source: SpanPosition
    target: SpanPosition
    label: Optional[str]


@dataclass(slots=True)
class DocumentSnapshot:
    """A document's text plus its confirmed annotations for one layer/feature."""

    name: str
    text: str
    last_modified: Optional[datetime] = None
    samples: List[LabeledSample] = field(default_factory=list)
    relations: List[LabeledRelation] = field(default_factory=list)

    @property
    def version(self) -> int:
        """Version derived from the last modification (epoch milliseconds); -1 when unknown."""
        if self.last_modified is None:
            return -1
        return int(self.last_modified.timestamp() * 1000)


def samples_by_document(samples: Sequence[LabeledSample]) -> List[DocumentSnapshot]:
    """Wrap loose samples into per-document snapshots without text."""
    snapshots: Dict[str, DocumentSnapshot] = {}
    for sample in samples:
        snapshot = snapshots.setdefault(sample.document, DocumentSnapshot(name=sample.document, text=""))
        snapshot.samples.append(sample)
    return list(snapshots.values())
