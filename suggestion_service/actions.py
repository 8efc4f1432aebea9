"""
Accept / reject / skip / scroll-to handling for suggestions.

Each suggestion instance moves from PENDING to ACCEPTED or REJECTED exactly
once. Actions on one cache key are serialized through the cache's key lock, so
two concurrent accepts of the same VID cannot both succeed.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from .cache import CacheKey, PredictionCache
from .errors import AnnotationStorageError, SuggestionActionError, SuggestionNotFoundError
from .learning import LearningRecordLog, UserAction
from .models import AnnotationSuggestion, SuggestionGroup, SuggestionKind, SuggestionState
from .predictions import Predictions
from .storage import AnnotationStorage, StoredAnnotation, StoredAnnotationRef
from .vid import decode_vid

logger = logging.getLogger(__name__)

REASON_SKIPPED = "skipped"
ERROR_NOT_FOUND = "not-found"
ERROR_ACTION_FAILED = "action-failed"


class SuggestionAction(Enum):
    """Actions the editor can trigger on a suggestion."""
    ACCEPT = "accept"
    REJECT = "reject"
    SKIP = "skip"
    SCROLL_TO = "scroll"

    @classmethod
    def parse(cls, value) -> "SuggestionAction":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(f"Unknown suggestion action [{value}]") from None


@dataclass(frozen=True)
class NavigationTarget:
    """Where the editor should scroll to show a suggestion."""
    document: str
    begin: int
    end: int

    def to_dict(self) -> dict:
        return {"document": self.document, "begin": self.begin, "end": self.end}


@dataclass
class ActionResult:
    """Outcome of :meth:`SuggestionActionHandler.handle_action`."""
    success: bool
    action: SuggestionAction
    vid: str
    message: Optional[str] = None
    # "not-found" or "action-failed" when success is False
    error: Optional[str] = None
    ref: Optional[StoredAnnotationRef] = None
    target: Optional[NavigationTarget] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "action": self.action.value,
            "vid": self.vid,
            "message": self.message,
            "error": self.error,
            "ref": self.ref.to_dict() if self.ref else None,
            "target": self.target.to_dict() if self.target else None,
        }


@dataclass(frozen=True)
class SuggestionDetail:
    """Tooltip entry for one recommender's suggestion at a position."""
    recommender_name: str
    label: Optional[str]
    score: float
    items: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "recommender": self.recommender_name,
            "label": self.label,
            "score": self.score,
            "details": "\n".join(self.items),
        }


class SuggestionActionHandler:
    """Drives the suggestion lifecycle and writes accepted suggestions to storage."""

    def __init__(
        self,
        cache: PredictionCache,
        storage: AnnotationStorage,
        learning_records: Optional[LearningRecordLog] = None,
        show_all_predictions: bool = False,
    ):
        self.cache = cache
        self.storage = storage
        self.learning_records = learning_records or LearningRecordLog()
        self.show_all_predictions = show_all_predictions

    def _resolve(self, key: CacheKey, vid: str) -> Tuple[Predictions, AnnotationSuggestion]:
        decoded = decode_vid(vid)
        predictions = self.cache.get_active(key)
        suggestion = predictions.get_by_vid(decoded)
        if suggestion is None:
            raise SuggestionNotFoundError(vid)
        return predictions, suggestion

    def _resolve_pending(self, key: CacheKey, vid: str) -> Tuple[Predictions, AnnotationSuggestion]:
        predictions, suggestion = self._resolve(key, vid)
        if not predictions.is_pending(suggestion):
            raise SuggestionNotFoundError(vid, "suggestion was already accepted or rejected")
        return predictions, suggestion

    # Actions ----------------------------------------------------------------

    def accept(self, key: CacheKey, vid: str) -> StoredAnnotationRef:
        """Materialize a suggestion as a stored annotation.

        Raises:
            MalformedAddressError: if ``vid`` is not a suggestion VID
            SuggestionNotFoundError: if the suggestion is gone or no longer pending
            SuggestionActionError: if the storage write failed; nothing was changed
        """
        with self.cache.key_lock(key):
            predictions, suggestion = self._resolve_pending(key, vid)
            try:
                ref = self._upsert(key, suggestion)
            except AnnotationStorageError as e:
                logger.error(f"Could not accept suggestion [{vid}] in [{suggestion.document}]: {e}")
                raise SuggestionActionError(vid, f"Could not accept suggestion: {e}") from e

            predictions.transition(suggestion.id, SuggestionState.ACCEPTED)
            self.learning_records.log_record(key.data_owner, key.project, suggestion, UserAction.ACCEPTED)
            logger.info(
                f"Accepted suggestion [{vid}] ({suggestion.label}) as annotation "
                f"{ref.annotation_id} in [{suggestion.document}]"
            )
            return ref

    def reject(self, key: CacheKey, vid: str, reason: Optional[str] = None) -> AnnotationSuggestion:
        """Mark a suggestion as rejected without touching the stored annotations."""
        return self._dismiss(key, vid, UserAction.REJECTED, reason)

    def skip(self, key: CacheKey, vid: str) -> AnnotationSuggestion:
        """Hide a suggestion for now; recorded separately from an explicit rejection."""
        return self._dismiss(key, vid, UserAction.SKIPPED, REASON_SKIPPED)

    def _dismiss(self, key: CacheKey, vid: str, action: UserAction,
                 reason: Optional[str]) -> AnnotationSuggestion:
        with self.cache.key_lock(key):
            predictions, suggestion = self._resolve_pending(key, vid)
            try:
                self.storage.read_document_text(key.project, suggestion.document)
            except AnnotationStorageError as e:
                verb = "skip" if action is UserAction.SKIPPED else "reject"
                logger.error(f"Could not {verb} suggestion [{vid}]: {e}")
                raise SuggestionActionError(vid, f"Could not {verb} suggestion: {e}") from e

            predictions.transition(suggestion.id, SuggestionState.REJECTED, reason or action.value)
            self.learning_records.log_record(key.data_owner, key.project, suggestion, action, reason)
            logger.info(f"{action.value.capitalize()} suggestion [{vid}] ({suggestion.label}): {reason}")
            return suggestion

    def scroll_to(self, key: CacheKey, vid: str) -> NavigationTarget:
        """Where to navigate to show the suggestion. Does not change any state."""
        _, suggestion = self._resolve(key, vid)
        anchor = suggestion.anchor
        return NavigationTarget(suggestion.document, anchor.begin, anchor.end)

    def handle_action(self, key: CacheKey, action, vid: str, reason: Optional[str] = None) -> ActionResult:
        """Dispatch an editor action.

        Stale VIDs and storage failures are reported in the result; malformed
        VIDs raise :class:`MalformedAddressError`.
        """
        action = SuggestionAction.parse(action)
        try:
            if action is SuggestionAction.ACCEPT:
                ref = self.accept(key, vid)
                anchor = ref.anchor
                return ActionResult(
                    success=True,
                    action=action,
                    vid=vid,
                    ref=ref,
                    target=NavigationTarget(ref.document, anchor.begin, anchor.end),
                )
            if action is SuggestionAction.REJECT:
                self.reject(key, vid, reason)
                return ActionResult(success=True, action=action, vid=vid)
            if action is SuggestionAction.SKIP:
                self.skip(key, vid)
                return ActionResult(success=True, action=action, vid=vid)
            return ActionResult(success=True, action=action, vid=vid, target=self.scroll_to(key, vid))
        except SuggestionNotFoundError as e:
            logger.warning(f"Suggestion action {action.value} failed: {e}")
            return ActionResult(success=False, action=action, vid=vid, message=str(e), error=ERROR_NOT_FOUND)
        except SuggestionActionError as e:
            return ActionResult(success=False, action=action, vid=vid, message=str(e), error=ERROR_ACTION_FAILED)

    # Read-only projections --------------------------------------------------

    def get_feature_value(self, key: CacheKey, vid: str, feature: Optional[str] = None) -> Optional[str]:
        """Predicted value of a suggestion, or None when it expired."""
        decoded = decode_vid(vid)
        suggestion = self.cache.get_active(key).get_by_vid(decoded)
        if suggestion is None:
            return None
        if feature is not None and suggestion.feature != feature:
            return None
        return suggestion.label

    def lookup_details(self, key: CacheKey, vid: str, query: Optional[str] = None) -> List[SuggestionDetail]:
        """Tooltip details of all suggestions at the VID's position, best first."""
        decoded = decode_vid(vid)
        predictions = self.cache.get_active(key)
        representative = predictions.get_by_vid(decoded)
        if representative is None:
            return []

        group = SuggestionGroup(representative.position_key,
                                predictions.get_alternative_suggestions(representative))
        best = group.best_by_label(feature=representative.feature, query=query)

        details = []
        for suggestion in best:
            items = []
            if suggestion.has_score:
                items.append(f"Score: {suggestion.score:.2f}")
            if suggestion.score_explanation:
                items.append(f"Explanation: {suggestion.score_explanation}")
            if self.show_all_predictions and not predictions.is_offered(suggestion):
                reason = suggestion.hide_reason or predictions.reason_of(suggestion.id)
                items.append(f"Hidden: {reason}")
            details.append(SuggestionDetail(
                recommender_name=suggestion.recommender_name,
                label=suggestion.label,
                score=suggestion.score,
                items=items,
            ))
        return details

    # Storage upserts --------------------------------------------------------

    def _reusable(self, annotations: List[StoredAnnotation], suggestion: AnnotationSuggestion) -> Optional[StoredAnnotation]:
        """The stored annotation at the suggestion's position that receives the label, if any.

        Span suggestions prefer an annotation that already has the label, then
        one without a value, then correct the first one at the position.
        Relation suggestions update any relation between the same anchors.
        """
        if suggestion.annotation_id is not None:
            for annotation in annotations:
                if annotation.id == suggestion.annotation_id:
                    return annotation
        candidates = [a for a in annotations if a.position == suggestion.position]
        if not candidates:
            return None
        if suggestion.kind is SuggestionKind.RELATION:
            return candidates[0]
        for annotation in candidates:
            if annotation.features.get(suggestion.feature) == suggestion.label:
                return annotation
        for annotation in candidates:
            if annotation.features.get(suggestion.feature) is None:
                return annotation
        return candidates[0]

    @staticmethod
    def _require_endpoints(annotations: List[StoredAnnotation], suggestion: AnnotationSuggestion) -> None:
        spans = {a.position for a in annotations if not a.is_relation}
        position = suggestion.position
        for role, anchor in (("source", position.source), ("target", position.target)):
            if anchor not in spans:
                raise AnnotationStorageError(
                    f"Cannot find {role} annotation at {anchor.begin}-{anchor.end} in [{suggestion.document}]"
                )

    def _upsert(self, key: CacheKey, suggestion: AnnotationSuggestion) -> StoredAnnotationRef:
        annotations = self.storage.list_confirmed_annotations(
            key.project, suggestion.document, key.data_owner, suggestion.layer_id
        )
        existing = self._reusable(annotations, suggestion)
        if existing is None and suggestion.kind is SuggestionKind.RELATION:
            self._require_endpoints(annotations, suggestion)
        if existing is not None:
            ref = StoredAnnotationRef(
                key.project, suggestion.document, key.data_owner,
                suggestion.layer_id, existing.id, existing.position,
            )
            self.storage.update_feature(ref, suggestion.feature, suggestion.label)
            return ref

        ref = self.storage.create_annotation(
            key.project, suggestion.document, key.data_owner, suggestion.layer_id, suggestion.position
        )
        try:
            self.storage.update_feature(ref, suggestion.feature, suggestion.label)
        except AnnotationStorageError:
            try:
                self.storage.delete_annotation(ref)
            except AnnotationStorageError:
                logger.exception(f"Could not roll back annotation {ref.annotation_id} in [{ref.document}]")
            raise
        return ref

