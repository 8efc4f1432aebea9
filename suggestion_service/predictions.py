"""
One generation of suggestions for a (session owner, data owner, project) key.

A generation is filled by a prediction run and sealed when it is published.
After sealing the suggestions never change; only the per-suggestion lifecycle
state (pending, accepted, rejected) may still move forward.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from .models import (
    NEW_ID,
    AnnotationSuggestion,
    SuggestionGroup,
    SuggestionKind,
    SuggestionState,
    group_suggestions,
    overlapping,
)
from .vid import SuggestionVid, encode_vid

logger = logging.getLogger(__name__)

MAX_LOG_MESSAGES = 500


@dataclass(frozen=True)
class LogMessage:
    """A message recorded while computing a generation."""
    level: str
    source: str
    message: str
    timestamp: datetime

    def to_dict(self) -> dict:
        return {
            "level": self.level,
            "source": self.source,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }


class Predictions:
    """Suggestions of one generation, indexed by document, id and layer."""

    def __init__(self, session_owner: str, data_owner: str, project: str,
                 generation: int = 0, next_id: int = 0):
        if not session_owner:
            raise ValueError("Session owner must be specified")
        if not data_owner:
            raise ValueError("Data owner must be specified")
        if not project:
            raise ValueError("Project must be specified")

        self.session_owner = session_owner
        self.data_owner = data_owner
        self.project = project
        self.generation = generation

        self._lock = threading.RLock()
        self._next_id = next_id
        self._sealed = False
        # document -> dedup key -> suggestion
        self._by_document: Dict[str, Dict[Tuple, AnnotationSuggestion]] = {}
        self._by_id: Dict[int, AnnotationSuggestion] = {}
        self._states: Dict[int, SuggestionState] = {}
        self._reasons: Dict[int, str] = {}
        self._seen_documents: set = set()
        self._log: List[LogMessage] = []
        self.added_count = 0
        self.duplicate_count = 0

    def successor(self, generation: int) -> "Predictions":
        """An empty generation that continues this one's id counter."""
        with self._lock:
            return Predictions(
                self.session_owner,
                self.data_owner,
                self.project,
                generation=generation,
                next_id=self._next_id,
            )

    # Building ---------------------------------------------------------------

    @property
    def sealed(self) -> bool:
        return self._sealed

    def seal(self) -> None:
        """Make the suggestions immutable. Called when the generation is published."""
        with self._lock:
            self._sealed = True

    def _check_mutable(self) -> None:
        if self._sealed:
            raise RuntimeError(f"Generation {self.generation} is sealed")

    def put_suggestions(self, suggestions: Iterable[AnnotationSuggestion]) -> int:
        """Add suggestions, assigning ids and dropping duplicates.

        Of several suggestions with the same recommender, layer, feature,
        document, position and label only the highest-scoring one is kept; on
        equal scores the one seen first wins.

        Returns:
            Number of suggestions that were added or replaced an existing one
        """
        accepted = 0
        with self._lock:
            self._check_mutable()
            for suggestion in suggestions:
                by_key = self._by_document.setdefault(suggestion.document, {})
                key = suggestion.dedup_key
                existing = by_key.get(key)
                if existing is not None:
                    self.duplicate_count += 1
                    if suggestion.score <= existing.score:
                        continue
                    # Keep the slot's id so the replacement is addressed the same way
                    del self._by_id[existing.id]
                    suggestion = suggestion.assign_id(existing.id)
                elif suggestion.id == NEW_ID:
                    suggestion = suggestion.assign_id(self._allocate_id())

                by_key[key] = suggestion
                self._by_id[suggestion.id] = suggestion
                self._states.setdefault(suggestion.id, SuggestionState.PENDING)
                accepted += 1
            self.added_count += accepted
        return accepted

    def _allocate_id(self) -> int:
        suggestion_id = self._next_id
        self._next_id += 1
        return suggestion_id

    def remove_predictions(self, recommender_id: int) -> int:
        """Drop all suggestions of one recommender. Returns the number removed."""
        removed = 0
        with self._lock:
            self._check_mutable()
            for by_key in self._by_document.values():
                for key in [k for k, s in by_key.items() if s.recommender_id == recommender_id]:
                    suggestion = by_key.pop(key)
                    self._by_id.pop(suggestion.id, None)
                    self._states.pop(suggestion.id, None)
                    removed += 1
        return removed

    def mark_document_seen(self, document: str) -> None:
        with self._lock:
            self._seen_documents.add(document)

    def has_run_prediction_on_document(self, document: str) -> bool:
        with self._lock:
            return document in self._seen_documents

    @property
    def documents_seen_count(self) -> int:
        with self._lock:
            return len(self._seen_documents)

    def log(self, level: str, source: str, message: str) -> None:
        with self._lock:
            self._log.append(LogMessage(level, source, message, datetime.now()))
            if len(self._log) > MAX_LOG_MESSAGES:
                del self._log[0]

    def get_log(self) -> List[LogMessage]:
        with self._lock:
            return list(self._log)

    # Lookup -----------------------------------------------------------------

    def vid_of(self, suggestion: AnnotationSuggestion) -> str:
        return encode_vid(suggestion, self.generation)

    def get_by_id(self, suggestion_id: int) -> Optional[AnnotationSuggestion]:
        with self._lock:
            return self._by_id.get(suggestion_id)

    def get_by_vid(self, vid: SuggestionVid) -> Optional[AnnotationSuggestion]:
        """Resolve a decoded VID; VIDs of other generations never resolve."""
        if vid.generation != self.generation:
            return None
        with self._lock:
            suggestion = self._by_id.get(vid.suggestion_id)
        if suggestion is None or not vid.matches(suggestion):
            return None
        return suggestion

    def get_suggestions_by_document(self, document: str, window_begin: int = -1,
                                    window_end: int = -1) -> List[AnnotationSuggestion]:
        """Suggestions of a document whose window overlaps the given one, by window begin.

        A bound of -1 means unbounded.
        """
        begin = 0 if window_begin == -1 else window_begin
        end = 2 ** 63 if window_end == -1 else window_end
        with self._lock:
            suggestions = list(self._by_document.get(document, {}).values())
        result = [s for s in suggestions if overlapping(s.window_begin, s.window_end, begin, end)]
        result.sort(key=lambda s: (s.window_begin, s.id))
        return result

    def get_grouped_predictions(self, document: str, layer_id: int, window_begin: int = -1,
                                window_end: int = -1,
                                kind: Optional[SuggestionKind] = None) -> List[SuggestionGroup]:
        suggestions = [
            s for s in self.get_suggestions_by_document(document, window_begin, window_end)
            if s.layer_id == layer_id and (kind is None or s.kind is kind)
        ]
        return group_suggestions(suggestions)

    def get_alternative_suggestions(self, suggestion: AnnotationSuggestion) -> List[AnnotationSuggestion]:
        """All suggestions at the same position for the same layer and feature."""
        with self._lock:
            candidates = list(self._by_document.get(suggestion.document, {}).values())
        return [s for s in candidates if s.position_key == suggestion.position_key]

    def get_predictions_by_position_and_feature(self, document: str, layer_id: int,
                                                begin: int, end: int,
                                                feature: str) -> List[AnnotationSuggestion]:
        with self._lock:
            candidates = list(self._by_document.get(document, {}).values())
        return [
            s for s in candidates
            if s.kind is SuggestionKind.SPAN
            and s.layer_id == layer_id
            and s.begin == begin
            and s.end == end
            and s.feature == feature
        ]

    def get_suggestions_by_recommender_and_document(self, recommender_id: int,
                                                    document: str) -> List[AnnotationSuggestion]:
        with self._lock:
            candidates = list(self._by_document.get(document, {}).values())
        return [s for s in candidates if s.recommender_id == recommender_id]

    def all_suggestions(self) -> List[AnnotationSuggestion]:
        with self._lock:
            return sorted(self._by_id.values(), key=lambda s: s.id)

    @property
    def documents(self) -> List[str]:
        with self._lock:
            return sorted(d for d, by_key in self._by_document.items() if by_key)

    def size(self) -> int:
        with self._lock:
            return len(self._by_id)

    def __len__(self) -> int:
        return self.size()

    def is_empty(self) -> bool:
        return self.size() == 0

    # Lifecycle --------------------------------------------------------------

    def state_of(self, suggestion_id: int) -> Optional[SuggestionState]:
        with self._lock:
            return self._states.get(suggestion_id)

    def reason_of(self, suggestion_id: int) -> Optional[str]:
        with self._lock:
            return self._reasons.get(suggestion_id)

    def is_pending(self, suggestion: AnnotationSuggestion) -> bool:
        return self.state_of(suggestion.id) is SuggestionState.PENDING

    def is_offered(self, suggestion: AnnotationSuggestion) -> bool:
        """Whether the suggestion should be shown: visible and still pending."""
        return suggestion.visible and self.is_pending(suggestion)

    def transition(self, suggestion_id: int, state: SuggestionState, reason: Optional[str] = None) -> bool:
        """Move a pending suggestion into a terminal state.

        Returns:
            False if the suggestion is unknown or no longer pending
        """
        if state is SuggestionState.PENDING:
            raise ValueError("Suggestions cannot return to the pending state")
        with self._lock:
            if self._states.get(suggestion_id) is not SuggestionState.PENDING:
                return False
            self._states[suggestion_id] = state
            if reason:
                self._reasons[suggestion_id] = reason
            return True

    def to_dict(self, visible_only: bool = True) -> dict:
        """Snapshot of the generation for JSON serialization."""
        suggestions = []
        for suggestion in self.all_suggestions():
            if visible_only and not self.is_offered(suggestion):
                continue
            data = suggestion.to_dict()
            data["vid"] = self.vid_of(suggestion)
            data["state"] = self.state_of(suggestion.id).value
            suggestions.append(data)
        return {
            "generation": self.generation,
            "project": self.project,
            "data_owner": self.data_owner,
            "size": self.size(),
            "suggestions": suggestions,
        }
