"""
Learning record log.

Every accept, reject and skip is recorded here. Later prediction runs consult
the log so that suggestions the user already dealt with are generated hidden.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Deque, Dict, List, Optional, Tuple

from .models import AnnotationSuggestion, Position

logger = logging.getLogger(__name__)

MAX_RECORDS_PER_USER = 10000


class UserAction(Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class LearningRecord:
    user: str
    project: str
    document: str
    layer_id: int
    feature: str
    position: Position
    label: Optional[str]
    action: UserAction
    reason: Optional[str]
    timestamp: datetime

    def to_dict(self) -> dict:
        return {
            "user": self.user,
            "project": self.project,
            "document": self.document,
            "layer_id": self.layer_id,
            "feature": self.feature,
            "position": self.position.to_dict(),
            "label": self.label,
            "action": self.action.value,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
        }


class LearningRecordLog:
    """Thread-safe in-memory log of user reactions to suggestions.

    Each user keeps at most ``max_records`` records per project; the oldest
    are dropped first.
    """

    def __init__(self, max_records: int = MAX_RECORDS_PER_USER):
        if max_records < 1:
            raise ValueError(f"max_records must be positive, got {max_records}")
        self.max_records = max_records
        self._lock = threading.Lock()
        # (user, project) -> records, oldest first
        self._records: Dict[Tuple[str, str], Deque[LearningRecord]] = {}

    def log_record(self, user: str, project: str, suggestion: AnnotationSuggestion,
                   action: UserAction, reason: Optional[str] = None) -> LearningRecord:
        record = LearningRecord(
            user=user,
            project=project,
            document=suggestion.document,
            layer_id=suggestion.layer_id,
            feature=suggestion.feature,
            position=suggestion.position,
            label=suggestion.label,
            action=action,
            reason=reason,
            timestamp=datetime.now(),
        )
        with self._lock:
            self._records.setdefault((user, project), deque(maxlen=self.max_records)).append(record)
        logger.debug(f"Logged {action.value} of [{suggestion.label}] in [{suggestion.document}] for [{user}]")
        return record

    def list_records(self, user: str, project: str, layer_id: Optional[int] = None) -> List[LearningRecord]:
        with self._lock:
            records = list(self._records.get((user, project), []))
        if layer_id is not None:
            records = [r for r in records if r.layer_id == layer_id]
        return records

    def find_record(self, user: str, project: str,
                    suggestion: AnnotationSuggestion) -> Optional[LearningRecord]:
        """The most recent record about the same document, layer, feature, position and label."""
        for record in reversed(self.list_records(user, project, suggestion.layer_id)):
            if (
                record.document == suggestion.document
                and record.feature == suggestion.feature
                and record.position == suggestion.position
                and suggestion.label_equals(record.label)
            ):
                return record
        return None

    def delete_records(self, project: str, document: Optional[str] = None) -> int:
        removed = 0
        with self._lock:
            for (user, p), records in self._records.items():
                if p != project:
                    continue
                kept = [r for r in records if document is not None and r.document != document]
                removed += len(records) - len(kept)
                self._records[(user, p)] = deque(kept, maxlen=self.max_records)
        return removed
