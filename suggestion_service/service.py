"""
service.py - Recommendation service facade

Owns the recommender registry, schedules prediction runs in the background
and exposes the read/act operations the editor layer needs.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from .actions import ActionResult, SuggestionActionHandler, SuggestionDetail
from .cache import CacheKey, GenerationHandle, PredictionCache
from .errors import AnnotationStorageError, RecommenderNotFoundError
from .evaluation import EvaluationConfig, EvaluationRun, evaluate
from .learning import LearningRecordLog, UserAction
from .models import (
    AnnotationSuggestion,
    DocumentSnapshot,
    LabeledRelation,
    LabeledSample,
    Recommender,
    RecommenderContext,
    RelationPosition,
    SpanPosition,
    context_summary,
)
from .predictions import Predictions
from .recommenders import EngineRegistry, RecommendationEngine
from .storage import AnnotationStorage, StoredAnnotation

logger = logging.getLogger(__name__)

HIDE_OVERLAP = "overlap"


@dataclass
class ServiceConfig:
    """Runtime settings of the recommendation service."""
    max_workers: int = 2
    auto_switch_predictions: bool = False
    show_all_predictions: bool = False
    max_suggestions_per_document: int = 0


@dataclass
class DocumentState:
    """A document as seen by one recommender during one run."""
    snapshot: DocumentSnapshot
    annotations: List[StoredAnnotation] = field(default_factory=list)


class RecommendationService:
    """Entry point for the web layer and the CLI."""

    def __init__(
        self,
        storage: AnnotationStorage,
        engines: EngineRegistry,
        cache: Optional[PredictionCache] = None,
        learning_records: Optional[LearningRecordLog] = None,
        config: Optional[ServiceConfig] = None,
    ):
        self.storage = storage
        self.engines = engines
        self.cache = cache or PredictionCache()
        self.learning_records = learning_records or LearningRecordLog()
        self.config = config or ServiceConfig()
        self.actions = SuggestionActionHandler(
            self.cache,
            storage,
            self.learning_records,
            show_all_predictions=self.config.show_all_predictions,
        )

        self._lock = threading.RLock()
        self._recommenders: Dict[int, Recommender] = {}
        self._engines: Dict[int, RecommendationEngine] = {}
        # (user, recommender id) -> context of the last training
        self._contexts: Dict[Tuple[str, int], RecommenderContext] = {}
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, self.config.max_workers),
            thread_name_prefix="prediction",
        )

    # ---------------------------------------------------------------------------
    # Recommender registry
    # ---------------------------------------------------------------------------

    def register_recommender(self, recommender: Recommender) -> Recommender:
        """Add or replace a recommender. Raises ValueError for unknown tools."""
        engine = self.engines.create(recommender)
        with self._lock:
            self._recommenders[recommender.id] = recommender
            self._engines[recommender.id] = engine
            self._drop_contexts(lambda user, rid: rid == recommender.id)
        self.cache.invalidate_project(recommender.project)
        logger.info(f"Registered recommender [{recommender.name}] ({recommender.tool}) for [{recommender.project}]")
        return recommender

    def get_recommender(self, recommender_id: int) -> Recommender:
        with self._lock:
            recommender = self._recommenders.get(recommender_id)
        if recommender is None:
            raise RecommenderNotFoundError(f"Recommender [{recommender_id}] not found")
        return recommender

    def list_recommenders(self, project: Optional[str] = None) -> List[Recommender]:
        with self._lock:
            recommenders = sorted(self._recommenders.values(), key=lambda r: r.id)
        if project is not None:
            recommenders = [r for r in recommenders if r.project == project]
        return recommenders

    def remove_recommender(self, recommender_id: int) -> None:
        recommender = self.get_recommender(recommender_id)
        with self._lock:
            self._recommenders.pop(recommender_id, None)
            self._engines.pop(recommender_id, None)
            self._drop_contexts(lambda user, rid: rid == recommender_id)
        self.cache.invalidate_project(recommender.project)
        logger.info(f"Removed recommender [{recommender.name}]")

    def get_context(self, user: str, recommender_id: int) -> Optional[RecommenderContext]:
        with self._lock:
            return self._contexts.get((user, recommender_id))

    def _drop_contexts(self, predicate) -> None:
        for key in [k for k in self._contexts if predicate(*k)]:
            del self._contexts[key]

    def _engine(self, recommender_id: int) -> RecommendationEngine:
        self.get_recommender(recommender_id)
        with self._lock:
            return self._engines[recommender_id]

    # ---------------------------------------------------------------------------
    # Reads and actions
    # ---------------------------------------------------------------------------

    def get_predictions(self, key: CacheKey) -> Predictions:
        """Read-only snapshot of the active generation."""
        return self.cache.get_active(key)

    def switch_predictions(self, key: CacheKey) -> bool:
        return self.cache.switch_predictions(key)

    def handle_action(self, key: CacheKey, action, vid: str, reason: Optional[str] = None) -> ActionResult:
        return self.actions.handle_action(key, action, vid, reason)

    def lookup_details(self, key: CacheKey, vid: str, query: Optional[str] = None) -> List[SuggestionDetail]:
        return self.actions.lookup_details(key, vid, query)

    def evaluate(self, recommender_id: int, samples: Sequence[LabeledSample],
                 config: Optional[EvaluationConfig] = None) -> EvaluationRun:
        """Learning curve of a recommender's engine on ``samples``."""
        return evaluate(self._engine(recommender_id), samples, config)

    def recommender_status(self, recommender_id: int, user: Optional[str] = None) -> dict:
        """Configuration, training state for ``user`` and engine status of a recommender.

        Raises:
            ExternalRecommenderApiException / SyncProtocolError: if a remote engine cannot be reached
        """
        recommender = self.get_recommender(recommender_id)
        engine = self._engine(recommender_id)
        status = {
            "recommender": recommender.model_dump(mode="json"),
            "supports_evaluation": engine.supports_evaluation,
        }
        if user:
            context = self.get_context(user, recommender_id)
            status["trained"] = context is not None
            status["ready"] = context is not None and engine.is_ready_for_prediction(context)
            status["context"] = {
                name: value for name, value in context_summary(context).items()
                if isinstance(value, (str, int, float, bool, type(None)))
            }
        status.update(engine.status())
        return status

    def get_suggestion_groups(self, key: CacheKey, document: str, layer_id: int,
                              window_begin: int = -1, window_end: int = -1,
                              show_all: bool = False) -> List[dict]:
        """Suggestions of a document window grouped by position, best label first."""
        predictions = self.get_predictions(key)
        groups = []
        for group in predictions.get_grouped_predictions(document, layer_id, window_begin, window_end):
            entries = []
            for suggestion in group.best_by_label():
                if not show_all and not predictions.is_offered(suggestion):
                    continue
                data = suggestion.to_dict()
                data["vid"] = predictions.vid_of(suggestion)
                data["state"] = predictions.state_of(suggestion.id).value
                entries.append(data)
            if entries:
                groups.append({
                    "kind": group.kind.value,
                    "window": {"begin": group.window_begin, "end": group.window_end},
                    "suggestions": entries,
                })
        return groups

    def collect_samples(self, recommender_id: int, user: str) -> List[LabeledSample]:
        """All confirmed, labeled samples of the recommender's layer/feature for ``user``."""
        recommender = self.get_recommender(recommender_id)
        samples = []
        for state in self.load_documents(recommender, user):
            samples.extend(state.snapshot.samples)
        return samples

    # ---------------------------------------------------------------------------
    # Prediction runs
    # ---------------------------------------------------------------------------

    def schedule_prediction_run(self, key: CacheKey) -> Future:
        """Start training and prediction for ``key`` in the background.

        Raises:
            GenerationInProgressError: if a run for the key is already in flight

        Returns:
            Future resolving to True if the new generation was published
        """
        handle = self.cache.begin_generation(key)
        logger.info(f"Scheduled prediction run {handle.generation} for {key}")
        try:
            return self._executor.submit(self._run, handle)
        except RuntimeError:
            self.cache.abort_generation(handle)
            raise

    def _run(self, handle: GenerationHandle) -> bool:
        key = handle.key
        predictions = handle.predictions
        try:
            for recommender in self.list_recommenders(key.project):
                if handle.is_cancelled():
                    break
                if not recommender.enabled:
                    continue
                self._run_recommender(handle, recommender)
        except Exception:
            logger.exception(f"Prediction run {handle.generation} for {key} failed")
            self.cache.abort_generation(handle)
            raise

        if self.config.auto_switch_predictions:
            published = self.cache.commit_generation(handle, predictions)
        else:
            published = self.cache.complete_generation(handle, predictions)
        logger.info(
            f"Prediction run {handle.generation} for {key} finished: {predictions.size()} suggestions "
            f"on {predictions.documents_seen_count} documents ({'published' if published else 'discarded'})"
        )
        return published

    def _run_recommender(self, handle: GenerationHandle, recommender: Recommender) -> None:
        key = handle.key
        predictions = handle.predictions
        with self._lock:
            engine = self._engines.get(recommender.id)
        if engine is None:
            return

        documents = self.load_documents(recommender, key.data_owner)
        context = RecommenderContext(key.data_owner)
        try:
            engine.train(context, [state.snapshot for state in documents])
        except Exception as e:
            logger.error(f"Training [{recommender.name}] for [{key.data_owner}] failed: {e}")
            predictions.log("ERROR", recommender.name, f"Training failed: {e}")
            return
        finally:
            context.close()

        if handle.is_cancelled():
            logger.info(f"Run {handle.generation} for {key} was cancelled, dropping context of [{recommender.name}]")
            return
        with self._lock:
            self._contexts[(key.data_owner, recommender.id)] = context

        if not engine.is_ready_for_prediction(context):
            predictions.log("INFO", recommender.name, "Not ready for prediction")
            return

        limit = recommender.max_recommendations or self.config.max_suggestions_per_document
        added = 0
        for state in documents:
            if handle.is_cancelled():
                return
            document = state.snapshot.name
            try:
                suggestions = engine.predict(context, state.snapshot)
            except Exception as e:
                logger.error(f"Prediction of [{recommender.name}] on [{document}] failed: {e}")
                predictions.log("ERROR", recommender.name, f"Prediction on [{document}] failed: {e}")
                continue

            suggestions = self._calculate_visibility(key, state, suggestions)
            if limit > 0:
                suggestions.sort(key=lambda s: (not s.visible, -s.score))
                suggestions = suggestions[:limit]
            added += predictions.put_suggestions(suggestions)
            predictions.mark_document_seen(document)

        predictions.log("INFO", recommender.name, f"{added} suggestions on {len(documents)} documents")

    def load_documents(self, recommender: Recommender, user: str) -> List[DocumentState]:
        """Text and confirmed annotations of every document, skipping ones that vanish meanwhile."""
        states = []
        for info in self.storage.list_documents(recommender.project):
            try:
                text = self.storage.read_document_text(recommender.project, info.name)
                annotations = self.storage.list_confirmed_annotations(
                    recommender.project, info.name, user, recommender.layer_id
                )
            except AnnotationStorageError as e:
                logger.warning(f"Skipping document [{info.name}]: {e}")
                continue

            snapshot = DocumentSnapshot(name=info.name, text=text, last_modified=info.last_modified)
            for annotation in annotations:
                label = annotation.features.get(recommender.feature)
                if isinstance(annotation.position, RelationPosition):
                    snapshot.relations.append(LabeledRelation(
                        info.name, annotation.position.source, annotation.position.target, label
                    ))
                elif label is not None:
                    position = annotation.position
                    snapshot.samples.append(LabeledSample(
                        info.name, position.begin, position.end, text[position.begin:position.end], label
                    ))
            states.append(DocumentState(snapshot, annotations))
        return states

    def _calculate_visibility(self, key: CacheKey, state: DocumentState,
                              suggestions: List[AnnotationSuggestion]) -> List[AnnotationSuggestion]:
        """Hide suggestions the user already dealt with or that a confirmed annotation covers."""
        result = []
        for suggestion in suggestions:
            record = self.learning_records.find_record(key.data_owner, key.project, suggestion)
            if record is not None and record.action in (UserAction.REJECTED, UserAction.SKIPPED):
                suggestion = suggestion.hide(record.action.value)
            elif _covered_by_annotation(suggestion, state.annotations):
                suggestion = suggestion.hide(HIDE_OVERLAP)
            result.append(suggestion)
        return result

    # ---------------------------------------------------------------------------
    # Invalidation
    # ---------------------------------------------------------------------------

    def on_document_changed(self, project: str, document: Optional[str] = None) -> None:
        count = self.cache.invalidate_project(project)
        logger.debug(f"Document [{document}] of [{project}] changed, invalidated {count} keys")

    def on_document_removed(self, project: str, document: str) -> None:
        """Forget learning records of a deleted document and invalidate the project."""
        removed = self.learning_records.delete_records(project, document)
        count = self.cache.invalidate_project(project)
        logger.info(
            f"Document [{document}] of [{project}] removed: dropped {removed} learning records, "
            f"invalidated {count} keys"
        )

    def on_layer_changed(self, project: str) -> None:
        with self._lock:
            recommender_ids = {r.id for r in self._recommenders.values() if r.project == project}
            self._drop_contexts(lambda user, rid: rid in recommender_ids)
        count = self.cache.invalidate_project(project)
        logger.debug(f"Layers of [{project}] changed, invalidated {count} keys")

    def on_session_closed(self, user: str) -> None:
        with self._lock:
            self._drop_contexts(lambda u, rid: u == user)
        count = self.cache.invalidate_user(user)
        logger.debug(f"Session of [{user}] closed, invalidated {count} keys")

    def shutdown(self, wait: bool = False) -> None:
        for key in self.cache.keys():
            self.cache.invalidate(key)
        self._executor.shutdown(wait=wait, cancel_futures=True)


def _covered_by_annotation(suggestion: AnnotationSuggestion, annotations: List[StoredAnnotation]) -> bool:
    for annotation in annotations:
        if annotation.features.get(suggestion.feature) != suggestion.label:
            continue
        if isinstance(suggestion.position, SpanPosition):
            if isinstance(annotation.position, SpanPosition) and annotation.position.overlaps(suggestion.position):
                return True
        elif annotation.position == suggestion.position:
            return True
    return False
