"""
Tests for the recommendation service: registry, background prediction runs,
visibility and invalidation.
"""

import threading

import pytest

from suggestion_service.cache import CacheKey
from suggestion_service.errors import GenerationInProgressError, RecommenderNotFoundError
from suggestion_service.evaluation import EvaluationConfig
from suggestion_service.learning import UserAction
from suggestion_service.models import KEY_TRAINING_COMPLETE, Recommender, SpanPosition, span_suggestion
from suggestion_service.recommenders import StringMatchingEngine, build_default_registry
from suggestion_service.service import HIDE_OVERLAP, RecommendationService, ServiceConfig
from suggestion_service.storage import InMemoryAnnotationStorage

KEY = CacheKey("alice", "alice", "p")
TEXT = "John met Mary. John left."


def _recommender(recommender_id=1, tool="string-matching", **kwargs):
    return Recommender(id=recommender_id, project="p", name=f"rec-{recommender_id}", layer_id=1,
                       feature="value", tool=tool, **kwargs)


class BlockingEngine(StringMatchingEngine):
    """String matching that waits for a signal before training."""

    started = None
    release = None

    def train(self, context, documents):
        self.started.set()
        self.release.wait(5)
        super().train(context, documents)


class FailingEngine(StringMatchingEngine):

    def train(self, context, documents):
        raise RuntimeError("model exploded")


class ServiceTestBase:

    def setup_method(self):
        self.storage = InMemoryAnnotationStorage()
        self.storage.add_layer("p", 1)
        self.storage.add_document("p", "d1", TEXT)
        ref = self.storage.create_annotation("p", "d1", "alice", 1, SpanPosition(0, 4))
        self.storage.update_feature(ref, "value", "PER")

        self.registry = build_default_registry()
        BlockingEngine.started = threading.Event()
        BlockingEngine.release = threading.Event()
        self.registry.register("blocking", BlockingEngine)
        self.registry.register("failing", FailingEngine)
        self.service = self.create_service()

    def create_service(self, **config):
        return RecommendationService(self.storage, self.registry, config=ServiceConfig(**config))

    def teardown_method(self):
        BlockingEngine.release.set()
        self.service.shutdown(wait=True)

    def run_predictions(self, key=KEY):
        return self.service.schedule_prediction_run(key).result(timeout=5)


class TestRegistry(ServiceTestBase):

    def test_register_and_list(self):
        self.service.register_recommender(_recommender(2))
        self.service.register_recommender(_recommender(1))
        assert [r.id for r in self.service.list_recommenders("p")] == [1, 2]
        assert self.service.list_recommenders("other") == []

    def test_unknown_tool(self):
        with pytest.raises(ValueError):
            self.service.register_recommender(_recommender(tool="nope"))
        assert self.service.list_recommenders() == []

    def test_missing_recommender(self):
        with pytest.raises(RecommenderNotFoundError):
            self.service.get_recommender(42)
        with pytest.raises(RecommenderNotFoundError):
            self.service.remove_recommender(42)

    def test_remove(self):
        self.service.register_recommender(_recommender())
        self.service.remove_recommender(1)
        assert self.service.list_recommenders() == []


class TestPredictionRun(ServiceTestBase):

    def test_run_is_staged_until_switch(self):
        self.service.register_recommender(_recommender())

        assert self.run_predictions() is True
        assert self.service.get_predictions(KEY).is_empty()

        assert self.service.switch_predictions(KEY)
        predictions = self.service.get_predictions(KEY)
        assert predictions.generation > 0
        assert [(s.begin, s.visible) for s in predictions.get_suggestions_by_document("d1")] == [
            (0, False), (15, True),
        ]
        assert predictions.has_run_prediction_on_document("d1")

    def test_auto_switch(self):
        self.service = self.create_service(auto_switch_predictions=True)
        self.service.register_recommender(_recommender())

        self.run_predictions()

        assert self.service.get_predictions(KEY).size() == 2
        assert not self.service.switch_predictions(KEY)

    def test_confirmed_annotation_hides_overlapping_suggestion(self):
        self.service = self.create_service(auto_switch_predictions=True)
        self.service.register_recommender(_recommender())
        self.run_predictions()

        hidden = self.service.get_predictions(KEY).get_suggestions_by_document("d1")[0]
        assert hidden.hide_reason == HIDE_OVERLAP

    def test_rejected_suggestion_stays_hidden(self):
        self.service = self.create_service(auto_switch_predictions=True)
        self.service.register_recommender(_recommender())
        rejected = span_suggestion(1, "rec-1", 1, "value", "d1", 15, 19, "PER")
        self.service.learning_records.log_record("alice", "p", rejected, UserAction.REJECTED)

        self.run_predictions()

        suggestion = self.service.get_predictions(KEY).get_suggestions_by_document("d1")[1]
        assert not suggestion.visible
        assert suggestion.hide_reason == "rejected"

    def test_per_document_limit_prefers_visible(self):
        self.service = self.create_service(auto_switch_predictions=True)
        self.service.register_recommender(_recommender(max_recommendations=1))

        self.run_predictions()

        suggestions = self.service.get_predictions(KEY).all_suggestions()
        assert [(s.begin, s.visible) for s in suggestions] == [(15, True)]

    def test_disabled_recommender_is_skipped(self):
        self.service = self.create_service(auto_switch_predictions=True)
        self.service.register_recommender(_recommender(enabled=False))
        self.run_predictions()
        assert self.service.get_predictions(KEY).is_empty()

    def test_training_failure_is_logged_and_others_continue(self):
        self.service = self.create_service(auto_switch_predictions=True)
        self.service.register_recommender(_recommender(1, tool="failing"))
        self.service.register_recommender(_recommender(2))

        assert self.run_predictions()

        predictions = self.service.get_predictions(KEY)
        assert {s.recommender_id for s in predictions.all_suggestions()} == {2}
        errors = [m for m in predictions.get_log() if m.level == "ERROR"]
        assert errors and "model exploded" in errors[0].message

    def test_context_is_kept_after_training(self):
        self.service.register_recommender(_recommender())
        self.run_predictions()

        context = self.service.get_context("alice", 1)
        assert context.closed
        assert context.get(KEY_TRAINING_COMPLETE)

    def test_data_owner_annotations_are_used(self):
        self.service = self.create_service(auto_switch_predictions=True)
        self.service.register_recommender(_recommender())
        key = CacheKey("curator", "bob", "p")

        self.run_predictions(key)

        # bob has no annotations, so nothing was learned
        assert self.service.get_predictions(key).is_empty()


class TestConcurrency(ServiceTestBase):

    def test_second_run_is_rejected_while_in_flight(self):
        self.service.register_recommender(_recommender(tool="blocking"))
        future = self.service.schedule_prediction_run(KEY)
        assert BlockingEngine.started.wait(5)

        with pytest.raises(GenerationInProgressError):
            self.service.schedule_prediction_run(KEY)

        BlockingEngine.release.set()
        assert future.result(timeout=5)
        # The guard is released once the run is done
        self.run_predictions()

    def test_invalidation_discards_in_flight_run(self):
        self.service.register_recommender(_recommender(tool="blocking"))
        future = self.service.schedule_prediction_run(KEY)
        assert BlockingEngine.started.wait(5)

        self.service.on_document_changed("p", "d1")
        BlockingEngine.release.set()

        assert future.result(timeout=5) is False
        assert not self.service.switch_predictions(KEY)
        assert self.service.get_predictions(KEY).is_empty()

    def test_session_closed_during_training_keeps_no_context(self):
        self.service.register_recommender(_recommender(tool="blocking"))
        future = self.service.schedule_prediction_run(KEY)
        assert BlockingEngine.started.wait(5)

        self.service.on_session_closed("alice")
        BlockingEngine.release.set()

        assert future.result(timeout=5) is False
        assert self.service.get_context("alice", 1) is None
        assert self.service.cache.keys() == []


class TestInvalidation(ServiceTestBase):

    def setup_method(self):
        super().setup_method()
        self.service = self.create_service(auto_switch_predictions=True)
        self.service.register_recommender(_recommender())
        self.run_predictions()
        self.old_generation = self.service.get_predictions(KEY).generation

    def test_document_change(self):
        self.service.on_document_changed("p", "d1")
        predictions = self.service.get_predictions(KEY)
        assert predictions.is_empty()
        assert predictions.generation > self.old_generation

    def test_layer_change_drops_contexts(self):
        self.service.on_layer_changed("p")
        assert self.service.get_context("alice", 1) is None
        assert self.service.get_predictions(KEY).is_empty()

    def test_session_closed(self):
        self.service.on_session_closed("alice")
        assert self.service.get_context("alice", 1) is None
        assert self.service.get_predictions(KEY).is_empty()

    def test_other_projects_untouched(self):
        self.service.on_document_changed("elsewhere")
        assert not self.service.get_predictions(KEY).is_empty()

    def test_registering_recommender_invalidates_project(self):
        self.service.register_recommender(_recommender(2))
        assert self.service.get_predictions(KEY).is_empty()


class TestEvaluation(ServiceTestBase):

    def test_collect_samples(self):
        self.service.register_recommender(_recommender())
        samples = self.service.collect_samples(1, "alice")
        assert [(s.text, s.label) for s in samples] == [("John", "PER")]

    def test_evaluate_with_too_little_data_is_skipped(self):
        self.service.register_recommender(_recommender())
        run = self.service.evaluate(1, self.service.collect_samples(1, "alice"), EvaluationConfig())
        assert run.is_skipped


class TestInspection(ServiceTestBase):

    def setup_method(self):
        super().setup_method()
        self.service = self.create_service(auto_switch_predictions=True)
        self.service.register_recommender(_recommender())

    def test_status_before_training(self):
        status = self.service.recommender_status(1, "alice")
        assert status["recommender"]["tool"] == "string-matching"
        assert status["supports_evaluation"] is True
        assert status["trained"] is False
        assert status["ready"] is False

    def test_status_after_training(self):
        self.run_predictions()
        status = self.service.recommender_status(1, "alice")
        assert status["ready"] is True
        assert status["context"]["training_complete"] is True
        # Learned models are not part of the status
        assert "string_matching_model" not in status["context"]

    def test_suggestion_groups(self):
        self.run_predictions()

        groups = self.service.get_suggestion_groups(KEY, "d1", 1)
        assert [g["window"] for g in groups] == [{"begin": 15, "end": 19}]
        assert groups[0]["suggestions"][0]["vid"].startswith("rec:")

        all_groups = self.service.get_suggestion_groups(KEY, "d1", 1, show_all=True)
        assert len(all_groups) == 2

    def test_suggestion_groups_window(self):
        self.run_predictions()
        assert self.service.get_suggestion_groups(KEY, "d1", 1, 0, 10, show_all=True)[0]["window"]["begin"] == 0
        assert self.service.get_suggestion_groups(KEY, "d1", 2) == []

    def test_document_removed_forgets_learning_records(self):
        rejected = span_suggestion(1, "rec-1", 1, "value", "d1", 15, 19, "PER")
        self.service.learning_records.log_record("alice", "p", rejected, UserAction.REJECTED)
        self.run_predictions()

        self.service.on_document_removed("p", "d1")

        assert self.service.learning_records.list_records("alice", "p") == []
        assert self.service.get_predictions(KEY).is_empty()
