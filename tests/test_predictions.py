"""
Tests for one generation of predictions: id allocation, deduplication,
lookups and the per-suggestion lifecycle.
"""

import pytest

from suggestion_service.models import (
    SpanPosition,
    SuggestionKind,
    SuggestionState,
    relation_suggestion,
    span_suggestion,
)
from suggestion_service.predictions import Predictions
from suggestion_service.vid import decode_vid


def _span(begin, end, label="PER", score=0.5, recommender_id=1, document="doc1", layer_id=1,
          feature="value"):
    return span_suggestion(
        recommender_id=recommender_id,
        recommender_name=f"rec-{recommender_id}",
        layer_id=layer_id,
        feature=feature,
        document=document,
        begin=begin,
        end=end,
        label=label,
        score=score,
    )


def _predictions(generation=1, next_id=0):
    return Predictions("alice", "alice", "project", generation=generation, next_id=next_id)


class TestPutSuggestions:
    """Id allocation and deduplication."""

    def test_ids_are_allocated_in_order(self):
        predictions = _predictions()
        predictions.put_suggestions([_span(0, 5), _span(6, 10)])

        assert [s.id for s in predictions.all_suggestions()] == [0, 1]
        assert predictions.size() == 2

    def test_duplicate_keeps_higher_score(self):
        predictions = _predictions()
        predictions.put_suggestions([_span(0, 5, score=0.3), _span(0, 5, score=0.9)])

        suggestions = predictions.all_suggestions()
        assert len(suggestions) == 1
        assert suggestions[0].score == 0.9
        assert predictions.duplicate_count == 1

    def test_duplicate_with_lower_score_is_dropped(self):
        predictions = _predictions()
        predictions.put_suggestions([_span(0, 5, score=0.9)])
        accepted = predictions.put_suggestions([_span(0, 5, score=0.1)])

        assert accepted == 0
        assert predictions.all_suggestions()[0].score == 0.9

    def test_equal_score_keeps_first(self):
        predictions = _predictions()
        first = _span(0, 5, score=0.5)
        predictions.put_suggestions([first, _span(0, 5, score=0.5)])

        assert predictions.size() == 1
        assert predictions.get_by_id(0).score == 0.5

    def test_replacement_keeps_the_id(self):
        predictions = _predictions()
        predictions.put_suggestions([_span(0, 5, score=0.1)])
        predictions.put_suggestions([_span(0, 5, score=0.8)])

        assert predictions.get_by_id(0).score == 0.8
        assert predictions.size() == 1

    def test_different_labels_are_not_duplicates(self):
        predictions = _predictions()
        predictions.put_suggestions([_span(0, 5, label="PER"), _span(0, 5, label="LOC")])
        assert predictions.size() == 2

    def test_different_recommenders_are_not_duplicates(self):
        predictions = _predictions()
        predictions.put_suggestions([_span(0, 5, recommender_id=1), _span(0, 5, recommender_id=2)])
        assert predictions.size() == 2

    def test_successor_continues_id_counter(self):
        predictions = _predictions(generation=1)
        predictions.put_suggestions([_span(0, 5), _span(6, 9)])

        successor = predictions.successor(2)
        successor.put_suggestions([_span(0, 5)])

        assert successor.generation == 2
        assert successor.all_suggestions()[0].id == 2

    def test_sealed_generation_rejects_writes(self):
        predictions = _predictions()
        predictions.seal()
        with pytest.raises(RuntimeError):
            predictions.put_suggestions([_span(0, 5)])

    def test_remove_predictions_of_recommender(self):
        predictions = _predictions()
        predictions.put_suggestions([_span(0, 5, recommender_id=1), _span(0, 5, recommender_id=2)])

        assert predictions.remove_predictions(1) == 1
        assert [s.recommender_id for s in predictions.all_suggestions()] == [2]


class TestLookup:
    """Lookups by VID, document, window and position."""

    def setup_method(self):
        self.predictions = _predictions(generation=3)
        self.predictions.put_suggestions([
            _span(0, 5, label="PER", score=0.4),
            _span(0, 5, label="LOC", score=0.7),
            _span(20, 25, label="ORG"),
            _span(0, 5, document="doc2"),
            relation_suggestion(1, "rec-1", 2, "type", "doc1", SpanPosition(0, 5), SpanPosition(20, 25), "rel"),
        ])

    def test_get_by_vid(self):
        suggestion = self.predictions.get_by_id(2)
        vid = decode_vid(self.predictions.vid_of(suggestion))
        assert self.predictions.get_by_vid(vid) == suggestion

    def test_vid_of_other_generation_does_not_resolve(self):
        suggestion = self.predictions.get_by_id(0)
        vid = decode_vid(self.predictions.vid_of(suggestion).replace("rec:3.", "rec:2.", 1))
        assert self.predictions.get_by_vid(vid) is None

    def test_vid_with_wrong_offsets_does_not_resolve(self):
        vid = decode_vid("rec:3.1.1.0@1-5")
        assert self.predictions.get_by_vid(vid) is None

    def test_suggestions_by_document_and_window(self):
        assert len(self.predictions.get_suggestions_by_document("doc1")) == 4
        in_window = self.predictions.get_suggestions_by_document("doc1", 18, 30)
        assert {s.label for s in in_window} == {"ORG", "rel"}

    def test_grouped_predictions(self):
        groups = self.predictions.get_grouped_predictions("doc1", layer_id=1)
        assert [len(g.suggestions) for g in groups] == [2, 1]
        assert [s.label for s in groups[0].best_by_label()] == ["LOC", "PER"]

    def test_grouped_predictions_by_kind(self):
        groups = self.predictions.get_grouped_predictions("doc1", layer_id=2, kind=SuggestionKind.RELATION)
        assert len(groups) == 1
        assert groups[0].kind is SuggestionKind.RELATION

    def test_alternatives_share_position(self):
        suggestion = self.predictions.get_by_id(0)
        alternatives = self.predictions.get_alternative_suggestions(suggestion)
        assert {s.label for s in alternatives} == {"PER", "LOC"}

    def test_predictions_by_position_and_feature(self):
        found = self.predictions.get_predictions_by_position_and_feature("doc1", 1, 0, 5, "value")
        assert len(found) == 2

    def test_suggestions_by_recommender_and_document(self):
        self.predictions.put_suggestions([_span(30, 35, recommender_id=2)])
        found = self.predictions.get_suggestions_by_recommender_and_document(2, "doc1")
        assert [(s.begin, s.recommender_id) for s in found] == [(30, 2)]
        assert self.predictions.get_suggestions_by_recommender_and_document(2, "doc2") == []

    def test_documents(self):
        assert self.predictions.documents == ["doc1", "doc2"]


class TestLifecycle:
    """PENDING moves to a terminal state exactly once."""

    def setup_method(self):
        self.predictions = _predictions()
        self.predictions.put_suggestions([_span(0, 5)])
        self.suggestion = self.predictions.get_by_id(0)

    def test_new_suggestions_are_pending(self):
        assert self.predictions.state_of(0) is SuggestionState.PENDING
        assert self.predictions.is_offered(self.suggestion)

    def test_transition_is_single_use(self):
        assert self.predictions.transition(0, SuggestionState.ACCEPTED)
        assert not self.predictions.transition(0, SuggestionState.REJECTED)
        assert self.predictions.state_of(0) is SuggestionState.ACCEPTED
        assert not self.predictions.is_offered(self.suggestion)

    def test_transition_records_reason(self):
        self.predictions.transition(0, SuggestionState.REJECTED, "wrong")
        assert self.predictions.reason_of(0) == "wrong"

    def test_cannot_return_to_pending(self):
        with pytest.raises(ValueError):
            self.predictions.transition(0, SuggestionState.PENDING)

    def test_transition_allowed_after_seal(self):
        self.predictions.seal()
        assert self.predictions.transition(0, SuggestionState.ACCEPTED)

    def test_to_dict_hides_terminal_suggestions(self):
        self.predictions.transition(0, SuggestionState.REJECTED)
        assert self.predictions.to_dict()["suggestions"] == []
        everything = self.predictions.to_dict(visible_only=False)["suggestions"]
        assert everything[0]["state"] == "rejected"
        assert everything[0]["vid"] == "rec:1.1.1.0@0-5"


def test_log_is_bounded():
    predictions = _predictions()
    for i in range(600):
        predictions.log("INFO", "test", f"message {i}")
    log = predictions.get_log()
    assert len(log) == 500
    assert log[-1].message == "message 599"
