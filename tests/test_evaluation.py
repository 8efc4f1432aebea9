"""
Tests for the learning-curve evaluation and its metrics.
"""

from unittest.mock import patch

import pytest

from suggestion_service.errors import EvaluationSkippedError
from suggestion_service.evaluation import ConfusionMatrix, EvaluationConfig, evaluate
from suggestion_service.models import LabeledSample, Recommender
from suggestion_service.recommenders import RecommendationEngine, StringMatchingEngine

LABELS = {"Paris": "LOC", "Berlin": "LOC", "Alice": "PER"}
WORDS = ["Paris", "Berlin", "Alice"]


def _samples(count=30):
    return [
        LabeledSample(f"doc{i // 10}", 0, len(WORDS[i % 3]), WORDS[i % 3], LABELS[WORDS[i % 3]])
        for i in range(count)
    ]


def _recommender(tool="string-matching"):
    return Recommender(id=1, project="p", name="strings", layer_id=1, feature="value", tool=tool)


class _NoEvaluationEngine(RecommendationEngine):

    def train(self, context, documents):
        pass

    def predict(self, context, document):
        return []


class TestConfusionMatrix:

    def test_accuracy(self):
        matrix = ConfusionMatrix()
        matrix.add_all([("A", "A"), ("A", "B"), ("B", "B"), ("B", None)])
        assert matrix.accuracy() == 0.5

    def test_macro_metrics(self):
        matrix = ConfusionMatrix()
        matrix.add_all([("A", "A"), ("A", "A"), ("A", "B"), ("B", "B")])
        metrics = matrix.metrics()

        # A: p=1, r=2/3 ; B: p=1/2, r=1
        assert metrics["precision"] == pytest.approx(0.75)
        assert metrics["recall"] == pytest.approx((2 / 3 + 1) / 2)
        assert metrics["accuracy"] == pytest.approx(0.75)

    def test_ignored_label(self):
        matrix = ConfusionMatrix(ignore_label="O")
        matrix.add_all([("O", "O"), ("O", "O"), ("A", "A"), ("A", "O")])
        assert matrix.total == 2
        assert matrix.accuracy() == 0.5
        assert matrix.labels == {"A"}

    def test_empty(self):
        assert ConfusionMatrix().metrics() == {"accuracy": 0.0, "precision": 0.0, "recall": 0.0, "f1": 0.0}


class TestEvaluate:

    def setup_method(self):
        self.engine = StringMatchingEngine(_recommender())

    def test_learning_curve(self):
        config = EvaluationConfig(train_fraction=0.8, step=10, min_samples=1)
        results = evaluate(self.engine, _samples(), config).results()

        assert [r.train_size for r in results] == [1, 11, 21, 24]
        assert all(r.test_size == 6 for r in results)
        # One known string after the first step: Paris is right, Berlin and Alice are unknown
        assert results[0].accuracy == pytest.approx(2 / 6)
        assert results[-1].accuracy == 1.0
        assert results[-1].f1 == 1.0

    def test_run_is_lazy(self):
        with patch.object(StringMatchingEngine, "train") as train:
            run = evaluate(self.engine, _samples(), EvaluationConfig(min_samples=1, step=10))
            assert train.call_count == 0
            next(run)
            assert train.call_count == 1

    def test_run_is_not_restartable(self):
        run = evaluate(self.engine, _samples(), EvaluationConfig(min_samples=1, step=10))
        assert len(list(run)) == 4
        assert list(run) == []

    def test_skipped_when_not_enough_data(self):
        run = evaluate(self.engine, _samples(10), EvaluationConfig(train_fraction=0.8, min_samples=10))

        assert run.is_skipped
        assert isinstance(run.skipped, EvaluationSkippedError)
        assert "not enough training data" in str(run.skipped)
        assert run.results() == []

    def test_skipped_when_engine_cannot_evaluate(self):
        engine = _NoEvaluationEngine(_recommender(tool="none"))
        run = evaluate(engine, _samples(), EvaluationConfig(min_samples=1))
        assert run.is_skipped
        assert list(run) == []

    def test_shuffle_is_seeded(self):
        config = EvaluationConfig(min_samples=1, step=10, shuffle=True, seed=7)
        first = [r.metrics for r in evaluate(self.engine, _samples(), config)]
        second = [r.metrics for r in evaluate(self.engine, _samples(), config)]
        assert first == second

    def test_result_to_dict(self):
        result = next(evaluate(self.engine, _samples(), EvaluationConfig(min_samples=1, step=10)))
        data = result.to_dict()
        assert data["iteration"] == 1
        assert data["train_size"] == 1
        assert {"gold": "LOC", "predicted": "LOC", "count": 2} in data["confusion"]


def test_config_from_dict_keeps_defaults():
    config = EvaluationConfig.from_dict({"step": 0.5, "shuffle": True})
    assert config.step == 0.5
    assert config.shuffle
    assert config.train_fraction == 0.8
    assert config.min_samples == 10


def test_config_from_dict_coerces_step():
    assert EvaluationConfig.from_dict({"step": "3"}).step == 3
    assert isinstance(EvaluationConfig.from_dict({"step": 4.0}).step, int)
    assert EvaluationConfig.from_dict({"step": "0.25"}).step == 0.25


def test_config_from_dict_rejects_non_numeric_values():
    with pytest.raises(ValueError):
        EvaluationConfig.from_dict({"train_fraction": "abc"})
    with pytest.raises(ValueError):
        EvaluationConfig.from_dict({"step": "lots"})
