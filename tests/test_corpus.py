"""
Tests for corpus files and the command line interface built on them.
"""

import json
from unittest.mock import patch

import pytest
from pydantic import ValidationError

import recommender_cli
from suggestion_service.corpus import Corpus, load_corpus
from suggestion_service.models import RelationPosition, SpanPosition
from suggestion_service.storage import InMemoryAnnotationStorage

WORDS = [("Paris", "LOC"), ("Berlin", "LOC"), ("Alice", "PER")]


def _corpus_data(documents=30):
    data = {
        "project": "demo",
        "documents": [],
        "recommenders": [{
            "id": 1,
            "project": "demo",
            "name": "strings",
            "layer_id": 1,
            "feature": "value",
            "tool": "string-matching",
        }],
    }
    for i in range(documents):
        word, label = WORDS[i % 3]
        data["documents"].append({
            "name": f"doc{i:02d}",
            "text": f"{word} is here.",
            "last_modified": "2024-01-01T00:00:00+00:00",
            "annotations": [{"layer_id": 1, "feature": "value", "label": label, "begin": 0, "end": len(word)}],
        })
    return data


@pytest.fixture
def corpus_file(tmp_path):
    path = tmp_path / "corpus.json"
    path.write_text(json.dumps(_corpus_data()), encoding="utf-8")
    return path


class TestCorpus:

    def test_load(self, corpus_file):
        corpus = load_corpus(corpus_file)
        assert corpus.project == "demo"
        assert corpus.user == "annotator"
        assert len(corpus.documents) == 30
        assert corpus.recommenders[0].tool == "string-matching"

    def test_invalid_corpus(self, tmp_path):
        path = tmp_path / "corpus.json"
        path.write_text(json.dumps({"documents": []}), encoding="utf-8")
        with pytest.raises(ValidationError):
            load_corpus(path)

    def test_samples(self, corpus_file):
        samples = load_corpus(corpus_file).samples(1, "value")
        assert len(samples) == 30
        assert (samples[0].text, samples[0].label) == ("Paris", "LOC")
        assert load_corpus(corpus_file).samples(2, "value") == []

    def test_populate(self, corpus_file):
        corpus = load_corpus(corpus_file)
        storage = InMemoryAnnotationStorage()

        assert corpus.populate(storage) == 30

        annotations = storage.list_confirmed_annotations("demo", "doc02", "annotator", 1)
        assert [(a.position, a.features["value"]) for a in annotations] == [(SpanPosition(0, 5), "PER")]
        # Declared modification times survive loading
        info = storage.list_documents("demo")[0]
        assert info.last_modified.year == 2024

    def test_relation_annotation(self):
        corpus = Corpus.model_validate({
            "project": "demo",
            "documents": [{
                "name": "d",
                "text": "Alice met Bob.",
                "annotations": [{
                    "layer_id": 2, "feature": "type", "label": "meets",
                    "source": {"begin": 0, "end": 5}, "target": {"begin": 10, "end": 13},
                }],
            }],
        })
        storage = InMemoryAnnotationStorage()
        corpus.populate(storage)

        annotation = storage.list_confirmed_annotations("demo", "d", "annotator", 2)[0]
        assert annotation.position == RelationPosition(SpanPosition(0, 5), SpanPosition(10, 13))
        assert corpus.samples(2, "type") == []

    def test_span_without_offsets(self):
        corpus = Corpus.model_validate({
            "project": "demo",
            "documents": [{"name": "d", "text": "x", "annotations": [{"layer_id": 1, "feature": "value"}]}],
        })
        with pytest.raises(ValueError):
            corpus.populate(InMemoryAnnotationStorage())


@patch("recommender_cli.stop_logging")
@patch("recommender_cli.setup_logging")
class TestCli:

    def test_evaluate(self, _setup, _stop, corpus_file, tmp_path, capsys):
        output = tmp_path / "out" / "results.json"

        code = recommender_cli.main([
            "evaluate", str(corpus_file), "--min-samples", "5", "--step", "5", "--output", str(output),
        ])

        assert code == 0
        results = json.loads(output.read_text(encoding="utf-8"))
        assert [r["train_size"] for r in results] == [5, 10, 15, 20, 24]
        assert results[-1]["metrics"]["accuracy"] == 1.0
        assert "train" in capsys.readouterr().out

    def test_evaluate_skipped(self, _setup, _stop, tmp_path, capsys):
        path = tmp_path / "small.json"
        path.write_text(json.dumps(_corpus_data(documents=5)), encoding="utf-8")

        assert recommender_cli.main(["evaluate", str(path)]) == 0
        assert "Evaluation skipped" in capsys.readouterr().out

    def test_unknown_recommender(self, _setup, _stop, corpus_file):
        with pytest.raises(SystemExit):
            recommender_cli.main(["evaluate", str(corpus_file), "--recommender", "7"])

    def test_sync_requires_url(self, _setup, _stop, corpus_file):
        with pytest.raises(SystemExit):
            recommender_cli.main(["sync", str(corpus_file), "--recommender", "1"])

    def test_sync(self, _setup, _stop, corpus_file, capsys):
        with patch("recommender_cli.ExternalRecommenderClient") as client_class:
            client = client_class.return_value
            client.list_documents.return_value.names = []
            client.list_documents.return_value.versions = []

            code = recommender_cli.main([
                "sync", str(corpus_file), "--recommender", "1",
                "--url", "http://remote.test", "--dataset", "demo-set",
            ])

        assert code == 0
        assert client.add_document.call_count == 30
        report = json.loads(capsys.readouterr().out)
        assert report["dataset"] == "demo-set"
        assert len(report["uploaded"]) == 30
