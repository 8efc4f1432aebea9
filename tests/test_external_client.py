"""
Tests for the remote recommender HTTP client.
"""

import json
from unittest.mock import MagicMock

import pytest
import requests

from suggestion_service.errors import ExternalRecommenderApiException, SyncProtocolError
from suggestion_service.external import ExternalRecommenderClient
from suggestion_service.models import ExternalAnnotation, ExternalDocument


def _response(status=200, data=None, raw=None):
    response = requests.Response()
    response.status_code = status
    response.url = "http://recommender.test"
    if raw is not None:
        response._content = raw.encode()
    else:
        response._content = json.dumps(data if data is not None else {}).encode()
    return response


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session, headers={})


@pytest.fixture
def client(session):
    return ExternalRecommenderClient("http://recommender.test/", connect_timeout=2, read_timeout=30,
                                     session=session)


class TestRequests:

    def test_timeouts_and_url(self, client, session):
        session.request.return_value = _response(204)
        client.delete_document("my set", "doc/1")

        method, url = session.request.call_args.args
        assert method == "DELETE"
        assert url == "http://recommender.test/datasets/my%20set/documents/doc%2F1"
        assert session.request.call_args.kwargs["timeout"] == (2, 30)

    def test_missing_url(self):
        with pytest.raises(ValueError):
            ExternalRecommenderClient("")

    def test_http_error_carries_status(self, client, session):
        session.request.return_value = _response(500)
        with pytest.raises(ExternalRecommenderApiException) as excinfo:
            client.train("ner", "model", "data")
        assert excinfo.value.status_code == 500

    def test_connection_error(self, client, session):
        session.request.side_effect = requests.ConnectionError("refused")
        with pytest.raises(ExternalRecommenderApiException) as excinfo:
            client.list_documents("data")
        assert excinfo.value.status_code is None
        assert isinstance(excinfo.value.cause, requests.ConnectionError)

    def test_timeout(self, client, session):
        session.request.side_effect = requests.Timeout()
        with pytest.raises(ExternalRecommenderApiException):
            client.create_dataset("data")


class TestDatasets:

    def test_create_dataset(self, client, session):
        session.request.return_value = _response(204)
        assert client.create_dataset("data") is True

    def test_existing_dataset_is_not_an_error(self, client, session):
        session.request.return_value = _response(409)
        assert client.create_dataset("data") is False

    def test_list_documents(self, client, session):
        session.request.return_value = _response(200, {"names": ["a", "b"], "versions": [1, 2]})
        documents = client.list_documents("data")
        assert documents.names == ["a", "b"]
        assert documents.versions == [1, 2]

    def test_list_length_mismatch(self, client, session):
        session.request.return_value = _response(200, {"names": ["a", "b"], "versions": [1]})
        with pytest.raises(SyncProtocolError):
            client.list_documents("data")

    def test_list_invalid_json(self, client, session):
        session.request.return_value = _response(200, raw="<html>")
        with pytest.raises(SyncProtocolError):
            client.list_documents("data")

    def test_list_wrong_shape(self, client, session):
        session.request.return_value = _response(200, {"names": "a", "versions": "b"})
        with pytest.raises(SyncProtocolError):
            client.list_documents("data")

    def test_add_document_sends_wire_payload(self, client, session):
        session.request.return_value = _response(204)
        document = ExternalDocument(text="Paris", version=3,
                                    annotations=[ExternalAnnotation(start=0, end=5, label="LOC")])
        client.add_document("data", "doc1", document)

        payload = session.request.call_args.kwargs["json"]
        assert payload["text"] == "Paris"
        assert payload["version"] == 3
        assert payload["annotations"] == [{"start": 0, "end": 5, "label": "LOC"}]


class TestClassifiers:

    def test_train_request_uses_camel_case(self, client, session):
        session.request.return_value = _response(204)
        client.train("ner", "spacy", "data")

        method, url = session.request.call_args.args
        assert (method, url) == ("POST", "http://recommender.test/classifiers/ner/train")
        assert session.request.call_args.kwargs["json"] == {"modelName": "spacy", "datasetName": "data"}

    def test_predict(self, client, session):
        session.request.return_value = _response(200, {
            "text": "Paris",
            "annotations": [{"start": 0, "end": 5, "label": "LOC", "score": 0.8}],
        })
        result = client.predict("ner", "spacy", ExternalDocument(text="Paris"))

        assert session.request.call_args.kwargs["json"]["modelName"] == "spacy"
        assert result.annotations[0].label == "LOC"
        assert result.annotations[0].score == 0.8

    def test_predict_invalid_response(self, client, session):
        session.request.return_value = _response(200, {"annotations": []})
        with pytest.raises(SyncProtocolError):
            client.predict("ner", "spacy", ExternalDocument(text="Paris"))

    def test_list_classifiers(self, client, session):
        session.request.return_value = _response(200, [{"name": "ner", "models": ["spacy"]}])
        classifiers = client.list_classifiers()
        assert [c.name for c in classifiers] == ["ner"]

    def test_list_classifiers_requires_array(self, client, session):
        session.request.return_value = _response(200, {"name": "ner"})
        with pytest.raises(SyncProtocolError):
            client.list_classifiers()
