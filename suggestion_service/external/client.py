"""
HTTP client for remote trainable recommenders.

Every network or HTTP failure surfaces as ExternalRecommenderApiException;
structurally invalid responses raise SyncProtocolError.
"""

import logging
from typing import Any, List, Optional
from urllib.parse import quote

import requests
from pydantic import ValidationError

from ..errors import ExternalRecommenderApiException, SyncProtocolError
from ..models import ClassifierInfo, DocumentList, ExternalDocument, PredictRequest, TrainRequest

logger = logging.getLogger(__name__)


class ExternalRecommenderClient:
    """Thin wrapper around the remote recommender REST API."""

    def __init__(self, base_url: str, connect_timeout: float = 5.0, read_timeout: float = 60.0,
                 session: Optional[requests.Session] = None, verify_ssl: bool = True):
        """Initialize the client.

        Args:
            base_url: Root URL of the remote service
            connect_timeout: Seconds to wait for a connection
            read_timeout: Seconds to wait for a response once connected
            session: Optional pre-configured session (mainly for tests)
            verify_ssl: Whether to verify TLS certificates
        """
        if not base_url:
            raise ValueError("Remote recommender URL must be specified")
        self.base_url = base_url.rstrip("/")
        self.timeout = (connect_timeout, read_timeout)
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        self.verify_ssl = verify_ssl

    def _url(self, *segments: str) -> str:
        return self.base_url + "/" + "/".join(quote(str(s), safe="") for s in segments)

    def _request(self, method: str, url: str, json: Any = None,
                 allowed_statuses: tuple = ()) -> requests.Response:
        try:
            response = self.session.request(
                method, url, json=json, timeout=self.timeout, verify=self.verify_ssl
            )
        except requests.RequestException as e:
            raise ExternalRecommenderApiException(f"{method} {url} failed: {e}", cause=e) from e

        if response.status_code in allowed_statuses:
            return response
        try:
            response.raise_for_status()
        except requests.HTTPError as e:
            raise ExternalRecommenderApiException(
                f"{method} {url} returned HTTP {response.status_code}",
                status_code=response.status_code,
                cause=e,
            ) from e
        return response

    @staticmethod
    def _json(response: requests.Response, url: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise SyncProtocolError(f"Response of {url} is not valid JSON") from e

    # Datasets ---------------------------------------------------------------

    def create_dataset(self, dataset: str) -> bool:
        """Create a dataset. Returns False if it already existed."""
        response = self._request("POST", self._url("datasets", dataset), allowed_statuses=(409,))
        created = response.status_code != 409
        logger.debug(f"Dataset [{dataset}] {'created' if created else 'already exists'}")
        return created

    def list_documents(self, dataset: str) -> DocumentList:
        url = self._url("datasets", dataset, "documents")
        data = self._json(self._request("GET", url), url)
        try:
            documents = DocumentList.model_validate(data)
        except ValidationError as e:
            raise SyncProtocolError(f"Invalid document list for dataset [{dataset}]: {e}") from e
        if len(documents.names) != len(documents.versions):
            raise SyncProtocolError(
                f"Document list for dataset [{dataset}] has {len(documents.names)} names "
                f"but {len(documents.versions)} versions"
            )
        return documents

    def add_document(self, dataset: str, name: str, document: ExternalDocument) -> None:
        self._request("PUT", self._url("datasets", dataset, "documents", name), json=document.to_wire())

    def delete_document(self, dataset: str, name: str) -> None:
        self._request("DELETE", self._url("datasets", dataset, "documents", name))

    # Classifiers ------------------------------------------------------------

    def train(self, classifier: str, model_name: str, dataset: str) -> None:
        request = TrainRequest(model_name=model_name, dataset_name=dataset)
        self._request("POST", self._url("classifiers", classifier, "train"), json=request.to_wire())

    def predict(self, classifier: str, model_name: str, document: ExternalDocument) -> ExternalDocument:
        url = self._url("classifiers", classifier, "predict")
        request = PredictRequest(model_name=model_name, document=document)
        data = self._json(self._request("POST", url, json=request.to_wire()), url)
        try:
            return ExternalDocument.model_validate(data)
        except ValidationError as e:
            raise SyncProtocolError(f"Invalid prediction response from [{classifier}]: {e}") from e

    def list_classifiers(self) -> List[ClassifierInfo]:
        url = self._url("classifiers")
        data = self._json(self._request("GET", url), url)
        if not isinstance(data, list):
            raise SyncProtocolError("Classifier list must be a JSON array")
        try:
            return [ClassifierInfo.model_validate(item) for item in data]
        except ValidationError as e:
            raise SyncProtocolError(f"Invalid classifier list: {e}") from e

    def get_classifier_info(self, classifier: str) -> ClassifierInfo:
        url = self._url("classifiers", classifier)
        data = self._json(self._request("GET", url), url)
        try:
            return ClassifierInfo.model_validate(data)
        except ValidationError as e:
            raise SyncProtocolError(f"Invalid info for classifier [{classifier}]: {e}") from e

    def close(self) -> None:
        self.session.close()
