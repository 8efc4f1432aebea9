"""
Dataset synchronization with a remote recommender.

One pass makes the remote dataset mirror the local corpus: documents the
remote side lacks or holds in an older version are uploaded, documents that
no longer exist locally are deleted. Unchanged documents are never resent.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Mapping

from ..errors import ExternalRecommenderApiException
from ..models import ExternalDocument, RemoteDatasetState
from .client import ExternalRecommenderClient

logger = logging.getLogger(__name__)

UNKNOWN_VERSION = -1


@dataclass
class SyncReport:
    """What one synchronization pass did."""
    dataset: str
    uploaded: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict:
        return {
            "dataset": self.dataset,
            "uploaded": list(self.uploaded),
            "deleted": list(self.deleted),
            "failed": list(self.failed),
            "unchanged": list(self.unchanged),
        }


def needs_upload(local_version: int, remote_version) -> bool:
    """Whether a local document must be (re)sent. Unknown local versions always are."""
    if remote_version is None:
        return True
    if local_version == UNKNOWN_VERSION:
        return True
    return local_version > remote_version


class DatasetSynchronizer:
    """Runs synchronization passes against one remote service."""

    def __init__(self, client: ExternalRecommenderClient):
        self.client = client

    def fetch_remote_state(self, dataset: str) -> RemoteDatasetState:
        documents = self.client.list_documents(dataset)
        return RemoteDatasetState(dataset=dataset, versions=dict(zip(documents.names, documents.versions)))

    def synchronize(self, dataset: str, documents: Mapping[str, ExternalDocument]) -> SyncReport:
        """Bring the remote dataset in line with ``documents`` (name -> payload).

        Listing failures and protocol errors abort the pass; failures on a
        single document are logged and the pass continues.
        """
        self.client.create_dataset(dataset)
        remote = self.fetch_remote_state(dataset)
        report = SyncReport(dataset=dataset)

        to_send = []
        for name in sorted(documents):
            if needs_upload(documents[name].version, remote.version_of(name)):
                to_send.append(name)
            else:
                report.unchanged.append(name)
        to_delete = sorted(name for name in remote.versions if name not in documents)

        for name in to_delete:
            try:
                self.client.delete_document(dataset, name)
                report.deleted.append(name)
            except ExternalRecommenderApiException as e:
                logger.error(f"Could not delete [{name}] from dataset [{dataset}]: {e}")
                report.failed.append(name)

        for name in to_send:
            try:
                self.client.add_document(dataset, name, documents[name])
                report.uploaded.append(name)
            except ExternalRecommenderApiException as e:
                logger.error(f"Could not upload [{name}] to dataset [{dataset}]: {e}")
                report.failed.append(name)

        logger.info(
            f"Synchronized dataset [{dataset}]: {len(report.uploaded)} uploaded, "
            f"{len(report.deleted)} deleted, {len(report.unchanged)} unchanged, "
            f"{len(report.failed)} failed"
        )
        return report
