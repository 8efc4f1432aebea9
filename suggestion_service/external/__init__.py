"""
Remote recommender access: HTTP client and dataset synchronization.
"""

from .client import ExternalRecommenderClient
from .sync import UNKNOWN_VERSION, DatasetSynchronizer, SyncReport, needs_upload

__all__ = [
    "DatasetSynchronizer",
    "ExternalRecommenderClient",
    "SyncReport",
    "UNKNOWN_VERSION",
    "needs_upload",
]
