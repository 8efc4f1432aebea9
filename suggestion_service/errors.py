"""
Exception hierarchy for the suggestion service.

Errors local to one document or one suggestion are caught and logged where they
occur; errors that indicate a broken invariant propagate to the caller.
"""

from typing import Optional


class RecommendationError(Exception):
    """Base class for all suggestion service errors."""


class MalformedAddressError(RecommendationError):
    """A VID string that the encoder could not have produced."""

    def __init__(self, value: str, reason: str = "not a suggestion VID"):
        self.value = value
        self.reason = reason
        super().__init__(f"Malformed suggestion address [{value}]: {reason}")


class SuggestionNotFoundError(RecommendationError):
    """A well-formed VID that does not resolve in the active generation."""

    def __init__(self, vid: str, reason: str = "suggestion is no longer available"):
        self.vid = vid
        self.reason = reason
        super().__init__(f"Suggestion [{vid}]: {reason}")


class GenerationInProgressError(RecommendationError):
    """A prediction run for the same key is already in flight."""

    def __init__(self, key, generation: int):
        self.key = key
        self.generation = generation
        super().__init__(f"Generation {generation} is already being computed for {key}")


class SyncProtocolError(RecommendationError):
    """The remote recommender returned structurally invalid data."""


class ExternalRecommenderApiException(RecommendationError):
    """Network or HTTP failure while talking to a remote recommender."""

    def __init__(self, message: str, status_code: Optional[int] = None, cause: Optional[BaseException] = None):
        self.status_code = status_code
        self.cause = cause
        super().__init__(message)


class EvaluationSkippedError(RecommendationError):
    """Signal that an evaluation could not run, e.g. for lack of training data.

    Evaluation runs carry an instance of this as an informational outcome
    rather than raising it.
    """


class RecommenderNotFoundError(RecommendationError):
    """No recommender is registered under the requested id."""


class AnnotationStorageError(RecommendationError):
    """Failure reported by the annotation storage collaborator."""


class DocumentNotFoundError(AnnotationStorageError):
    """The document does not exist (anymore)."""


class LayerNotFoundError(AnnotationStorageError):
    """The annotation layer does not exist (anymore)."""


class SuggestionActionError(RecommendationError):
    """A user-visible failure while accepting or rejecting a suggestion."""

    def __init__(self, vid: str, message: str):
        self.vid = vid
        super().__init__(message)
