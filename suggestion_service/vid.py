"""
Virtual identifiers (VIDs) for suggestions.

A VID lets a suggestion be addressed like a stored annotation. Grammar::

    VID     := "rec" ":" PAYLOAD
    PAYLOAD := GEN "." RECOMMENDER "." LAYER "." ID "@" BEGIN "-" END

All numbers are canonical non-negative decimals. The generation in the payload
ties a VID to the prediction run that produced it.
"""

import re
from dataclasses import dataclass

from .errors import MalformedAddressError
from .models import AnnotationSuggestion, NEW_ID

EXTENSION_ID = "rec"
_SEPARATOR = ":"

_NUMBER = r"(0|[1-9][0-9]*)"
_PAYLOAD_RE = re.compile(
    rf"{_NUMBER}\.{_NUMBER}\.{_NUMBER}\.{_NUMBER}@{_NUMBER}-{_NUMBER}"
)


@dataclass(frozen=True)
class SuggestionVid:
    """Decoded form of a suggestion VID."""
    generation: int
    recommender_id: int
    layer_id: int
    suggestion_id: int
    begin: int
    end: int

    def __str__(self) -> str:
        return (
            f"{EXTENSION_ID}{_SEPARATOR}{self.generation}.{self.recommender_id}."
            f"{self.layer_id}.{self.suggestion_id}@{self.begin}-{self.end}"
        )

    def matches(self, suggestion: AnnotationSuggestion) -> bool:
        """Whether the stored suggestion agrees with everything the VID pins down."""
        return (
            suggestion.id == self.suggestion_id
            and suggestion.recommender_id == self.recommender_id
            and suggestion.layer_id == self.layer_id
            and suggestion.begin == self.begin
            and suggestion.end == self.end
        )


def encode_vid(suggestion: AnnotationSuggestion, generation: int) -> str:
    """Encode the address of ``suggestion`` within ``generation``."""
    if suggestion.id == NEW_ID:
        raise ValueError("Cannot address a suggestion without an assigned id")
    for name, value in (
        ("generation", generation),
        ("recommender id", suggestion.recommender_id),
        ("layer id", suggestion.layer_id),
        ("begin", suggestion.begin),
        ("end", suggestion.end),
    ):
        if value < 0:
            raise ValueError(f"Cannot encode negative {name}: {value}")
    return str(SuggestionVid(
        generation=generation,
        recommender_id=suggestion.recommender_id,
        layer_id=suggestion.layer_id,
        suggestion_id=suggestion.id,
        begin=suggestion.begin,
        end=suggestion.end,
    ))


def is_suggestion_vid(value: str) -> bool:
    """Whether ``value`` carries this service's extension id (it may still be malformed)."""
    return isinstance(value, str) and value.startswith(EXTENSION_ID + _SEPARATOR)


def decode_vid(value: str) -> SuggestionVid:
    """Decode a VID produced by :func:`encode_vid`.

    Raises:
        MalformedAddressError: for any string the encoder could not have produced
    """
    if not isinstance(value, str):
        raise MalformedAddressError(repr(value), "not a string")

    extension_id, separator, payload = value.partition(_SEPARATOR)
    if not separator or extension_id != EXTENSION_ID:
        raise MalformedAddressError(value, f"extension id must be '{EXTENSION_ID}'")

    match = _PAYLOAD_RE.fullmatch(payload)
    if not match:
        raise MalformedAddressError(value, "payload does not match GEN.REC.LAYER.ID@BEGIN-END")

    generation, recommender_id, layer_id, suggestion_id, begin, end = (int(g) for g in match.groups())
    if end < begin:
        raise MalformedAddressError(value, "end offset before begin offset")

    return SuggestionVid(
        generation=generation,
        recommender_id=recommender_id,
        layer_id=layer_id,
        suggestion_id=suggestion_id,
        begin=begin,
        end=end,
    )
