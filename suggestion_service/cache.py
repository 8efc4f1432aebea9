"""
Double-buffered prediction cache.

Each (session owner, data owner, project) key has an *active* generation that
renderers read and at most one *incoming* generation that a prediction run is
filling. A finished run is either committed directly or staged until the UI
asks to switch. All pointer swaps happen under the key's lock; reads of a
published generation need no lock because published generations are sealed.
"""

import itertools
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, NamedTuple, Optional

from .errors import GenerationInProgressError
from .predictions import Predictions

logger = logging.getLogger(__name__)


class CacheKey(NamedTuple):
    """Explicit session context of every cache and action call."""
    session_owner: str
    data_owner: str
    project: str


@dataclass
class GenerationHandle:
    """Token for one in-flight prediction run."""
    key: CacheKey
    generation: int
    predictions: Predictions
    epoch: int
    cancel_event: threading.Event = field(default_factory=threading.Event)

    def is_cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        self.cancel_event.set()


class _Slot:
    """Cache state of one key. Only touched while holding ``lock``."""

    def __init__(self, key: CacheKey, counter: int, epoch: int):
        self.lock = threading.RLock()
        self.counter = counter
        self.epoch = epoch
        self.active = self._empty(key, counter)
        self.ready: Optional[Predictions] = None
        self.in_flight: Optional[GenerationHandle] = None

    @staticmethod
    def _empty(key: CacheKey, generation: int) -> Predictions:
        predictions = Predictions(key.session_owner, key.data_owner, key.project, generation=generation)
        predictions.seal()
        return predictions

    def latest(self) -> Predictions:
        if self.ready is not None and self.ready.generation > self.active.generation:
            return self.ready
        return self.active


class PredictionCache:
    """Per-key active/incoming generations with atomic switch semantics."""

    def __init__(self):
        self._slots: Dict[CacheKey, _Slot] = {}
        self._slots_lock = threading.Lock()
        # Epochs are unique across slots, so a handle never matches a recreated slot.
        self._epochs = itertools.count(1)
        # Highest generation handed out by an evicted slot; new slots count on from here.
        self._retired_counter = 0

    def _slot(self, key: CacheKey) -> _Slot:
        with self._slots_lock:
            slot = self._slots.get(key)
            if slot is None:
                slot = _Slot(key, self._retired_counter, next(self._epochs))
                self._slots[key] = slot
            return slot

    def _existing_slot(self, key: CacheKey) -> Optional[_Slot]:
        with self._slots_lock:
            return self._slots.get(key)

    def _handle_slot(self, handle: GenerationHandle) -> Optional[_Slot]:
        slot = self._existing_slot(handle.key)
        if slot is None:
            logger.info(f"Discarding generation {handle.generation} for {handle.key}: key was evicted")
        return slot

    def _evict(self, key: CacheKey) -> None:
        # Lock order is slot lock, then slots lock, as in key_lock() callers.
        slot = self._existing_slot(key)
        if slot is None:
            return
        with slot.lock:
            if slot.in_flight is not None:
                return
            with self._slots_lock:
                if self._slots.get(key) is slot:
                    del self._slots[key]
                    self._retired_counter = max(self._retired_counter, slot.counter)
                    logger.debug(f"Evicted cache slot of {key}")

    def keys(self) -> List[CacheKey]:
        with self._slots_lock:
            return list(self._slots.keys())

    @contextmanager
    def key_lock(self, key: CacheKey) -> Iterator[None]:
        """Serialize work on one key, e.g. accept/reject against the active generation."""
        slot = self._slot(key)
        with slot.lock:
            yield

    # Reads ------------------------------------------------------------------

    def get_active(self, key: CacheKey) -> Predictions:
        """The generation currently being rendered; empty if none was computed yet."""
        return self._slot(key).active

    def get_incoming(self, key: CacheKey) -> Optional[Predictions]:
        """The generation staged for the next switch, if any."""
        return self._slot(key).ready

    def is_generation_in_progress(self, key: CacheKey) -> bool:
        return self._slot(key).in_flight is not None

    # Writes -----------------------------------------------------------------

    def begin_generation(self, key: CacheKey) -> GenerationHandle:
        """Allocate the incoming generation for ``key``.

        Raises:
            GenerationInProgressError: if another run for the key has not finished yet
        """
        slot = self._slot(key)
        with slot.lock:
            if slot.in_flight is not None:
                raise GenerationInProgressError(key, slot.in_flight.generation)
            slot.counter += 1
            predictions = slot.latest().successor(slot.counter)
            handle = GenerationHandle(
                key=key,
                generation=slot.counter,
                predictions=predictions,
                epoch=slot.epoch,
            )
            slot.in_flight = handle
            logger.debug(f"Began generation {handle.generation} for {key}")
            return handle

    def _finish(self, slot: _Slot, handle: GenerationHandle,
                predictions: Optional[Predictions]) -> Optional[Predictions]:
        """Release the in-flight guard and return the predictions if they may be published."""
        if slot.in_flight is handle:
            slot.in_flight = None

        predictions = predictions if predictions is not None else handle.predictions
        if predictions.generation != handle.generation:
            raise ValueError(
                f"Predictions of generation {predictions.generation} do not belong to handle "
                f"of generation {handle.generation}"
            )
        if handle.epoch != slot.epoch or handle.is_cancelled():
            logger.info(f"Discarding generation {handle.generation} for {handle.key}: key was invalidated")
            return None
        if predictions.generation <= slot.active.generation:
            logger.info(
                f"Discarding generation {predictions.generation} for {handle.key}: "
                f"generation {slot.active.generation} is already active"
            )
            return None
        predictions.seal()
        return predictions

    def commit_generation(self, handle: GenerationHandle, predictions: Optional[Predictions] = None) -> bool:
        """Atomically make ``predictions`` the active generation.

        Returns:
            False if the generation was discarded (stale or invalidated)
        """
        slot = self._handle_slot(handle)
        if slot is None:
            return False
        with slot.lock:
            publishable = self._finish(slot, handle, predictions)
            if publishable is None:
                return False
            slot.active = publishable
            if slot.ready is not None and slot.ready.generation <= publishable.generation:
                slot.ready = None
            logger.info(
                f"Activated generation {publishable.generation} for {handle.key} "
                f"({publishable.size()} suggestions)"
            )
            return True

    def complete_generation(self, handle: GenerationHandle, predictions: Optional[Predictions] = None) -> bool:
        """Stage a finished generation; it becomes active on the next switch.

        Returns:
            False if the generation was discarded (stale or invalidated)
        """
        slot = self._handle_slot(handle)
        if slot is None:
            return False
        with slot.lock:
            publishable = self._finish(slot, handle, predictions)
            if publishable is None:
                return False
            if slot.ready is not None and slot.ready.generation >= publishable.generation:
                logger.info(f"Discarding generation {publishable.generation} for {handle.key}: newer one staged")
                return False
            slot.ready = publishable
            logger.info(
                f"Staged generation {publishable.generation} for {handle.key} "
                f"({publishable.size()} suggestions)"
            )
            return True

    def switch_predictions(self, key: CacheKey) -> bool:
        """Promote the staged generation to active.

        Returns:
            True if a switch happened and callers should re-render
        """
        slot = self._slot(key)
        with slot.lock:
            ready = slot.ready
            if ready is None:
                return False
            slot.ready = None
            if ready.generation <= slot.active.generation:
                return False
            slot.active = ready
            logger.info(f"Switched {key} to generation {ready.generation}")
            return True

    def abort_generation(self, handle: GenerationHandle) -> None:
        """Release the in-flight guard of a failed run without publishing anything."""
        slot = self._existing_slot(handle.key)
        if slot is None:
            return
        with slot.lock:
            if slot.in_flight is handle:
                slot.in_flight = None
                logger.info(f"Aborted generation {handle.generation} for {handle.key}")

    def invalidate(self, key: CacheKey) -> None:
        """Drop the active and incoming generations of ``key``.

        An in-flight run is cancelled and its eventual commit is discarded. The
        generation counter keeps counting so VIDs issued before never resolve again.
        """
        slot = self._slot(key)
        with slot.lock:
            slot.epoch = next(self._epochs)
            if slot.in_flight is not None:
                slot.in_flight.cancel()
                slot.in_flight = None
            slot.ready = None
            slot.counter += 1
            slot.active = _Slot._empty(key, slot.counter)
            logger.info(f"Invalidated predictions for {key}")

    def invalidate_project(self, project: str) -> int:
        keys = [key for key in self.keys() if key.project == project]
        for key in keys:
            self.invalidate(key)
        return len(keys)

    def invalidate_user(self, user: str) -> int:
        """Invalidate every key the user owns or views and forget their slots.

        Slots are evicted once nothing is in flight for them. A recreated slot
        continues above the highest generation of any evicted one.
        """
        keys = [key for key in self.keys() if user in (key.session_owner, key.data_owner)]
        for key in keys:
            self.invalidate(key)
            self._evict(key)
        return len(keys)
