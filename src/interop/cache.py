"""
src/interop/cache.py

The Thunk Cache: NativeSignatureKey -> Thunk.

Append-only for the lifetime of a library handle. The check-then-generate-
then-insert sequence of a miss is serialised per key: the first caller
generates, everybody else racing for the same key waits for that generation
and then reads the stored thunk. A failed generation inserts nothing and lets
one of the waiters try again.
"""

import logging
from threading import Event, Lock
from typing import Any, Callable, Dict, Iterator, Optional, TYPE_CHECKING

from .descriptors import NativeSignatureKey

if TYPE_CHECKING:
    from .generator import Thunk
    from .library import NativeLibrary

logger = logging.getLogger("BMI.Cache")


class ThunkCache:
    """Per-handle store of generated thunks."""

    def __init__(self):
        self._entries: Dict[NativeSignatureKey, "Thunk"] = {}
        self._in_flight: Dict[NativeSignatureKey, Event] = {}
        self._lock = Lock()
        self.generations = 0
        self.hits = 0

    def get_or_create(
        self,
        library: "NativeLibrary",
        key: NativeSignatureKey,
        generator_fn: Callable[["NativeLibrary", NativeSignatureKey], "Thunk"],
    ) -> "Thunk":
        """
        Returns the thunk for `key`, calling `generator_fn(library, key)` on a miss.

        At most one generation runs per key at any time; a successful one is
        never repeated. Exceptions from the generator propagate to the caller
        that ran it.
        """
        while True:
            library.ensure_open()
            with self._lock:
                thunk = self._entries.get(key)
                if thunk is not None:
                    self.hits += 1
                    return thunk

                pending = self._in_flight.get(key)
                if pending is None:
                    pending = Event()
                    self._in_flight[key] = pending
                    break

            # Lost the race: wait for the winner, then re-check.
            logger.debug(f"Waiting on in-flight generation of {key}")
            pending.wait()

        try:
            logger.debug(f"Cache miss, generating thunk for {key}")
            thunk = generator_fn(library, key)
            with self._lock:
                self._entries[key] = thunk
                self.generations += 1
        finally:
            with self._lock:
                del self._in_flight[key]
            pending.set()

        return thunk

    def get(self, key: NativeSignatureKey) -> Optional["Thunk"]:
        with self._lock:
            return self._entries.get(key)

    def keys(self) -> Iterator[NativeSignatureKey]:
        with self._lock:
            return iter(list(self._entries))

    def __contains__(self, key: Any) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
