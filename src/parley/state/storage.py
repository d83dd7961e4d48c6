"""Keyed storage contract and the in-memory reference store."""

from __future__ import annotations

import copy
import itertools
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import Any

from loguru import logger

from parley.errors import StorageConflictError

ETAG_KEY = "e_tag"
WILDCARD_ETAG = "*"


class Storage(ABC):
    """Read, write and delete opaque state blobs by key."""

    @abstractmethod
    async def read(self, keys: Iterable[str]) -> dict[str, Any]:
        """Return stored values; absent keys are omitted."""

    @abstractmethod
    async def write(self, changes: Mapping[str, Any]) -> None:
        """Persist all changes or none; ETag conflicts raise ``StorageConflictError``."""

    @abstractmethod
    async def delete(self, keys: Iterable[str]) -> None:
        """Remove keys; unknown keys are ignored."""


def etag_of(value: Any) -> str | None:
    """Read the ETag carried by a dict item or a store-item object."""

    if isinstance(value, Mapping):
        etag = value.get(ETAG_KEY)
    else:
        etag = getattr(value, ETAG_KEY, None)
    return None if etag is None else str(etag)


def _assign_etag(value: Any, etag: str) -> None:
    if isinstance(value, dict):
        value[ETAG_KEY] = etag
    elif hasattr(value, ETAG_KEY):
        setattr(value, ETAG_KEY, etag)


class MemoryStorage(Storage):
    """Process-wide dict-backed storage, safe for concurrent turns.

    Values are deep-copied in and out so callers never share mutable state
    with the store. A change whose ETag is ``"*"`` or absent always wins;
    a concrete ETag must match the stored one.
    """

    def __init__(self, dictionary: dict[str, Any] | None = None) -> None:
        self.memory: dict[str, Any] = dictionary if dictionary is not None else {}
        self._lock = threading.Lock()
        self._etags = itertools.count(1)

    async def read(self, keys: Iterable[str]) -> dict[str, Any]:
        if keys is None:
            raise ValueError("storage read requires keys")
        keys = list(keys)
        if not keys:
            return {}
        with self._lock:
            return {key: copy.deepcopy(self.memory[key]) for key in keys if key in self.memory}

    async def write(self, changes: Mapping[str, Any]) -> None:
        if changes is None:
            raise ValueError("storage write requires changes")
        if not changes:
            return
        with self._lock:
            for key, change in changes.items():
                self._check_etag(key, change)
            for key, change in changes.items():
                etag = str(next(self._etags))
                stored = copy.deepcopy(change)
                _assign_etag(stored, etag)
                self.memory[key] = stored
                _assign_etag(change, etag)
        logger.debug("storage.memory.write keys={}", list(changes))

    async def delete(self, keys: Iterable[str]) -> None:
        with self._lock:
            for key in keys:
                self.memory.pop(key, None)

    def _check_etag(self, key: str, change: Any) -> None:
        new_etag = etag_of(change)
        if new_etag == "":
            raise StorageConflictError(key, new_etag, etag_of(self.memory.get(key)))
        if key not in self.memory or new_etag is None or new_etag == WILDCARD_ETAG:
            return
        old_etag = etag_of(self.memory[key])
        if old_etag is not None and new_etag != old_etag:
            raise StorageConflictError(key, new_etag, old_etag)
