"""Document store contract used by the cloud engine.

The cloud engine treats its backing service as a black box offering CRUD on
collections of documents, change watchers and a network on/off switch.
``InMemoryDocumentStore`` is an in-process implementation of that contract;
it keeps a local cache that stays readable and writable while the network is
disabled and counts writes waiting to be synchronized.
"""

from __future__ import annotations

import copy
import itertools
import logging
import threading
import uuid
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

Document = tuple[str, dict[str, Any]]
Watcher = Callable[[list[Document]], None]


class DocumentNotFound(KeyError):
    """Raised by ``update`` when the target document does not exist."""


class NetworkUnavailable(ConnectionError):
    """The store could not reach its backend."""


@runtime_checkable
class DocumentStore(Protocol):
    """Black-box document service: collections of id-keyed documents."""

    async def enable_network(self) -> None: ...

    async def disable_network(self) -> None: ...

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        """Insert a document and return its generated id."""
        ...

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None: ...

    async def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        """Merge fields into an existing document. Raises DocumentNotFound."""
        ...

    async def delete(self, collection: str, doc_id: str) -> None:
        """Remove a document. Missing documents are ignored."""
        ...

    async def query(
        self,
        collection: str,
        *,
        where: tuple[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Document]:
        """Equality filter on one field, then ordering. Ties keep insertion order
        (reversed when descending)."""
        ...

    def watch(self, collection: str, callback: Watcher) -> Callable[[], None]:
        """Call ``callback`` with the full collection now and after every change.

        Returns a function that stops the watcher.
        """
        ...


class InMemoryDocumentStore:
    """Process-local document store with offline cache semantics."""

    def __init__(self, reachable: bool = True) -> None:
        self.reachable = reachable
        self._online = False
        self._pending_writes = 0
        self._collections: dict[str, dict[str, tuple[int, dict[str, Any]]]] = {}
        self._watchers: dict[str, list[Watcher]] = {}
        self._seq = itertools.count()
        self._lock = threading.RLock()

    @property
    def online(self) -> bool:
        return self._online

    @property
    def pending_writes(self) -> int:
        """Writes made while offline that have not been synchronized yet."""
        return self._pending_writes

    # ── Network ──────────────────────────────────────────────

    async def enable_network(self) -> None:
        if not self.reachable:
            raise NetworkUnavailable("Document store backend is unreachable")
        with self._lock:
            self._online = True
            if self._pending_writes:
                logger.info("Synchronized %d pending writes", self._pending_writes)
            self._pending_writes = 0

    async def disable_network(self) -> None:
        with self._lock:
            self._online = False

    # ── CRUD ─────────────────────────────────────────────────

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex[:20]
        with self._lock:
            docs = self._collections.setdefault(collection, {})
            docs[doc_id] = (next(self._seq), copy.deepcopy(data))
            self._record_write()
        self._notify(collection)
        return doc_id

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        with self._lock:
            entry = self._collections.get(collection, {}).get(doc_id)
            return copy.deepcopy(entry[1]) if entry else None

    async def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        with self._lock:
            docs = self._collections.get(collection, {})
            if doc_id not in docs:
                raise DocumentNotFound(doc_id)
            seq, current = docs[doc_id]
            merged = {**current, **copy.deepcopy(data)}
            docs[doc_id] = (seq, merged)
            self._record_write()
        self._notify(collection)

    async def delete(self, collection: str, doc_id: str) -> None:
        with self._lock:
            removed = self._collections.get(collection, {}).pop(doc_id, None)
            if removed is not None:
                self._record_write()
        if removed is not None:
            self._notify(collection)

    async def query(
        self,
        collection: str,
        *,
        where: tuple[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Document]:
        with self._lock:
            return self._select(collection, where, order_by, descending, limit)

    # ── Watchers ─────────────────────────────────────────────

    def watch(self, collection: str, callback: Watcher) -> Callable[[], None]:
        with self._lock:
            self._watchers.setdefault(collection, []).append(callback)
            snapshot = self._select(collection, None, None, False, None)
        callback(snapshot)

        def stop() -> None:
            with self._lock:
                watchers = self._watchers.get(collection, [])
                if callback in watchers:
                    watchers.remove(callback)

        return stop

    # ── Internals ────────────────────────────────────────────

    def _record_write(self) -> None:
        if not self._online:
            self._pending_writes += 1

    def _select(
        self,
        collection: str,
        where: tuple[str, Any] | None,
        order_by: str | None,
        descending: bool,
        limit: int | None,
    ) -> list[Document]:
        entries = sorted(self._collections.get(collection, {}).items(), key=lambda kv: kv[1][0])
        if where is not None:
            field_name, value = where
            entries = [e for e in entries if e[1][1].get(field_name) == value]
        if descending:
            entries.reverse()
        if order_by is not None:
            entries.sort(key=lambda kv: kv[1][1].get(order_by), reverse=descending)
        docs = [(doc_id, copy.deepcopy(data)) for doc_id, (_, data) in entries]
        return docs[:limit] if limit is not None else docs

    def _notify(self, collection: str) -> None:
        with self._lock:
            watchers = list(self._watchers.get(collection, []))
            if not watchers:
                return
            snapshot = self._select(collection, None, None, False, None)
        for callback in watchers:
            callback(copy.deepcopy(snapshot))
