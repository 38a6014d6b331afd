"""Storage engine protocol and shared types."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from typing import Any, Protocol, runtime_checkable

from memokit.models import Memo, MemoId, MemoInput, MemoStats

logger = logging.getLogger(__name__)

MemoInputLike = MemoInput | Mapping[str, Any]
SnapshotCallback = Callable[[list[Memo]], None]


@runtime_checkable
class StorageEngine(Protocol):
    """Protocol that all storage backends must implement.

    Every variant must produce identical ordering, filtering and error
    semantics for the same sequence of calls.
    """

    @property
    def name(self) -> str: ...

    async def initialize(self) -> None:
        """Open the medium and create schema. Idempotent."""
        ...

    async def list_all(self, limit: int | None = None, offset: int | None = None) -> list[Memo]:
        """All memos, most recently updated first."""
        ...

    async def get(self, memo_id: MemoId) -> Memo:
        """Fetch one memo. Raises NotFound."""
        ...

    async def create(self, memo_input: MemoInputLike) -> MemoId:
        """Persist a new memo and return its engine-assigned id."""
        ...

    async def update(self, memo_id: MemoId, memo_input: MemoInputLike) -> None:
        """Replace the mutable fields and refresh updatedAt. Raises NotFound."""
        ...

    async def delete(self, memo_id: MemoId) -> None:
        """Remove a memo. Deleting an absent memo is not an error."""
        ...

    async def search(self, query: str) -> list[Memo]:
        """Case-insensitive substring match on title, content and tags."""
        ...

    async def by_category(self, category: str) -> list[Memo]:
        ...

    async def stats(self) -> MemoStats:
        ...


@runtime_checkable
class SupportsSync(Protocol):
    """Optional capabilities of engines backed by a synchronizing service."""

    def subscribe(self, callback: SnapshotCallback) -> Subscription: ...

    async def go_offline(self) -> None: ...

    async def go_online(self) -> None: ...


class Subscription:
    """Handle for a change subscription.

    Snapshots are posted to the event loop that created the subscription, so
    callbacks always run on that loop's thread. Deliveries arriving after
    ``unsubscribe()`` are dropped.
    """

    def __init__(self, callback: SnapshotCallback, loop: asyncio.AbstractEventLoop) -> None:
        self._callback = callback
        self._loop = loop
        self._cancel: Callable[[], None] | None = None
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def bind(self, cancel: Callable[[], None]) -> None:
        self._cancel = cancel
        if not self._active:
            cancel()

    def post(self, memos: list[Memo]) -> None:
        """Queue a snapshot for delivery. Safe to call from any thread."""
        if not self._active or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._deliver, memos)

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        if self._cancel is not None:
            self._cancel()
            self._cancel = None

    def _deliver(self, memos: list[Memo]) -> None:
        if not self._active:
            return
        try:
            self._callback(memos)
        except Exception:
            logger.exception("Memo subscription callback failed")
