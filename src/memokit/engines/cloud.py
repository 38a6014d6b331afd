"""Cloud engine — per-user document collections with live sync."""

from __future__ import annotations

import asyncio
import logging

from memokit.auth import UserIdentity
from memokit.docstore import Document, DocumentNotFound, DocumentStore
from memokit.engines.base import MemoInputLike, SnapshotCallback, Subscription
from memokit.engines.query import (
    MonotonicClock,
    check_window,
    compute_stats,
    filter_matching,
    paginate,
    sort_recent_first,
)
from memokit.errors import NotFound, StorageUnavailable, Unauthenticated
from memokit.models import (
    Memo,
    MemoId,
    MemoStats,
    coerce_input,
    normalize_tags,
    normalize_timestamp,
    validate_category,
)

logger = logging.getLogger(__name__)


class CloudEngine:
    """Memos stored under ``users/{uid}/memos`` in a document store.

    Construction never touches the network or the session; a missing user
    surfaces as ``Unauthenticated`` on the first operation instead.
    """

    def __init__(
        self,
        store: DocumentStore,
        auth: UserIdentity,
        clock: MonotonicClock | None = None,
    ) -> None:
        self._store = store
        self._auth = auth
        self._clock = clock or MonotonicClock()
        self._initialized = False

    @property
    def name(self) -> str:
        return "cloud"

    # ── Lifecycle ────────────────────────────────────────────

    async def initialize(self) -> None:
        try:
            await self._store.enable_network()
        except Exception as e:
            raise StorageUnavailable(f"Cloud document store unavailable: {e}") from e
        if not self._initialized:
            logger.info("Cloud document store connected")
        self._initialized = True

    def _collection(self) -> str:
        if not self._initialized:
            raise StorageUnavailable("Cloud engine not initialized")
        user_id = self._auth.current_user_id()
        if not user_id:
            raise Unauthenticated("No signed-in user")
        return f"users/{user_id}/memos"

    # ── CRUD ─────────────────────────────────────────────────

    async def list_all(self, limit: int | None = None, offset: int | None = None) -> list[Memo]:
        check_window(limit, offset)
        collection = self._collection()
        fetch_limit = None if limit is None else limit + (offset or 0)
        docs = await self._store.query(
            collection, order_by="updatedAt", descending=True, limit=fetch_limit
        )
        return paginate([_to_memo(d) for d in docs], limit, offset)

    async def get(self, memo_id: MemoId) -> Memo:
        collection = self._collection()
        data = await self._store.get(collection, str(memo_id))
        if data is None:
            raise NotFound(memo_id)
        return _to_memo((str(memo_id), data))

    async def create(self, memo_input: MemoInputLike) -> MemoId:
        collection = self._collection()
        fields = coerce_input(memo_input).as_dict()
        now = self._clock()
        return await self._store.add(collection, {**fields, "createdAt": now, "updatedAt": now})

    async def update(self, memo_id: MemoId, memo_input: MemoInputLike) -> None:
        collection = self._collection()
        fields = coerce_input(memo_input).as_dict()
        try:
            await self._store.update(
                collection, str(memo_id), {**fields, "updatedAt": self._clock()}
            )
        except DocumentNotFound:
            raise NotFound(memo_id) from None

    async def delete(self, memo_id: MemoId) -> None:
        await self._store.delete(self._collection(), str(memo_id))

    async def search(self, query: str) -> list[Memo]:
        # The document store has no substring queries; filter client-side.
        return filter_matching(await self.list_all(), query)

    async def by_category(self, category: str) -> list[Memo]:
        collection = self._collection()
        docs = await self._store.query(
            collection,
            where=("category", validate_category(category)),
            order_by="updatedAt",
            descending=True,
        )
        return [_to_memo(d) for d in docs]

    async def stats(self) -> MemoStats:
        return compute_stats(await self.list_all())

    # ── Sync capabilities ────────────────────────────────────

    def subscribe(self, callback: SnapshotCallback) -> Subscription:
        """Receive the full ordered memo list whenever the collection changes.

        Must be called from a running event loop; callbacks run on it.
        """
        collection = self._collection()
        subscription = Subscription(callback, asyncio.get_running_loop())

        def on_snapshot(docs: list[Document]) -> None:
            subscription.post(sort_recent_first(_to_memo(d) for d in docs))

        subscription.bind(self._store.watch(collection, on_snapshot))
        return subscription

    async def go_offline(self) -> None:
        try:
            await self._store.disable_network()
            logger.info("Cloud engine offline; serving from local cache")
        except Exception as e:
            logger.error("Failed to go offline: %s", e)

    async def go_online(self) -> None:
        try:
            await self._store.enable_network()
            logger.info("Cloud engine online")
        except Exception as e:
            logger.error("Failed to go online: %s", e)


def _to_memo(doc: Document) -> Memo:
    doc_id, data = doc
    return Memo(
        id=doc_id,
        title=data.get("title", ""),
        content=data.get("content", ""),
        category=data.get("category", "note"),
        priority=data.get("priority", "medium"),
        tags=normalize_tags(data.get("tags")),
        created_at=normalize_timestamp(data.get("createdAt")),
        updated_at=normalize_timestamp(data.get("updatedAt")),
    )

