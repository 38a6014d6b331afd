"""Key-value engine — one record file per memo plus in-memory indexes.

Layout:
    <root>/
    ├── SEQUENCE              # next id to assign (ids are never reused)
    └── memos/
        └── 17.md             # YAML frontmatter holds every field

An index over category, priority and updatedAt is built once on
``initialize()`` and updated incrementally on writes, so ordered and filtered
reads only open the record files they return.
"""

from __future__ import annotations

import asyncio
import bisect
import logging
import os
import threading
from pathlib import Path
from typing import Any

import frontmatter

from memokit.engines.base import MemoInputLike
from memokit.engines.query import MonotonicClock, filter_matching, paginate
from memokit.errors import NotFound, StorageUnavailable
from memokit.models import (
    CATEGORIES,
    PRIORITIES,
    STATS_FIELDS,
    Memo,
    MemoId,
    MemoStats,
    coerce_input,
    format_timestamp,
    normalize_tags,
    normalize_timestamp,
    parse_timestamp,
    validate_category,
    validate_priority,
)

logger = logging.getLogger(__name__)


class KeyValueEngine:
    """Local, single-namespace memo store keyed by monotonic integer ids."""

    def __init__(self, root: Path, clock: MonotonicClock | None = None) -> None:
        self.root = Path(root)
        self._clock = clock or MonotonicClock()
        self._lock = threading.RLock()
        self._initialized = False
        self._next_id = 1
        self._by_updated: list[tuple[str, int]] = []
        self._updated_of: dict[int, str] = {}
        self._by_category: dict[str, set[int]] = {c: set() for c in CATEGORIES}
        self._by_priority: dict[str, set[int]] = {p: set() for p in PRIORITIES}

    @property
    def name(self) -> str:
        return "kv"

    # ── Initialization ───────────────────────────────────────

    async def initialize(self) -> None:
        await asyncio.to_thread(self._initialize)

    def _initialize(self) -> None:
        with self._lock:
            try:
                self._memos_dir.mkdir(parents=True, exist_ok=True)
                probe = self.root / ".probe"
                probe.write_text("", encoding="utf-8")
                probe.unlink()
            except OSError as e:
                raise StorageUnavailable(f"Cannot open key-value store at {self.root}: {e}") from e
            self._build_index()
            self._initialized = True
            logger.info("Key-value store ready at %s (%d memos)", self.root, len(self._by_updated))

    @property
    def _memos_dir(self) -> Path:
        return self.root / "memos"

    @property
    def _sequence_file(self) -> Path:
        return self.root / "SEQUENCE"

    def _path(self, memo_id: int) -> Path:
        return self._memos_dir / f"{memo_id}.md"

    def _require_ready(self) -> None:
        if not self._initialized:
            raise StorageUnavailable("Key-value store not initialized")

    # ── Index ────────────────────────────────────────────────

    def _build_index(self) -> None:
        """Scan record files once, rebuild every index from scratch."""
        self._by_updated.clear()
        self._updated_of.clear()
        for ids in (*self._by_category.values(), *self._by_priority.values()):
            ids.clear()

        max_id = 0
        for path in self._memos_dir.glob("*.md"):
            memo = self._read(path)
            if memo is None:
                continue
            self._index(memo)
            max_id = max(max_id, memo.id)

        self._next_id = max(self._read_sequence(), max_id + 1)
        if self._by_updated:
            self._clock.advance_to(parse_timestamp(self._by_updated[-1][0]))

    def _index(self, memo: Memo) -> None:
        self._unindex(memo.id)
        bisect.insort(self._by_updated, (memo.updated_at, memo.id))
        self._updated_of[memo.id] = memo.updated_at
        self._by_category.setdefault(memo.category, set()).add(memo.id)
        self._by_priority.setdefault(memo.priority, set()).add(memo.id)

    def _unindex(self, memo_id: int) -> None:
        updated_at = self._updated_of.pop(memo_id, None)
        if updated_at is None:
            return
        pos = bisect.bisect_left(self._by_updated, (updated_at, memo_id))
        if pos < len(self._by_updated) and self._by_updated[pos] == (updated_at, memo_id):
            del self._by_updated[pos]
        for ids in (*self._by_category.values(), *self._by_priority.values()):
            ids.discard(memo_id)

    def _ordered_ids(self) -> list[int]:
        """Ids by updatedAt descending, newest insertion first on ties."""
        return [memo_id for _, memo_id in reversed(self._by_updated)]

    # ── Record files ─────────────────────────────────────────

    def _read(self, path: Path) -> Memo | None:
        try:
            # parse() rather than load(): a Post can't carry a "content" key.
            meta, _ = frontmatter.parse(path.read_text(encoding="utf-8"))
            return Memo(
                id=int(meta["id"]),
                title=str(meta["title"]),
                content=str(meta.get("content") or ""),
                category=validate_category(meta.get("category")),
                priority=validate_priority(meta.get("priority")),
                tags=normalize_tags(meta.get("tags")),
                created_at=normalize_timestamp(meta["createdAt"]),
                updated_at=normalize_timestamp(meta["updatedAt"]),
            )
        except FileNotFoundError:
            return None
        except Exception as e:
            logger.warning("Skipping unreadable memo record %s: %s", path.name, e)
            return None

    def _write(self, memo: Memo) -> None:
        # Body is a readable rendering only; frontmatter is authoritative.
        # The body gets stripped on parse, so exact content lives in the YAML.
        post = frontmatter.Post(f"# {memo.title}\n\n{memo.content}")
        post.metadata.update(memo.as_dict())
        path = self._path(memo.id)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(frontmatter.dumps(post) + "\n", encoding="utf-8")
        os.replace(tmp, path)

    def _read_sequence(self) -> int:
        try:
            return int(self._sequence_file.read_text(encoding="utf-8").strip())
        except (OSError, ValueError):
            return 1

    def _load(self, ids: list[int]) -> list[Memo]:
        memos = []
        for memo_id in ids:
            memo = self._read(self._path(memo_id))
            if memo is not None:
                memos.append(memo)
        return memos

    @staticmethod
    def _key(memo_id: MemoId) -> int | None:
        try:
            return int(memo_id)
        except (TypeError, ValueError):
            return None

    # ── Operations ───────────────────────────────────────────

    async def list_all(self, limit: int | None = None, offset: int | None = None) -> list[Memo]:
        return await asyncio.to_thread(self._list_all, limit, offset)

    def _list_all(self, limit: int | None, offset: int | None) -> list[Memo]:
        with self._lock:
            self._require_ready()
            return self._load(paginate(self._ordered_ids(), limit, offset))

    async def get(self, memo_id: MemoId) -> Memo:
        return await asyncio.to_thread(self._get, memo_id)

    def _get(self, memo_id: MemoId) -> Memo:
        with self._lock:
            self._require_ready()
            key = self._key(memo_id)
            memo = self._read(self._path(key)) if key in self._updated_of else None
            if memo is None:
                raise NotFound(memo_id)
            return memo

    async def create(self, memo_input: MemoInputLike) -> MemoId:
        fields = coerce_input(memo_input)
        return await asyncio.to_thread(self._create, fields.as_dict())

    def _create(self, fields: dict[str, Any]) -> int:
        with self._lock:
            self._require_ready()
            memo_id = self._next_id
            now = format_timestamp(self._clock())
            memo = Memo(id=memo_id, created_at=now, updated_at=now, **fields)
            self._sequence_file.write_text(str(memo_id + 1), encoding="utf-8")
            self._next_id = memo_id + 1
            self._write(memo)
            self._index(memo)
            return memo_id

    async def update(self, memo_id: MemoId, memo_input: MemoInputLike) -> None:
        fields = coerce_input(memo_input)
        await asyncio.to_thread(self._update, memo_id, fields.as_dict())

    def _update(self, memo_id: MemoId, fields: dict[str, Any]) -> None:
        with self._lock:
            current = self._get(memo_id)
            memo = Memo(
                id=current.id,
                created_at=current.created_at,
                updated_at=format_timestamp(self._clock()),
                **fields,
            )
            self._write(memo)
            self._index(memo)

    async def delete(self, memo_id: MemoId) -> None:
        await asyncio.to_thread(self._delete, memo_id)

    def _delete(self, memo_id: MemoId) -> None:
        with self._lock:
            self._require_ready()
            key = self._key(memo_id)
            if key is None:
                return
            self._path(key).unlink(missing_ok=True)
            self._unindex(key)

    async def search(self, query: str) -> list[Memo]:
        return filter_matching(await self.list_all(), query)

    async def by_category(self, category: str) -> list[Memo]:
        validate_category(category)
        return await asyncio.to_thread(self._by_category_sync, category)

    def _by_category_sync(self, category: str) -> list[Memo]:
        with self._lock:
            self._require_ready()
            members = self._by_category[category]
            return self._load([i for i in self._ordered_ids() if i in members])

    async def stats(self) -> MemoStats:
        return await asyncio.to_thread(self._stats)

    def _stats(self) -> MemoStats:
        # Counted from the index under one lock hold: a single snapshot.
        with self._lock:
            self._require_ready()
            stats = MemoStats(
                total=len(self._by_updated),
                high_priority=len(self._by_priority["high"]),
            )
            for category, attr in STATS_FIELDS.items():
                setattr(stats, attr, len(self._by_category[category]))
            return stats

    async def close(self) -> None:
        with self._lock:
            self._initialized = False
