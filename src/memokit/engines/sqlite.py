"""SQLite engine — a single relational table with enum CHECK constraints."""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any

from memokit.engines.base import MemoInputLike
from memokit.engines.query import MonotonicClock, check_window, filter_matching
from memokit.errors import NotFound, StorageUnavailable, ValidationRejected
from memokit.models import (
    CATEGORIES,
    PRIORITIES,
    Memo,
    MemoId,
    MemoStats,
    coerce_input,
    format_timestamp,
    parse_timestamp,
    validate_category,
)

logger = logging.getLogger(__name__)


def _sql_in(values: tuple[str, ...]) -> str:
    return ", ".join(f"'{v}'" for v in values)


SCHEMA = f"""
CREATE TABLE IF NOT EXISTS memos (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    content TEXT NOT NULL,
    category TEXT NOT NULL CHECK (category IN ({_sql_in(CATEGORIES)})),
    priority TEXT NOT NULL CHECK (priority IN ({_sql_in(PRIORITIES)})),
    tags_json TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    CHECK (created_at <= updated_at)
);
CREATE INDEX IF NOT EXISTS idx_memos_category ON memos (category);
CREATE INDEX IF NOT EXISTS idx_memos_priority ON memos (priority);
CREATE INDEX IF NOT EXISTS idx_memos_updated_at ON memos (updated_at);
"""

_ORDER = "ORDER BY updated_at DESC, id DESC"

_STATS_QUERY = """
SELECT
    COUNT(*) AS total,
    COUNT(CASE WHEN category = 'bug' THEN 1 END) AS bugs,
    COUNT(CASE WHEN category = 'feature' THEN 1 END) AS features,
    COUNT(CASE WHEN category = 'idea' THEN 1 END) AS ideas,
    COUNT(CASE WHEN category = 'note' THEN 1 END) AS notes,
    COUNT(CASE WHEN category = 'todo' THEN 1 END) AS todos,
    COUNT(CASE WHEN priority = 'high' THEN 1 END) AS high_priority
FROM memos
"""


class SQLiteEngine:
    """Relational memo store. ``path`` may be ``":memory:"``."""

    def __init__(self, path: Path | str, clock: MonotonicClock | None = None) -> None:
        self.path = path
        self._clock = clock or MonotonicClock()
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    @property
    def name(self) -> str:
        return "sqlite"

    # ── Connection ───────────────────────────────────────────

    async def initialize(self) -> None:
        await asyncio.to_thread(self._initialize)

    def _initialize(self) -> None:
        with self._lock:
            try:
                if self._conn is None:
                    if self.path != ":memory:":
                        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
                    self._conn = sqlite3.connect(str(self.path), check_same_thread=False)
                    self._conn.row_factory = sqlite3.Row
                self._conn.executescript(SCHEMA)
                newest = self._conn.execute("SELECT MAX(updated_at) FROM memos").fetchone()[0]
            except (OSError, sqlite3.Error) as e:
                if self._conn is not None:
                    self._conn.close()
                    self._conn = None
                raise StorageUnavailable(f"Cannot open SQLite database {self.path}: {e}") from e
            if newest:
                self._clock.advance_to(parse_timestamp(newest))
            logger.info("SQLite database ready at %s", self.path)

    def _db(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageUnavailable("SQLite database not initialized")
        return self._conn

    def _query(self, sql: str, params: tuple = ()) -> list[Memo]:
        with self._lock:
            rows = self._db().execute(sql, params).fetchall()
        return [_row_to_memo(row) for row in rows]

    def _write(self, sql: str, params: tuple) -> sqlite3.Cursor:
        with self._lock:
            conn = self._db()
            try:
                with conn:
                    return conn.execute(sql, params)
            except sqlite3.IntegrityError as e:
                raise ValidationRejected(str(e)) from e

    # ── Operations ───────────────────────────────────────────

    async def list_all(self, limit: int | None = None, offset: int | None = None) -> list[Memo]:
        check_window(limit, offset)
        sql = f"SELECT * FROM memos {_ORDER} LIMIT ? OFFSET ?"
        params = (-1 if limit is None else limit, offset or 0)
        return await asyncio.to_thread(self._query, sql, params)

    async def get(self, memo_id: MemoId) -> Memo:
        rows = await asyncio.to_thread(self._query, "SELECT * FROM memos WHERE id = ?", (memo_id,))
        if not rows:
            raise NotFound(memo_id)
        return rows[0]

    async def create(self, memo_input: MemoInputLike) -> MemoId:
        fields = coerce_input(memo_input)
        return await asyncio.to_thread(self._create, fields.as_dict())

    def _create(self, fields: dict[str, Any]) -> int:
        with self._lock:
            self._db()
            now = format_timestamp(self._clock())
            cursor = self._write(
                "INSERT INTO memos (title, content, category, priority, tags_json, "
                "created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (*_field_params(fields), now, now),
            )
            return cursor.lastrowid

    async def update(self, memo_id: MemoId, memo_input: MemoInputLike) -> None:
        fields = coerce_input(memo_input)
        await asyncio.to_thread(self._update, memo_id, fields.as_dict())

    def _update(self, memo_id: MemoId, fields: dict[str, Any]) -> None:
        with self._lock:
            self._db()
            cursor = self._write(
                "UPDATE memos SET title = ?, content = ?, category = ?, priority = ?, "
                "tags_json = ?, updated_at = ? WHERE id = ?",
                (*_field_params(fields), format_timestamp(self._clock()), memo_id),
            )
            if cursor.rowcount == 0:
                raise NotFound(memo_id)

    async def delete(self, memo_id: MemoId) -> None:
        await asyncio.to_thread(self._write, "DELETE FROM memos WHERE id = ?", (memo_id,))

    async def search(self, query: str) -> list[Memo]:
        # LIKE is ASCII-only case-insensitive and cannot see inside tags_json.
        return filter_matching(await self.list_all(), query)

    async def by_category(self, category: str) -> list[Memo]:
        validate_category(category)
        return await asyncio.to_thread(
            self._query, f"SELECT * FROM memos WHERE category = ? {_ORDER}", (category,)
        )

    async def stats(self) -> MemoStats:
        return await asyncio.to_thread(self._stats)

    def _stats(self) -> MemoStats:
        with self._lock:
            row = self._db().execute(_STATS_QUERY).fetchone()
        return MemoStats(**dict(row))

    async def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None


def _field_params(fields: dict[str, Any]) -> tuple:
    return (
        fields["title"],
        fields["content"],
        fields["category"],
        fields["priority"],
        json.dumps(fields["tags"], ensure_ascii=False),
    )


def _row_to_memo(row: sqlite3.Row) -> Memo:
    try:
        tags = json.loads(row["tags_json"] or "[]")
    except ValueError:
        logger.warning("Memo %s has malformed tags_json; reading as empty", row["id"])
        tags = []
    return Memo(
        id=row["id"],
        title=row["title"],
        content=row["content"],
        category=row["category"],
        priority=row["priority"],
        tags=tags,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
