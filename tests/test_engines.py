"""Behavior every storage engine must share, run against all three."""

from __future__ import annotations

from pathlib import Path

import pytest
import pytest_asyncio

from memokit.auth import Session
from memokit.docstore import InMemoryDocumentStore
from memokit.engines import CloudEngine, KeyValueEngine, SQLiteEngine
from memokit.errors import NotFound, StorageUnavailable, ValidationRejected
from memokit.models import CATEGORIES, MemoInput

ENGINES = ["cloud", "kv", "sqlite"]
MISSING_ID = 987654


def make_engine(kind: str, tmp_path: Path):
    if kind == "cloud":
        return CloudEngine(InMemoryDocumentStore(), Session("user-1"))
    if kind == "kv":
        return KeyValueEngine(tmp_path / "kv")
    return SQLiteEngine(tmp_path / "memos.db")


@pytest_asyncio.fixture(params=ENGINES)
async def engine(request, tmp_path: Path):
    engine = make_engine(request.param, tmp_path)
    await engine.initialize()
    yield engine
    close = getattr(engine, "close", None)
    if close:
        await close()


def memo(title: str, **kwargs) -> MemoInput:
    return MemoInput(title=title, **kwargs)


class TestRoundTrip:
    @pytest.mark.asyncio
    async def test_create_then_get(self, engine):
        memo_id = await engine.create(
            memo(
                "Login bug",
                content="Crash on submit\nsecond line",
                category="bug",
                priority="high",
                tags=["auth", "ログイン", "auth"],
            )
        )
        stored = await engine.get(memo_id)
        assert stored.id == memo_id
        assert stored.title == "Login bug"
        assert stored.content == "Crash on submit\nsecond line"
        assert stored.category == "bug"
        assert stored.priority == "high"
        assert stored.tags == ["auth", "ログイン", "auth"]

    @pytest.mark.asyncio
    async def test_created_and_updated_match_on_create(self, engine):
        stored = await engine.get(await engine.create(memo("x")))
        assert stored.created_at == stored.updated_at

    @pytest.mark.asyncio
    async def test_empty_content_accepted(self, engine):
        stored = await engine.get(await engine.create(memo("Title only", content="")))
        assert stored.content == ""

    @pytest.mark.asyncio
    async def test_mapping_input_without_tags(self, engine):
        memo_id = await engine.create({"title": "dict", "category": "idea", "priority": "low"})
        stored = await engine.get(memo_id)
        assert stored.tags == []
        assert stored.category == "idea"

    @pytest.mark.asyncio
    async def test_visible_immediately(self, engine):
        memo_id = await engine.create(memo("now"))
        assert [m.id for m in await engine.list_all()] == [memo_id]


class TestOrdering:
    @pytest.mark.asyncio
    async def test_most_recent_first(self, engine):
        ids = [await engine.create(memo(f"m{i}")) for i in range(4)]
        memos = await engine.list_all()
        assert [m.id for m in memos] == list(reversed(ids))
        stamps = [m.updated_at for m in memos]
        assert stamps == sorted(stamps, reverse=True)
        assert len(set(stamps)) == len(stamps)

    @pytest.mark.asyncio
    async def test_update_moves_to_front(self, engine):
        first = await engine.create(memo("first"))
        second = await engine.create(memo("second"))
        before = await engine.get(first)

        await engine.update(first, memo("first edited", category="todo", tags=["t"]))

        memos = await engine.list_all()
        assert [m.id for m in memos] == [first, second]
        after = memos[0]
        assert after.title == "first edited"
        assert after.category == "todo"
        assert after.tags == ["t"]
        assert after.created_at == before.created_at
        assert after.updated_at > before.updated_at

    @pytest.mark.asyncio
    async def test_limit_and_offset(self, engine):
        for i in range(5):
            await engine.create(memo(f"m{i}"))
        full = await engine.list_all()
        assert await engine.list_all(limit=2) == full[:2]
        assert await engine.list_all(offset=3) == full[3:]
        assert await engine.list_all(limit=2, offset=1) == full[1:3]
        assert await engine.list_all(limit=0) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("window", [{"limit": -1}, {"offset": -1}, {"limit": 2, "offset": -3}])
    async def test_negative_window_rejected(self, engine, window):
        for i in range(4):
            await engine.create(memo(f"m{i}"))
        with pytest.raises(ValidationRejected):
            await engine.list_all(**window)


class TestUpdateDelete:
    @pytest.mark.asyncio
    async def test_update_missing_raises(self, engine):
        with pytest.raises(NotFound):
            await engine.update(MISSING_ID, memo("ghost"))

    @pytest.mark.asyncio
    async def test_get_missing_raises(self, engine):
        with pytest.raises(NotFound):
            await engine.get(MISSING_ID)

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, engine):
        memo_id = await engine.create(memo("doomed"))
        await engine.delete(memo_id)
        await engine.delete(memo_id)
        with pytest.raises(NotFound):
            await engine.get(memo_id)
        assert await engine.list_all() == []

    @pytest.mark.asyncio
    async def test_delete_never_existing(self, engine):
        await engine.delete(MISSING_ID)


class TestSearch:
    @pytest.mark.asyncio
    async def test_matches_title_content_and_tags(self, engine):
        in_title = await engine.create(memo("Login BUG"))
        in_content = await engine.create(memo("Crash", content="looks like a bug"))
        in_tag = await engine.create(memo("Trace", tags=["debugging"]))
        await engine.create(memo("Unrelated", content="nothing here", tags=["misc"]))

        found = await engine.search("bug")
        assert [m.id for m in found] == [in_tag, in_content, in_title]

    @pytest.mark.asyncio
    async def test_blank_query_equals_list_all(self, engine):
        for i in range(3):
            await engine.create(memo(f"m{i}"))
        full = await engine.list_all()
        assert await engine.search("") == full
        assert await engine.search("   ") == full

    @pytest.mark.asyncio
    async def test_no_match(self, engine):
        await engine.create(memo("alpha"))
        assert await engine.search("zeta") == []


class TestCategoryAndStats:
    @pytest.mark.asyncio
    async def test_by_category(self, engine):
        a = await engine.create(memo("a", category="bug"))
        await engine.create(memo("b", category="idea"))
        c = await engine.create(memo("c", category="bug"))
        bugs = await engine.by_category("bug")
        assert [m.id for m in bugs] == [c, a]
        assert await engine.by_category("todo") == []

    @pytest.mark.asyncio
    async def test_by_unknown_category_rejected(self, engine):
        with pytest.raises(ValidationRejected):
            await engine.by_category("urgent")

    @pytest.mark.asyncio
    async def test_stats_consistent(self, engine):
        specs = [
            ("bug", "high"),
            ("bug", "low"),
            ("feature", "high"),
            ("idea", "medium"),
            ("todo", "high"),
        ]
        for category, priority in specs:
            await engine.create(memo(category, category=category, priority=priority))

        stats = await engine.stats()
        assert stats.total == len(specs)
        assert sum(stats.category_count(c) for c in CATEGORIES) == stats.total
        assert stats.bugs == 2
        assert stats.features == 1
        assert stats.ideas == 1
        assert stats.notes == 0
        assert stats.todos == 1
        assert stats.high_priority == 3

    @pytest.mark.asyncio
    async def test_stats_after_update_and_delete(self, engine):
        a = await engine.create(memo("a", category="bug", priority="high"))
        b = await engine.create(memo("b", category="note"))
        await engine.update(a, memo("a", category="todo", priority="low"))
        await engine.delete(b)
        stats = await engine.stats()
        assert stats.as_dict() == {
            "total": 1,
            "bugs": 0,
            "features": 0,
            "ideas": 0,
            "notes": 0,
            "todos": 1,
            "high_priority": 0,
        }


class TestValidation:
    @pytest.mark.asyncio
    async def test_missing_title_rejected(self, engine):
        with pytest.raises(ValidationRejected):
            await engine.create({"content": "no title"})
        assert await engine.list_all() == []

    @pytest.mark.asyncio
    async def test_out_of_set_values_rejected(self, engine):
        with pytest.raises(ValidationRejected):
            await engine.create({"title": "x", "category": "urgent"})
        with pytest.raises(ValidationRejected):
            await engine.create({"title": "x", "priority": "critical"})
        assert (await engine.stats()).total == 0

    @pytest.mark.asyncio
    async def test_update_validates(self, engine):
        memo_id = await engine.create(memo("ok"))
        with pytest.raises(ValidationRejected):
            await engine.update(memo_id, {"title": "ok", "category": "nope"})
        assert (await engine.get(memo_id)).category == "note"


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, engine):
        await engine.create(memo("keep"))
        await engine.initialize()
        await engine.initialize()
        assert [m.title for m in await engine.list_all()] == ["keep"]

    @pytest.mark.parametrize("kind", ENGINES)
    @pytest.mark.asyncio
    async def test_requires_initialize(self, kind: str, tmp_path: Path):
        engine = make_engine(kind, tmp_path)
        with pytest.raises(StorageUnavailable):
            await engine.list_all()
        with pytest.raises(StorageUnavailable):
            await engine.create(memo("early"))
