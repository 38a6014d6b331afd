"""Tests for the storage facade: selection, fallback, gating, delegation."""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path

import pytest

from memokit.auth import Session
from memokit.config import MemokitConfig, StorageConfig
from memokit.docstore import InMemoryDocumentStore
from memokit.engines import CloudEngine, KeyValueEngine, SQLiteEngine, Subscription
from memokit.errors import NotFound, StorageUnavailable, Unauthenticated
from memokit.migration import LEGACY_KEY, JsonFileLegacyStore, LegacyMigrator
from memokit.models import MemoInput
from memokit.storage import (
    MemoStorage,
    Platform,
    StorageState,
    build_storage,
    detect_platform,
)


class BrokenEngine:
    """Constructs fine, fails to initialize."""

    @property
    def name(self) -> str:
        return "broken"

    async def initialize(self) -> None:
        raise StorageUnavailable("medium missing")


class Counter:
    """Wraps an engine factory and counts constructions."""

    def __init__(self, factory) -> None:
        self.factory = factory
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return self.factory()


def raising_factory():
    raise RuntimeError("misconfigured")


@pytest.fixture
def config(tmp_path: Path) -> MemokitConfig:
    return MemokitConfig(storage=StorageConfig(data_dir=tmp_path / "data"))


class TestSelection:
    @pytest.mark.asyncio
    async def test_prefers_cloud(self, config: MemokitConfig):
        storage = build_storage(
            config, auth=Session("alice"), document_store=InMemoryDocumentStore()
        )
        await storage.initialize()
        assert isinstance(storage.engine, CloudEngine)
        assert storage.state is StorageState.READY

    @pytest.mark.asyncio
    async def test_cloud_selected_without_user(self, config: MemokitConfig):
        storage = build_storage(config, auth=Session(), document_store=InMemoryDocumentStore())
        await storage.initialize()
        assert isinstance(storage.engine, CloudEngine)
        with pytest.raises(Unauthenticated):
            await storage.list_all()

    @pytest.mark.asyncio
    async def test_construction_failure_uses_kv_on_web(self, config: MemokitConfig):
        storage = build_storage(config, platform=Platform(has_kv_medium=True))
        await storage.initialize()
        assert isinstance(storage.engine, KeyValueEngine)

    @pytest.mark.asyncio
    async def test_construction_failure_uses_sqlite_on_native(self, config: MemokitConfig):
        storage = build_storage(config, platform=Platform(has_kv_medium=False))
        await storage.initialize()
        assert isinstance(storage.engine, SQLiteEngine)
        await storage.close()

    def test_unknown_engine(self, config: MemokitConfig):
        config.storage.engine = "floppy"
        with pytest.raises(ValueError, match="Unknown engine"):
            build_storage(config)


class TestFallback:
    @pytest.mark.asyncio
    async def test_init_failure_falls_back_transparently(self, tmp_path: Path):
        storage = MemoStorage(
            preferred=BrokenEngine,
            local=raising_factory,
            fallback=lambda: KeyValueEngine(tmp_path / "kv"),
        )
        memo_id = await storage.create(MemoInput(title="saved anyway"))
        assert (await storage.get(memo_id)).title == "saved anyway"
        assert storage.engine.name == "kv"

    @pytest.mark.asyncio
    async def test_fresh_fallback_stats_empty(self, tmp_path: Path):
        storage = MemoStorage(
            preferred=BrokenEngine,
            local=raising_factory,
            fallback=lambda: KeyValueEngine(tmp_path / "kv"),
        )
        assert (await storage.stats()).total == 0

    @pytest.mark.asyncio
    async def test_local_construction_failure_falls_back(self, tmp_path: Path):
        storage = MemoStorage(
            preferred=raising_factory,
            local=raising_factory,
            fallback=lambda: KeyValueEngine(tmp_path / "kv"),
        )
        assert await storage.list_all() == []
        assert storage.engine.name == "kv"

    @pytest.mark.asyncio
    async def test_double_failure_is_terminal(self):
        fallback = Counter(BrokenEngine)
        storage = MemoStorage(preferred=BrokenEngine, local=BrokenEngine, fallback=fallback)

        with pytest.raises(StorageUnavailable):
            await storage.list_all()
        assert storage.state is StorageState.FAILED
        with pytest.raises(StorageUnavailable):
            await storage.create(MemoInput(title="x"))
        with pytest.raises(StorageUnavailable):
            await storage.stats()
        assert fallback.calls == 1
        assert storage.engine is None


class TestInitializationGate:
    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_setup(self, tmp_path: Path):
        preferred = Counter(lambda: KeyValueEngine(tmp_path / "kv"))
        fallback = Counter(lambda: KeyValueEngine(tmp_path / "fallback"))
        storage = MemoStorage(preferred=preferred, local=raising_factory, fallback=fallback)

        results = await asyncio.gather(
            storage.list_all(),
            storage.stats(),
            storage.search("x"),
            storage.initialize(),
            storage.by_category("bug"),
        )

        assert preferred.calls == 1
        assert fallback.calls == 0
        assert results[0] == []
        assert results[1].total == 0

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_fallback(self, tmp_path: Path):
        fallback = Counter(lambda: KeyValueEngine(tmp_path / "kv"))
        storage = MemoStorage(preferred=BrokenEngine, local=raising_factory, fallback=fallback)
        await asyncio.gather(*(storage.list_all() for _ in range(5)))
        assert fallback.calls == 1


class TestMigrationOnStartup:
    @pytest.mark.asyncio
    async def test_initialize_migrates_once(self, tmp_path: Path):
        legacy = JsonFileLegacyStore(tmp_path / "legacy.json")
        await legacy.set_item(LEGACY_KEY, json.dumps([{"title": "a"}, {"title": "b"}]))
        storage = MemoStorage(
            preferred=lambda: KeyValueEngine(tmp_path / "kv"),
            local=raising_factory,
            fallback=raising_factory,
            migrator=LegacyMigrator(legacy),
        )

        await storage.initialize()
        await storage.initialize()

        assert [m.title for m in await storage.list_all()] == ["b", "a"]
        assert await legacy.get_item(LEGACY_KEY) is None

    @pytest.mark.asyncio
    async def test_migration_failure_does_not_block_startup(self, config: MemokitConfig):
        legacy = JsonFileLegacyStore(config.storage.legacy_path)
        raw = json.dumps([{"title": "kept"}])
        await legacy.set_item(LEGACY_KEY, raw)
        storage = build_storage(config, auth=Session(), document_store=InMemoryDocumentStore())

        await storage.initialize()

        assert storage.state is StorageState.READY
        assert await legacy.get_item(LEGACY_KEY) == raw

    @pytest.mark.asyncio
    async def test_retry_after_sign_in(self, config: MemokitConfig):
        legacy = JsonFileLegacyStore(config.storage.legacy_path)
        await legacy.set_item(LEGACY_KEY, json.dumps([{"title": "kept"}]))
        session = Session()
        storage = build_storage(config, auth=session, document_store=InMemoryDocumentStore())
        await storage.initialize()

        session.sign_in("alice")
        report = await storage.migrate_legacy_data()

        assert report.cleared
        assert [m.title for m in await storage.list_all()] == ["kept"]


class TestDelegation:
    @pytest.mark.asyncio
    async def test_errors_propagate_unchanged(self, tmp_path: Path):
        storage = MemoStorage(
            preferred=lambda: KeyValueEngine(tmp_path / "kv"),
            local=raising_factory,
            fallback=raising_factory,
        )
        with pytest.raises(NotFound):
            await storage.update(12345, MemoInput(title="ghost"))
        await storage.delete(12345)

    @pytest.mark.asyncio
    async def test_full_crud_through_facade(self, tmp_path: Path):
        storage = MemoStorage(
            preferred=lambda: SQLiteEngine(tmp_path / "memos.db"),
            local=raising_factory,
            fallback=raising_factory,
        )
        a = await storage.create(MemoInput(title="a", category="bug", tags=["login"]))
        b = await storage.create(MemoInput(title="b", category="idea"))
        await storage.update(a, MemoInput(title="a2", category="bug", tags=["login"]))

        assert [m.id for m in await storage.list_all()] == [a, b]
        assert [m.id for m in await storage.search("LOGIN")] == [a]
        assert [m.id for m in await storage.by_category("idea")] == [b]
        await storage.delete(b)
        assert (await storage.stats()).total == 1
        await storage.close()


class TestSyncCapabilities:
    @pytest.mark.asyncio
    async def test_local_engine_has_none(self, tmp_path: Path):
        storage = MemoStorage(
            preferred=lambda: KeyValueEngine(tmp_path / "kv"),
            local=raising_factory,
            fallback=raising_factory,
        )
        assert await storage.subscribe(lambda memos: None) is None
        assert await storage.go_offline() is False
        assert await storage.go_online() is False

    @pytest.mark.asyncio
    async def test_cloud_engine_delegates(self, config: MemokitConfig):
        store = InMemoryDocumentStore()
        storage = build_storage(config, auth=Session("alice"), document_store=store)
        snapshots = []

        subscription = await storage.subscribe(snapshots.append)
        assert isinstance(subscription, Subscription)
        assert await storage.go_offline() is True
        assert not store.online
        assert await storage.go_online() is True
        assert store.online
        subscription.unsubscribe()


class TestPlatform:
    def test_forced(self):
        assert detect_platform("web").has_kv_medium
        assert not detect_platform("native").has_kv_medium

    def test_auto_detects_browser_host(self, monkeypatch):
        monkeypatch.setattr(sys, "platform", "emscripten")
        assert detect_platform("auto").has_kv_medium
        monkeypatch.setattr(sys, "platform", "linux")
        assert not detect_platform("auto").has_kv_medium

    def test_unknown_setting(self):
        with pytest.raises(ValueError):
            detect_platform("toaster")
