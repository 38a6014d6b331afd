"""Storage facade: the single seam between the app and the active engine.

Lifecycle: UNINITIALIZED → READY, or → FAILED when both the selected engine
and the fallback fail to initialize.

1. Select: build the preferred engine (cloud); if construction raises, build
   the platform-appropriate local engine instead.
2. Initialize the selected engine; if that raises, build the key-value
   fallback and initialize it once more.
3. Replay legacy memos into the ready engine.

Every operation awaits the same one-shot setup, then delegates unchanged.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import sys
from collections.abc import Callable
from dataclasses import dataclass

from memokit.auth import Session, UserIdentity
from memokit.config import MemokitConfig
from memokit.docstore import DocumentStore
from memokit.engines.base import (
    MemoInputLike,
    SnapshotCallback,
    StorageEngine,
    Subscription,
    SupportsSync,
)
from memokit.engines.cloud import CloudEngine
from memokit.engines.kv import KeyValueEngine
from memokit.engines.sqlite import SQLiteEngine
from memokit.errors import StorageUnavailable
from memokit.migration import JsonFileLegacyStore, LegacyMigrator, MigrationReport
from memokit.models import Memo, MemoId, MemoStats

logger = logging.getLogger(__name__)

EngineFactory = Callable[[], StorageEngine]


class StorageState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class Platform:
    """Capabilities of the host runtime."""

    has_kv_medium: bool


def detect_platform(setting: str = "auto") -> Platform:
    """``web`` / ``native`` force the answer; ``auto`` detects a browser host."""
    setting = setting.lower()
    if setting == "web":
        return Platform(has_kv_medium=True)
    if setting == "native":
        return Platform(has_kv_medium=False)
    if setting != "auto":
        raise ValueError(f"Unknown platform setting: {setting!r}")
    return Platform(has_kv_medium=sys.platform == "emscripten")


class MemoStorage:
    """Owns exactly one active engine for its lifetime."""

    def __init__(
        self,
        preferred: EngineFactory,
        local: EngineFactory,
        fallback: EngineFactory,
        migrator: LegacyMigrator | None = None,
    ) -> None:
        self._preferred = preferred
        self._local = local
        self._fallback = fallback
        self._migrator = migrator
        self._engine: StorageEngine | None = None
        self._state = StorageState.UNINITIALIZED
        self._failure: BaseException | None = None
        self._init_lock = asyncio.Lock()

    @property
    def state(self) -> StorageState:
        return self._state

    @property
    def engine(self) -> StorageEngine | None:
        """The active engine, once ready."""
        return self._engine if self._state is StorageState.READY else None

    # ── Setup ────────────────────────────────────────────────

    def _select(self) -> StorageEngine:
        try:
            engine = self._preferred()
        except Exception as e:
            logger.warning("Preferred engine unavailable (%s), using local engine", e)
            return self._local()
        logger.info("Selected %s engine", engine.name)
        return engine

    async def _setup(self) -> StorageEngine:
        try:
            engine = self._select()
            await engine.initialize()
        except Exception as e:
            logger.warning("Engine initialization failed (%s), falling back to key-value", e)
            try:
                engine = self._fallback()
                await engine.initialize()
            except Exception as fallback_error:
                self._state = StorageState.FAILED
                self._failure = fallback_error
                logger.error("Fallback engine failed: %s", fallback_error)
                raise StorageUnavailable(
                    f"No storage engine could be initialized: {fallback_error}"
                ) from fallback_error
        return engine

    async def initialize(self) -> None:
        """Select, initialize and migrate. Concurrent callers share one attempt."""
        await self._ensure_ready()

    async def _ensure_ready(self) -> StorageEngine:
        if self._state is StorageState.READY:
            return self._engine
        async with self._init_lock:
            if self._state is StorageState.READY:
                return self._engine
            if self._state is StorageState.FAILED:
                raise StorageUnavailable(f"Storage failed to initialize: {self._failure}")
            engine = await self._setup()
            self._engine = engine
            self._state = StorageState.READY
            logger.info("Storage ready (engine=%s)", engine.name)
            await self._run_migration(engine)
            return engine

    async def _run_migration(self, engine: StorageEngine) -> MigrationReport | None:
        if self._migrator is None:
            return None
        try:
            return await self._migrator.migrate(engine)
        except Exception as e:
            logger.warning("Legacy migration failed: %s", e)
            return None

    async def migrate_legacy_data(self) -> MigrationReport | None:
        """Replay any remaining legacy memos. Never raises for migration errors."""
        engine = await self._ensure_ready()
        return await self._run_migration(engine)

    # ── Delegated operations ─────────────────────────────────

    async def list_all(self, limit: int | None = None, offset: int | None = None) -> list[Memo]:
        return await (await self._ensure_ready()).list_all(limit, offset)

    async def get(self, memo_id: MemoId) -> Memo:
        return await (await self._ensure_ready()).get(memo_id)

    async def create(self, memo_input: MemoInputLike) -> MemoId:
        return await (await self._ensure_ready()).create(memo_input)

    async def update(self, memo_id: MemoId, memo_input: MemoInputLike) -> None:
        await (await self._ensure_ready()).update(memo_id, memo_input)

    async def delete(self, memo_id: MemoId) -> None:
        await (await self._ensure_ready()).delete(memo_id)

    async def search(self, query: str) -> list[Memo]:
        return await (await self._ensure_ready()).search(query)

    async def by_category(self, category: str) -> list[Memo]:
        return await (await self._ensure_ready()).by_category(category)

    async def stats(self) -> MemoStats:
        return await (await self._ensure_ready()).stats()

    # ── Optional sync capabilities ───────────────────────────

    async def subscribe(self, callback: SnapshotCallback) -> Subscription | None:
        """Subscribe to live changes; None when the active engine cannot sync."""
        engine = await self._ensure_ready()
        if not isinstance(engine, SupportsSync):
            return None
        return engine.subscribe(callback)

    async def go_offline(self) -> bool:
        engine = await self._ensure_ready()
        if not isinstance(engine, SupportsSync):
            return False
        await engine.go_offline()
        return True

    async def go_online(self) -> bool:
        engine = await self._ensure_ready()
        if not isinstance(engine, SupportsSync):
            return False
        await engine.go_online()
        return True

    async def close(self) -> None:
        close = getattr(self._engine, "close", None)
        if close and callable(close):
            await close()


def build_storage(
    config: MemokitConfig,
    *,
    auth: UserIdentity | None = None,
    document_store: DocumentStore | None = None,
    platform: Platform | None = None,
) -> MemoStorage:
    """Wire engines, platform and legacy migrator from configuration."""
    storage_config = config.storage
    platform = platform or detect_platform(storage_config.platform)
    auth = auth or Session(config.cloud.user_id)

    def build_cloud() -> StorageEngine:
        if document_store is None:
            raise StorageUnavailable("No cloud document store configured")
        return CloudEngine(document_store, auth)

    def build_kv() -> StorageEngine:
        return KeyValueEngine(storage_config.kv_dir)

    def build_sqlite() -> StorageEngine:
        return SQLiteEngine(storage_config.sqlite_path)

    builders = {"cloud": build_cloud, "kv": build_kv, "sqlite": build_sqlite}
    if storage_config.engine not in builders:
        raise ValueError(
            f"Unknown engine: {storage_config.engine}. Available: {list(builders)}"
        )

    return MemoStorage(
        preferred=builders[storage_config.engine],
        local=build_kv if platform.has_kv_medium else build_sqlite,
        fallback=build_kv,
        migrator=LegacyMigrator(JsonFileLegacyStore(storage_config.legacy_path)),
    )
