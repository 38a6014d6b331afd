"""One-time carry-over of memos from the deprecated flat key-value blob.

The legacy location holds one serialized JSON list of memo-like records under
a well-known key. Each record is replayed as a ``create`` on the active
engine (ids and timestamps are reassigned), then the key is removed. If any
record fails, the key is left in place so the next launch can retry.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from memokit.errors import ValidationRejected
from memokit.models import MemoInput

if TYPE_CHECKING:
    from memokit.engines.base import StorageEngine

logger = logging.getLogger(__name__)

LEGACY_KEY = "memokit_memos"


@runtime_checkable
class LegacyStore(Protocol):
    """Flat string key-value storage, read once during migration."""

    async def get_item(self, key: str) -> str | None: ...

    async def remove_item(self, key: str) -> None: ...


class JsonFileLegacyStore:
    """Flat key → serialized string map kept in a single JSON file."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    async def get_item(self, key: str) -> str | None:
        return (await asyncio.to_thread(self._load)).get(key)

    async def set_item(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._set, key, value)

    async def remove_item(self, key: str) -> None:
        await asyncio.to_thread(self._remove, key)

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        data = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"{self.path} does not hold a key-value object")
        return data

    def _save(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, self.path)

    def _set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def _remove(self, key: str) -> None:
        data = self._load()
        if data.pop(key, None) is not None:
            self._save(data)


@dataclass
class MigrationReport:
    found: int = 0
    migrated: int = 0
    cleared: bool = False

    @property
    def complete(self) -> bool:
        return self.found == self.migrated


class LegacyMigrator:
    """Replays legacy memos into whichever engine is active."""

    def __init__(self, store: LegacyStore, key: str = LEGACY_KEY) -> None:
        self.store = store
        self.key = key

    async def _read_records(self) -> list | None:
        try:
            raw = await self.store.get_item(self.key)
        except Exception as e:
            logger.info("Legacy memo store unreadable, skipping migration: %s", e)
            return None
        if not raw:
            return None
        try:
            records = json.loads(raw)
        except ValueError as e:
            logger.warning("Legacy memo data is not valid JSON, skipping migration: %s", e)
            return None
        if not isinstance(records, list):
            logger.warning("Legacy memo data is not a list, skipping migration")
            return None
        return records

    async def migrate(self, engine: StorageEngine) -> MigrationReport:
        """Never raises; failures are logged and leave the legacy data intact."""
        records = await self._read_records()
        if records is None:
            return MigrationReport()

        report = MigrationReport(found=len(records))
        # Every record is validated before the first create.
        inputs = []
        for index, record in enumerate(records):
            try:
                inputs.append(MemoInput.from_dict(record))
            except ValidationRejected as e:
                logger.warning(
                    "Legacy record %d/%d is invalid (%s); nothing migrated, legacy data kept",
                    index + 1,
                    report.found,
                    e,
                )
                return report

        logger.info("Migrating %d legacy memos into %s", report.found, engine.name)
        for index, memo_input in enumerate(inputs):
            try:
                await engine.create(memo_input)
            except Exception as e:
                logger.warning(
                    "Legacy migration stopped at record %d/%d (%s); legacy data kept for retry",
                    index + 1,
                    report.found,
                    e,
                )
                return report
            report.migrated += 1

        try:
            await self.store.remove_item(self.key)
        except Exception as e:
            logger.warning("Migrated %d memos but could not clear legacy data: %s", report.migrated, e)
            return report
        report.cleared = True
        logger.info("Legacy migration completed (%d memos)", report.migrated)
        return report
