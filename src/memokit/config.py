"""Configuration loading from environment variables and memokit.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

_DEFAULT_DATA_DIR = Path.home() / ".memokit"
_CONFIG_FILENAME = "memokit.toml"


@dataclass
class StorageConfig:
    """Engine selection and on-disk locations."""

    engine: str = "cloud"
    platform: str = "auto"
    data_dir: Path = _DEFAULT_DATA_DIR

    @property
    def kv_dir(self) -> Path:
        return self.data_dir / "kv"

    @property
    def sqlite_path(self) -> Path:
        return self.data_dir / "memos.db"

    @property
    def legacy_path(self) -> Path:
        return self.data_dir / "legacy.json"


@dataclass
class CloudConfig:
    """Cloud engine configuration."""

    user_id: str | None = None


@dataclass
class MemokitConfig:
    """Top-level configuration."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    cloud: CloudConfig = field(default_factory=CloudConfig)
    log_level: str = "INFO"


def load_config(config_path: Path | None = None) -> MemokitConfig:
    """Load configuration from environment variables and optional memokit.toml.

    Priority: environment variables > memokit.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        for candidate in [Path.cwd() / _CONFIG_FILENAME, _DEFAULT_DATA_DIR / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    storage_data = file_data.get("storage", {})
    cloud_data = file_data.get("cloud", {})

    data_dir = os.getenv("MEMOKIT_DATA_DIR", storage_data.get("data_dir"))
    return MemokitConfig(
        storage=StorageConfig(
            engine=os.getenv("MEMOKIT_ENGINE", storage_data.get("engine", "cloud")),
            platform=os.getenv("MEMOKIT_PLATFORM", storage_data.get("platform", "auto")),
            data_dir=Path(data_dir).expanduser() if data_dir else _DEFAULT_DATA_DIR,
        ),
        cloud=CloudConfig(
            user_id=os.getenv("MEMOKIT_USER", cloud_data.get("user_id")) or None,
        ),
        log_level=os.getenv("MEMOKIT_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
