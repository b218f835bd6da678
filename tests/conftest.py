"""Shared test fixtures."""

import json
from pathlib import Path

import pytest

from db.connection import ConnectionPool

SERVER_PUBKEY = "3bf0c63fcb93463407af97a5e5ee64fa883d107ef9e558472c4eb9aaaefa459d"


@pytest.fixture
def default_config() -> dict:
    """Return a small default config document."""
    return {
        "server": {
            "host": "localhost",
            "port": 3000,
            "pubkey": "",
            "secretKey": "",
            "tosFilePath": "resources/tos.md",
            "availableModules": {
                "media": {"name": "media", "enabled": True, "path": "/media"},
                "lightning": {"name": "lightning", "enabled": False, "path": "/lightningaddress"},
            },
        },
        "database": {"database": "data/test.sqlite", "resetTables": False},
        "media": {
            "tempPath": "tmp/",
            "mediaPath": "media/",
            "allowedMimeTypes": ["image/png", "image/jpeg"],
        },
    }


@pytest.fixture
def operator_config(default_config: dict) -> dict:
    """Return a local config as an operator would have filled it in."""
    local = json.loads(json.dumps(default_config))
    local["server"]["pubkey"] = SERVER_PUBKEY
    local["server"]["secretKey"] = "s3cr3t"
    local["server"]["port"] = 8080
    return local


@pytest.fixture
def config_paths(tmp_path: Path, default_config: dict) -> tuple[Path, Path]:
    """Write the default document and return (default_path, local_path)."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    default_path = conf_dir / "default.json"
    default_path.write_text(json.dumps(default_config, indent=4), encoding="utf-8")
    return default_path, conf_dir / "local.json"


@pytest.fixture
async def pool(tmp_path: Path):
    """A connection pool on a fresh SQLite file, closed after the test."""
    db_pool = ConnectionPool(tmp_path / "test.sqlite", size=4, attempts=1, retry_delay=0)
    yield db_pool
    await db_pool.close()
