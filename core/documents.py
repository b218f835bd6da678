import json
import logging
import os
import shutil
import tempfile
from pathlib import Path

from config import get_config_backup

logger = logging.getLogger(__name__)


def _atomic_write_json(path: Path, data: dict) -> None:
    """Write JSON atomically using temp file + fsync + rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="w", encoding="utf-8", dir=path.parent, delete=False, suffix=".tmp.json"
        ) as tmp:
            json.dump(data, tmp, indent=4, ensure_ascii=False)
            tmp.write("\n")
            tmp.flush()
            os.fsync(tmp.fileno())
            tmp_path = tmp.name
        shutil.move(tmp_path, path)
    except Exception:
        if tmp_path and os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def load_config_document(path: Path) -> dict:
    backup_path = get_config_backup(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        logger.error(f"{path} is corrupt: invalid JSON at line {e.lineno} column {e.colno}")
        if not backup_path.exists():
            raise ValueError(f"Config file {path} is not valid JSON") from e
        try:
            with open(backup_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as backup_err:
            logger.error(f"Backup {backup_path} is also corrupt")
            raise ValueError(f"Config file {path} and its backup are not valid JSON") from backup_err
        logger.warning(f"Recovered config from backup {backup_path}")

    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a JSON object")
    return data


def write_config_document(path: Path, data: dict) -> None:
    """Back up the current file to ``<path>.bak`` and write the full document."""
    if path.exists():
        shutil.copy2(path, get_config_backup(path))

    _atomic_write_json(path, data)
    logger.debug(f"Saved config file {path}")
