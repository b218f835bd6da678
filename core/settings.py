import copy
import logging
import shutil
import sys
from pathlib import Path

from config import DEFAULT_CONFIG_PATH, LOCAL_CONFIG_PATH, REQUIRED_KEYS
from core.documents import load_config_document, write_config_document
from core.nostr import convert_npub_to_hex

logger = logging.getLogger(__name__)

_MISSING = object()


def _is_section(value) -> bool:
    return isinstance(value, dict)


def merge_config_keys(default_config: dict, local_config: dict, path: str = "") -> bool:
    """Copy every key of ``default_config`` that ``local_config`` lacks.

    Existing local values are never overwritten and local-only keys are kept.
    Returns True when ``local_config`` was modified.
    """
    changed = False
    for key, default_value in default_config.items():
        full_key = f"{path}.{key}" if path else key

        if _is_section(default_value):
            if local_config.get(key) is None:
                local_config[key] = {}
                changed = True
            elif not _is_section(local_config[key]):
                logger.warning(
                    f"Config key {full_key} should be a section, keeping local value: {local_config[key]!r}"
                )
                continue
            changed |= merge_config_keys(default_value, local_config[key], full_key)

        elif key not in local_config:
            local_config[key] = copy.deepcopy(default_value)
            logger.warning(f"Missing config key: {full_key} - Adding default value: {default_value!r}")
            changed = True

    return changed


def ensure_local_config(default_path: Path = DEFAULT_CONFIG_PATH, local_path: Path = LOCAL_CONFIG_PATH) -> bool:
    """Create the local config as a verbatim copy of the default one.

    Returns True when the file was created, which means the operator has to
    review it before the server can start.
    """
    if local_path.exists():
        return False
    local_path.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(default_path, local_path)
    logger.info(f"Creating local config file: {local_path}")
    return True


def sync_default_config_values(default_path: Path = DEFAULT_CONFIG_PATH, local_path: Path = LOCAL_CONFIG_PATH) -> bool:
    default_config = load_config_document(default_path)
    local_config = load_config_document(local_path)

    changed = merge_config_keys(default_config, local_config)
    if not changed:
        return False

    try:
        logger.debug(f"Updating config file: {local_path}")
        write_config_document(local_path, local_config)
    except OSError as e:
        logger.error(f"Error writing config file {local_path}: {e}")
    return changed


def get_settings(local_path: Path = LOCAL_CONFIG_PATH) -> dict:
    return load_config_document(local_path)


def get_config_value(document: dict, key: str, default=None):
    node = document
    for part in key.split("."):
        if not _is_section(node) or part not in node:
            return default
        node = node[part]
    return node


def check_config_necessary_keys(document: dict, keys: list[str] = REQUIRED_KEYS) -> list[str]:
    missing = []
    for key in keys:
        value = get_config_value(document, key, _MISSING)
        if value is _MISSING or value is None or value == "":
            missing.append(key)
    return missing


def update_local_config_key(key: str, value, local_path: Path = LOCAL_CONFIG_PATH) -> bool:
    """Set a single, possibly nested, key in the local config file.

    ``key`` is a dotted path of any depth. Missing intermediate sections are
    created; a path running through a non-section value, or with an empty
    segment, is rejected.
    """
    parts = key.split(".")
    if not all(parts):
        logger.error(f"Invalid config key: {key!r}")
        return False

    try:
        local_config = load_config_document(local_path)
    except (OSError, ValueError) as e:
        logger.error(f"Error reading config file {local_path}: {e}")
        return False

    *parents, leaf = parts
    node = local_config
    for part in parents:
        child = node.setdefault(part, {})
        if not _is_section(child):
            logger.error(f"Cannot update config key {key}: {part} is not a section")
            return False
        node = child
    node[leaf] = value

    try:
        logger.debug(f"Updating config file: {local_path} with key: {key} and value: {value!r}")
        write_config_document(local_path, local_config)
    except OSError as e:
        logger.error(f"Error writing config file {local_path}: {e}")
        return False
    return True


def load_config_modules(document: dict) -> dict:
    modules = get_config_value(document, "server.availableModules", {}) or {}
    return {
        name: module
        for name, module in modules.items()
        if _is_section(module) and module.get("enabled") is True
    }


def _exit_with_missing_keys(missing: list[str], local_path: Path) -> None:
    logger.critical("Empty necessary fields in local config file.")
    logger.critical(f"Please edit {local_path} and then restart the app.")
    logger.critical("Missing fields:")
    for key in missing:
        logger.critical(f"  {key}")
    sys.exit(1)


def prepare_app_config(default_path: Path = DEFAULT_CONFIG_PATH, local_path: Path = LOCAL_CONFIG_PATH) -> dict:
    try:
        created = ensure_local_config(default_path, local_path)
    except OSError as e:
        logger.critical(f"An error occurred while writing config file {local_path}: {e}")
        sys.exit(1)
    if created:
        logger.warning(f"Please edit {local_path} and then restart the app.")
        sys.exit(1)

    try:
        sync_default_config_values(default_path, local_path)
        settings = get_settings(local_path)
    except (OSError, ValueError) as e:
        logger.critical(f"Cannot load config file {local_path}: {e}")
        sys.exit(1)

    missing = check_config_necessary_keys(settings)
    if missing:
        _exit_with_missing_keys(missing, local_path)

    try:
        convert_npub_to_hex(str(get_config_value(settings, "server.pubkey")))
    except ValueError as e:
        logger.critical(f"Invalid server.pubkey in {local_path}: {e}")
        sys.exit(1)

    return settings


def prepare_app_folders(settings: dict) -> None:
    temp_path = get_config_value(settings, "media.tempPath")
    if not temp_path:
        logger.critical("media.tempPath is not defined in config file.")
        sys.exit(1)
    media_path = get_config_value(settings, "media.mediaPath")
    if not media_path:
        logger.critical("media.mediaPath is not defined in config file.")
        sys.exit(1)

    temp_dir = Path(temp_path)
    try:
        temp_dir.mkdir(parents=True, exist_ok=True)
        for tmp_file in temp_dir.iterdir():
            if tmp_file.is_file():
                tmp_file.unlink()
        Path(media_path).mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.critical(f"Cannot prepare media folders: {e}")
        sys.exit(1)
    logger.info(f"Media folders ready: temp={temp_dir} media={media_path}")


def prepare_app(default_path: Path = DEFAULT_CONFIG_PATH, local_path: Path = LOCAL_CONFIG_PATH) -> dict:
    settings = prepare_app_config(default_path, local_path)
    prepare_app_folders(settings)
    return settings
