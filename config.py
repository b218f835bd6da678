import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).parent
CONFIG_DIR = Path(os.getenv("NOSTRCHECK_CONFIG_DIR", str(BASE_DIR / "conf")))
DEFAULT_CONFIG_PATH = CONFIG_DIR / "default.json"
LOCAL_CONFIG_PATH = CONFIG_DIR / "local.json"


def get_config_backup(path: Path) -> Path:
    return path.with_name(path.name + ".bak")


# Keys that must hold a non-empty value before the server accepts traffic
REQUIRED_KEYS = [
    "server.host",
    "server.port",
    "server.pubkey",
    "server.secretKey",
    "server.tosFilePath",
    "database.database",
]

DB_CONNECT_ATTEMPTS = int(os.getenv("DB_CONNECT_ATTEMPTS", "3"))
DB_CONNECT_RETRY_DELAY = float(os.getenv("DB_CONNECT_RETRY_DELAY", "10"))
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "10"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
