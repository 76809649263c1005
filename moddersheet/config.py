import os
import json
from pathlib import Path


def _resolve_config_path() -> Path:
    """Find configuration JSON file location.

    Preference order:
    1. Explicit CONFIG_PATH env override;
    2. Repository-local ``config.json``.

    The env override is returned even when the file does not exist yet so that
    external tooling still knows where to create it.
    """

    env_override = os.getenv("CONFIG_PATH")
    if env_override:
        return Path(env_override).expanduser()
    return Path("config.json")


CONFIG_PATH = _resolve_config_path()


def _load_config() -> dict:
    if CONFIG_PATH.exists():
        with CONFIG_PATH.open("r", encoding="utf-8") as f:
            return json.load(f)
    return {}


_cfg = _load_config()


def _setting(name: str, default=None):
    # Environment wins over config.json
    env_val = os.getenv(name)
    if env_val is not None and env_val != "":
        return env_val
    cfg_val = _cfg.get(name)
    if cfg_val is not None:
        return cfg_val
    return default


def _int_setting(name: str, default: int) -> int:
    try:
        return int(_setting(name, default))
    except (TypeError, ValueError):
        raise RuntimeError(f"{name} butun son bo'lishi kerak")


def _bool_setting(name: str, default: bool) -> bool:
    val = _setting(name, default)
    if isinstance(val, bool):
        return val
    return str(val).strip().lower() in ("1", "true", "yes", "on")


# Paths
DATA_DIR = Path("data")
PHOTOS_DIR = Path(_setting("PHOTOS_DIR", "media/photos"))
EXPORT_DIR = Path(_setting("EXPORT_DIR", "reports"))
DB_PATH = str(_setting("DB_PATH", DATA_DIR / "moddersheet.sqlite3"))

# Backends: sqlite | supabase | memory
ROW_STORE = str(_setting("ROW_STORE", "sqlite")).lower()
BLOB_STORE = str(_setting("BLOB_STORE", "local")).lower()

SUPABASE_URL = _setting("SUPABASE_URL")
SUPABASE_KEY = _setting("SUPABASE_KEY")
STORAGE_BUCKET = _setting("STORAGE_BUCKET", "products")

# Images
PHOTO_QUALITY = _int_setting("PHOTO_QUALITY", 85)
MEDIA_URL_PREFIX = str(_setting("MEDIA_URL_PREFIX", "/media/photos")).rstrip("/")

# Editor
HISTORY_LIMIT = _int_setting("HISTORY_LIMIT", 100)
STRICT_CELL_VALIDATION = _bool_setting("STRICT_CELL_VALIDATION", True)
SAVE_BATCH = _bool_setting("SAVE_BATCH", True)

# Admin sessions
SESSION_TTL = _int_setting("SESSION_TTL", 60 * 30)

LOG_LEVEL = str(_setting("LOG_LEVEL", "INFO")).upper()

# Ensure folders exist
DATA_DIR.mkdir(parents=True, exist_ok=True)
PHOTOS_DIR.mkdir(parents=True, exist_ok=True)
EXPORT_DIR.mkdir(parents=True, exist_ok=True)
