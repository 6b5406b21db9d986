import os
from pathlib import Path


def env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def env_csv(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


DEFAULT_DB_PATH = str(Path(__file__).resolve().parents[1] / "data" / "trades.sqlite3")
TRADES_DB_PATH = os.getenv("TRADES_DB_PATH", DEFAULT_DB_PATH)

DEFAULT_FREE_QUOTA = env_int("DEFAULT_FREE_QUOTA", 3)
ATOMIC_UPDATE_ATTEMPTS = env_int("ATOMIC_UPDATE_ATTEMPTS", 3)

APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:3000").rstrip("/")
