import os
from typing import Optional


def _env_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or "").strip() or default


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except Exception:
        return default


class Settings:
    def __init__(self) -> None:
        self.env = _env_str("APP_ENV", "local")
        self.api_base_url = _env_str("POS_API_BASE_URL", "http://localhost:8001").rstrip("/")
        self.db_path = _env_str("POS_DB_PATH", os.path.join(os.getcwd(), "pos.sqlite"))
        self.device_id = _env_str("POS_DEVICE_ID")
        self.device_token = _env_str("POS_DEVICE_TOKEN")
        self.location_id: Optional[str] = _env_str("POS_LOCATION_ID") or None
        # One cart row per session; a till normally keeps the same session id across restarts.
        self.session_id = _env_str("POS_SESSION_ID", "default")
        # Bounded timeout for a single sale submission; a timeout counts as a failed attempt.
        self.submit_timeout_s = _env_float("POS_SUBMIT_TIMEOUT_S", 10.0)
        self.health_timeout_s = _env_float("POS_HEALTH_TIMEOUT_S", 0.8)
        self.probe_interval_s = _env_float("POS_PROBE_INTERVAL_S", 5.0)
        self.sync_interval_s = _env_float("POS_SYNC_INTERVAL_S", 60.0)
        self.host = _env_str("POS_HOST", "127.0.0.1")
        self.port = _env_int("POS_PORT", 7070)


settings = Settings()
