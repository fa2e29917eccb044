from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import os


def _env_str(name: str, default: str | None = None) -> str:
    value = os.getenv(name)
    if value is None:
        if default is None:
            raise RuntimeError(f"Missing required env: {name}")
        return default
    return value


def _env_int(name: str, default: int | None = None) -> int:
    value = os.getenv(name)
    if value is None:
        if default is None:
            raise RuntimeError(f"Missing required env: {name}")
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    return float(value)


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip().lower()
    return value in {"1", "true", "yes", "y", "on"}


@dataclass(frozen=True)
class Config:
    # Telegram
    bot_token: str
    admin_user_id: int
    alert_chat_id: int
    tg_parse_mode: str

    # Gemini
    gemini_base_url: str
    gemini_model: str
    ai_timeout_seconds: int
    ai_temperature: float
    ai_max_retries: int
    ai_initial_backoff_ms: int
    ai_max_backoff_ms: int

    # Content fetching
    fetch_timeout_seconds: int
    fetch_min_interval_seconds: int
    fetch_jitter_seconds: int
    user_agent: str
    max_content_chars: int

    # Personas
    personas_path: Path

    # Storage
    sqlite_path: Path
    quota_limit: int

    # Metrics
    metrics_enabled: bool
    metrics_bind: str
    metrics_port: int
    status_json_path: Path

    # Alerts
    alert_n_ai: int

    # Logging
    log_level: str
    log_file: str


def load_config() -> Config:
    return Config(
        bot_token=_env_str("BOT_TOKEN"),
        admin_user_id=_env_int("ADMIN_USER_ID", 0),
        alert_chat_id=_env_int("ALERT_CHAT_ID", 0),
        tg_parse_mode=_env_str("TG_PARSE_MODE", "HTML"),
        gemini_base_url=_env_str("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com"),
        gemini_model=_env_str("GEMINI_MODEL", "gemini-2.0-flash"),
        ai_timeout_seconds=_env_int("AI_TIMEOUT_SECONDS", 60),
        ai_temperature=_env_float("AI_TEMPERATURE", 0.7),
        ai_max_retries=_env_int("AI_MAX_RETRIES", 3),
        ai_initial_backoff_ms=_env_int("AI_INITIAL_BACKOFF_MS", 1000),
        ai_max_backoff_ms=_env_int("AI_MAX_BACKOFF_MS", 30000),
        fetch_timeout_seconds=_env_int("FETCH_TIMEOUT_SECONDS", 20),
        fetch_min_interval_seconds=_env_int("FETCH_MIN_INTERVAL_SECONDS", 2),
        fetch_jitter_seconds=_env_int("FETCH_JITTER_SECONDS", 1),
        user_agent=_env_str(
            "USER_AGENT",
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0 Safari/537.36",
        ),
        max_content_chars=_env_int("MAX_CONTENT_CHARS", 60000),
        personas_path=Path(_env_str("PERSONAS_PATH", "config/personas.yaml")),
        sqlite_path=Path(_env_str("SQLITE_PATH", "data/vibeflow.db")),
        quota_limit=_env_int("QUOTA_LIMIT", 100),
        metrics_enabled=_env_bool("METRICS_ENABLED", True),
        metrics_bind=_env_str("METRICS_BIND", "127.0.0.1"),
        metrics_port=_env_int("METRICS_PORT", 9109),
        status_json_path=Path(_env_str("STATUS_JSON_PATH", "data/status.json")),
        alert_n_ai=_env_int("ALERT_N_AI", 5),
        log_level=_env_str("LOG_LEVEL", "INFO"),
        log_file=_env_str("LOG_FILE", ""),
    )
