from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]

_TRUE = ("true", "1", "yes")
_FALSE = ("false", "0", "no")


def _getenv(name: str, default: str) -> str:
    return os.environ.get(name, default).strip()


def _getint(name: str, default: int) -> int:
    raw = _getenv(name, str(default))
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None
    if value < 0:
        raise ValueError(f"{name} must be >= 0 (got {value})")
    return value


def _getbool(name: str, default: bool) -> bool:
    raw = _getenv(name, "true" if default else "false").lower()
    if raw in _TRUE:
        return True
    if raw in _FALSE:
        return False
    raise ValueError(f"{name} must be true|false (got {raw!r})")


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    database_url: str | None
    redis_url: str | None

    # Generation coordinator
    generation_ttl_seconds: int = 60
    generation_timeout_seconds: int = 30
    cleanup_interval_seconds: int = 60

    # Artifact + delivery
    issuer_name: str = "AI Genius Lab"
    public_base_url: str = "http://localhost:3000"
    artifact_storage_url: str | None = None
    notify_webhook_url: str | None = None

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=_getbool("LOG_JSON", False),
        port=_getint("PORT", 8000),
        database_url=_getenv("DATABASE_URL", "") or None,
        redis_url=_getenv("REDIS_URL", "") or None,
        generation_ttl_seconds=_getint("CERT_GENERATION_TTL_SECONDS", 60),
        generation_timeout_seconds=_getint("CERT_GENERATION_TIMEOUT_SECONDS", 30),
        cleanup_interval_seconds=_getint("CERT_CLEANUP_INTERVAL_SECONDS", 60),
        issuer_name=_getenv("CERT_ISSUER_NAME", "AI Genius Lab") or "AI Genius Lab",
        public_base_url=_getenv("PUBLIC_BASE_URL", "http://localhost:3000").rstrip(
            "/"
        ),
        artifact_storage_url=_getenv("ARTIFACT_STORAGE_URL", "") or None,
        notify_webhook_url=_getenv("NOTIFY_WEBHOOK_URL", "") or None,
    )


SETTINGS = load_settings()
