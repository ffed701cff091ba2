"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from pushworker.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)


@dataclass(frozen=True)
class Settings:
  """Typed settings for the push dispatch service."""

  environment: str
  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int
  log_max_bytes: int
  log_backup_count: int
  firebase_project_id: str | None
  firebase_service_account_json: str | None
  firebase_service_account_path: str | None
  firebase_key_dir: str
  public_base_url: str | None
  send_concurrency_limit: int
  progress_report_every: int
  send_lease_seconds: int
  dedup_window_seconds: int
  push_log_retention_days: int
  admin_api_key: str | None
  task_secret: str | None


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  return value or None


def _positive_int(name: str, default: str) -> int:
  raw = os.getenv(name, default)
  try:
    value = int(raw)
  except ValueError as exc:
    raise ValueError(f"{name} must be an integer.") from exc
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("PUSHWORKER_ENV", "development").lower()
  debug = _parse_bool(os.getenv("PUSHWORKER_DEBUG"))

  log_backup_count = int(os.getenv("PUSHWORKER_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("PUSHWORKER_LOG_BACKUP_COUNT must be zero or a positive integer.")

  send_concurrency_limit = _positive_int("PUSHWORKER_SEND_CONCURRENCY_LIMIT", "5")
  if send_concurrency_limit > 500:
    raise ValueError("PUSHWORKER_SEND_CONCURRENCY_LIMIT exceeds the maximum of 500.")

  public_base_url = _optional_str(os.getenv("PUSHWORKER_PUBLIC_BASE_URL"))
  if public_base_url and not (public_base_url.startswith("http://") or public_base_url.startswith("https://")):
    raise ValueError("PUSHWORKER_PUBLIC_BASE_URL must start with 'http://' or 'https://'.")

  return Settings(
    environment=environment,
    debug=debug,
    pg_dsn=_optional_str(os.getenv("PUSHWORKER_PG_DSN")),
    pg_connect_timeout=_positive_int("PUSHWORKER_PG_CONNECT_TIMEOUT", "10"),
    log_max_bytes=_positive_int("PUSHWORKER_LOG_MAX_BYTES", "5242880"),
    log_backup_count=log_backup_count,
    firebase_project_id=_optional_str(os.getenv("PUSHWORKER_FIREBASE_PROJECT_ID")),
    firebase_service_account_json=_optional_str(os.getenv("FIREBASE_SERVICE_ACCOUNT")),
    firebase_service_account_path=_optional_str(os.getenv("GOOGLE_APPLICATION_CREDENTIALS")),
    firebase_key_dir=(os.getenv("PUSHWORKER_FIREBASE_KEY_DIR") or "key").strip(),
    public_base_url=public_base_url,
    send_concurrency_limit=send_concurrency_limit,
    progress_report_every=_positive_int("PUSHWORKER_PROGRESS_REPORT_EVERY", "5"),
    send_lease_seconds=_positive_int("PUSHWORKER_SEND_LEASE_SECONDS", "300"),
    dedup_window_seconds=_positive_int("PUSHWORKER_DEDUP_WINDOW_SECONDS", "30"),
    push_log_retention_days=_positive_int("PUSHWORKER_PUSH_LOG_RETENTION_DAYS", "90"),
    admin_api_key=_optional_str(os.getenv("PUSHWORKER_ADMIN_API_KEY")),
    task_secret=_optional_str(os.getenv("PUSHWORKER_TASK_SECRET")),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load only the settings needed to build the database engine."""

  return DatabaseSettings(debug=_parse_bool(os.getenv("PUSHWORKER_DEBUG")), pg_dsn=_optional_str(os.getenv("PUSHWORKER_PG_DSN")), pg_connect_timeout=_positive_int("PUSHWORKER_PG_CONNECT_TIMEOUT", "10"))
