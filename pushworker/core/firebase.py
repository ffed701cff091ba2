import json
import logging
from pathlib import Path
from typing import Any

import firebase_admin
from firebase_admin import credentials

from pushworker.config import Settings, get_settings

logger = logging.getLogger(__name__)

_LOCAL_KEY_FILES = ("key-1.json", "firebase-key.json", "service-account.json")
_REQUIRED_FIELDS = ("project_id", "private_key", "client_email")


def _is_complete(service_account: dict[str, Any]) -> bool:
  return all(service_account.get(field) for field in _REQUIRED_FIELDS)


def _load_json_file(path: Path) -> dict[str, Any] | None:
  try:
    return json.loads(path.read_text(encoding="utf-8"))
  except (OSError, json.JSONDecodeError) as e:
    logger.warning("Failed to read service account from %s: %s", path, e)
    return None


def _candidate_service_accounts(settings: Settings) -> list[tuple[str, dict[str, Any]]]:
  """Collect service account payloads in priority order: local key files, inline JSON, credentials path."""
  candidates: list[tuple[str, dict[str, Any]]] = []

  key_dir = Path(settings.firebase_key_dir)
  for filename in _LOCAL_KEY_FILES:
    path = key_dir / filename
    if path.is_file():
      payload = _load_json_file(path)
      if payload is not None:
        candidates.append((f"local file {path}", payload))

  if settings.firebase_service_account_json and settings.firebase_service_account_json.startswith("{"):
    try:
      candidates.append(("FIREBASE_SERVICE_ACCOUNT", json.loads(settings.firebase_service_account_json)))
    except json.JSONDecodeError as e:
      logger.warning("Failed to parse FIREBASE_SERVICE_ACCOUNT: %s", e)

  if settings.firebase_service_account_path:
    path = Path(settings.firebase_service_account_path)
    if not path.is_absolute():
      path = Path.cwd() / path
    if path.is_file():
      payload = _load_json_file(path)
      if payload is not None:
        candidates.append((f"GOOGLE_APPLICATION_CREDENTIALS {path}", payload))

  return candidates


def initialize_firebase(settings: Settings | None = None) -> bool:
  """Initializes the Firebase Admin SDK and reports whether messaging is usable."""
  if firebase_admin._apps:
    return True

  settings = settings or get_settings()
  for source, service_account in _candidate_service_accounts(settings):
    if not _is_complete(service_account):
      logger.warning("Service account from %s is missing required fields, trying next source.", source)
      continue
    try:
      cred = credentials.Certificate(service_account)
      project_id = settings.firebase_project_id or service_account["project_id"]
      firebase_admin.initialize_app(cred, {"projectId": project_id})
    except (ValueError, OSError) as e:
      logger.warning("Failed to initialize Firebase from %s: %s", source, e)
      continue
    logger.info("Firebase Admin SDK initialized from %s project_id=%s client_email=%s", source, project_id, service_account["client_email"])
    return True

  logger.error("Firebase initialization failed. Tried local key files in %s/, FIREBASE_SERVICE_ACCOUNT and GOOGLE_APPLICATION_CREDENTIALS.", settings.firebase_key_dir)
  return False


def get_firebase_app() -> firebase_admin.App | None:
  """Return the default Firebase app when one has been initialized."""
  if not firebase_admin._apps:
    return None
  return firebase_admin.get_app()
