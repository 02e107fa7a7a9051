from __future__ import annotations

import json
import logging
import os
import threading

logger = logging.getLogger(__name__)


class CredentialStore:
    """In-memory user_id -> booking credential (session cookie)."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._lock = threading.Lock()
        self._credentials: dict[str, str] = {}
        for user_id, credential in (initial or {}).items():
            self.set(user_id, credential)

    def get(self, user_id: str) -> str | None:
        with self._lock:
            return self._credentials.get(user_id)

    def set(self, user_id: str, credential: str) -> None:
        credential = (credential or "").strip()
        if not credential:
            logger.warning("Attempted to set empty credential for user %s", user_id)
            return
        with self._lock:
            self._credentials[str(user_id)] = credential
        logger.info("Credential saved for user %s (length: %d chars)", user_id, len(credential))

    def remove(self, user_id: str) -> None:
        with self._lock:
            self._credentials.pop(user_id, None)
        logger.info("Credential removed for user %s", user_id)

    def __contains__(self, user_id: object) -> bool:
        with self._lock:
            return user_id in self._credentials


def _read_json_object(path: str, what: str) -> dict[str, str]:
    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)

    if not isinstance(raw, dict):
        raise RuntimeError(f"{what} file {path} must contain a JSON object")

    return {str(k): str(v) for k, v in raw.items()}


def load_credentials(path: str | None) -> CredentialStore:
    if not path or not os.path.exists(path):
        return CredentialStore()
    return CredentialStore(_read_json_object(path, "Credentials"))


def load_event_titles(path: str | None) -> dict[str, str]:
    """Event id -> display title used in notifications; empty if no file."""
    if not path or not os.path.exists(path):
        return {}
    titles = {event_id: title.strip() for event_id, title in _read_json_object(path, "Event titles").items()}
    return {event_id: title for event_id, title in titles.items() if title}
