from __future__ import annotations

import datetime as dt
import json
import logging
import os
import tempfile
import threading
from typing import Iterable

from waitlistbot.domain import WaitlistEntry

logger = logging.getLogger(__name__)

MEMORY = ":memory:"


def _entry_to_row(entry: WaitlistEntry) -> dict:
    return {
        "event_id": entry.event_id,
        "user_id": entry.user_id,
        "chat_id": entry.chat_id,
        "position": entry.position,
        "joined_at": entry.joined_at.isoformat(),
    }


def load_entries(path: str) -> list[WaitlistEntry]:
    if path == MEMORY or not os.path.exists(path):
        return []

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except json.JSONDecodeError:
        # Corrupted state shouldn't brick the worker; start fresh.
        logger.warning("State file %s is not valid JSON, starting with an empty waitlist", path)
        return []

    entries: list[WaitlistEntry] = []
    for item in raw.get("entries", []):
        try:
            entries.append(
                WaitlistEntry(
                    event_id=str(item["event_id"]),
                    user_id=str(item["user_id"]),
                    chat_id=str(item["chat_id"]),
                    position=int(item["position"]),
                    joined_at=dt.datetime.fromisoformat(item["joined_at"]),
                )
            )
        except (KeyError, TypeError, ValueError):
            logger.warning("Skipping malformed waitlist row: %r", item)
            continue
    return entries


def save_entries(path: str, entries: Iterable[WaitlistEntry]) -> None:
    if path == MEMORY:
        return

    rows = sorted(entries, key=lambda e: (e.event_id, e.position))
    data = {"entries": [_entry_to_row(e) for e in rows]}

    folder = os.path.dirname(os.path.abspath(path))
    if folder and not os.path.exists(folder):
        os.makedirs(folder, exist_ok=True)

    # Atomic write
    with tempfile.NamedTemporaryFile("w", delete=False, encoding="utf-8", dir=folder, suffix=".tmp") as tf:
        json.dump(data, tf, ensure_ascii=False, indent=2)
        tmp_name = tf.name

    os.replace(tmp_name, path)


def _normalize(entries: list[WaitlistEntry]) -> list[WaitlistEntry]:
    # Rows loaded from disk may have gaps or repeats if the file was edited by hand.
    ordered: list[WaitlistEntry] = []
    seen: set[str] = set()
    for entry in sorted(entries, key=lambda e: (e.position, e.joined_at)):
        if entry.user_id in seen:
            logger.warning("Skipping duplicate waitlist row: %r", entry)
            continue
        seen.add(entry.user_id)
        ordered.append(entry)
    return [
        e if e.position == i else WaitlistEntry(e.event_id, e.user_id, e.chat_id, i, e.joined_at)
        for i, e in enumerate(ordered, start=1)
    ]


class QueueStore:
    """Durable table of waitlist rows keyed by (event_id, user_id).

    Holds the rows in memory and rewrites the JSON file after each change.
    Callers are expected to serialize writes per event (see QueueEngine);
    the internal lock only protects the shared dict and the file.
    """

    def __init__(self, path: str = MEMORY) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._events: dict[str, list[WaitlistEntry]] = {}

        for entry in load_entries(path):
            self._events.setdefault(entry.event_id, []).append(entry)
        for event_id, rows in self._events.items():
            self._events[event_id] = _normalize(rows)

        if self._events:
            logger.info(
                "Loaded %d waitlist entries for %d events from %s",
                sum(len(r) for r in self._events.values()),
                len(self._events),
                path,
            )

    def entries(self, event_id: str) -> list[WaitlistEntry]:
        with self._lock:
            return list(self._events.get(event_id, ()))

    def find(self, event_id: str, user_id: str) -> WaitlistEntry | None:
        with self._lock:
            for entry in self._events.get(event_id, ()):
                if entry.user_id == user_id:
                    return entry
        return None

    def count(self, event_id: str) -> int:
        with self._lock:
            return len(self._events.get(event_id, ()))

    def event_ids(self) -> list[str]:
        with self._lock:
            return [event_id for event_id, rows in self._events.items() if rows]

    def replace(self, event_id: str, entries: Iterable[WaitlistEntry]) -> None:
        """Replace all rows of one event and persist.

        The in-memory table only changes once the file is written; if saving
        fails the error propagates and the previous rows stay in effect.
        """
        rows = sorted(entries, key=lambda e: e.position)
        with self._lock:
            events = dict(self._events)
            if rows:
                events[event_id] = rows
            else:
                events.pop(event_id, None)
            save_entries(self.path, [e for event_rows in events.values() for e in event_rows])
            self._events = events
