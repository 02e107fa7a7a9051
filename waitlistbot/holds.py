from __future__ import annotations

import logging
import threading
from typing import Iterable
from urllib.parse import parse_qs, urlsplit

logger = logging.getLogger(__name__)


def extract_event_id(link: str) -> str | None:
    """Return the event id from an event URL, the value itself for a bare id.

    Supported URL shapes:
      https://events.example.org/?city=1&eventId=<id>
      https://events.example.org/events/<id>?city=1
    """

    link = link.strip()
    if not link:
        return None
    if not link.startswith(("http://", "https://")):
        return link

    parts = urlsplit(link)
    query_ids = parse_qs(parts.query).get("eventId")
    if query_ids and query_ids[0].strip():
        return query_ids[0].strip()

    marker = "/events/"
    if marker in parts.path:
        event_id = parts.path.split(marker, 1)[1].strip("/").split("/", 1)[0]
        return event_id or None

    return None


class EventHolds:
    """Events for which sweeps are suspended.

    Used by operators to emulate a fully booked event or to pause a noisy one.
    """

    def __init__(self, initial: Iterable[str] = ()) -> None:
        self._lock = threading.Lock()
        self._held: set[str] = set()
        for link in initial:
            event_id = extract_event_id(link)
            if event_id is None:
                logger.warning("Could not extract event id from hold link: %s", link)
                continue
            self._held.add(event_id)
        if self._held:
            logger.info("Initialized %d held events", len(self._held))

    def is_held(self, event_id: str) -> bool:
        with self._lock:
            return event_id in self._held

    def hold(self, event_id: str) -> None:
        with self._lock:
            self._held.add(event_id)
        logger.info("Event %s is now held (sweeps suspended)", event_id)

    def release(self, event_id: str) -> bool:
        with self._lock:
            if event_id not in self._held:
                return False
            self._held.discard(event_id)
        logger.info("Event %s is no longer held", event_id)
        return True

    def release_all(self) -> int:
        with self._lock:
            count = len(self._held)
            self._held.clear()
        logger.info("Removed hold from %d events", count)
        return count

    def held(self) -> set[str]:
        with self._lock:
            return set(self._held)
