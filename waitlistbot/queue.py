from __future__ import annotations

import datetime as dt
import logging
from typing import Callable

from waitlistbot.domain import (
    JoinResult,
    JoinStatus,
    LeaveResult,
    LeaveStatus,
    PositionChange,
    WaitlistEntry,
)
from waitlistbot.locks import KeyedLocks
from waitlistbot.state_file import QueueStore

logger = logging.getLogger(__name__)

MAX_WAITLIST_SIZE = 10

LeaveListener = Callable[[str, str], None]


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class QueueEngine:
    """Join/leave bookkeeping over QueueStore.

    Every mutation for an event runs under that event's lock from ``locks``;
    the same KeyedLocks instance is shared with OfferCoordinator so queue changes
    and offer transitions for one event observe a single order.
    """

    def __init__(
        self,
        store: QueueStore,
        locks: KeyedLocks | None = None,
        *,
        max_size: int = MAX_WAITLIST_SIZE,
        now: Callable[[], dt.datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.locks = locks or KeyedLocks()
        self.max_size = max_size
        self._now = now
        self._leave_listeners: list[LeaveListener] = []

    def add_leave_listener(self, listener: LeaveListener) -> None:
        """Called as ``listener(event_id, user_id)`` under the event lock after a removal."""
        self._leave_listeners.append(listener)

    def join(self, event_id: str, user_id: str, chat_id: str) -> JoinResult:
        with self.locks.hold(event_id):
            existing = self.store.find(event_id, user_id)
            if existing is not None:
                return JoinResult(JoinStatus.ALREADY_JOINED, existing.position)

            entries = self.store.entries(event_id)
            if len(entries) >= self.max_size:
                logger.info("Waitlist for event %s is full (%d)", event_id, self.max_size)
                return JoinResult(JoinStatus.FULL)

            position = len(entries) + 1
            entry = WaitlistEntry(
                event_id=event_id,
                user_id=user_id,
                chat_id=chat_id,
                position=position,
                joined_at=self._now(),
            )
            self.store.replace(event_id, [*entries, entry])

        logger.info("User %s joined waitlist for event %s at position %d", user_id, event_id, position)
        return JoinResult(JoinStatus.JOINED, position)

    def leave(self, event_id: str, user_id: str) -> LeaveResult:
        with self.locks.hold(event_id):
            entries = self.store.entries(event_id)
            removed = next((e for e in entries if e.user_id == user_id), None)
            if removed is None:
                return LeaveResult(LeaveStatus.NOT_FOUND)

            remaining: list[WaitlistEntry] = []
            changes: list[PositionChange] = []
            for entry in entries:
                if entry.user_id == user_id:
                    continue
                new_position = len(remaining) + 1
                if entry.position != new_position:
                    changes.append(PositionChange(entry.user_id, entry.chat_id, entry.position, new_position))
                    entry = WaitlistEntry(
                        entry.event_id, entry.user_id, entry.chat_id, new_position, entry.joined_at
                    )
                remaining.append(entry)

            self.store.replace(event_id, remaining)

            for listener in self._leave_listeners:
                listener(event_id, user_id)

        logger.info(
            "User %s left waitlist for event %s (was %d). %d users moved up.",
            user_id,
            event_id,
            removed.position,
            len(changes),
        )
        return LeaveResult(LeaveStatus.REMOVED, tuple(changes))

    def position_of(self, event_id: str, user_id: str) -> int | None:
        entry = self.store.find(event_id, user_id)
        return entry.position if entry is not None else None

    def size(self, event_id: str) -> int:
        return self.store.count(event_id)

    def is_full(self, event_id: str) -> bool:
        return self.size(event_id) >= self.max_size

    def head_of_queue(self, event_id: str) -> WaitlistEntry | None:
        entries = self.store.entries(event_id)
        return entries[0] if entries else None

    def entries(self, event_id: str) -> list[WaitlistEntry]:
        return self.store.entries(event_id)

    def event_ids(self) -> list[str]:
        return self.store.event_ids()
