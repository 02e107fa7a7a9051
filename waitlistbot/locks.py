from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator


class _Slot:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.users = 0


class KeyedLocks:
    """One reentrant lock per key (event id).

    Operations on the same event are serialized, different events never wait on
    each other. A lock lives only while some thread holds or waits for it, so
    the registry does not grow with every event id ever seen.
    """

    def __init__(self) -> None:
        self._registry = threading.Lock()
        self._slots: dict[str, _Slot] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._registry:
            slot = self._slots.get(key)
            if slot is None:
                slot = self._slots[key] = _Slot()
            slot.users += 1
        try:
            with slot.lock:
                yield
        finally:
            with self._registry:
                slot.users -= 1
                if slot.users == 0:
                    del self._slots[key]

    def __len__(self) -> int:
        with self._registry:
            return len(self._slots)
