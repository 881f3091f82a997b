"""Process-local single-writer locks keyed by room id."""
from __future__ import annotations

import threading
from contextlib import ExitStack, contextmanager
from typing import Dict, Iterator

from .errors import TransientStoreError


class RoomLocks:
    def __init__(self, timeout: float = 10.0) -> None:
        self._timeout = timeout
        self._guard = threading.Lock()
        self._locks: Dict[int, threading.Lock] = {}

    def _lock_for(self, room_id: int) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(room_id, threading.Lock())

    @contextmanager
    def hold(self, *room_ids: int) -> Iterator[None]:
        """Hold every given room's lock, always acquired in ascending id order."""
        with ExitStack() as stack:
            for room_id in sorted(set(room_ids)):
                lock = self._lock_for(room_id)
                if not lock.acquire(timeout=self._timeout):
                    raise TransientStoreError(f"Timed out waiting for room {room_id} to become writable")
                stack.callback(lock.release)
            yield
