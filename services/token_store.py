"""Expiring Store - in-memory key/value entries with a time-to-live.

Backs the pending signup OTPs, the remote-logout links and the revoked
session ids. Entries live only for the lifetime of the process.

Reads never trust a timer: ``get_if_valid`` checks the expiry against the
store clock, so the optional ``schedule_cleanup`` callback only frees memory
early.
"""
import asyncio
import logging
import time
from threading import Lock
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class ExpiringStore:
    def __init__(self, clock: Callable[[], float] = time.time, name: str = "store"):
        self.clock = clock
        self.name = name
        self._lock = Lock()
        self._entries: Dict[str, Dict[str, Any]] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get_if_valid(key) is not None

    def put(self, key: str, value: Any, ttl: float) -> Dict[str, Any]:
        """Store ``value`` under ``key`` for ``ttl`` seconds, replacing any previous entry."""
        entry = {"value": value, "expires_at": self.clock() + ttl}
        with self._lock:
            self._entries[key] = entry
        return entry

    def get_entry(self, key: str) -> Optional[Dict[str, Any]]:
        """Raw entry (value + expires_at), expired or not."""
        with self._lock:
            return self._entries.get(key)

    def get_if_valid(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self.clock() > entry["expires_at"]:
                del self._entries[key]
                return None
            return entry["value"]

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def delete_if_same(self, key: str, value: Any) -> bool:
        """Delete ``key`` only while it still holds ``value``.

        A newer ``put`` for the same key must survive a cleanup scheduled for
        the older entry.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry["value"] is not value:
                return False
            del self._entries[key]
            return True

    def purge_expired(self) -> int:
        now = self.clock()
        with self._lock:
            stale = [k for k, e in self._entries.items() if now > e["expires_at"]]
            for k in stale:
                del self._entries[k]
        if stale:
            logger.debug(f"[{self.name}] purged {len(stale)} expired entries")
        return len(stale)

    def schedule_cleanup(self, key: str, value: Any, delay: float) -> bool:
        """Fire-and-forget removal of ``key`` after ``delay`` seconds.

        Needs a running event loop; returns False (and does nothing) without one.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return False
        loop.call_later(max(delay, 0), self.delete_if_same, key, value)
        return True
