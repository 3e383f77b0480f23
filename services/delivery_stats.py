"""Email Delivery Stats

Lightweight in-memory counters for background email tasks, exposed on the
email status endpoint so failed sends are visible without reading logs.
"""

from datetime import datetime, timezone
from threading import Lock
from typing import Optional


class DeliveryStats:
    def __init__(self):
        self._lock = Lock()
        self.total = 0
        self.delivered = 0
        self.failed = 0
        self.retries = 0
        self.last_kind = None
        self.last_attempt_time = None
        self.last_error = None

    def record(self, kind: str, success: bool, attempts: int = 1, error: Optional[str] = None):
        with self._lock:
            self.total += 1
            if success:
                self.delivered += 1
            else:
                self.failed += 1
            self.retries += max(attempts - 1, 0)
            self.last_kind = kind
            self.last_attempt_time = datetime.now(timezone.utc).isoformat()
            self.last_error = error

    def snapshot(self) -> dict:
        with self._lock:
            success_rate = (self.delivered / self.total * 100) if self.total else 0.0
            return {
                "total": self.total,
                "delivered": self.delivered,
                "failed": self.failed,
                "retries": self.retries,
                "success_rate": round(success_rate, 2),
                "last_kind": self.last_kind,
                "last_attempt_time": self.last_attempt_time,
                "last_error": self.last_error,
            }
