"""
Experience Store - short public posts ("experiences") users share, optionally
tagging someone by email
"""

import json
import logging
import os
import uuid
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

from services.auth_service import DEFAULT_PHOTO_URL
from services.errors import InvalidInput
from utils.validators import is_valid_email, normalize_email

logger = logging.getLogger(__name__)

DATA_DIR = os.getenv("DATA_DIR", "data")
LIST_LIMIT = 100


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ExperienceStore:
    def __init__(self, data_dir: str = DATA_DIR, clock: Callable[[], datetime] = utc_now):
        os.makedirs(data_dir, exist_ok=True)
        self.experiences_file = os.path.join(data_dir, "experiences.json")
        self.clock = clock
        self._lock = Lock()
        self.experiences: Dict[str, Dict[str, Any]] = self._load()

    def _load(self) -> Dict[str, Dict[str, Any]]:
        """Load experiences from file"""
        if not os.path.exists(self.experiences_file):
            return {}
        try:
            with open(self.experiences_file, "r") as f:
                data = json.load(f)
            return data if isinstance(data, dict) else {}
        except (OSError, ValueError) as e:
            logger.error(f"Error loading experiences: {e}")
            return {}

    def _save(self):
        tmp_path = self.experiences_file + ".tmp"
        with open(tmp_path, "w") as f:
            json.dump(self.experiences, f, indent=2)
        os.replace(tmp_path, self.experiences_file)

    def _commit(self, previous: Dict[str, Dict[str, Any]]):
        try:
            self._save()
        except Exception:
            self.experiences = previous
            raise

    def add(self, author: Dict[str, Any], experience: str, tagged_email: Optional[str] = None,
            message_to_recipient: Optional[str] = None) -> Dict[str, Any]:
        """
        Store a new experience written by ``author``

        Args:
            author: Sanitized user record of the poster
            experience: The post text, required
            tagged_email: Optional recipient to notify
            message_to_recipient: Kept only when someone is tagged

        Returns:
            The stored experience
        """
        text = (experience or "").strip()
        if not text:
            raise InvalidInput("Experience text cannot be empty.")
        tagged = (tagged_email or "").strip()
        if tagged and not is_valid_email(tagged):
            raise InvalidInput("Invalid recipient email format provided.")
        tagged = normalize_email(tagged) if tagged else None
        note = (message_to_recipient or "").strip() if tagged else ""

        record = {
            "id": uuid.uuid4().hex,
            "experience": text,
            "tagged_email": tagged,
            "message_to_recipient": note or None,
            "user_id": author["id"],
            "user_name": author.get("name"),
            "user_email": author.get("email"),
            "user_photo": author.get("photo") or DEFAULT_PHOTO_URL,
            "created_at": self.clock().isoformat(),
        }
        with self._lock:
            previous = dict(self.experiences)
            self.experiences[record["id"]] = record
            self._commit(previous)
        logger.info(f"[User {author['id']}] Experience {record['id']} saved (tagged: {bool(tagged)})")
        return dict(record)

    def list_recent(self, limit: int = LIST_LIMIT) -> List[Dict[str, Any]]:
        """Newest first"""
        with self._lock:
            records = [dict(r) for r in self.experiences.values()]
        records.sort(key=lambda r: r["created_at"], reverse=True)
        return records[:limit]

    def delete_for_user(self, user_id: str) -> int:
        with self._lock:
            ids = [eid for eid, r in self.experiences.items() if r["user_id"] == user_id]
            if ids:
                previous = dict(self.experiences)
                for eid in ids:
                    del self.experiences[eid]
                self._commit(previous)
        return len(ids)
