"""User Store - persisted user records (JSON file under DATA_DIR)."""
import json
import logging
import os
import uuid
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, List, Optional

from services.errors import Conflict, NotFound
from utils.validators import normalize_email

logger = logging.getLogger(__name__)

DATA_DIR = os.getenv("DATA_DIR", "data")

# never leave the store
PRIVATE_FIELDS = ("password_hash", "password_reset_token", "password_reset_expires")


def sanitize(user: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if user is None:
        return None
    safe = user.copy()
    for field in PRIVATE_FIELDS:
        safe.pop(field, None)
    return safe


class UserStore:
    def __init__(self, data_dir: str = DATA_DIR):
        os.makedirs(data_dir, exist_ok=True)
        self.users_file = os.path.join(data_dir, "users.json")
        self._lock = Lock()
        self.users: Dict[str, Dict[str, Any]] = self._load()

    def _load(self) -> Dict[str, Dict[str, Any]]:
        if not os.path.exists(self.users_file):
            return {}
        try:
            with open(self.users_file, "r") as f:
                data = json.load(f)
            return data if isinstance(data, dict) else {}
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load {self.users_file}: {e}")
            return {}

    def _save(self):
        tmp_path = self.users_file + ".tmp"
        with open(tmp_path, "w") as f:
            json.dump(self.users, f, indent=2)
        os.replace(tmp_path, self.users_file)

    def _commit(self, previous: Dict[str, Dict[str, Any]]):
        """Persist, or put ``previous`` back when the write fails"""
        try:
            self._save()
        except Exception:
            self.users = previous
            raise

    # --- queries ---
    def get(self, user_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            user = self.users.get(user_id)
            return user.copy() if user else None

    def find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        email_l = normalize_email(email)
        with self._lock:
            for user in self.users.values():
                if user["email"] == email_l:
                    return user.copy()
        return None

    def find_by_reset_token(self, token_hash: str, now: float) -> Optional[Dict[str, Any]]:
        with self._lock:
            for user in self.users.values():
                expires = user.get("password_reset_expires")
                if user.get("password_reset_token") == token_hash and expires and expires > now:
                    return user.copy()
        return None

    def list(self) -> List[Dict[str, Any]]:
        """All users, sanitized, oldest first"""
        with self._lock:
            users = [sanitize(u) for u in self.users.values()]
        return sorted(users, key=lambda u: u["created_at"])

    # --- mutations ---
    def create(self, name: str, email: str, password_hash: str, photo: Optional[str] = None,
               is_admin: bool = False) -> Dict[str, Any]:
        email_l = normalize_email(email)
        user = {
            "id": uuid.uuid4().hex,
            "name": name.strip(),
            "email": email_l,
            "password_hash": password_hash,
            "photo": photo,
            "address": None,
            "phone": None,
            "date_of_birth": None,
            "is_admin": is_admin,
            "created_at": datetime.now(timezone.utc).isoformat(),
            "last_login": None,
            "password_reset_token": None,
            "password_reset_expires": None,
        }
        with self._lock:
            if any(u["email"] == email_l for u in self.users.values()):
                raise Conflict()
            previous = dict(self.users)
            self.users[user["id"]] = user
            self._commit(previous)
        logger.info(f"[UserStore] Created user {user['id']} ({email_l})")
        return user.copy()

    def update(self, user_id: str, **fields) -> Dict[str, Any]:
        with self._lock:
            user = self.users.get(user_id)
            if not user:
                raise NotFound("User not found.")
            if "email" in fields:
                fields["email"] = normalize_email(fields["email"])
                if any(u["email"] == fields["email"] and uid != user_id for uid, u in self.users.items()):
                    raise Conflict("Email already in use.")
            updated = {**user, **fields}
            previous = dict(self.users)
            self.users[user_id] = updated
            self._commit(previous)
            return updated.copy()

    def delete(self, user_id: str) -> bool:
        with self._lock:
            if user_id not in self.users:
                return False
            previous = dict(self.users)
            del self.users[user_id]
            self._commit(previous)
        logger.info(f"[UserStore] Deleted user {user_id}")
        return True
