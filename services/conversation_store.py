"""
Conversation Store - persisted chat history per user
"""

import copy
import json
import logging
import os
import uuid
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

from services.errors import NotFound

logger = logging.getLogger(__name__)

DATA_DIR = os.getenv("DATA_DIR", "data")
LIST_LIMIT = 100


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ConversationStore:
    def __init__(self, data_dir: str = DATA_DIR, clock: Callable[[], datetime] = utc_now):
        os.makedirs(data_dir, exist_ok=True)
        self.conversations_file = os.path.join(data_dir, "conversations.json")
        self.clock = clock
        self._lock = Lock()
        self.conversations: Dict[str, Dict[str, Any]] = self._load()

    def _load(self) -> Dict[str, Dict[str, Any]]:
        """Load conversations from file"""
        if not os.path.exists(self.conversations_file):
            return {}
        try:
            with open(self.conversations_file, "r") as f:
                data = json.load(f)
            return data if isinstance(data, dict) else {}
        except (OSError, ValueError) as e:
            logger.error(f"Error loading conversations: {e}")
            return {}

    def _save(self):
        """Write all conversations in one file replace"""
        tmp_path = self.conversations_file + ".tmp"
        with open(tmp_path, "w") as f:
            json.dump(self.conversations, f, indent=2)
        os.replace(tmp_path, self.conversations_file)

    def _commit(self, previous: Dict[str, Dict[str, Any]]):
        """Persist, or put ``previous`` back when the write fails"""
        try:
            self._save()
        except Exception:
            self.conversations = previous
            raise

    def _turn_messages(self, prompt: str, answer: str) -> List[Dict[str, str]]:
        user_ts = self.clock()
        bot_ts = max(self.clock(), user_ts)
        return [
            {"role": "user", "content": prompt.strip(), "timestamp": user_ts.isoformat()},
            {"role": "bot", "content": answer, "timestamp": bot_ts.isoformat()},
        ]

    def _owned(self, conversation_id: str, user_id: str) -> Dict[str, Any]:
        conv = self.conversations.get(conversation_id)
        if not conv or conv["user_id"] != user_id:
            raise NotFound("Conversation not found.")
        return conv

    def create(self, user_id: str, title: Optional[str] = None) -> Dict[str, Any]:
        """
        Create a new, empty conversation

        Args:
            user_id: Owner of the conversation
            title: Optional title; set from the first prompt otherwise

        Returns:
            The stored conversation
        """
        now = self.clock().isoformat()
        conv = {
            "id": uuid.uuid4().hex,
            "user_id": user_id,
            "title": title,
            "messages": [],
            "created_at": now,
            "last_activity": now,
        }
        with self._lock:
            previous = dict(self.conversations)
            self.conversations[conv["id"]] = conv
            self._commit(previous)
        logger.info(f"[User {user_id}] New conversation created with ID: {conv['id']}")
        return json.loads(json.dumps(conv))

    def create_with_turn(self, user_id: str, prompt: str, answer: str, title: Optional[str] = None) -> Dict[str, Any]:
        """Create a conversation that already holds its first turn (one write)"""
        messages = self._turn_messages(prompt, answer)
        conv = {
            "id": uuid.uuid4().hex,
            "user_id": user_id,
            "title": title,
            "messages": messages,
            "created_at": messages[0]["timestamp"],
            "last_activity": messages[-1]["timestamp"],
        }
        with self._lock:
            previous = dict(self.conversations)
            self.conversations[conv["id"]] = conv
            self._commit(previous)
        logger.info(f"[User {user_id}] Conversation {conv['id']} started with first turn")
        return {"id": conv["id"], "title": title, "last_activity": conv["last_activity"]}

    def get_owned(self, conversation_id: str, user_id: str) -> Dict[str, Any]:
        with self._lock:
            return json.loads(json.dumps(self._owned(conversation_id, user_id)))

    def list_for_user(self, user_id: str, limit: int = LIST_LIMIT) -> List[Dict[str, Any]]:
        """Conversations of ``user_id``, most recently active first"""
        with self._lock:
            owned = [c for c in self.conversations.values() if c["user_id"] == user_id]
        owned.sort(key=lambda c: datetime.fromisoformat(c["last_activity"]), reverse=True)
        return [
            {"id": c["id"], "title": c.get("title") or "Untitled Chat", "last_activity": c["last_activity"]}
            for c in owned[:limit]
        ]

    def append_turn(self, conversation_id: str, user_id: str, prompt: str, answer: str,
                    title: Optional[str] = None) -> Dict[str, Any]:
        """
        Append a user message and its bot answer in a single write

        Args:
            conversation_id: Target conversation
            user_id: Must own the conversation
            prompt: The user's message
            answer: The formatted bot answer
            title: Applied only when the conversation has no title yet

        Returns:
            Summary with id, title and last_activity
        """
        with self._lock:
            conv = copy.deepcopy(self._owned(conversation_id, user_id))
            messages = self._turn_messages(prompt, answer)
            conv["messages"].extend(messages)
            conv["last_activity"] = messages[-1]["timestamp"]
            if title and not conv.get("title"):
                conv["title"] = title
            previous = dict(self.conversations)
            self.conversations[conversation_id] = conv
            self._commit(previous)
            summary = {"id": conv["id"], "title": conv.get("title"), "last_activity": conv["last_activity"]}
        logger.info(f"[User {user_id}] User/Bot messages saved to conversation {conversation_id}")
        return summary

    def delete(self, conversation_id: str, user_id: str) -> None:
        with self._lock:
            self._owned(conversation_id, user_id)
            previous = dict(self.conversations)
            del self.conversations[conversation_id]
            self._commit(previous)
        logger.info(f"[User {user_id}] Conversation {conversation_id} deleted")

    def delete_for_user(self, user_id: str) -> int:
        with self._lock:
            ids = [cid for cid, c in self.conversations.items() if c["user_id"] == user_id]
            if ids:
                previous = dict(self.conversations)
                for cid in ids:
                    del self.conversations[cid]
                self._commit(previous)
        return len(ids)
