"""Chat Service - one chatbot turn from prompt to persisted answer.

The model is called before anything is written, and the user/bot message
pair is stored in a single write, so a failed turn leaves no trace.
"""
import asyncio
import logging
import os
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

from services.conversation_store import ConversationStore
from services.errors import ChatTimeout, InvalidInput, ServiceError, UpstreamEmpty, UpstreamError
from services.llm_client import DEFAULT_TIMEOUT_SECONDS, LLMReply
from utils.text_format import format_plain_text

logger = logging.getLogger(__name__)

CHAT_TIMEOUT_SECONDS = float(os.getenv("CHAT_TIMEOUT_SECONDS", str(DEFAULT_TIMEOUT_SECONDS)))
CHAT_HISTORY_LIMIT = int(os.getenv("CHAT_HISTORY_LIMIT", "20"))
TITLE_MAX_CHARS = 40

SYSTEM_INSTRUCTION = """You are AURORA INTEL, a helpful AI assistant.
1. When answering the LATEST user question, ALWAYS consider the conversation history.
2. If the LATEST user question is a direct follow-up to YOUR immediately preceding response, use that context. For example, if you just talked about "Google" and the user says "what is its revenue?", "its" refers to "Google".
3. When the user uses pronouns (it, he, she, they, that, this, his, her, its, their), assume they refer to the primary subject of YOUR immediately preceding response, unless the question clearly introduces a new subject.
4. If the LATEST question introduces a new topic, answer it directly. Do NOT force connections to unrelated past topics unless the user asks for one.
5. Be concise and helpful."""

ROLE_MAP = {"user": "user", "bot": "assistant", "assistant": "assistant", "model": "assistant"}


class TurnResult(NamedTuple):
    answer: str
    conversation_id: Optional[str]
    title: Optional[str]
    last_activity: Optional[str]
    created: bool


def derive_title(prompt: str, suggested: Optional[str] = None) -> str:
    if suggested and suggested.strip():
        return suggested.strip()
    return prompt.strip()[:TITLE_MAX_CHARS].strip()


def build_context(history: Optional[List[Dict[str, Any]]], prompt: str,
                  collapse_same_role: bool = False, limit: int = CHAT_HISTORY_LIMIT) -> List[Dict[str, str]]:
    """System instruction + bounded history + the new prompt, in neutral roles."""
    turns = []
    for msg in history or []:
        role = ROLE_MAP.get((msg.get("role") or "").lower())
        content = (msg.get("content") or "").strip()
        if role is None or not content:
            continue
        turns.append({"role": role, "content": content})
    if limit:
        turns = turns[-limit:]

    messages = [{"role": "system", "content": SYSTEM_INSTRUCTION}]
    for turn in turns:
        if not collapse_same_role:
            messages.append(turn)
        elif messages[-1]["role"] == "system":
            # the system instruction is answered by a model acknowledgement
            if turn["role"] == "user":
                messages.append(turn)
        elif messages[-1]["role"] == turn["role"]:
            messages[-1] = turn
        else:
            messages.append(turn)
    if collapse_same_role and messages[-1]["role"] == "user":
        messages[-1] = {"role": "user", "content": prompt.strip()}
    else:
        messages.append({"role": "user", "content": prompt.strip()})
    return messages


class ChatService:
    def __init__(self, store: ConversationStore, llm_client=None,
                 timeout: float = CHAT_TIMEOUT_SECONDS, history_limit: int = CHAT_HISTORY_LIMIT):
        self.store = store
        self.llm_client = llm_client
        self.timeout = timeout
        self.history_limit = history_limit

    async def generate_answer(self, prompt: str, history: Optional[List[Dict[str, Any]]] = None
                              ) -> Tuple[str, LLMReply]:
        """Ask the model and return (plain-text answer, raw reply). Nothing is stored."""
        if not prompt or not prompt.strip():
            raise InvalidInput("Prompt cannot be empty.")
        if self.llm_client is None:
            logger.error("Chatbot requested but no LLM client is configured")
            raise UpstreamError()

        collapse = getattr(self.llm_client, "collapse_same_role", False)
        messages = build_context(history, prompt, collapse_same_role=collapse, limit=self.history_limit)
        logger.info(f"Calling model with {len(messages)} context messages")
        try:
            reply = await asyncio.wait_for(asyncio.to_thread(self.llm_client.generate, messages), self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Model call exceeded {self.timeout}s")
            raise ChatTimeout()
        except ServiceError:
            raise
        except Exception as e:
            logger.exception(f"Model call failed: {type(e).__name__}")
            raise UpstreamError() from e

        answer = format_plain_text(reply.text)
        if not answer:
            raise UpstreamEmpty()
        return answer, reply

    async def submit_turn(self, user_id: str, conversation_id: Optional[str], prompt: str,
                          history: Optional[List[Dict[str, Any]]] = None) -> TurnResult:
        """Answer ``prompt`` and persist the turn for ``user_id``.

        ``conversation_id=None`` starts a new conversation. For an existing
        one, ``history`` defaults to its stored messages.
        """
        if not prompt or not prompt.strip():
            raise InvalidInput("Prompt cannot be empty.")

        if conversation_id is None:
            answer, reply = await self.generate_answer(prompt, history)
            title = derive_title(prompt, reply.title)
            summary = await asyncio.to_thread(self.store.create_with_turn, user_id, prompt, answer, title)
            return TurnResult(answer, summary["id"], summary["title"], summary["last_activity"], True)

        conv = self.store.get_owned(conversation_id, user_id)
        if history is None:
            history = conv["messages"]
        answer, reply = await self.generate_answer(prompt, history)
        title = derive_title(prompt, reply.title) if not conv["messages"] else None
        summary = await asyncio.to_thread(self.store.append_turn, conversation_id, user_id, prompt, answer, title)
        return TurnResult(answer, summary["id"], summary["title"], summary["last_activity"], False)
