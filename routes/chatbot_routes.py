from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from typing import List, Optional
from routes.auth_routes import get_current_user, get_optional_user
from services.chat_service import CHAT_TIMEOUT_SECONDS, ChatService
from services.conversation_store import ConversationStore
from services.errors import ServiceError
from services.llm_client import build_llm_client
import logging

logger = logging.getLogger(__name__)


# Request/Response models
class ChatMessage(BaseModel):
    role: str
    content: Optional[str] = ""


class ChatRequest(BaseModel):
    prompt: str = ""
    history: List[ChatMessage] = []
    chatId: Optional[str] = None  # None starts a new chat for signed-in users


class MessageRequest(BaseModel):
    prompt: str = ""


router = APIRouter()
conversations_router = APIRouter()

conversation_store = ConversationStore()
chat_service = ChatService(
    conversation_store,
    build_llm_client(timeout=CHAT_TIMEOUT_SECONDS),
)


@router.post("")
async def chatbot(request: ChatRequest, current=Depends(get_optional_user)):
    """
    Single-chat endpoint used by the home view.
    Anonymous callers get a stateless answer; signed-in callers get the turn persisted.
    """
    history = [m.model_dump() for m in request.history]
    logger.info(f"Chatbot request (history length {len(history)}, chat {request.chatId or 'new'})")
    try:
        if current is None:
            if request.chatId:
                raise HTTPException(status_code=401, detail="Login required to continue a saved chat")
            answer, _ = await chat_service.generate_answer(request.prompt, history)
            return {"answer": answer}

        turn = await chat_service.submit_turn(current["id"], request.chatId, request.prompt, history)
    except ServiceError as e:
        logger.warning(f"Chatbot request failed: {type(e).__name__}: {e.message}")
        raise e.as_http_exception()

    if turn.created:
        return {"answer": turn.answer, "newChatId": turn.conversation_id, "title": turn.title}
    return {
        "answer": turn.answer,
        "updatedChat": {"id": turn.conversation_id, "title": turn.title, "lastUpdate": turn.last_activity},
    }


# --- Conversations (multi-chat) ---

@conversations_router.get("")
async def list_conversations(current=Depends(get_current_user)):
    conversations = conversation_store.list_for_user(current["id"])
    return {
        "conversations": [
            {"id": c["id"], "title": c["title"], "lastUpdate": c["last_activity"]} for c in conversations
        ]
    }


@conversations_router.post("", status_code=201)
def create_conversation(current=Depends(get_current_user)):
    conv = conversation_store.create(current["id"])
    return {"message": "New conversation started.", "conversationId": conv["id"]}


@conversations_router.get("/{conversation_id}")
async def get_conversation(conversation_id: str, current=Depends(get_current_user)):
    try:
        conv = conversation_store.get_owned(conversation_id, current["id"])
    except ServiceError as e:
        raise e.as_http_exception()
    return {
        "id": conv["id"],
        "title": conv.get("title") or "Untitled Chat",
        "lastUpdate": conv["last_activity"],
        "messages": conv["messages"],
    }


@conversations_router.get("/{conversation_id}/messages")
async def get_messages(conversation_id: str, current=Depends(get_current_user)):
    try:
        conv = conversation_store.get_owned(conversation_id, current["id"])
    except ServiceError as e:
        raise e.as_http_exception()
    return {"messages": conv["messages"]}


@conversations_router.post("/{conversation_id}/messages")
async def add_message(conversation_id: str, request: MessageRequest, current=Depends(get_current_user)):
    """Answer a prompt within a stored conversation; the stored messages are the context."""
    try:
        turn = await chat_service.submit_turn(current["id"], conversation_id, request.prompt)
    except ServiceError as e:
        logger.warning(f"[User {current['id']}] Turn failed for {conversation_id}: {type(e).__name__}")
        raise e.as_http_exception()
    return {"answer": turn.answer}


@conversations_router.delete("/{conversation_id}")
def delete_conversation(conversation_id: str, current=Depends(get_current_user)):
    try:
        conversation_store.delete(conversation_id, current["id"])
    except ServiceError as e:
        raise e.as_http_exception()
    return {"message": "Conversation deleted successfully."}
