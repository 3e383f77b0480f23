from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import BaseModel
from typing import Optional
from routes import auth_routes
from routes.auth_routes import get_current_user
from services.errors import ServiceError
from services.experience_store import ExperienceStore
import logging

logger = logging.getLogger(__name__)

router = APIRouter()
experience_store = ExperienceStore()


class ExperienceRequest(BaseModel):
    experience: str = ""
    taggedEmail: Optional[str] = None
    messageToRecipient: Optional[str] = None


def _public(record: dict) -> dict:
    return {
        "id": record["id"],
        "experience": record["experience"],
        "taggedEmail": record["tagged_email"],
        "messageToRecipient": record["message_to_recipient"],
        "userId": record["user_id"],
        "userName": record["user_name"],
        "userEmail": record["user_email"],
        "userPhoto": record["user_photo"],
        "createdAt": record["created_at"],
    }


@router.get("")
def list_experiences():
    """Public feed, newest first"""
    experiences = experience_store.list_recent()
    logger.info(f"Returning {len(experiences)} experiences")
    return [_public(e) for e in experiences]


@router.post("", status_code=201)
def add_experience(body: ExperienceRequest, background: BackgroundTasks, current=Depends(get_current_user)):
    try:
        record = experience_store.add(current, body.experience, body.taggedEmail, body.messageToRecipient)
    except ServiceError as e:
        raise e.as_http_exception()

    if record["tagged_email"]:
        background.add_task(
            auth_routes.email_service.send_experience_email,
            record["tagged_email"],
            record["user_name"],
            record["user_email"],
            record["experience"],
            record["message_to_recipient"],
        )
    return {"message": "Experience added successfully!", "experience": _public(record)}
