"""
User Routes - profile, profile photo and account management
"""

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from pydantic import BaseModel
from typing import Optional
from routes import auth_routes, chatbot_routes, experience_routes
from routes.auth_routes import get_current_user, require_admin
from services.errors import ServiceError
import logging
import os
import uuid

logger = logging.getLogger(__name__)

UPLOADS_DIR = os.path.join(os.getenv("DATA_DIR", "data"), "uploads")
ALLOWED_IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp"}
MAX_PHOTO_BYTES = 5 * 1024 * 1024

router = APIRouter()


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    date_of_birth: Optional[str] = None


class UserUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    is_admin: Optional[bool] = None


@router.get("/api/user")
async def current_user(current=Depends(get_current_user)):
    return current


@router.get("/api/users")
def list_users(current=Depends(require_admin)):
    """Admin only: every account, without credentials"""
    users = auth_routes.auth_service.list_users()
    return {"users": users, "count": len(users)}


@router.put("/api/auth/user")
def update_profile(body: ProfileUpdate, current=Depends(get_current_user)):
    try:
        user = auth_routes.auth_service.update_profile(current["id"], body.model_dump(exclude_none=True))
    except ServiceError as e:
        raise e.as_http_exception()
    return {"message": "Profile updated successfully", "user": user}


@router.post("/api/auth/upload")
def upload_photo(profileImage: UploadFile = File(...), current=Depends(get_current_user)):
    """
    Upload the current user's profile picture

    Args:
        profileImage: jpg, jpeg, png, gif or webp, at most 5 MB

    Returns:
        JSON with the new photo URL
    """
    extension = os.path.splitext(profileImage.filename or "")[1].lower()
    if extension not in ALLOWED_IMAGE_EXTENSIONS:
        raise HTTPException(status_code=400, detail="Only image files (jpg, jpeg, png, gif, webp) are allowed!")
    content = profileImage.file.read(MAX_PHOTO_BYTES + 1)
    if not content:
        raise HTTPException(status_code=400, detail="No image file uploaded.")
    if len(content) > MAX_PHOTO_BYTES:
        raise HTTPException(status_code=400, detail="Image exceeds the 5MB limit.")

    os.makedirs(UPLOADS_DIR, exist_ok=True)
    filename = f"profileImage-{current['id']}-{uuid.uuid4().hex[:8]}{extension}"
    with open(os.path.join(UPLOADS_DIR, filename), "wb") as f:
        f.write(content)
    photo_url = f"/uploads/{filename}"
    try:
        user = auth_routes.auth_service.set_photo(current["id"], photo_url)
    except ServiceError as e:
        raise e.as_http_exception()
    logger.info(f"Profile photo updated for user {current['id']}: {photo_url}")
    return {"message": "Upload successful", "photo": user["photo"]}


@router.put("/api/users/update/{user_id}")
def update_user(user_id: str, body: UserUpdate, current=Depends(get_current_user)):
    try:
        user = auth_routes.auth_service.update_user(current, user_id, body.model_dump(exclude_none=True))
    except ServiceError as e:
        raise e.as_http_exception()
    return {"message": "User updated successfully", "user": user}


@router.delete("/api/users/delete/{user_id}")
def delete_user(user_id: str, current=Depends(get_current_user)):
    try:
        auth_routes.auth_service.delete_user(current, user_id)
    except ServiceError as e:
        raise e.as_http_exception()
    removed = chatbot_routes.conversation_store.delete_for_user(user_id)
    logger.info(f"Deleted {removed} conversations of user {user_id}")
    removed = experience_routes.experience_store.delete_for_user(user_id)
    logger.info(f"Deleted {removed} experiences of user {user_id}")
    return {"message": "User and related data deleted successfully", "userId": user_id}
