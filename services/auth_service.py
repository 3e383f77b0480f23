"""Auth Service - signup, login, password reset and account management.

Signup is OTP-gated: request_otp -> verify_otp -> user created. Every
commit point re-checks its precondition (email still free, token still
valid) instead of holding a lock across the whole flow.
"""
import hashlib
import logging
import os
import secrets
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from passlib.context import CryptContext

from services.errors import (
    Conflict,
    Forbidden,
    InvalidInput,
    NotFound,
    NotFoundOrExpired,
    Unauthorized,
)
from services.otp_service import OTPService
from services.token_store import ExpiringStore
from services.user_store import UserStore, sanitize
from utils.validators import (
    MIN_PASSWORD_LENGTH,
    is_valid_email,
    is_valid_otp,
    is_valid_password,
    normalize_email,
)

logger = logging.getLogger(__name__)

RESET_TOKEN_EXP_SECONDS = int(os.getenv("RESET_TOKEN_TTL_SECONDS", "3600"))
REMOTE_LOGOUT_EXP_SECONDS = int(os.getenv("REMOTE_LOGOUT_TTL_SECONDS", "3600"))
SESSION_EXP_SECONDS = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60")) * 60
DEFAULT_PHOTO_URL = "/uploads/default-profile-placeholder.png"
GENERIC_RESET_MESSAGE = "If an account with that email exists, a password reset link has been sent."
PROFILE_FIELDS = ("name", "address", "phone", "date_of_birth")

pwd_context = CryptContext(schemes=["bcrypt", "pbkdf2_sha256"], deprecated="auto")
_fallback_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    # bcrypt only uses the first 72 bytes; newer bcrypt releases refuse longer input
    if len(password.encode("utf-8")) > 72:
        return _fallback_context.hash(password)
    try:
        return pwd_context.hash(password)
    except (ValueError, AttributeError) as e:
        logger.warning(f"[AuthService] bcrypt hash failed ({e}); using pbkdf2_sha256")
        return _fallback_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    if not hashed:
        return False
    try:
        return pwd_context.verify(plain, hashed)
    except (ValueError, AttributeError) as e:
        logger.warning(f"[AuthService] Verify error: {e}")
        return False


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class AuthService:
    def __init__(self, users: Optional[UserStore] = None, otp: Optional[OTPService] = None,
                 clock: Callable[[], float] = time.time,
                 reset_ttl: int = RESET_TOKEN_EXP_SECONDS,
                 remote_logout_ttl: int = REMOTE_LOGOUT_EXP_SECONDS,
                 session_ttl: int = SESSION_EXP_SECONDS):
        self.clock = clock
        self.users = users if users is not None else UserStore()
        self.otp = otp if otp is not None else OTPService(clock=clock)
        self.reset_ttl = reset_ttl
        self.remote_logout_ttl = remote_logout_ttl
        self.session_ttl = session_ttl
        self.remote_logout_tokens = ExpiringStore(clock=clock, name="remote-logout")
        self.revoked_sessions = ExpiringStore(clock=clock, name="revoked-sessions")

    # --- signup ---
    def request_otp(self, email: str) -> Tuple[str, str]:
        """Issue a signup code. Returns (normalized_email, code) for the mailer."""
        if not is_valid_email(email or ""):
            raise InvalidInput("Valid email is required.")
        email_l = normalize_email(email)
        if self.users.find_by_email(email_l):
            raise Conflict("Email already registered. Please Login.")
        return email_l, self.otp.issue(email_l)

    def verify_otp(self, name: str, email: str, password: str, otp: str) -> Dict[str, Any]:
        if not (name or "").strip() or not is_valid_email(email or "") \
                or not is_valid_password(password) or not is_valid_otp(otp):
            raise InvalidInput(
                f"Valid name, email, password (min {MIN_PASSWORD_LENGTH} chars), and 6-digit OTP required."
            )
        email_l = normalize_email(email)
        self.otp.consume(email_l, otp)

        # registered by someone else between request and verify
        if self.users.find_by_email(email_l):
            logger.info(f"[AuthService] {email_l} registered during OTP verification")
            raise Conflict("This email address was registered during the verification process. Please Login.")

        user = self.users.create(name, email_l, hash_password(password), photo=DEFAULT_PHOTO_URL)
        return sanitize(user)

    # --- login & sessions ---
    def authenticate(self, email: str, password: str) -> Optional[Dict[str, Any]]:
        user = self.users.find_by_email(email or "")
        if not user or not verify_password(password or "", user.get("password_hash")):
            return None
        return user

    def login(self, email: str, password: str) -> Dict[str, Any]:
        """Check credentials and open a session.

        Returns the sanitized user, a fresh session id and the single-use
        remote-logout token for the login alert.
        """
        if not email or not password:
            raise InvalidInput("Email and Password are required.")
        user = self.authenticate(email, password)
        if not user:
            logger.info(f"[AuthService] Failed login for {normalize_email(email)}")
            raise Unauthorized("Invalid credentials.")
        last_login = datetime.fromtimestamp(self.clock(), timezone.utc).isoformat()
        user = self.users.update(user["id"], last_login=last_login)
        session_id = secrets.token_hex(16)
        remote_token = secrets.token_hex(32)
        self.remote_logout_tokens.put(remote_token, {"user_id": user["id"], "sid": session_id},
                                      self.remote_logout_ttl)
        logger.info(f"[AuthService] Login success: user {user['id']}")
        return {"user": sanitize(user), "session_id": session_id, "remote_logout_token": remote_token}

    def remote_logout(self, token: str) -> str:
        """Consume a remote-logout link and revoke the session it was issued for."""
        data = self.remote_logout_tokens.get_if_valid(token or "")
        if data is None:
            raise NotFoundOrExpired("This remote logout link has expired or is invalid.")
        self.remote_logout_tokens.delete(token)
        self.revoked_sessions.put(data["sid"], True, self.session_ttl)
        logger.info(f"[AuthService] Remote logout: session revoked for user {data['user_id']}")
        return data["user_id"]

    def is_session_revoked(self, session_id: Optional[str]) -> bool:
        return bool(session_id) and session_id in self.revoked_sessions

    # --- password reset ---
    def forgot_password(self, email: str) -> Optional[Tuple[str, str]]:
        """Issue a reset token if the account exists.

        Returns (email, raw_token) for the mailer, or None. Callers answer
        with GENERIC_RESET_MESSAGE either way.
        """
        if not (email or "").strip():
            raise InvalidInput("Please provide your email address.")
        user = self.users.find_by_email(email)
        if not user:
            logger.info(f"[AuthService] Forgot password: no account for {normalize_email(email)}")
            return None
        raw_token = secrets.token_hex(32)
        token_hash = hash_token(raw_token)
        self.users.update(user["id"], password_reset_token=token_hash,
                          password_reset_expires=self.clock() + self.reset_ttl)
        logger.info(f"[AuthService] Reset token issued for user {user['id']} ({token_hash[:8]}...)")
        return user["email"], raw_token

    def reset_password(self, token: str, password: str, confirm_password: str) -> None:
        if not password or not confirm_password:
            raise InvalidInput("Password and confirmation are required.")
        if not is_valid_password(password):
            raise InvalidInput(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.")
        if password != confirm_password:
            raise InvalidInput("Passwords do not match.")
        user = self.users.find_by_reset_token(hash_token(token or ""), self.clock())
        if not user:
            raise NotFoundOrExpired("Password reset token is invalid or has expired. Please request a new one.")
        self.users.update(user["id"], password_hash=hash_password(password),
                          password_reset_token=None, password_reset_expires=None)
        logger.info(f"[AuthService] Password reset for user {user['id']}")

    # --- profile & management ---
    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        return sanitize(self.users.get(user_id))

    def update_profile(self, user_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        final = {}
        for key in PROFILE_FIELDS:
            value = updates.get(key)
            if value is None:
                continue
            final[key] = value.strip() if isinstance(value, str) else value
        if not final:
            raise InvalidInput("No valid fields provided for update.")
        if "name" in final and not final["name"]:
            raise InvalidInput("Name cannot be empty.")
        return sanitize(self.users.update(user_id, **final))

    def list_users(self):
        return self.users.list()

    def set_photo(self, user_id: str, photo_url: str) -> Dict[str, Any]:
        return sanitize(self.users.update(user_id, photo=photo_url))

    def _check_self_or_admin(self, actor: Dict[str, Any], target_id: str):
        if target_id != actor["id"] and not actor.get("is_admin"):
            raise Forbidden()

    def update_user(self, actor: Dict[str, Any], target_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        self._check_self_or_admin(actor, target_id)
        target = self.users.get(target_id)
        if not target:
            raise NotFound("User to update not found.")
        final = {}
        name = updates.get("name")
        if name and name.strip():
            final["name"] = name.strip()
        email = updates.get("email")
        if email:
            if not is_valid_email(email):
                raise InvalidInput("Invalid email format.")
            if normalize_email(email) != target["email"]:
                final["email"] = normalize_email(email)
        password = updates.get("password")
        if password:
            if not is_valid_password(password):
                raise InvalidInput(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
            final["password_hash"] = hash_password(password)
        if actor.get("is_admin") and isinstance(updates.get("is_admin"), bool):
            final["is_admin"] = updates["is_admin"]
        if not final:
            raise InvalidInput("No valid update fields provided.")
        updated = self.users.update(target_id, **final)
        logger.info(f"[AuthService] User {target_id} updated by {actor['id']}")
        return sanitize(updated)

    def delete_user(self, actor: Dict[str, Any], target_id: str) -> None:
        self._check_self_or_admin(actor, target_id)
        if not self.users.delete(target_id):
            raise NotFound("User not found.")
        logger.info(f"[AuthService] User {target_id} deleted by {actor['id']}")
