"""Authentication routes: OTP signup, login, password reset, remote logout"""
from fastapi import APIRouter, HTTPException, Depends, BackgroundTasks
from fastapi.responses import HTMLResponse
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from jose import jwt, JWTError
from pydantic import AfterValidator, BaseModel, Field, field_validator
from datetime import datetime, timedelta, timezone
from html import escape
from typing import Annotated, Optional
from services.auth_service import AuthService, GENERIC_RESET_MESSAGE
from services.email_service import EmailService
from services.errors import ServiceError
from utils.validators import EMAIL_RE
import logging
import os

logger = logging.getLogger(__name__)

SECRET_KEY = os.getenv("AUTH_SECRET", "dev-insecure-secret-change-me")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")
BACKEND_URL = os.getenv("BACKEND_URL", f"http://localhost:{os.getenv('PORT', '8000')}")

router = APIRouter()
auth_service = AuthService()
email_service = EmailService()
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token", auto_error=False)


# --- request bodies ---
def _check_email(value: str) -> str:
    value = (value or "").strip()
    if not EMAIL_RE.match(value):
        raise ValueError("Valid email is required.")
    return value


EmailField = Annotated[str, AfterValidator(_check_email)]


class OtpRequest(BaseModel):
    email: EmailField


class VerifyOtpRequest(BaseModel):
    name: str = Field(min_length=1)
    email: EmailField
    password: str = Field(min_length=6)
    otp: str = Field(pattern=r"^\d{6}$")

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Name is required.")
        return v


class LoginRequest(BaseModel):
    email: str = ""
    password: str = ""


class ForgotPasswordRequest(BaseModel):
    email: str = ""


class ResetPasswordRequest(BaseModel):
    password: str = ""
    confirmPassword: str = ""


# --- tokens ---
def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def _user_from_token(token: str) -> dict:
    credentials_exception = HTTPException(status_code=401, detail="Could not validate credentials")
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise credentials_exception
    user_id = payload.get("sub")
    if user_id is None:
        raise credentials_exception
    if auth_service.is_session_revoked(payload.get("sid")):
        raise HTTPException(status_code=401, detail="Session has been logged out")
    user = auth_service.get_user(user_id)
    if not user:
        raise credentials_exception
    return user


async def get_current_user(token: str = Depends(oauth2_scheme)):
    return _user_from_token(token)


async def get_optional_user(token: Optional[str] = Depends(optional_oauth2_scheme)):
    if not token:
        return None
    return _user_from_token(token)


def require_admin(current=Depends(get_current_user)):
    if not current.get("is_admin"):
        raise HTTPException(status_code=403, detail="Forbidden: Insufficient permissions.")
    return current


def _open_session(email: str, password: str, background: BackgroundTasks) -> dict:
    try:
        session = auth_service.login(email, password)
    except ServiceError as e:
        raise e.as_http_exception()
    user = session["user"]
    token = create_access_token({"sub": user["id"], "sid": session["session_id"]})
    logout_link = f"{BACKEND_URL.rstrip('/')}/api/auth/remote-logout/{session['remote_logout_token']}"
    background.add_task(email_service.send_login_alert, user["email"], logout_link)
    return {"token": token, "user": user}


# --- signup ---
@router.post("/request-otp")
async def request_otp(body: OtpRequest, background: BackgroundTasks):
    try:
        email_l, otp = auth_service.request_otp(body.email)
    except ServiceError as e:
        raise e.as_http_exception()
    ttl_minutes = max(auth_service.otp.ttl_seconds // 60, 1)
    background.add_task(email_service.send_otp_email, email_l, otp, ttl_minutes)
    return {"message": f"OTP sent successfully to {email_l}"}


@router.post("/verify-otp", status_code=201)
def verify_otp(body: VerifyOtpRequest):
    try:
        user = auth_service.verify_otp(body.name, body.email, body.password, body.otp)
    except ServiceError as e:
        raise e.as_http_exception()
    return {"message": "Account created successfully! You can now login.", "user": user}


# --- login ---
@router.post("/login")
def login(body: LoginRequest, background: BackgroundTasks):
    return _open_session(body.email, body.password, background)


@router.post("/token")
def login_form(background: BackgroundTasks, form_data: OAuth2PasswordRequestForm = Depends()):
    session = _open_session(form_data.username, form_data.password, background)
    return {"access_token": session["token"], "token_type": "bearer", "user": session["user"]}


REMOTE_LOGOUT_INVALID_PAGE = """<!DOCTYPE html>
<html><head><title>Link Expired</title></head><body>
<h1>Link Expired or Invalid</h1>
<p>This remote logout link has expired or is invalid. Your session may still be active elsewhere.</p>
<p><a href="{login_url}">Go to Login</a></p>
</body></html>"""

REMOTE_LOGOUT_DONE_PAGE = """<!DOCTYPE html>
<html><head><title>Logout Confirmation</title>
<meta name="viewport" content="width=device-width, initial-scale=1.0"></head>
<body>
<h1>Logout Initiated</h1>
<p>The session associated with this link has been logged out.</p>
<p>For complete security, log out from other devices manually if you suspect unauthorized access.</p>
<p><a href="{frontend_url}">Go back to application</a></p>
<script>
try {{ localStorage.removeItem('token'); localStorage.removeItem('userInfo'); }} catch (e) {{}}
</script>
</body></html>"""


@router.get("/remote-logout/{token}", response_class=HTMLResponse)
def remote_logout(token: str):
    try:
        auth_service.remote_logout(token)
    except ServiceError:
        logger.warning(f"Remote logout token {token[:8]}... not found or expired")
        return HTMLResponse(REMOTE_LOGOUT_INVALID_PAGE.format(login_url=escape(FRONTEND_URL)), status_code=400)
    return HTMLResponse(REMOTE_LOGOUT_DONE_PAGE.format(frontend_url=escape(FRONTEND_URL)), status_code=200)


# --- password reset ---
@router.post("/forgot-password")
def forgot_password(body: ForgotPasswordRequest, background: BackgroundTasks):
    try:
        issued = auth_service.forgot_password(body.email)
    except ServiceError as e:
        raise e.as_http_exception()
    if issued:
        email, raw_token = issued
        reset_url = f"{FRONTEND_URL.rstrip('/')}/reset-password/{raw_token}"
        background.add_task(email_service.send_reset_email, email, reset_url)
    return {"message": GENERIC_RESET_MESSAGE}


@router.post("/reset-password/{token}")
def reset_password(token: str, body: ResetPasswordRequest):
    try:
        auth_service.reset_password(token, body.password, body.confirmPassword)
    except ServiceError as e:
        raise e.as_http_exception()
    return {"message": "Password has been reset successfully."}


@router.get("/email/status")
def email_status(current=Depends(get_current_user)):
    """SMTP configuration, connectivity and background delivery counters."""
    conn = email_service.test_connection()
    return {"enabled": email_service.enabled, "connection": conn, "delivery": email_service.stats.snapshot()}
