"""Shared fixtures: isolated data dir, fake clock, fake mailer, fake model."""

import os
import tempfile
import time
from datetime import datetime, timedelta, timezone

# Must be set before main (and the route singletons) are imported
os.environ["DATA_DIR"] = tempfile.mkdtemp(prefix="aurora-test-")
os.environ["AUTH_SECRET"] = "test-secret"
os.environ["LLM_PROVIDER"] = "openai"
os.environ.pop("OPENAI_API_KEY", None)
for _var in ("SMTP_HOST", "SMTP_PORT", "SMTP_USER", "SMTP_PASS"):
    os.environ.pop(_var, None)

import pytest
from fastapi.testclient import TestClient

from main import app
from routes import auth_routes, chatbot_routes, experience_routes
from services.auth_service import AuthService
from services.chat_service import ChatService
from services.conversation_store import ConversationStore
from services.delivery_stats import DeliveryStats
from services.experience_store import ExperienceStore
from services.llm_client import LLMReply
from services.otp_service import OTPService
from services.token_store import ExpiringStore
from services.user_store import UserStore


class FakeClock:
    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class TickingClock:
    """datetime clock that moves one second per call"""

    def __init__(self):
        self.current = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        self.current += timedelta(seconds=1)
        return self.current


class FakeEmailService:
    enabled = False

    def __init__(self):
        self.sent = []
        self.stats = DeliveryStats()

    def send_otp_email(self, to, otp, ttl_minutes=5):
        self.sent.append(("otp", to, otp))

    def send_reset_email(self, to, url):
        self.sent.append(("reset", to, url))

    def send_login_alert(self, to, url):
        self.sent.append(("login", to, url))

    def send_experience_email(self, to, author_name, author_email, experience, message=None):
        self.sent.append(("experience", to, {"author_name": author_name, "author_email": author_email,
                                             "experience": experience, "message": message}))

    def test_connection(self):
        return {"success": False, "error": "SMTP not configured"}

    def last(self, kind):
        for sent_kind, to, payload in reversed(self.sent):
            if sent_kind == kind:
                return to, payload
        return None


class FakeLLM:
    """Returns queued replies (str, LLMReply) or raises queued exceptions."""

    collapse_same_role = False

    def __init__(self, *replies, delay=0.0):
        self.replies = list(replies)
        self.delay = delay
        self.calls = []

    def generate(self, messages):
        self.calls.append(messages)
        if self.delay:
            time.sleep(self.delay)
        reply = self.replies.pop(0) if self.replies else "Default answer."
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, str):
            return LLMReply(text=reply)
        return reply


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def auth_service(tmp_path, clock):
    otp = OTPService(store=ExpiringStore(clock=clock, name="otp"), code_factory=lambda: "123456")
    return AuthService(users=UserStore(str(tmp_path)), otp=otp, clock=clock)


@pytest.fixture
def email_service():
    return FakeEmailService()


@pytest.fixture
def conversation_store(tmp_path):
    return ConversationStore(str(tmp_path), clock=TickingClock())


@pytest.fixture
def experience_store(tmp_path):
    return ExperienceStore(str(tmp_path), clock=TickingClock())


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def client(monkeypatch, auth_service, email_service, conversation_store, experience_store, llm):
    monkeypatch.setattr(auth_routes, "auth_service", auth_service)
    monkeypatch.setattr(auth_routes, "email_service", email_service)
    monkeypatch.setattr(chatbot_routes, "conversation_store", conversation_store)
    monkeypatch.setattr(chatbot_routes, "chat_service", ChatService(conversation_store, llm, timeout=2))
    monkeypatch.setattr(experience_routes, "experience_store", experience_store)
    return TestClient(app)


@pytest.fixture
def signup(client, email_service):
    """Register an account through the OTP flow and return its credentials."""

    def _signup(email="alice@example.com", password="secret123", name="Alice"):
        resp = client.post("/api/auth/request-otp", json={"email": email})
        assert resp.status_code == 200, resp.text
        _, otp = email_service.last("otp")
        resp = client.post("/api/auth/verify-otp",
                           json={"name": name, "email": email, "password": password, "otp": otp})
        assert resp.status_code == 201, resp.text
        return {"email": email.lower(), "password": password, "user": resp.json()["user"]}

    return _signup


@pytest.fixture
def login(client):
    def _login(email, password):
        resp = client.post("/api/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        return {"Authorization": f"Bearer {resp.json()['token']}"}

    return _login


@pytest.fixture
def auth_headers(signup, login):
    account = signup()
    return login(account["email"], account["password"])


@pytest.fixture
def make_llm():
    return FakeLLM
