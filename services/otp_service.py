"""OTP Service - pending signup codes keyed by normalized email.

A code lives for OTP_TTL_SECONDS (5 minutes). Requesting again replaces the
pending code and restarts the window. A wrong code leaves the entry in place
so the user can retry; an expired entry is removed when it is looked at.
"""
import logging
import os
import secrets
import time
from threading import Lock
from typing import Callable, Optional

from services.errors import NotFoundOrExpired, OtpMismatch
from services.token_store import ExpiringStore
from utils.validators import normalize_email

logger = logging.getLogger(__name__)

OTP_EXP_SECONDS = int(os.getenv("OTP_TTL_SECONDS", "300"))
CLEANUP_GRACE_SECONDS = 2


def generate_code() -> str:
    return f"{secrets.randbelow(900000) + 100000}"


class OTPService:
    def __init__(self, store: Optional[ExpiringStore] = None, clock: Callable[[], float] = time.time,
                 ttl_seconds: int = OTP_EXP_SECONDS, code_factory: Callable[[], str] = generate_code):
        self.store = store if store is not None else ExpiringStore(clock=clock, name="otp")
        self.clock = self.store.clock
        self.ttl_seconds = ttl_seconds
        self.code_factory = code_factory
        self._verify_lock = Lock()

    def issue(self, email: str) -> str:
        key = normalize_email(email)
        code = self.code_factory()
        pending = {"code": code}
        self.store.put(key, pending, self.ttl_seconds)
        self.store.schedule_cleanup(key, pending, self.ttl_seconds + CLEANUP_GRACE_SECONDS)
        logger.info(f"[OTPService] Issued OTP for {key} (valid {self.ttl_seconds}s)")
        return code

    def consume(self, email: str, code: str) -> None:
        """Accept ``code`` for ``email`` exactly once.

        Raises NotFoundOrExpired (entry dropped) or OtpMismatch (entry kept).
        """
        key = normalize_email(email)
        with self._verify_lock:
            entry = self.store.get_entry(key)
            if entry is None or self.clock() > entry["expires_at"]:
                self.store.delete(key)
                logger.info(f"[OTPService] Verify for {key}: OTP not found or expired")
                raise NotFoundOrExpired("OTP is invalid or has expired. Please request again.")
            if not secrets.compare_digest(entry["value"]["code"], code):
                logger.info(f"[OTPService] Verify for {key}: invalid OTP entered")
                raise OtpMismatch()
            self.store.delete(key)
        logger.info(f"[OTPService] OTP verified for {key}")

    def pending(self, email: str) -> bool:
        return normalize_email(email) in self.store
