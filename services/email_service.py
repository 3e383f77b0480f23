"""Email Service - transactional mail (signup codes, reset links, login alerts,
experience tags).

If SMTP environment variables are not configured, runs in dev mode and logs
the message instead of sending it.

Env vars:
  SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASS, SMTP_FROM, APP_NAME, FRONTEND_URL,
  EMAIL_SEND_ATTEMPTS
"""
import logging
import os
import smtplib
import time
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid
from typing import Optional

from services.delivery_stats import DeliveryStats
from services.errors import EmailDeliveryError

logger = logging.getLogger(__name__)

RETRY_BACKOFF_SECONDS = 2


class EmailService:
    def __init__(self, max_attempts: Optional[int] = None, backoff_seconds: float = RETRY_BACKOFF_SECONDS):
        self.host = os.getenv("SMTP_HOST")
        self.port = int(os.getenv("SMTP_PORT", "0") or 0)
        self.user = os.getenv("SMTP_USER")
        self.password = os.getenv("SMTP_PASS")
        self.sender = os.getenv("SMTP_FROM", self.user or "noreply@example.com")
        self.app_name = os.getenv("APP_NAME", "AURORA INTEL")
        self.frontend_url = os.getenv("FRONTEND_URL", "http://localhost:5173")
        self.max_attempts = max_attempts or int(os.getenv("EMAIL_SEND_ATTEMPTS", "3"))
        self.backoff_seconds = backoff_seconds
        self.stats = DeliveryStats()

    @property
    def enabled(self) -> bool:
        return all([self.host, self.port, self.user, self.password, self.sender]) and self.port > 0

    def send(self, to: str, subject: str, text: str, html: Optional[str] = None) -> Optional[str]:
        """Send one message. Returns the Message-ID, or None in dev mode.

        Raises EmailDeliveryError when the SMTP exchange fails.
        """
        if not self.enabled:
            logger.warning(f"[EmailService] Dev mode (no SMTP configured). To: {to} | Subject: {subject}\n{text}")
            return None
        if html:
            msg = MIMEMultipart("alternative")
            msg.attach(MIMEText(text, "plain"))
            msg.attach(MIMEText(html, "html"))
        else:
            msg = MIMEText(text, "plain")
        msg["Subject"] = subject
        msg["From"] = formataddr((self.app_name, self.sender))
        msg["To"] = to
        msg["Message-ID"] = make_msgid()
        try:
            with smtplib.SMTP(self.host, self.port, timeout=15) as server:
                server.starttls()
                server.login(self.user, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise EmailDeliveryError(f"Failed to send email to {to}: {e}") from e
        logger.info(f"[EmailService] Sent '{subject}' to {to}")
        return msg["Message-ID"]

    def dispatch(self, kind: str, to: str, subject: str, text: str, html: Optional[str] = None) -> bool:
        """Background-task entry point: send with retries, never raise.

        Outcome is logged and recorded in ``self.stats``.
        """
        last_error = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                self.send(to, subject, text, html)
                self.stats.record(kind, success=True, attempts=attempt)
                return True
            except EmailDeliveryError as e:
                last_error = str(e)
                logger.warning(f"[EmailService] {kind} email attempt {attempt}/{self.max_attempts} failed: {e}")
                if attempt < self.max_attempts:
                    time.sleep(self.backoff_seconds * attempt)
        logger.error(f"[EmailService] Giving up on {kind} email to {to}: {last_error}")
        self.stats.record(kind, success=False, attempts=self.max_attempts, error=last_error)
        return False

    # --- templates ---
    def send_otp_email(self, to_email: str, otp: str, ttl_minutes: int = 5) -> bool:
        body = f"Your verification code is: {otp}\nIt expires in {ttl_minutes} minutes."
        return self.dispatch("otp", to_email, "Your Account Verification Code", body)

    def send_reset_email(self, to_email: str, reset_url: str) -> bool:
        subject = f"Password Reset Request for {self.app_name}"
        text = (
            "You requested a password reset. Click this link (valid for 1 hour) to reset your password:\n\n"
            f"{reset_url}\n\nIf you did not request this, please ignore this email."
        )
        html = (
            "<p>You requested a password reset.</p>"
            "<p>Click the link below (valid for 1 hour) to reset your password:</p>"
            f'<p><a href="{reset_url}" target="_blank">Reset Your Password</a></p>'
            "<p>If you did not request this, ignore this email.</p>"
        )
        return self.dispatch("password_reset", to_email, subject, text, html)

    def send_login_alert(self, to_email: str, remote_logout_url: str) -> bool:
        subject = f"Login Alert for {self.app_name}"
        text = (
            "Login detected for your account. If this wasn't you, click to invalidate this session: "
            f"{remote_logout_url} (expires in 1 hour)"
        )
        html = (
            "<p>Login detected. If this wasn't you, "
            f'<a href="{remote_logout_url}">click here to invalidate this session</a> (expires in 1 hour).</p>'
        )
        return self.dispatch("login_alert", to_email, subject, text, html)

    def send_experience_email(self, to_email: str, author_name: str, author_email: str, experience: str,
                              message: Optional[str] = None) -> bool:
        subject = f"{author_name} shared an experience with you on {self.app_name}!"
        lines = [
            "Hi there,",
            "",
            f"{author_name} ({author_email}) shared an experience on {self.app_name} and mentioned you:",
            "",
            f'"{experience}"',
            "",
        ]
        if message:
            lines += ["They added this message for you:", f'"{message}"', ""]
        lines += [
            f"You can view all experiences here: {self.frontend_url.rstrip('/')}/blog",
            "",
            f"Thanks,\nThe {self.app_name} Team",
        ]
        return self.dispatch("experience", to_email, subject, "\n".join(lines))

    def test_connection(self) -> Optional[str]:
        """Attempt a lightweight SMTP connection to verify credentials."""
        if not self.enabled:
            return "SMTP not fully configured"
        try:
            with smtplib.SMTP(self.host, self.port, timeout=10) as server:
                server.starttls()
                server.login(self.user, self.password)
            return "ok"
        except (smtplib.SMTPException, OSError) as e:
            return f"failed: {e}"
