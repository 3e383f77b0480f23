"""Service error taxonomy.

Each error carries the HTTP status the routes answer with and a message that
is safe to show to the user. Routes turn them into HTTPException via
``as_http_exception``.
"""
from fastapi import HTTPException


class ServiceError(Exception):
    status_code = 500
    default_message = "An unexpected error occurred."

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def as_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=self.message)


class InvalidInput(ServiceError):
    status_code = 400
    default_message = "Invalid input."


class Unauthorized(ServiceError):
    status_code = 401
    default_message = "Invalid credentials."


class Forbidden(ServiceError):
    status_code = 403
    default_message = "Forbidden: Insufficient permissions."


class NotFound(ServiceError):
    status_code = 404
    default_message = "Not found."


class Conflict(ServiceError):
    status_code = 409
    default_message = "Email already registered. Please Login."


class NotFoundOrExpired(ServiceError):
    status_code = 400
    default_message = "The code or link is invalid or has expired."


class OtpMismatch(ServiceError):
    status_code = 400
    default_message = "Invalid OTP entered."


# --- chatbot upstream failures ---

class ChatTimeout(ServiceError):
    status_code = 408
    default_message = "The chatbot took too long to respond. Please try again."


class UpstreamBlocked(ServiceError):
    status_code = 502
    default_message = "The response was blocked by the model's safety filters."


class UpstreamEmpty(ServiceError):
    status_code = 502
    default_message = "The chatbot returned an empty response."


class UpstreamError(ServiceError):
    status_code = 502
    default_message = "The chatbot is currently unavailable."


class EmailDeliveryError(Exception):
    """Raised by the email sender when a message could not be delivered."""
