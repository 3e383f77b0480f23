"""
AURORA INTEL Chatbot - FastAPI Backend
Main application entry point with CORS, routing and error handling setup
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
import uvicorn
import logging
import os
import time
from dotenv import load_dotenv

# Load environment variables BEFORE importing route modules so services see them
load_dotenv()
from datetime import datetime, timezone

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("aurora")

# Import route modules (after env loaded)
from routes.auth_routes import router as auth_router
from routes.chatbot_routes import router as chatbot_router, conversations_router
from routes.experience_routes import router as experience_router
from routes.user_routes import router as user_router, UPLOADS_DIR

APP_ENV = os.getenv("APP_ENV", "production")
STARTED_AT = time.monotonic()

# Initialize FastAPI app
app = FastAPI(
    title="AURORA INTEL Chatbot API",
    description="Accounts with email OTP signup, password reset and persisted chatbot conversations",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# CORS middleware for frontend integration
app.add_middleware(
    CORSMiddleware,
    allow_origins=[os.getenv("FRONTEND_URL", "http://localhost:5173")],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

# Include routers
app.include_router(auth_router, prefix="/api/auth", tags=["Auth"])
app.include_router(user_router, tags=["Users"])
app.include_router(chatbot_router, prefix="/api/chatbot", tags=["Chatbot"])
app.include_router(conversations_router, prefix="/api/conversations", tags=["Conversations"])
app.include_router(conversations_router, prefix="/api/chats", tags=["Conversations"])
app.include_router(experience_router, prefix="/api/experiences", tags=["Experiences"])

# Profile photos
os.makedirs(UPLOADS_DIR, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=UPLOADS_DIR), name="uploads")


@app.get("/")
async def root():
    """Root endpoint with basic API information"""
    return {
        "message": "AURORA INTEL API",
        "version": "1.0.0",
        "status": "active",
        "endpoints": {
            "health": "/health",
            "auth": "/api/auth",
            "chatbot": "/api/chatbot",
            "conversations": "/api/conversations",
            "experiences": "/api/experiences",
            "docs": "/docs"
        }
    }


@app.get("/ping")
async def ping():
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "ok",
        "uptime": f"{time.monotonic() - STARTED_AT:.2f}s",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "aurora-chatbot-api"
    }


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are client errors (400), rejected before any side effect"""
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", []) if p != "body")
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content={"detail": f"{field}: {message}" if field else message, "errors": jsonable_errors(errors)}
    )


def jsonable_errors(errors):
    return [{"loc": list(e.get("loc", [])), "msg": e.get("msg"), "type": e.get("type")} for e in errors]


@app.exception_handler(404)
async def not_found_handler(request, exc):
    """Custom 404 handler"""
    detail = getattr(exc, "detail", None)
    if detail and detail != "Not Found":
        return JSONResponse(status_code=404, content={"detail": detail})
    return JSONResponse(
        status_code=404,
        content={"error": "Endpoint not found", "path": request.url.path}
    )


@app.exception_handler(Exception)
async def internal_error_handler(request: Request, exc: Exception):
    """Log everything, tell the client as little as possible"""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    content = {"error": "Internal server error", "message": "Please try again later"}
    if APP_ENV == "development":
        content["message"] = str(exc)
    return JSONResponse(status_code=500, content=content)


if __name__ == "__main__":
    # Get port from environment variable or use default
    port = int(os.getenv("PORT", 8000))

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=port,
        reload=False,
        log_level=os.getenv("LOG_LEVEL", "info").lower()
    )
