"""
API router - aggregates the chat, workflow callback and health endpoints.

Usage in main.py:
    from concierge.api.routes import router as api_router
    app.include_router(api_router, prefix="/api")
"""

from fastapi import APIRouter

from concierge.api.routes import chat, health, workflow_callback

router = APIRouter()

# Health endpoints (no auth required)
router.include_router(health.router, tags=["Health"])

# Chat turns and deletion
router.include_router(chat.router, tags=["Chat"])

# Workflow replies (callback secret, no user auth)
router.include_router(workflow_callback.router, tags=["Workflows"])

__all__ = ["router"]
