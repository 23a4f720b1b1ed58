from fastapi import APIRouter

from bizagent.language.replies_uk import get_reply_text

router = APIRouter(tags=["Core"])


# GET /
# Gets: nothing
# Returns: basic API metadata and a map of key endpoints
# Example:
#   curl http://localhost:8000/
@router.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "bizagent API - business-operations chat agent",
        "version": "1.0.0",
        "description": "Owner chat for a service business: bookings, clients, staff, schedules and reports",
        "endpoints": {
            "agent_chat": "/agent/chat",
            "health": "/health",
            "readiness": "/health/ready",
            "info": "/health/info",
            "metrics": "/metrics",
        },
        "commands": get_reply_text("help"),
    }
