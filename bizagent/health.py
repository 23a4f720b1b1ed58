"""
Health check and monitoring endpoints.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import redis

from bizagent import redis_client
from bizagent.config import config
from bizagent.database import get_db
from bizagent.logging_config import logger

SERVICE_NAME = "bizagent"
SERVICE_VERSION = "1.0.0"

router = APIRouter(tags=["Health & Monitoring"])


# GET /health
# Gets: nothing
# Returns: {status, service, version}
# Example:
#   curl http://localhost:8000/health
@router.get("/health")
async def health_check():
    """
    Liveness probe - 200 whenever the process is serving.
    """
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
    }


# GET /health/ready
# Gets: nothing
# Returns: {database, redis, openai, ready}; 503 when the database is unreachable
# Example:
#   curl http://localhost:8000/health/ready
@router.get("/health/ready")
def readiness_check(db: Session = Depends(get_db)):
    """
    Readiness probe.

    The database is required. Redis and OpenAI are optional: the agent
    keeps working from commands and tools without them.
    """
    checks = {
        "database": False,
        "redis": "not_configured",
        "openai": "not_configured",
        "ready": False,
    }

    try:
        db.execute(text("SELECT 1"))
        checks["database"] = True
    except SQLAlchemyError as e:
        logger.warning("readiness_check_database", status="error", error=str(e)[:200])

    client = redis_client.get_redis_client()
    if client is not None:
        try:
            client.ping()
            checks["redis"] = True
        except redis.RedisError as e:
            checks["redis"] = False
            logger.warning("readiness_check_redis", status="error", error=str(e)[:200])

    if config.has_openai_key():
        checks["openai"] = True

    checks["ready"] = checks["database"] is True
    return JSONResponse(content=checks, status_code=200 if checks["ready"] else 503)


# GET /health/info
# Gets: nothing
# Returns: service configuration summary (no secrets)
# Example:
#   curl http://localhost:8000/health/info
@router.get("/health/info")
async def system_info():
    """
    System information and configuration status.
    """
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "configuration": {
            "ai_provider": config.AI_PROVIDER,
            "openai_configured": config.has_openai_key(),
            "openai_model": config.OPENAI_MODEL if config.has_openai_key() else None,
            "redis_configured": redis_client.REDIS_AVAILABLE,
            "sms_configured": config.has_sms_config(),
            "debug_mode": config.DEBUG,
        },
        "features": {
            "llm_decisions": config.has_openai_key() or config.AI_PROVIDER == "lm_studio",
            "shared_cooldown": redis_client.REDIS_AVAILABLE,
            "heuristic_replies": config.AGENT_HEURISTIC_REPLIES,
            "push_notifications": config.PUSH_NOTIFICATIONS_ENABLED,
        },
    }
