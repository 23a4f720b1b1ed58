"""
API key guard for the agent routes.

When API_KEY is empty (local development) every request is accepted.
"""

from fastapi import HTTPException, Security
from fastapi.security import APIKeyHeader
from bizagent.config import config
from bizagent.logging_config import get_logger

logger = get_logger(__name__)

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(api_key: str = Security(api_key_header)) -> str:
    """
    Router-level dependency:

        router = APIRouter(dependencies=[Depends(verify_api_key)])
    """
    if not config.API_KEY:
        return "development"

    if api_key != config.API_KEY:
        logger.warning("api_key_authentication_failed", provided_key=api_key[:4] if api_key else None)
        raise HTTPException(status_code=403, detail="Invalid or missing API key")

    return api_key
