from typing import Callable, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from bizagent.agent_logic import DecisionArbiter, build_business_context, process_message
from bizagent.cooldown import CooldownTracker, compute_indicator, get_cooldown_tracker
from bizagent.database import get_db, get_session_factory
from bizagent.errors import (
    INTERNAL_ERROR_DETAIL,
    SERVICE_UNAVAILABLE_DETAIL,
    BusinessNotFoundError,
    is_infrastructure_error,
)
from bizagent.llm_agent import load_llm_settings
from bizagent.logging_config import chat_log_context, get_logger
from bizagent.models import AiStatus, ChatHistoryResponse, ChatMessageOut, ChatRequest, ChatResponse
from bizagent.security import verify_api_key
from bizagent.services import BusinessService, ConversationService
from bizagent.tools import ToolExecutor

logger = get_logger(__name__)

router = APIRouter(tags=["Agent"], dependencies=[Depends(verify_api_key)])


def _raise_for_unexpected(e: Exception, event: str, business_id: Optional[str]) -> None:
    if is_infrastructure_error(e):
        logger.error(event, business_id=business_id, kind="infrastructure", error_type=type(e).__name__)
        raise HTTPException(status_code=503, detail=SERVICE_UNAVAILABLE_DETAIL) from e
    logger.exception(event, business_id=business_id, error_type=type(e).__name__)
    raise HTTPException(status_code=500, detail=INTERNAL_ERROR_DETAIL) from e


# POST /agent/chat
# Gets: JSON body {businessId: str, message: str, sessionId?: str}
# Returns: ChatResponse {success, message, action, ai{hasKey, indicator, usedAi, reason}}
# Example:
#   curl -X POST http://localhost:8000/agent/chat \
#     -H 'Content-Type: application/json' \
#     -d '{"businessId": "b1", "message": "service: Стрижка, 500, 45"}'
@router.post("/agent/chat", response_model=ChatResponse)
def agent_chat(
    request: ChatRequest,
    db: Session = Depends(get_db),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
    tracker: CooldownTracker = Depends(get_cooldown_tracker),
):
    """Process one owner message with the business-operations agent."""
    if not request.business_id or not (request.message or "").strip():
        raise HTTPException(status_code=400, detail="Missing required fields")

    with chat_log_context(request.business_id, request.session_id):
        try:
            arbiter = DecisionArbiter(db, tool_executor=ToolExecutor(session_factory=session_factory), tracker=tracker)
            outcome = process_message(db, request.business_id, request.message.strip(), request.session_id, arbiter=arbiter)
        except BusinessNotFoundError:
            raise HTTPException(status_code=404, detail="Business not found")
        except Exception as e:
            db.rollback()
            _raise_for_unexpected(e, "agent_chat_failed", request.business_id)

    return ChatResponse(success=True, message=outcome.message, action=outcome.action, ai=AiStatus(**outcome.ai))


# GET /agent/chat?businessId=...&sessionId=...
# Gets: query params businessId (required), sessionId (default "default")
# Returns: ChatHistoryResponse {messages: [...], ai{...}}
# Example:
#   curl 'http://localhost:8000/agent/chat?businessId=b1'
@router.get("/agent/chat", response_model=ChatHistoryResponse)
def agent_chat_history(
    business_id: Optional[str] = Query(None, alias="businessId"),
    session_id: str = Query("default", alias="sessionId"),
    db: Session = Depends(get_db),
    tracker: CooldownTracker = Depends(get_cooldown_tracker),
):
    """Conversation log of one session, oldest first, plus the current indicator."""
    if not business_id:
        raise HTTPException(status_code=400, detail="businessId is required")

    try:
        business = BusinessService.get_business(db, business_id)
        if business is None:
            raise HTTPException(status_code=404, detail="Business not found")
        rows = ConversationService.list_messages(db, business_id, session_id)
        context = build_business_context(db, business)
        has_key = DecisionArbiter(db, tracker=tracker).has_key(context, load_llm_settings(db))
    except HTTPException:
        raise
    except Exception as e:
        _raise_for_unexpected(e, "agent_chat_history_failed", business_id)

    indicator = compute_indicator(
        tracker,
        business_id,
        has_key=has_key,
        enabled=context.ai_enabled,
        used_ai=False,
        unavailable=False,
    )
    return ChatHistoryResponse(
        messages=[
            ChatMessageOut(id=row.id, role=row.role, message=row.message, metadata=row.meta_doc, created_at=row.created_at)
            for row in rows
        ],
        ai=AiStatus(**indicator.as_dict()),
    )
