"""
Agent conversation logic: the decision arbiter and per-message orchestration.

Per message the arbiter walks a fixed ladder and stops at the first tier
that produces a decision:

    1. explicit command grammar           (no LLM)
    2. phone-only continuation            (no LLM)
    3. cooldown short-circuit             (offline reply, no LLM)
    4. keyword data intents -> tools      (reply only if AGENT_HEURISTIC_REPLIES)
    5. one LLM round trip                 (at most one tool call, formatted)
    6. deterministic fallback

process_message() then executes mutating decisions, persists the turn pair
and computes the availability indicator.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bizagent.actions import ActionExecutor
from bizagent.command_grammar import match_command
from bizagent.config import config
from bizagent.cooldown import CooldownTracker, compute_indicator, get_cooldown_tracker, is_rate_limit_error, parse_retry_after
from bizagent.db_models import DBBusiness
from bizagent.decision import ActionType, Decision
from bizagent.errors import BusinessNotFoundError
from bizagent.formatter import GENERIC_REPLY, format_tool_result
from bizagent.heuristics import match_phone_continuation, route_data_intents
from bizagent.language.replies_uk import get_reply_text
from bizagent.llm_agent import LLMAgentClient, LLMProviderError, LLMSettings, LLMTimeoutError, load_llm_settings
from bizagent.logging_config import get_logger
from bizagent.metrics import agent_messages_total
from bizagent.services import BusinessService, ConversationService, MasterService, ServiceCatalogService
from bizagent.snapshot import SnapshotProvider, build_tool_context, format_tool_outputs, snapshot_provider
from bizagent.tools import ToolExecutor, ToolResult

logger = get_logger(__name__)

AI_ERROR_MAX_CHARS = 300


class Tier:
    COMMAND = "command"
    PHONE_CONTINUATION = "phone_continuation"
    COOLDOWN = "cooldown"
    HEURISTIC = "heuristic"
    LLM = "llm"
    FALLBACK = "fallback"


@dataclass
class BusinessContext:
    """What the arbiter knows about the business for one message."""
    business_id: str
    business_name: str
    description: Optional[str] = None
    location: Optional[str] = None
    working_hours: Dict[str, Any] = field(default_factory=dict)
    services: List[Dict[str, Any]] = field(default_factory=list)
    masters: List[Dict[str, Any]] = field(default_factory=list)
    ai_enabled: bool = True
    api_key: Optional[str] = None

    def prompt_doc(self) -> Dict[str, Any]:
        return {
            "business_name": self.business_name,
            "description": self.description,
            "location": self.location,
            "working_hours": self.working_hours,
            "services": self.services,
            "masters": self.masters,
        }


def build_business_context(db: Session, business: DBBusiness) -> BusinessContext:
    return BusinessContext(
        business_id=business.id,
        business_name=business.name,
        description=business.description,
        location=business.location,
        working_hours=business.working_hours_doc,
        services=[
            {"name": s.name, "price": s.price, "duration": s.duration}
            for s in ServiceCatalogService.list_services(db, business.id)
        ],
        masters=[{"name": m.name, "bio": m.bio} for m in MasterService.list_masters(db, business.id)],
        ai_enabled=business.ai_chat_enabled is not False,
        api_key=business.ai_api_key or None,
    )


@dataclass
class ArbiterOutcome:
    """The arbiter's decision plus how it was reached."""
    decision: Decision
    tier: str
    used_ai: bool = False
    ai_error: Optional[str] = None
    unavailable: bool = False
    reason: Optional[str] = None
    has_key: bool = False


def _reply(text: str, confidence: Optional[float] = None) -> Decision:
    return Decision(action=ActionType.REPLY, reply=text, confidence=confidence)


class DecisionArbiter:
    """Chooses exactly one Decision per message."""

    def __init__(
        self,
        db: Session,
        tool_executor: Optional[ToolExecutor] = None,
        tracker: Optional[CooldownTracker] = None,
        snapshots: Optional[SnapshotProvider] = None,
        llm_factory: Optional[Callable[[LLMSettings, Optional[str]], LLMAgentClient]] = None,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.db = db
        self._now = now
        self.tool_executor = tool_executor or ToolExecutor(now=now)
        self.tracker = tracker or get_cooldown_tracker()
        self.snapshots = snapshots or snapshot_provider
        self.llm_factory = llm_factory or (lambda settings, api_key: LLMAgentClient(settings, api_key=api_key))

    def has_key(self, context: BusinessContext, settings: LLMSettings) -> bool:
        if settings.is_lm_studio:
            return bool(settings.base_url)
        return bool(context.api_key or config.OPENAI_API_KEY)

    def decide(self, business_id: str, message: str, history: List[dict], context: BusinessContext) -> ArbiterOutcome:
        today = self._now().date()
        settings = load_llm_settings(self.db)
        has_key = self.has_key(context, settings)

        # 1. explicit commands
        decision = match_command(message, today)
        if decision is not None:
            return ArbiterOutcome(decision=decision, tier=Tier.COMMAND, has_key=has_key)

        # 2. bare phone answering "which phone?"
        decision = match_phone_continuation(message, history, today)
        if decision is not None:
            return ArbiterOutcome(decision=decision, tier=Tier.PHONE_CONTINUATION, has_key=has_key)

        # 3. cooldown
        if has_key and context.ai_enabled and self.tracker.in_cooldown(business_id):
            seconds = self.tracker.remaining_seconds(business_id)
            logger.info("llm_skipped_cooldown", business_id=business_id, remaining_seconds=seconds)
            return ArbiterOutcome(
                decision=_reply(get_reply_text("offline", seconds=seconds)),
                tier=Tier.COOLDOWN,
                unavailable=True,
                reason="cooldown",
                has_key=has_key,
            )

        # 4. keyword data intents
        tool_results: List[ToolResult] = []
        requests = route_data_intents(message)
        if requests:
            tool_results = self.tool_executor.run_many(business_id, requests)
            if config.AGENT_HEURISTIC_REPLIES:
                text = self._format_results(tool_results)
                if text:
                    return ArbiterOutcome(decision=_reply(text, 0.7), tier=Tier.HEURISTIC, has_key=has_key)

        if not has_key:
            return self._fallback(tool_results, "not_configured", has_key=False)
        if not context.ai_enabled:
            return self._fallback(tool_results, "disabled", has_key=True)

        # 5. the single LLM round trip
        return self._ask_llm(business_id, message, history, context, settings, tool_results)

    def _ask_llm(self, business_id, message, history, context, settings, tool_results) -> ArbiterOutcome:
        try:
            snapshot = self.snapshots.get_snapshot_text(self.db, business_id, self._now())
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning("snapshot_unavailable", business_id=business_id, error=str(e)[:AI_ERROR_MAX_CHARS])
            snapshot = ""
        tool_context = build_tool_context(snapshot, format_tool_outputs(tool_results))

        try:
            client = self.llm_factory(settings, context.api_key or config.OPENAI_API_KEY or None)
            decision = client.get_agent_decision(message, context.prompt_doc(), history, tool_context)
        except LLMTimeoutError as e:
            self.tracker.set_cooldown(business_id, config.LLM_COOLDOWN_DEFAULT_SECONDS)
            logger.warning("llm_timeout", business_id=business_id, error=str(e)[:AI_ERROR_MAX_CHARS])
            return self._fallback(tool_results, "llm_failed", ai_error=str(e), reason="timeout")
        except LLMProviderError as e:
            if is_rate_limit_error(e):
                seconds = parse_retry_after(str(e))
                self.tracker.set_cooldown(business_id, seconds)
                logger.warning("llm_rate_limited", business_id=business_id, retry_after=seconds)
                return self._fallback(tool_results, "offline", ai_error=str(e), reason="rate_limited", seconds=seconds)
            logger.warning("llm_failed", business_id=business_id, error=str(e)[:AI_ERROR_MAX_CHARS])
            return self._fallback(tool_results, "llm_failed", ai_error=str(e), reason="provider_error")

        self.tracker.record_success(business_id)

        if decision.action == ActionType.TOOL_CALL and decision.tool is not None:
            result = self.tool_executor.run_isolated(business_id, decision.tool)
            text = format_tool_result(result.tool, result.data) if result.ok else GENERIC_REPLY
            decision = _reply(text, decision.confidence)
        elif decision.action == ActionType.TOOL_CALL:
            decision = _reply(get_reply_text("tool_unknown"), decision.confidence)
        elif decision.action == ActionType.REPLY and not decision.reply.strip():
            decision = _reply(get_reply_text("unknown_action"), decision.confidence)

        return ArbiterOutcome(decision=decision, tier=Tier.LLM, used_ai=True, has_key=True)

    def _format_results(self, results: List[ToolResult]) -> str:
        parts = [format_tool_result(r.tool, r.data) for r in results if r.ok]
        return "\n\n".join(p for p in parts if p)

    def _fallback(
        self,
        tool_results: List[ToolResult],
        reply_key: str,
        has_key: bool = True,
        ai_error: Optional[str] = None,
        reason: Optional[str] = None,
        seconds: Optional[int] = None,
    ) -> ArbiterOutcome:
        """Tool data when we have it, otherwise a reason-specific apology plus help."""
        text = self._format_results(tool_results)
        if not text:
            apology = get_reply_text(reply_key, seconds=seconds) if seconds is not None else get_reply_text(reply_key)
            text = f"{apology}\n\n{get_reply_text('help')}"
        return ArbiterOutcome(
            decision=_reply(text),
            tier=Tier.FALLBACK,
            ai_error=ai_error[:AI_ERROR_MAX_CHARS] if ai_error else None,
            unavailable=ai_error is not None,
            reason=reason,
            has_key=has_key,
        )


@dataclass
class ChatOutcome:
    message: str
    action: Optional[Dict[str, Any]]
    ai: Dict[str, Any]
    tier: str


def process_message(
    db: Session,
    business_id: str,
    message: str,
    session_id: Optional[str] = None,
    arbiter: Optional[DecisionArbiter] = None,
    executor: Optional[ActionExecutor] = None,
    now: Callable[[], datetime] = datetime.now,
) -> ChatOutcome:
    """
    Handle one owner message end to end.

    Raises:
        BusinessNotFoundError: unknown business_id
    """
    session_id = session_id or "default"
    business = BusinessService.get_business(db, business_id)
    if business is None:
        raise BusinessNotFoundError(business_id)

    history = ConversationService.recent_history(db, business_id, session_id, limit=config.AGENT_HISTORY_TURNS)
    context = build_business_context(db, business)
    arbiter = arbiter or DecisionArbiter(db, now=now)
    outcome = arbiter.decide(business_id, message, history, context)
    decision = outcome.decision

    action_data = None
    if decision.is_mutating:
        result = (executor or ActionExecutor(db, now=now)).execute(business_id, decision)
        reply = result.message
        action_data = result.action_data
    else:
        reply = decision.reply or get_reply_text("unknown_action")

    indicator = compute_indicator(
        arbiter.tracker,
        business_id,
        has_key=outcome.has_key,
        enabled=context.ai_enabled,
        used_ai=outcome.used_ai,
        unavailable=outcome.unavailable,
        reason=outcome.reason,
    )
    ai = indicator.as_dict()

    timestamp = now().isoformat()
    ConversationService.append_turn(db, business_id, session_id, "user", message, {"timestamp": timestamp})
    ConversationService.append_turn(
        db,
        business_id,
        session_id,
        "assistant",
        reply,
        {
            "decision_action": decision.action.value,
            "action_data": action_data,
            "ai": {**ai, "tier": outcome.tier, "error": outcome.ai_error},
            "timestamp": timestamp,
        },
    )

    agent_messages_total.labels(tier=outcome.tier).inc()
    logger.info(
        "agent_message_processed",
        business_id=business_id,
        session_id=session_id,
        tier=outcome.tier,
        action=decision.action.value,
        status=(action_data or {}).get("status"),
        used_ai=outcome.used_ai,
    )
    return ChatOutcome(message=reply, action=action_data, ai=ai, tier=outcome.tier)
