"""
LLM-based decision client using the OpenAI API.

One round trip per message: the prompt carries the business context, the
last few turns and a bounded TOOL_CONTEXT block, and the model must answer
with a single JSON decision. Works with OpenAI and with LM Studio's
OpenAI-compatible server.
"""

from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import openai
from openai import OpenAI
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bizagent.config import config
from bizagent.decision import ActionType, Decision, ToolRequest
from bizagent.language.replies_uk import get_reply_text
from bizagent.logging_config import get_logger
from bizagent.metrics import llm_call_duration, llm_calls_total
from bizagent.services import SettingsService
from bizagent.tools import TOOL_NAMES

logger = get_logger(__name__)

PROVIDER_OPENAI = "openai"
PROVIDER_LM_STUDIO = "lm_studio"
SETTING_KEYS = ["ai_provider", "ai_base_url", "ai_model"]

TEMPERATURE = 0.35
MAX_TOKENS = 220
HISTORY_IN_PROMPT = 4
LM_STUDIO_MODEL_CACHE_SECONDS = 60


class LLMProviderError(Exception):
    """The provider failed or returned nothing usable."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class LLMTimeoutError(LLMProviderError):
    """The round trip exceeded LLM_TIMEOUT_SECONDS."""


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LLMSettings:
    provider: str = PROVIDER_OPENAI
    base_url: str = ""
    model: str = ""

    @property
    def is_lm_studio(self) -> bool:
        return self.provider == PROVIDER_LM_STUDIO


_settings_lock = threading.Lock()
_settings_cache: Dict[str, Any] = {"value": None, "expires_at": 0.0}


def load_llm_settings(db: Session) -> LLMSettings:
    """
    Provider settings from the platform_settings table, falling back to
    environment config. Cached per process for LLM_SETTINGS_CACHE_SECONDS.
    """
    now = time.monotonic()
    with _settings_lock:
        cached = _settings_cache["value"]
        if cached is not None and now < _settings_cache["expires_at"]:
            return cached

    try:
        rows = SettingsService.get_settings(db, SETTING_KEYS)
    except SQLAlchemyError as e:
        logger.warning("llm_settings_load_failed", error=str(e)[:300])
        rows = {}

    provider = (rows.get("ai_provider") or config.AI_PROVIDER or PROVIDER_OPENAI).strip().lower()
    settings = LLMSettings(
        provider=provider if provider in (PROVIDER_OPENAI, PROVIDER_LM_STUDIO) else PROVIDER_OPENAI,
        base_url=(rows.get("ai_base_url") or config.AI_BASE_URL or "").strip(),
        model=(rows.get("ai_model") or "").strip(),
    )
    with _settings_lock:
        _settings_cache["value"] = settings
        _settings_cache["expires_at"] = now + config.LLM_SETTINGS_CACHE_SECONDS
    return settings


def clear_llm_settings_cache() -> None:
    """Force the next request to re-read provider settings."""
    with _settings_lock:
        _settings_cache["value"] = None
        _settings_cache["expires_at"] = 0.0
    _lm_studio_model_cache.clear()


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def extract_first_json_object(text: str) -> Optional[str]:
    """
    First balanced {...} object in the text, ignoring braces inside strings.
    Markdown code fences around the JSON are tolerated.
    """
    if not text:
        return None
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.split("\n", 1)[1] if "\n" in cleaned else ""
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]

    start = cleaned.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(cleaned)):
        ch = cleaned[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return cleaned[start:i + 1]
    return None


def parse_agent_decision(raw_text: str) -> Optional[Decision]:
    """
    Parse the model's JSON into a Decision.

    Returns None when there is no JSON object or the action is unknown.
    A tool_call naming an unknown tool becomes a clarifying reply.
    """
    candidate = extract_first_json_object(raw_text)
    if not candidate:
        return None
    try:
        parsed = json.loads(candidate)
    except ValueError:
        return None
    if not isinstance(parsed, dict):
        return None

    action_name = parsed.get("action") if isinstance(parsed.get("action"), str) else "reply"
    try:
        action = ActionType(action_name)
    except ValueError:
        return None

    tool_doc = parsed.get("tool") if isinstance(parsed.get("tool"), dict) else {}
    tool_name = tool_doc.get("name") if isinstance(tool_doc.get("name"), str) else None
    tool_args = tool_doc.get("args") if isinstance(tool_doc.get("args"), dict) else {}

    if action == ActionType.TOOL_CALL and (not tool_name or tool_name not in TOOL_NAMES):
        return Decision(action=ActionType.REPLY, reply=get_reply_text("tool_unknown"), confidence=0.2)

    confidence = parsed.get("confidence")
    return Decision(
        action=action,
        reply=parsed.get("reply") if isinstance(parsed.get("reply"), str) else "",
        confidence=float(confidence) if isinstance(confidence, (int, float)) else None,
        needs_confirmation=parsed.get("needsConfirmation") is True or parsed.get("needs_confirmation") is True,
        payload=parsed.get("payload") if isinstance(parsed.get("payload"), dict) else {},
        tool=ToolRequest(name=tool_name, args=tool_args) if tool_name and tool_name in TOOL_NAMES else None,
    )


# ---------------------------------------------------------------------------
# Prompt
# ---------------------------------------------------------------------------

ACTIONS_IN_PROMPT = " | ".join(a.value for a in ActionType)
TOOLS_IN_PROMPT = ",".join(sorted(TOOL_NAMES))


def build_agent_prompt(
    message: str,
    context: Dict[str, Any],
    history: List[Dict[str, str]],
    tool_context: Optional[str] = None,
) -> str:
    history_text = "\n".join(f"{turn.get('role')}: {turn.get('message')}" for turn in history[-HISTORY_IN_PROMPT:])
    services = ", ".join(s["name"] for s in context.get("services") or []) or "-"
    masters = ", ".join(m["name"] for m in context.get("masters") or []) or "-"
    business_name = context.get("business_name") or ""

    return f"""Ти Jarvis, асистент бізнесу "{business_name}". Спілкуйся як жива людина: тепло, просто, по-дружньому. Знаєш усе про цей бізнес і вмієш усе: записи, клієнти, KPI, нотатки, нагадування, графіки, платежі, інбокс. Якщо треба дані, викликай tool_call. Якщо достатньо відповісти, пиши reply коротко і по суті (1-3 речення).

Формат відповіді: ТІЛЬКИ JSON, без markdown:
{{"action":"reply" або "tool_call" або дія,"reply":"твій текст українською","confidence":0.9,"payload":{{}},"tool":{{"name":"...","args":{{}}}}}}
actions: {ACTIONS_IN_PROMPT}
Дати і час у payload: ISO 8601 (2025-05-01T10:00). Телефони: як написав користувач.

tools: {TOOLS_IN_PROMPT}
Послуги: {services}. Майстри: {masters}.

ДАНІ (TOOL_CONTEXT):
{tool_context or '(empty)'}

Попередні повідомлення: {history_text or 'немає'}

Користувач пише: {message}"""


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

_lm_studio_model_cache: Dict[str, tuple] = {}


def _lm_studio_base_url(base_url: str) -> str:
    url = (base_url or "http://localhost:1234").rstrip("/")
    return url if url.endswith("/v1") else f"{url}/v1"


class LLMAgentClient:
    """Single-shot decision client over the OpenAI SDK."""

    def __init__(
        self,
        settings: LLMSettings,
        api_key: Optional[str] = None,
        client: Optional[OpenAI] = None,
        timeout: Optional[float] = None,
    ):
        self.settings = settings
        self.timeout = timeout or config.LLM_TIMEOUT_SECONDS
        if client is not None:
            self.client = client
        elif settings.is_lm_studio:
            self.client = OpenAI(
                api_key=api_key or "lm-studio",
                base_url=_lm_studio_base_url(settings.base_url),
                timeout=self.timeout,
                max_retries=0,
            )
        else:
            self.client = OpenAI(
                api_key=api_key,
                base_url=settings.base_url or None,
                timeout=self.timeout,
                max_retries=0,
            )

    def resolve_model(self) -> str:
        """Configured model, else (LM Studio) the first loaded model, else OPENAI_MODEL."""
        if self.settings.model:
            return self.settings.model
        if not self.settings.is_lm_studio:
            return config.OPENAI_MODEL

        key = self.settings.base_url
        cached = _lm_studio_model_cache.get(key)
        if cached and cached[1] > time.monotonic():
            return cached[0]
        try:
            models = list(self.client.models.list())
        except openai.APIError as e:
            raise LLMProviderError(f"LM Studio models unavailable: {e}", getattr(e, "status_code", None)) from e
        if not models:
            raise LLMProviderError("No model loaded in LM Studio")
        model_id = str(models[0].id)
        _lm_studio_model_cache[key] = (model_id, time.monotonic() + LM_STUDIO_MODEL_CACHE_SECONDS)
        return model_id

    def get_agent_decision(
        self,
        message: str,
        context: Dict[str, Any],
        history: List[Dict[str, str]],
        tool_context: Optional[str] = None,
    ) -> Decision:
        """
        One chat completion, parsed into a Decision.

        Raises:
            LLMTimeoutError: deadline exceeded
            LLMProviderError: any other provider failure or an empty answer
        """
        prompt = build_agent_prompt(message, context, history, tool_context)
        started = time.monotonic()
        try:
            response = self.client.chat.completions.create(
                model=self.resolve_model(),
                messages=[{"role": "user", "content": prompt}],
                temperature=TEMPERATURE,
                max_tokens=MAX_TOKENS,
                timeout=self.timeout,
            )
        except openai.APITimeoutError as e:
            llm_calls_total.labels(outcome="timeout").inc()
            raise LLMTimeoutError(f"LLM call timed out after {self.timeout}s") from e
        except openai.APIError as e:
            llm_calls_total.labels(outcome="error").inc()
            raise LLMProviderError(str(e), getattr(e, "status_code", None)) from e
        finally:
            llm_call_duration.observe(time.monotonic() - started)

        raw = (response.choices[0].message.content or "") if response.choices else ""
        decision = parse_agent_decision(raw)
        if decision is None:
            # Plain text instead of JSON is still a usable reply.
            text = raw.strip()
            if not text or len(text) >= 2000:
                llm_calls_total.labels(outcome="empty").inc()
                raise LLMProviderError("LLM returned no usable decision")
            decision = Decision(action=ActionType.REPLY, reply=text, confidence=0.5)

        llm_calls_total.labels(outcome="ok").inc()
        logger.info("llm_decision", action=decision.action.value, tool=decision.tool.name if decision.tool else None)
        return decision
