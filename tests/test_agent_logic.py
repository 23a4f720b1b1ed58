"""Tests for the decision arbiter and per-message orchestration."""

from datetime import datetime
from unittest.mock import MagicMock

import pytest

from bizagent.actions import ActionExecutor
from bizagent.agent_logic import DecisionArbiter, Tier, process_message
from bizagent.config import Config, config
from bizagent.cooldown import CooldownTracker
from bizagent.db_models import DBAppointment
from bizagent.decision import ActionType, Decision, ToolRequest
from bizagent.errors import BusinessNotFoundError
from bizagent.llm_agent import LLMProviderError, LLMTimeoutError
from bizagent.services import ConversationService, ServiceCatalogService
from bizagent.tools import ToolExecutor

FIXED_NOW = datetime(2025, 5, 1, 8, 0)
FREE_TEXT = "Порадь щось корисне"
RATE_LIMIT_BODY = 'Error code: 429 - {"error": {"details": [{"retryDelay":"20s"}]}}'


class FakeClock:
    def __init__(self, now: float = 5000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeLLM:
    """Stands in for LLMAgentClient; replays queued decisions or errors."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def get_agent_decision(self, message, context, history, tool_context=None):
        self.calls.append({"message": message, "history": history, "tool_context": tool_context})
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tracker(clock):
    return CooldownTracker(clock=clock)


@pytest.fixture
def chat(db, session_factory, business, tracker):
    """Returns send(message, llm) -> ChatOutcome, with everything but the LLM real."""

    def send(message, llm=None, session_id="s1"):
        factory = MagicMock(return_value=llm) if llm is not None else MagicMock(side_effect=AssertionError("LLM called"))
        arbiter = DecisionArbiter(
            db,
            tool_executor=ToolExecutor(session_factory=session_factory, now=lambda: FIXED_NOW),
            tracker=tracker,
            llm_factory=factory,
            now=lambda: FIXED_NOW,
        )
        executor = ActionExecutor(db, now=lambda: FIXED_NOW, notifier=MagicMock())
        return process_message(db, business.id, message, session_id, arbiter=arbiter, executor=executor, now=lambda: FIXED_NOW)

    return send


def reply(text):
    return Decision(action=ActionType.REPLY, reply=text, confidence=0.9)


def test_unknown_business(db, business):
    with pytest.raises(BusinessNotFoundError):
        process_message(db, "missing", "привіт")


def test_commands_never_reach_the_llm(db, chat):
    outcome = chat("service: Стрижка, 500, 45")

    assert outcome.tier == Tier.COMMAND
    assert outcome.action["status"] == "completed"
    assert "Стрижка" in outcome.message
    assert ServiceCatalogService.find_service_by_name(db, "biz-1", "Стрижка").price == 500


def test_llm_reply_turns_indicator_green(chat):
    llm = FakeLLM(reply("Спробуйте акцію на манікюр."))

    outcome = chat(FREE_TEXT, llm)

    assert outcome.tier == Tier.LLM
    assert outcome.message == "Спробуйте акцію на манікюр."
    assert outcome.action is None
    assert outcome.ai == {"hasKey": True, "indicator": "green", "usedAi": True, "reason": None}


def test_rate_limit_sets_cooldown_and_skips_the_llm(chat, tracker, clock):
    llm = FakeLLM(LLMProviderError(RATE_LIMIT_BODY, status_code=429))

    first = chat(FREE_TEXT, llm)
    assert first.tier == Tier.FALLBACK
    assert "20 с" in first.message
    assert first.ai["indicator"] == "red"
    assert first.ai["reason"] == "rate_limited"
    assert tracker.remaining_seconds("biz-1") == 20

    clock.now += 1
    second = chat(FREE_TEXT, llm)
    assert second.tier == Tier.COOLDOWN
    assert "19 с" in second.message
    assert second.ai["reason"] == "cooldown"
    assert len(llm.calls) == 1

    clock.now += 20
    llm.outcomes = [reply("Знову на зв'язку.")]
    third = chat(FREE_TEXT, llm)
    assert third.tier == Tier.LLM
    assert third.ai["indicator"] == "green"
    assert len(llm.calls) == 2


def test_cooldown_window_boundaries(chat, tracker, clock):
    tracker.set_cooldown("biz-1", 10)

    clock.now += 1
    assert chat(FREE_TEXT).tier == Tier.COOLDOWN

    clock.now += 10
    assert chat(FREE_TEXT, FakeLLM(reply("ok"))).tier == Tier.LLM


def test_commands_still_work_during_cooldown(chat, tracker):
    tracker.set_cooldown("biz-1", 60)
    assert chat("note: купити фарбу").tier == Tier.COMMAND


def test_timeout_falls_back_with_default_cooldown(chat, tracker):
    outcome = chat(FREE_TEXT, FakeLLM(LLMTimeoutError("LLM call timed out after 20s")))

    assert outcome.tier == Tier.FALLBACK
    assert outcome.ai["reason"] == "timeout"
    assert "Не вдалося отримати відповідь від AI" in outcome.message
    assert tracker.remaining_seconds("biz-1") == config.LLM_COOLDOWN_DEFAULT_SECONDS


def test_provider_error_without_rate_limit_sets_no_cooldown(chat, tracker):
    outcome = chat(FREE_TEXT, FakeLLM(LLMProviderError("invalid api key", status_code=401)))
    assert outcome.ai["reason"] == "provider_error"
    assert not tracker.in_cooldown("biz-1")


def test_without_a_key_only_commands_work(chat, monkeypatch):
    monkeypatch.setattr(Config, "OPENAI_API_KEY", "")
    monkeypatch.setattr(config, "OPENAI_API_KEY", "")

    outcome = chat(FREE_TEXT)

    assert outcome.tier == Tier.FALLBACK
    assert outcome.message.startswith("AI-помічник не налаштований")
    assert "service:" in outcome.message
    assert outcome.ai == {"hasKey": False, "indicator": "red", "usedAi": False, "reason": "no_key"}


def test_disabled_business_skips_the_llm(db, chat, business):
    business.ai_chat_enabled = False
    db.commit()

    outcome = chat(FREE_TEXT)

    assert outcome.tier == Tier.FALLBACK
    assert outcome.ai["reason"] == "disabled"


def test_llm_tool_call_is_run_and_formatted(chat):
    llm = FakeLLM(Decision(action=ActionType.TOOL_CALL, tool=ToolRequest(name="who_working", args={})))

    outcome = chat("Хто в нас сьогодні на зміні?", llm)

    assert outcome.tier == Tier.LLM
    assert outcome.message == "01.05 працюють: Олена (09:00-18:00)."


def test_data_intents_feed_the_llm_context(chat):
    llm = FakeLLM(reply("Сьогодні працює Олена."))

    chat("хто працює сьогодні", llm)

    tool_context = llm.calls[0]["tool_context"]
    assert "TOOL who_working" in tool_context
    assert "BIZ_OVERVIEW" in tool_context


def test_heuristic_replies_answer_without_the_llm(chat, monkeypatch):
    monkeypatch.setattr(Config, "AGENT_HEURISTIC_REPLIES", True)
    monkeypatch.setattr(config, "AGENT_HEURISTIC_REPLIES", True)

    outcome = chat("хто працює завтра")

    assert outcome.tier == Tier.HEURISTIC
    assert outcome.message == "02.05 працюють: Олена (09:00-18:00)."


def test_rate_limited_fallback_prefers_tool_data(chat):
    llm = FakeLLM(LLMProviderError(RATE_LIMIT_BODY, status_code=429))
    outcome = chat("хто працює завтра", llm)
    assert outcome.message == "02.05 працюють: Олена (09:00-18:00)."
    assert outcome.ai["reason"] == "rate_limited"


def test_turns_are_persisted_with_metadata(db, chat):
    chat("service: Стрижка, 500, 45", session_id="s2")

    rows = ConversationService.list_messages(db, "biz-1", "s2")
    assert [r.role for r in rows] == ["user", "assistant"]
    assert rows[0].message == "service: Стрижка, 500, 45"
    meta = rows[1].meta_doc
    assert meta["decision_action"] == "create_service"
    assert meta["action_data"]["status"] == "completed"
    assert meta["ai"]["tier"] == "command"
    assert ConversationService.list_messages(db, "biz-1", "s1") == []


def test_phone_answer_completes_a_booking(db, chat):
    ServiceCatalogService.upsert_service(db, "biz-1", "Стрижка", 500, 45)
    ask_phone = FakeLLM(reply("Вкажіть, будь ласка, номер телефону клієнта."))

    chat("Запиши Івана Петренка до Олени на стрижку завтра о 10", ask_phone)
    outcome = chat("0671234567")

    assert outcome.tier == Tier.PHONE_CONTINUATION
    assert outcome.message == "Готово, запис створено."
    appointment = db.query(DBAppointment).one()
    assert appointment.start_time == datetime(2025, 5, 2, 10, 0)
    assert appointment.client_phone == "+380671234567"
    assert appointment.end_time == datetime(2025, 5, 2, 10, 45)
