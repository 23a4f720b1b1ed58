"""Tests for the LLM decision client (OpenAI SDK is mocked)."""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import httpx
import openai
import pytest

from bizagent.decision import ActionType
from bizagent.llm_agent import (
    LLMAgentClient,
    LLMProviderError,
    LLMSettings,
    LLMTimeoutError,
    build_agent_prompt,
    extract_first_json_object,
    load_llm_settings,
    parse_agent_decision,
)
from bizagent.services import SettingsService
from bizagent.snapshot import build_tool_context

CHAT_URL = "https://api.openai.com/v1/chat/completions"
CONTEXT = {"business_name": "Студія Краси", "services": [{"name": "Стрижка"}], "masters": [{"name": "Олена"}]}


def completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def make_client(content=None, error=None, settings=None):
    fake = MagicMock()
    if error is not None:
        fake.chat.completions.create.side_effect = error
    else:
        fake.chat.completions.create.return_value = completion(content)
    return LLMAgentClient(settings or LLMSettings(), api_key="test", client=fake), fake


def test_extract_first_json_object():
    assert extract_first_json_object('Ось: {"a": {"b": 1}} і ще {"c": 2}') == '{"a": {"b": 1}}'
    assert extract_first_json_object('```json\n{"reply": "a } b"}\n```') == '{"reply": "a } b"}'
    assert extract_first_json_object("без json") is None
    assert extract_first_json_object('{"unterminated": ') is None


def test_parse_reply_and_tool_call():
    reply = parse_agent_decision('{"action":"reply","reply":"Привіт!","confidence":0.9}')
    assert reply.action == ActionType.REPLY
    assert (reply.reply, reply.confidence) == ("Привіт!", 0.9)

    call = parse_agent_decision('{"action":"tool_call","tool":{"name":"free_slots","args":{"master_name":"Олена"}}}')
    assert call.action == ActionType.TOOL_CALL
    assert call.tool.name == "free_slots"
    assert call.tool.args == {"master_name": "Олена"}


def test_unknown_tool_becomes_clarifying_reply():
    decision = parse_agent_decision('{"action":"tool_call","tool":{"name":"drop_tables","args":{}}}')
    assert decision.action == ActionType.REPLY
    assert decision.confidence == 0.2
    assert decision.reply


def test_unknown_action_is_unparsable():
    assert parse_agent_decision('{"action":"launch_rockets"}') is None
    assert parse_agent_decision("[1, 2]") is None


def test_prompt_carries_context_and_tool_data():
    prompt = build_agent_prompt("Скільки записів?", CONTEXT, [{"role": "user", "message": "привіт"}], "S" * 2500)
    assert "Студія Краси" in prompt
    assert "Стрижка" in prompt and "Олена" in prompt
    assert "user: привіт" in prompt
    assert prompt.rstrip().endswith("Скільки записів?")


def test_prompt_keeps_tool_outputs_after_a_long_snapshot():
    tool_line = "TOOL free_slots " + "y" * 1000 + "END_OF_TOOL"
    context = build_tool_context("S" * 2500, [tool_line])

    prompt = build_agent_prompt("Є вікна?", CONTEXT, [], context)

    assert "END_OF_TOOL" in context
    assert context in prompt
    assert "END_OF_TOOL" in prompt


def test_decision_from_json_answer():
    agent, fake = make_client('{"action":"reply","reply":"Готово","confidence":0.8}')

    decision = agent.get_agent_decision("привіт", CONTEXT, [])

    assert decision.reply == "Готово"
    kwargs = fake.chat.completions.create.call_args.kwargs
    assert kwargs["temperature"] == 0.35
    assert kwargs["max_tokens"] == 220


def test_plain_text_answer_is_a_low_confidence_reply():
    agent, _ = make_client("Звісно, допоможу!")
    decision = agent.get_agent_decision("привіт", CONTEXT, [])
    assert (decision.action, decision.reply, decision.confidence) == (ActionType.REPLY, "Звісно, допоможу!", 0.5)


def test_empty_answer_is_a_provider_error():
    agent, _ = make_client("")
    with pytest.raises(LLMProviderError):
        agent.get_agent_decision("привіт", CONTEXT, [])


def test_rate_limit_keeps_status_code():
    response = httpx.Response(429, request=httpx.Request("POST", CHAT_URL))
    error = openai.RateLimitError('{"retryDelay":"20s"}', response=response, body=None)
    agent, _ = make_client(error=error)

    with pytest.raises(LLMProviderError) as excinfo:
        agent.get_agent_decision("привіт", CONTEXT, [])

    assert excinfo.value.status_code == 429
    assert "retryDelay" in str(excinfo.value)
    assert not isinstance(excinfo.value, LLMTimeoutError)


def test_timeout_maps_to_timeout_error():
    agent, _ = make_client(error=openai.APITimeoutError(request=httpx.Request("POST", CHAT_URL)))
    with pytest.raises(LLMTimeoutError):
        agent.get_agent_decision("привіт", CONTEXT, [])


def test_lm_studio_uses_first_loaded_model():
    settings = LLMSettings(provider="lm_studio", base_url="http://127.0.0.1:1234")
    agent, fake = make_client('{"action":"reply","reply":"ok"}', settings=settings)
    fake.models.list.return_value = [SimpleNamespace(id="qwen2.5-7b-instruct")]

    agent.get_agent_decision("привіт", CONTEXT, [])

    assert fake.chat.completions.create.call_args.kwargs["model"] == "qwen2.5-7b-instruct"


def test_lm_studio_client_points_at_v1():
    with patch("bizagent.llm_agent.OpenAI") as openai_cls:
        LLMAgentClient(LLMSettings(provider="lm_studio", base_url="http://127.0.0.1:1234/"))
    assert openai_cls.call_args.kwargs["base_url"] == "http://127.0.0.1:1234/v1"
    assert openai_cls.call_args.kwargs["max_retries"] == 0


def test_settings_come_from_platform_settings(db):
    SettingsService.set_setting(db, "ai_provider", "lm_studio")
    SettingsService.set_setting(db, "ai_model", "local-model")

    settings = load_llm_settings(db)

    assert settings.is_lm_studio
    assert settings.model == "local-model"
    # cached until cleared
    SettingsService.set_setting(db, "ai_provider", "openai")
    assert load_llm_settings(db).is_lm_studio
