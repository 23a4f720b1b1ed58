import structlog

from bizagent.logging_config import LOG_VALUE_MAX_CHARS, chat_log_context, truncate_long_values


def test_long_values_are_cut_but_the_event_name_is_kept():
    event = "x" * 400
    out = truncate_long_values(None, "info", {"event": event, "error": "e" * 1000, "status": 429})

    assert out["event"] == event
    assert out["error"] == "e" * LOG_VALUE_MAX_CHARS + "…"
    assert out["status"] == 429


def test_chat_context_is_bound_only_inside_the_block():
    with chat_log_context("biz-1", "web"):
        assert structlog.contextvars.get_contextvars() == {"business_id": "biz-1", "session_id": "web"}
    assert "business_id" not in structlog.contextvars.get_contextvars()
