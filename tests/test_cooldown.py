"""Tests for the per-business LLM cooldown and the availability indicator."""

from unittest.mock import MagicMock

import pytest
import redis

from bizagent.cooldown import (
    CooldownTracker,
    InMemoryCooldownStore,
    RedisCooldownStore,
    compute_indicator,
    is_rate_limit_error,
    parse_retry_after,
)
from bizagent.llm_agent import LLMProviderError


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tracker(clock):
    return CooldownTracker(InMemoryCooldownStore(), clock=clock)


def test_rate_limit_detection():
    assert is_rate_limit_error(LLMProviderError("boom", status_code=429))
    assert is_rate_limit_error("Error code: 429 - Too Many Requests")
    assert is_rate_limit_error("RESOURCE_EXHAUSTED: quota exceeded")
    assert is_rate_limit_error("Rate limit reached for gpt-4o-mini")
    assert not is_rate_limit_error(LLMProviderError("invalid api key", status_code=401))
    assert not is_rate_limit_error("connection reset")


@pytest.mark.parametrize(
    "text, expected",
    [
        ('{"error": {"details": [{"retryDelay":"20s"}]}}', 20),
        ("Please retry in 12.5s.", 13),
        ("Please retry in 1s.", 5),        # clamped up to the minimum
        ("Please retry in 9999s.", 300),   # clamped down to the maximum
        ("no hint at all", 30),            # default
    ],
)
def test_parse_retry_after(text, expected):
    assert parse_retry_after(text) == expected


def test_cooldown_window(tracker, clock):
    assert not tracker.in_cooldown("b1")
    assert tracker.remaining_seconds("b1") == 0

    tracker.set_cooldown("b1", 10)
    clock.now += 1
    assert tracker.in_cooldown("b1")
    assert tracker.remaining_seconds("b1") == 9
    assert not tracker.in_cooldown("b2")

    clock.now += 10
    assert not tracker.in_cooldown("b1")
    assert tracker.remaining_seconds("b1") == 0


def test_recent_success_window(tracker, clock):
    assert not tracker.had_recent_success("b1")
    tracker.record_success("b1")
    clock.now += 599
    assert tracker.had_recent_success("b1")
    clock.now += 2
    assert not tracker.had_recent_success("b1")


def test_indicator_green_only_with_key_enabled_and_ai_evidence(tracker):
    green = compute_indicator(tracker, "b1", has_key=True, enabled=True, used_ai=True, unavailable=False)
    assert green.as_dict() == {"hasKey": True, "indicator": "green", "usedAi": True, "reason": None}

    no_key = compute_indicator(tracker, "b1", has_key=False, enabled=True, used_ai=False, unavailable=False)
    assert (no_key.indicator, no_key.reason) == ("red", "no_key")

    disabled = compute_indicator(tracker, "b1", has_key=True, enabled=False, used_ai=False, unavailable=False)
    assert (disabled.indicator, disabled.reason) == ("red", "disabled")

    # key but no AI used and no recent success
    idle = compute_indicator(tracker, "b1", has_key=True, enabled=True, used_ai=False, unavailable=False)
    assert idle.indicator == "red"


def test_indicator_stays_green_after_recent_success(tracker):
    tracker.record_success("b1")
    status = compute_indicator(tracker, "b1", has_key=True, enabled=True, used_ai=False, unavailable=False)
    assert status.indicator == "green"


def test_indicator_red_while_cooling_down(tracker):
    tracker.record_success("b1")
    tracker.set_cooldown("b1", 30)
    status = compute_indicator(tracker, "b1", has_key=True, enabled=True, used_ai=False, unavailable=True, reason="cooldown")
    assert (status.indicator, status.reason) == ("red", "cooldown")


def test_redis_store_round_trip():
    client = MagicMock()
    client.get.return_value = "1234.5"
    store = RedisCooldownStore(client)

    store.set_last_success("b1", 1000.0)
    key, value = client.set.call_args.args
    assert key == "ai_cooldown:success:b1"
    assert float(value) == 1000.0
    assert store.get_cooldown_until("b1") == 1234.5
    client.get.assert_called_with("ai_cooldown:until:b1")


def test_redis_errors_degrade_to_no_cooldown():
    client = MagicMock()
    client.get.side_effect = redis.ConnectionError("down")
    client.set.side_effect = redis.ConnectionError("down")
    tracker = CooldownTracker(RedisCooldownStore(client))

    tracker.set_cooldown("b1", 30)
    assert not tracker.in_cooldown("b1")
    assert not tracker.had_recent_success("b1")
