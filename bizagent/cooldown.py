"""
Per-business LLM cooldown and availability indicator.

Two values per business: the moment until which the LLM must not be called
(set after the provider reports rate limiting or times out) and the moment
of the last successful LLM round trip. Both live in a CooldownStore; the
in-memory store is reset on restart, which costs at most one extra failing
call. Concurrent writers are last-writer-wins.
"""

from __future__ import annotations

import math
import re
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import redis

from bizagent.config import config
from bizagent.logging_config import get_logger
from bizagent.redis_client import get_redis_client

logger = get_logger(__name__)

_RATE_LIMIT_RE = re.compile(r"\b429\b|rate.?limit|RESOURCE_EXHAUSTED|quota", re.IGNORECASE)
_RETRY_IN_RE = re.compile(r"retry in (\d+(?:\.\d+)?)\s*s", re.IGNORECASE)
_RETRY_DELAY_RE = re.compile(r'"retryDelay"\s*:\s*"(\d+(?:\.\d+)?)s"')


def is_rate_limit_error(error: object) -> bool:
    """True when an exception or error text signals provider rate limiting."""
    if getattr(error, "status_code", None) == 429:
        return True
    return bool(_RATE_LIMIT_RE.search(str(error or "")))


def parse_retry_after(text: str) -> int:
    """
    Retry-after hint in seconds from a provider error message.

    Understands "... retry in 12.5s ..." and '"retryDelay":"20s"'. Falls back
    to the default and clamps to the configured bounds.
    """
    seconds: Optional[float] = None
    for pattern in (_RETRY_IN_RE, _RETRY_DELAY_RE):
        m = pattern.search(text or "")
        if m:
            seconds = float(m.group(1))
            break
    if seconds is None:
        seconds = config.LLM_COOLDOWN_DEFAULT_SECONDS
    return int(min(max(math.ceil(seconds), config.LLM_COOLDOWN_MIN_SECONDS), config.LLM_COOLDOWN_MAX_SECONDS))


class CooldownStore(ABC):
    """Storage for the two per-business timestamps (epoch seconds)."""

    @abstractmethod
    def get_cooldown_until(self, business_id: str) -> Optional[float]:
        ...

    @abstractmethod
    def set_cooldown_until(self, business_id: str, until: float) -> None:
        ...

    @abstractmethod
    def get_last_success(self, business_id: str) -> Optional[float]:
        ...

    @abstractmethod
    def set_last_success(self, business_id: str, at: float) -> None:
        ...


class InMemoryCooldownStore(CooldownStore):
    """Process-local store."""

    def __init__(self):
        self._lock = threading.Lock()
        self._until: Dict[str, float] = {}
        self._success: Dict[str, float] = {}

    def get_cooldown_until(self, business_id: str) -> Optional[float]:
        with self._lock:
            return self._until.get(business_id)

    def set_cooldown_until(self, business_id: str, until: float) -> None:
        with self._lock:
            self._until[business_id] = until

    def get_last_success(self, business_id: str) -> Optional[float]:
        with self._lock:
            return self._success.get(business_id)

    def set_last_success(self, business_id: str, at: float) -> None:
        with self._lock:
            self._success[business_id] = at

    def clear(self) -> None:
        with self._lock:
            self._until.clear()
            self._success.clear()


class RedisCooldownStore(CooldownStore):
    """
    Store shared by all workers.
    Redis errors degrade to "no cooldown / no recent success" and are logged.
    """

    UNTIL_KEY = "ai_cooldown:until:{business_id}"
    SUCCESS_KEY = "ai_cooldown:success:{business_id}"

    def __init__(self, client: redis.Redis, success_ttl_seconds: int = 24 * 3600):
        self.client = client
        self.success_ttl_seconds = success_ttl_seconds

    def _get_float(self, key: str) -> Optional[float]:
        try:
            raw = self.client.get(key)
        except redis.RedisError as e:
            logger.warning("cooldown_store_read_failed", key=key, error=str(e)[:200])
            return None
        try:
            return float(raw) if raw is not None else None
        except (TypeError, ValueError):
            return None

    def _set_float(self, key: str, value: float, ttl: int) -> None:
        try:
            self.client.set(key, repr(value), ex=max(1, ttl))
        except redis.RedisError as e:
            logger.warning("cooldown_store_write_failed", key=key, error=str(e)[:200])

    def get_cooldown_until(self, business_id: str) -> Optional[float]:
        return self._get_float(self.UNTIL_KEY.format(business_id=business_id))

    def set_cooldown_until(self, business_id: str, until: float) -> None:
        ttl = math.ceil(until - time.time())
        self._set_float(self.UNTIL_KEY.format(business_id=business_id), until, ttl)

    def get_last_success(self, business_id: str) -> Optional[float]:
        return self._get_float(self.SUCCESS_KEY.format(business_id=business_id))

    def set_last_success(self, business_id: str, at: float) -> None:
        self._set_float(self.SUCCESS_KEY.format(business_id=business_id), at, self.success_ttl_seconds)


class CooldownTracker:
    """Cooldown and success-recency bookkeeping over an injected store."""

    def __init__(self, store: Optional[CooldownStore] = None, clock: Callable[[], float] = time.time):
        self.store = store or InMemoryCooldownStore()
        self.clock = clock

    def remaining_seconds(self, business_id: str) -> int:
        until = self.store.get_cooldown_until(business_id)
        if until is None:
            return 0
        return max(0, math.ceil(until - self.clock()))

    def in_cooldown(self, business_id: str) -> bool:
        until = self.store.get_cooldown_until(business_id)
        return until is not None and self.clock() < until

    def set_cooldown(self, business_id: str, seconds: float) -> float:
        until = self.clock() + seconds
        self.store.set_cooldown_until(business_id, until)
        logger.warning("llm_cooldown_set", business_id=business_id, seconds=seconds)
        return until

    def record_success(self, business_id: str) -> None:
        self.store.set_last_success(business_id, self.clock())

    def last_success_at(self, business_id: str) -> Optional[float]:
        return self.store.get_last_success(business_id)

    def had_recent_success(self, business_id: str, window_seconds: Optional[int] = None) -> bool:
        window = config.LLM_SUCCESS_RECENCY_SECONDS if window_seconds is None else window_seconds
        at = self.last_success_at(business_id)
        return at is not None and self.clock() - at <= window


@dataclass
class AiIndicator:
    """Availability dot shown next to the chat. Never gates a reply."""
    has_key: bool
    indicator: str  # "green" | "red"
    used_ai: bool
    reason: Optional[str] = None

    def as_dict(self) -> dict:
        return {"hasKey": self.has_key, "indicator": self.indicator, "usedAi": self.used_ai, "reason": self.reason}


def compute_indicator(
    tracker: CooldownTracker,
    business_id: str,
    has_key: bool,
    enabled: bool,
    used_ai: bool,
    unavailable: bool,
    reason: Optional[str] = None,
) -> AiIndicator:
    """
    green iff a key is configured, the business has not disabled the agent,
    no unavailability was observed during this call, and the LLM was used now
    or succeeded within the recency window.
    """
    if not has_key:
        reason = "no_key"
    elif not enabled:
        reason = "disabled"
    elif not unavailable and tracker.in_cooldown(business_id):
        reason = reason or "cooldown"

    green = (
        has_key
        and enabled
        and not unavailable
        and not tracker.in_cooldown(business_id)
        and (used_ai or tracker.had_recent_success(business_id))
    )
    return AiIndicator(
        has_key=has_key,
        indicator="green" if green else "red",
        used_ai=used_ai,
        reason=None if green else reason,
    )


_default_tracker: Optional[CooldownTracker] = None
_tracker_lock = threading.Lock()


def get_cooldown_tracker() -> CooldownTracker:
    """Process-wide tracker; Redis-backed when Redis is available."""
    global _default_tracker
    with _tracker_lock:
        if _default_tracker is None:
            client = get_redis_client()
            store = RedisCooldownStore(client) if client is not None else InMemoryCooldownStore()
            _default_tracker = CooldownTracker(store)
        return _default_tracker


def reset_cooldown_tracker() -> None:
    """Drop the process-wide tracker (tests, config reload)."""
    global _default_tracker
    with _tracker_lock:
        _default_tracker = None
