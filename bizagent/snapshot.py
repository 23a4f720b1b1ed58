"""
Business snapshot used to ground the LLM.

A compact, token-friendly text block (one tagged line per section), cached
in memory for a few minutes and persisted so a cold process can reuse a
recent one instead of re-running the aggregates.
"""

import json
import threading
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bizagent.config import config
from bizagent.db_models import DBNote, DBReminder, DBSocialInboxMessage, ReminderStatus, utcnow
from bizagent.logging_config import get_logger
from bizagent.services import SnapshotStoreService
from bizagent.tools import ToolResult, analytics_kpi, appointments_stats, biz_overview, payments_kpi

logger = get_logger(__name__)

MEMORY_TTL_SECONDS = 150
DB_FRESHNESS = timedelta(hours=24)


def compact_json(value: Any, max_chars: int) -> str:
    """Single-line JSON, cut to max_chars with an ellipsis."""
    text = json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)
    return text[:max_chars] + "…" if len(text) > max_chars else text


def _ops_counts(db: Session, business_id: str, now: datetime) -> Dict[str, Optional[int]]:
    day_start = datetime.combine(now.date(), datetime.min.time())
    day_end = day_start + timedelta(days=1)
    return {
        "inbox_unread": db.query(func.count(DBSocialInboxMessage.id))
        .filter(DBSocialInboxMessage.business_id == business_id, DBSocialInboxMessage.is_read == False)  # noqa: E712
        .scalar(),
        "reminders_pending": db.query(func.count(DBReminder.id))
        .filter(DBReminder.business_id == business_id, DBReminder.status == ReminderStatus.PENDING.value)
        .scalar(),
        "notes_today": db.query(func.count(DBNote.id))
        .filter(DBNote.business_id == business_id, DBNote.date >= day_start, DBNote.date < day_end)
        .scalar(),
    }


def build_snapshot_text(db: Session, business_id: str, now: datetime) -> str:
    lines = [
        f"BIZ_OVERVIEW {compact_json(biz_overview(db, business_id, {}, now), 450)}",
        f"KPI_7D {compact_json(analytics_kpi(db, business_id, {'days': 7}, now), 500)}",
        f"APPT_STATS_7D {compact_json(appointments_stats(db, business_id, {'days': 7}, now), 500)}",
        f"PAYMENTS_30D {compact_json(payments_kpi(db, business_id, {'days': 30}, now), 500)}",
        f"OPS {compact_json(_ops_counts(db, business_id, now), 120)}",
    ]
    return "\n".join(lines)


class SnapshotProvider:
    """Memory cache, then a fresh persisted row, then a rebuild."""

    def __init__(self, memory_ttl: float = MEMORY_TTL_SECONDS, clock: Callable[[], float] = time.time):
        self.memory_ttl = memory_ttl
        self.clock = clock
        self._cache: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def get_snapshot_text(self, db: Session, business_id: str, now: Optional[datetime] = None) -> str:
        with self._lock:
            hit = self._cache.get(business_id)
        if hit and hit[1] > self.clock():
            return hit[0]

        row = SnapshotStoreService.get_snapshot(db, business_id)
        if row is not None and row.updated_at and row.updated_at > utcnow() - DB_FRESHNESS:
            self._remember(business_id, row.snapshot)
            return row.snapshot

        text = build_snapshot_text(db, business_id, now or datetime.now())
        self._remember(business_id, text)
        try:
            SnapshotStoreService.save_snapshot(db, business_id, text)
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning("snapshot_persist_failed", business_id=business_id, error=str(e)[:300])
        return text

    def invalidate(self, business_id: Optional[str] = None) -> None:
        with self._lock:
            if business_id is None:
                self._cache.clear()
            else:
                self._cache.pop(business_id, None)

    def _remember(self, business_id: str, text: str) -> None:
        with self._lock:
            self._cache[business_id] = (text, self.clock() + self.memory_ttl)


snapshot_provider = SnapshotProvider()


def format_tool_outputs(results: Iterable[ToolResult], max_chars: int = 900) -> list:
    lines = []
    for result in results:
        if result.ok:
            lines.append(f"TOOL {result.tool} {compact_json(result.data, max_chars)}")
        else:
            lines.append(f"TOOL {result.tool} ERROR")
    return lines


def build_tool_context(snapshot: str, outputs: Iterable[str], cap: Optional[int] = None) -> str:
    """
    Snapshot followed by tool outputs, at most `cap` characters.
    Over the cap, the head of the snapshot and the tail of the outputs survive.
    """
    cap = cap or config.AGENT_TOOL_CONTEXT_MAX_CHARS
    rest = "\n".join(outputs)
    if not rest:
        return snapshot[:cap]
    combined = f"{snapshot}\n{rest}" if snapshot else rest
    if len(combined) <= cap:
        return combined

    head = min(len(snapshot), max(cap // 2, cap - len(rest) - 1))
    tail = cap - head - 1
    if head <= 0:
        return rest[-cap:]
    return f"{snapshot[:head]}\n{rest[-tail:]}" if tail > 0 else snapshot[:cap]
