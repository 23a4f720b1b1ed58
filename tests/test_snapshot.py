from datetime import datetime

from bizagent.db_models import DBBusinessAiSnapshot
from bizagent.snapshot import SnapshotProvider, build_tool_context, compact_json, format_tool_outputs
from bizagent.tools import ToolResult

FIXED_NOW = datetime(2025, 5, 1, 8, 0)


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_compact_json_cuts_long_values():
    assert compact_json({"a": "б"}, 100) == '{"a":"б"}'
    assert compact_json({"a": "x" * 50}, 10) == '{"a":"xxxx…'


def test_tool_outputs_mark_errors():
    lines = format_tool_outputs([ToolResult(tool="who_working", data={"rows": []}), ToolResult(tool="free_slots", error="boom")])
    assert lines == ['TOOL who_working {"rows":[]}', "TOOL free_slots ERROR"]


def test_tool_context_keeps_snapshot_head_and_output_tail():
    snapshot = "S" * 100
    outputs = ["TOOL a " + "x" * 100]

    assert build_tool_context(snapshot, [], cap=50) == "S" * 50
    assert build_tool_context(snapshot, outputs, cap=1000) == snapshot + "\n" + outputs[0]

    cut = build_tool_context(snapshot, outputs, cap=80)
    assert len(cut) <= 80
    assert cut.startswith("S" * 40)
    assert cut.endswith("x" * 30)


def test_snapshot_is_built_persisted_and_cached(db, business):
    clock = FakeClock()
    provider = SnapshotProvider(memory_ttl=150, clock=clock)

    text = provider.get_snapshot_text(db, business.id, FIXED_NOW)
    assert text.splitlines()[0].startswith("BIZ_OVERVIEW ")
    assert "Студія Краси" in text
    assert [line.split(" ", 1)[0] for line in text.splitlines()] == [
        "BIZ_OVERVIEW", "KPI_7D", "APPT_STATS_7D", "PAYMENTS_30D", "OPS",
    ]
    row = db.query(DBBusinessAiSnapshot).filter_by(business_id=business.id).one()
    assert row.snapshot == text

    # memory hit even when the stored row changes
    row.snapshot = "changed"
    db.commit()
    assert provider.get_snapshot_text(db, business.id, FIXED_NOW) == text

    # after the memory TTL the fresh stored row is used
    clock.now += 151
    assert provider.get_snapshot_text(db, business.id, FIXED_NOW) == "changed"
