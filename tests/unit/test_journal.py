import json

from bb_core.utils.journal import TradeJournal


def test_record_and_latest_filter():
    j = TradeJournal(maxlen=3, clock=lambda: 42.0)
    j.record("open", "AUSDT", qty=1.0)
    j.record("close_attempt", "AUSDT", attempt=1)
    j.record("closed", "AUSDT", net_pnl=1.5)
    j.record("open", "BUSDT", qty=2.0)

    rows = j.latest()
    assert len(rows) == 3  # ring buffer dropped the first record
    assert [r["symbol"] for r in j.latest(event="open")] == ["BUSDT"]
    assert rows[-1]["t"] == 42.0
    assert j.latest(0) == []


def test_record_appends_jsonl(tmp_path):
    path = tmp_path / "journal.jsonl"
    j = TradeJournal(filepath=str(path), clock=lambda: 1.0)
    j.record("halt", reason="max drawdown reached")
    j.record("open", "AUSDT", side="Sell")

    lines = [json.loads(x) for x in path.read_text(encoding="utf-8").splitlines()]
    assert lines[0] == {"t": 1.0, "event": "halt", "reason": "max drawdown reached"}
    assert lines[1]["symbol"] == "AUSDT"


def test_unwritable_path_does_not_raise(tmp_path):
    j = TradeJournal(filepath=str(tmp_path / "missing" / "journal.jsonl"))
    rec = j.record("open", "AUSDT")
    assert rec["event"] == "open"
    assert len(j.latest()) == 1
