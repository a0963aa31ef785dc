from __future__ import annotations

import asyncio

import pytest

from bb_core.errors import GatewayTransportError
from bots.fundarb.config import coerce_fundarb_config
from bots.fundarb.strategy import FundingArbStrategy, main, parse_args


def _strategy(gateway, clock, no_sleep, **overrides) -> FundingArbStrategy:
    cfg = coerce_fundarb_config(overrides)
    return FundingArbStrategy(cfg, gateway, clock=clock, sleep=no_sleep)


async def _open(strat, gateway, make_snapshot, clock, symbol: str):
    ft = clock() + 3600.0
    gateway.snapshots[symbol] = make_snapshot(symbol, 0.01, ft)
    return await strat.positions.open_position(symbol, ft)


@pytest.mark.asyncio
async def test_poll_to_entry_to_timed_close(gateway, clock, no_sleep, make_snapshot):
    strat = _strategy(gateway, clock, no_sleep, schedule={"post_offset_s": -5.0})
    await strat.capture_starting_equity()
    ft = clock() + strat.cfg.schedule.pre_offset_s + 0.01
    gateway.snapshots = {
        "AUSDT": make_snapshot("AUSDT", 0.01, ft),
        "BUSDT": make_snapshot("BUSDT", 0.001, ft),
    }
    gateway.sizes["AUSDT"] = [1.0, 0.0]

    await strat.poll_once()
    assert strat.scheduler.is_armed("AUSDT")
    assert not strat.scheduler.is_armed("BUSDT")

    # entry fires after ~10ms, close after min_close_delay (0.5s)
    await asyncio.sleep(0.7)

    entries = [o for o in gateway.orders if not o["reduce_only"]]
    assert [o["symbol"] for o in entries] == ["AUSDT"]
    assert len(gateway.close_orders("AUSDT")) == 1
    assert strat.book.positions == {}
    assert [r["event"] for r in strat.journal.latest()] == ["open", "close_attempt", "closed"]


@pytest.mark.asyncio
async def test_breach_across_concurrent_finalizes_halts_once(gateway, clock, no_sleep, make_snapshot):
    strat = _strategy(gateway, clock, no_sleep)
    await strat.capture_starting_equity()
    await _open(strat, gateway, make_snapshot, clock, "AUSDT")
    await _open(strat, gateway, make_snapshot, clock, "BUSDT")
    await _open(strat, gateway, make_snapshot, clock, "CUSDT")
    gateway.equity = [965.0]

    await asyncio.wait_for(
        asyncio.gather(
            strat.positions.close_position("AUSDT"),
            strat.positions.close_position("BUSDT"),
        ),
        timeout=2.0,
    )

    assert strat.risk.trading_enabled is False
    assert strat.stopped
    assert len(strat.journal.latest(event="breach")) == 1
    assert len(strat.journal.latest(event="halt")) == 1
    # shutdown flattened the position nobody had asked to close
    assert strat.book.positions == {}
    assert len(strat.journal.latest(event="closed")) == 3


@pytest.mark.asyncio
async def test_shutdown_twice_does_not_duplicate_orders(gateway, clock, no_sleep, make_snapshot):
    strat = _strategy(gateway, clock, no_sleep)
    await strat.capture_starting_equity()
    await _open(strat, gateway, make_snapshot, clock, "AUSDT")
    gateway.sizes["AUSDT"] = [1.0, 0.0]

    await asyncio.gather(strat.shutdown("signal"), strat.shutdown("signal"))
    await strat.shutdown("again")

    assert len(gateway.close_orders("AUSDT")) == 1
    assert len(strat.journal.latest(event="halt")) == 1
    assert strat.risk.halt_reason == "signal"


@pytest.mark.asyncio
async def test_second_shutdown_waits_for_first_to_flatten(gateway, clock, make_snapshot):
    entered = asyncio.Event()
    gate = asyncio.Event()

    async def _gated_sleep(_delay):
        entered.set()
        await gate.wait()

    strat = FundingArbStrategy(coerce_fundarb_config({}), gateway, clock=clock, sleep=_gated_sleep)
    await strat.capture_starting_equity()
    await _open(strat, gateway, make_snapshot, clock, "AUSDT")
    gateway.sizes["AUSDT"] = [1.0, 0.0]

    first = asyncio.create_task(strat.shutdown("risk halt"))
    await asyncio.wait_for(entered.wait(), timeout=1.0)  # first close order sent

    second = asyncio.create_task(strat.shutdown("signal received"))
    for _ in range(5):
        await asyncio.sleep(0)
    assert not second.done()
    assert "AUSDT" in strat.book.positions

    gate.set()
    await asyncio.wait_for(asyncio.gather(first, second), timeout=2.0)

    assert strat.stopped
    assert strat.book.positions == {}
    assert strat.risk.halt_reason == "risk halt"


@pytest.mark.asyncio
async def test_breach_alert_does_not_delay_flattening(gateway, clock, no_sleep, make_snapshot, monkeypatch):
    import bots.fundarb.strategy as strategy_mod

    release = asyncio.Event()
    sent: list[str] = []

    async def _slow_notify(message, webhook_url):
        await release.wait()
        sent.append(message)
        return True

    monkeypatch.setattr(strategy_mod, "discord_notify", _slow_notify)
    strat = _strategy(gateway, clock, no_sleep)
    strat.discord_webhook = "https://discord.example/hook"
    await strat.capture_starting_equity()
    await _open(strat, gateway, make_snapshot, clock, "AUSDT")
    await _open(strat, gateway, make_snapshot, clock, "BUSDT")
    gateway.equity = [965.0]

    await asyncio.wait_for(strat.positions.close_position("AUSDT"), timeout=2.0)

    # flattened while the alert is still pending
    assert strat.stopped
    assert strat.book.positions == {}
    assert sent == []

    release.set()
    await strat.spawner.join()
    assert len(sent) == 1 and sent[0].startswith("fundarb halted:")


@pytest.mark.asyncio
async def test_shutdown_disarms_and_stops_polling(gateway, clock, no_sleep, make_snapshot):
    strat = _strategy(gateway, clock, no_sleep)
    gateway.snapshots = {"AUSDT": make_snapshot("AUSDT", 0.02, clock() + 8.0)}

    await strat.start()
    assert strat.scheduler.is_armed("AUSDT")
    entry = strat.book.schedules["AUSDT"]

    await strat.shutdown("operator stop")
    await strat.wait_stopped()

    assert strat.book.schedules == {}
    assert entry.timer.cancelled
    assert all(t.done() for t in strat._tasks)
    assert gateway.orders == []

    gateway.snapshots["BUSDT"] = make_snapshot("BUSDT", 0.02, clock() + 8.0)
    await strat.poll_once()
    assert strat.book.schedules == {}


@pytest.mark.asyncio
async def test_startup_fails_when_equity_unavailable(gateway, clock, no_sleep, monkeypatch):
    import bb_core.utils.retry as retry_mod

    real_sleep = asyncio.sleep

    async def _fast(_delay):
        await real_sleep(0)

    monkeypatch.setattr(retry_mod.asyncio, "sleep", _fast)
    gateway.fail.add("get_account_equity")
    strat = _strategy(gateway, clock, no_sleep)

    with pytest.raises(GatewayTransportError):
        await strat.start()
    assert strat._tasks == []


def test_monitor_logs_high_funding(gateway, clock, no_sleep, make_snapshot, caplog):
    strat = _strategy(gateway, clock, no_sleep)
    strat.poller.latest["AUSDT"] = make_snapshot("AUSDT", 0.007, clock() + 600.0)
    strat.poller.latest["BUSDT"] = make_snapshot("BUSDT", 0.001, clock() + 600.0)

    with caplog.at_level("INFO", logger="bots.fundarb"):
        assert strat.log_high_funding() == 1

    assert "AUSDT" in caplog.text and "10.0m" in caplog.text


def test_cli_defaults():
    args = parse_args([])
    assert args.config is None
    assert args.log_root == "logs"


def test_cli_exits_nonzero_without_credentials(tmp_path, monkeypatch):
    monkeypatch.setenv("BYBIT_API_KEY", "")
    monkeypatch.setenv("BYBIT_API_SECRET", "")
    import bots.fundarb.strategy as strategy_mod

    monkeypatch.setattr(strategy_mod, "setup_logger", lambda *a, **k: tmp_path)

    with pytest.raises(SystemExit) as exc:
        main(["--log-root", str(tmp_path)])
    assert exc.value.code == 1
