from __future__ import annotations

import asyncio

import pytest

from bots.fundarb.timers import CancellableTimer, TaskSpawner


@pytest.mark.asyncio
async def test_timer_fires_once():
    hits: list[int] = []

    async def _cb() -> None:
        hits.append(1)

    timer = CancellableTimer(0.01, _cb, name="t")
    await timer.wait()

    assert hits == [1]
    assert timer.fired and not timer.cancelled


@pytest.mark.asyncio
async def test_cancel_is_idempotent_before_fire():
    hits: list[int] = []

    async def _cb() -> None:
        hits.append(1)

    timer = CancellableTimer(0.05, _cb)
    assert timer.cancel() is True
    assert timer.cancel() is False
    await timer.wait()
    await asyncio.sleep(0.08)

    assert hits == []
    assert timer.cancelled


@pytest.mark.asyncio
async def test_cancel_after_fire_does_not_interrupt_callback():
    started = asyncio.Event()
    finished: list[bool] = []

    async def _cb() -> None:
        started.set()
        await asyncio.sleep(0.02)
        finished.append(True)

    timer = CancellableTimer(0.0, _cb)
    await started.wait()
    assert timer.cancel() is False
    await timer.wait()

    assert finished == [True]


@pytest.mark.asyncio
async def test_callback_error_is_contained():
    async def _cb() -> None:
        raise RuntimeError("boom")

    timer = CancellableTimer(0.0, _cb)
    await timer.wait()
    assert timer.done


@pytest.mark.asyncio
async def test_spawner_tracks_and_joins():
    spawner = TaskSpawner()
    out: list[str] = []

    async def _job(tag: str) -> None:
        await asyncio.sleep(0)
        out.append(tag)

    spawner.spawn(_job("a"), name="a")
    task = spawner.spawn(_job("b"), name="b")
    assert task.get_name() == "b"

    await spawner.join()
    await asyncio.sleep(0)

    assert sorted(out) == ["a", "b"]
    assert spawner._tasks == set()
