from __future__ import annotations

import asyncio

import pytest

from orthoiq.agent.background import BackgroundTasks


@pytest.mark.asyncio
async def test_join_waits_for_tasks_spawned_while_waiting() -> None:
    tasks = BackgroundTasks()
    seen = []

    async def child():
        await asyncio.sleep(0.01)
        seen.append("child")

    async def parent():
        await asyncio.sleep(0.01)
        tasks.spawn(child(), name="child")
        seen.append("parent")

    tasks.spawn(parent(), name="parent")

    assert await tasks.join(timeout=2) is True
    assert seen == ["parent", "child"]
    assert tasks.pending == 0


@pytest.mark.asyncio
async def test_failures_are_recorded_not_raised() -> None:
    tasks = BackgroundTasks()

    async def broken():
        raise RuntimeError("ledger unavailable")

    tasks.spawn(broken(), name="fees:c1")
    assert await tasks.join(timeout=2) is True

    (failure,) = tasks.failures
    assert failure.task_name == "fees:c1"
    assert "ledger unavailable" in str(failure)


@pytest.mark.asyncio
async def test_join_timeout_leaves_tasks_running() -> None:
    tasks = BackgroundTasks()
    slow = tasks.spawn(asyncio.sleep(1.0), name="slow")

    assert await tasks.join(timeout=0.02) is False
    assert tasks.pending == 1
    assert not slow.cancelled()
    slow.cancel()


@pytest.mark.asyncio
async def test_track_adopts_finished_task() -> None:
    tasks = BackgroundTasks()
    done = asyncio.ensure_future(asyncio.sleep(0))
    await done

    tasks.track(done)

    assert tasks.pending == 0
