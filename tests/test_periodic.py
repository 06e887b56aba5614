"""Tests for the periodic task."""

import asyncio

import pytest

from gmail_phish_guard.periodic import PeriodicTask


@pytest.mark.asyncio
async def test_runs_repeatedly_until_stopped():
    calls = []
    done = asyncio.Event()

    async def tick():
        calls.append(1)
        if len(calls) >= 3:
            done.set()

    task = PeriodicTask(name="test")
    task.start(0.01, tick, initial_delay=0)
    await asyncio.wait_for(done.wait(), timeout=2)
    await task.stop()

    assert len(calls) >= 3
    assert not task.running


@pytest.mark.asyncio
async def test_failures_do_not_stop_the_loop():
    calls = []
    done = asyncio.Event()

    async def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("boom")
        done.set()

    task = PeriodicTask(name="test")
    task.start(0.01, flaky, initial_delay=0)
    await asyncio.wait_for(done.wait(), timeout=2)
    await task.stop()

    assert len(calls) >= 2


@pytest.mark.asyncio
async def test_start_twice_is_a_no_op():
    async def noop():
        pass

    task = PeriodicTask(name="test")
    task.start(60, noop)
    first = task._task
    task.start(60, noop)
    assert task._task is first
    await task.stop()


@pytest.mark.asyncio
async def test_stop_before_first_run():
    calls = []

    async def tick():
        calls.append(1)

    task = PeriodicTask(name="test")
    task.start(60, tick, initial_delay=60)
    await task.stop()

    assert calls == []


@pytest.mark.asyncio
async def test_rejects_non_positive_interval():
    async def noop():
        pass

    with pytest.raises(ValueError):
        PeriodicTask().start(0, noop)


@pytest.mark.asyncio
async def test_stop_without_start():
    await PeriodicTask().stop()
