"""
Tests for the keyed work queue.
"""
import asyncio

import pytest

from rds_operator.core.work_queue import KeyedWorkQueue


def recorder(log, label, delay=0.0, fail=False):
    async def job():
        log.append(("start", label))
        await asyncio.sleep(delay)
        log.append(("end", label))
        if fail:
            raise RuntimeError(f"{label} failed")

    return job


@pytest.mark.asyncio
async def test_same_key_runs_in_order_one_at_a_time():
    queue = KeyedWorkQueue(max_workers=4)
    log = []
    queue.start()
    try:
        queue.add("default/db1", recorder(log, 1, delay=0.02), "first")
        queue.add("default/db1", recorder(log, 2), "second")
        queue.add("default/db1", recorder(log, 3), "third")
        await asyncio.wait_for(queue.join(), timeout=5)
    finally:
        await queue.stop()

    assert log == [("start", 1), ("end", 1), ("start", 2), ("end", 2), ("start", 3), ("end", 3)]


@pytest.mark.asyncio
async def test_distinct_keys_run_in_parallel():
    queue = KeyedWorkQueue(max_workers=2)
    running = 0
    peak = 0

    async def job():
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.05)
        running -= 1

    queue.start()
    try:
        queue.add("default/db1", job)
        queue.add("default/db2", job)
        await asyncio.wait_for(queue.join(), timeout=5)
    finally:
        await queue.stop()

    assert peak == 2


@pytest.mark.asyncio
async def test_single_worker_preserves_global_order():
    queue = KeyedWorkQueue(max_workers=1)
    log = []
    queue.start()
    try:
        queue.add("default/db1", recorder(log, "a", delay=0.01))
        queue.add("default/db2", recorder(log, "b"))
        await asyncio.wait_for(queue.join(), timeout=5)
    finally:
        await queue.stop()

    assert log == [("start", "a"), ("end", "a"), ("start", "b"), ("end", "b")]


@pytest.mark.asyncio
async def test_failing_job_does_not_stop_the_queue():
    queue = KeyedWorkQueue(max_workers=1)
    log = []
    queue.start()
    try:
        queue.add("default/db1", recorder(log, 1, fail=True))
        queue.add("default/db1", recorder(log, 2))
        await asyncio.wait_for(queue.join(), timeout=5)
    finally:
        await queue.stop()

    assert ("end", 2) in log
    assert queue.pending_count() == 0


@pytest.mark.asyncio
async def test_items_added_while_key_is_active_are_drained():
    queue = KeyedWorkQueue(max_workers=2)
    log = []
    queue.start()
    try:
        queue.add("default/db1", recorder(log, 1, delay=0.03))
        await asyncio.sleep(0.01)
        assert queue.is_active("default/db1")
        queue.add("default/db1", recorder(log, 2))
        await asyncio.wait_for(queue.join(), timeout=5)
    finally:
        await queue.stop()

    assert log == [("start", 1), ("end", 1), ("start", 2), ("end", 2)]
    assert not queue.is_active("default/db1")


def test_rejects_zero_workers():
    with pytest.raises(ValueError):
        KeyedWorkQueue(max_workers=0)
