import asyncio
import os
import time

import pytest

from media_queue.jobs.bridge import AsyncBridge
from media_queue.storage.scratch import ScratchStore


async def add(a, b):
    await asyncio.sleep(0)
    return a + b


@pytest.mark.asyncio
async def test_bridge_runs_coroutine_for_worker_thread():
    """test a blocking thread can drive a coroutine on the loop"""
    bridge = AsyncBridge(asyncio.get_running_loop())
    result = await asyncio.to_thread(lambda: bridge.run(add(2, 3)))
    assert result == 5


@pytest.mark.asyncio
async def test_bridge_refuses_loop_thread():
    """test calling the bridge from the loop fails instead of deadlocking"""
    bridge = AsyncBridge(asyncio.get_running_loop())
    with pytest.raises(RuntimeError):
        bridge.run(add(1, 1))


@pytest.mark.asyncio
async def test_bridge_propagates_errors():
    bridge = AsyncBridge(asyncio.get_running_loop())

    async def fail():
        raise KeyError("missing")

    with pytest.raises(KeyError):
        await asyncio.to_thread(lambda: bridge.run(fail()))


def test_scratch_write_and_discard(tmp_path):
    """test job files live in their own directory until discarded"""
    store = ScratchStore(base_dir=str(tmp_path))
    path = store.write("job-1", "../../cat.jpg", b"bytes")

    assert path == os.path.join(str(tmp_path), "job-1", "cat.jpg")
    with open(path, "rb") as fh:
        assert fh.read() == b"bytes"

    store.discard("job-1")
    assert not os.path.exists(os.path.join(str(tmp_path), "job-1"))


def test_scratch_cleanup_expired(tmp_path):
    """test only directories older than the ttl are removed"""
    store = ScratchStore(base_dir=str(tmp_path), ttl_hours=1)
    old_dir = store.job_dir("old")
    store.job_dir("fresh")
    stale = time.time() - 2 * 3600
    os.utime(old_dir, (stale, stale))

    assert store.cleanup_expired() == 1
    assert sorted(os.listdir(str(tmp_path))) == ["fresh"]
