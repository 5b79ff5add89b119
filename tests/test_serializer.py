"""Tests for the radio operation serializer."""

from __future__ import annotations

import asyncio

import pytest

from wave_plus_monitor.serializer import OperationSerializer


class TestOperationSerializer:
    """Test FIFO ordering and failure isolation."""

    @pytest.mark.asyncio
    async def test_fifo_without_overlap(self) -> None:
        """Test tasks complete in admission order, one at a time, despite failures."""
        serializer = OperationSerializer()
        completed: list[int] = []
        running = 0
        max_running = 0

        def make_task(k: int):
            async def task() -> int:
                nonlocal running, max_running
                running += 1
                max_running = max(max_running, running)
                try:
                    # Earlier tasks sleep longer, so overlap would reorder them
                    await asyncio.sleep(0.01 * (6 - k))
                    completed.append(k)
                    if k == 3:
                        raise RuntimeError("task 3 failed")
                    return k
                finally:
                    running -= 1

            return task

        futures = [serializer.submit(make_task(k), label=f"task-{k}") for k in range(1, 6)]
        results = await asyncio.gather(*futures, return_exceptions=True)

        assert completed == [1, 2, 3, 4, 5]
        assert max_running == 1
        assert results[0] == 1
        assert isinstance(results[2], RuntimeError)
        assert results[4] == 5

    @pytest.mark.asyncio
    async def test_failure_only_reaches_its_submitter(self) -> None:
        """Test a failing task does not affect the next caller."""
        serializer = OperationSerializer()

        async def boom() -> None:
            raise ValueError("boom")

        async def ok() -> str:
            return "ok"

        failing = serializer.submit(boom)
        assert await serializer.run(ok) == "ok"
        with pytest.raises(ValueError, match="boom"):
            await failing

    @pytest.mark.asyncio
    async def test_busy_and_pending(self) -> None:
        """Test introspection while an operation runs."""
        serializer = OperationSerializer()
        release = asyncio.Event()

        async def blocker() -> None:
            await release.wait()

        async def noop() -> None:
            return None

        first = serializer.submit(blocker, label="blocker")
        second = serializer.submit(noop, label="noop")
        await asyncio.sleep(0)

        assert serializer.busy
        assert serializer.pending == 1

        release.set()
        await asyncio.gather(first, second)
        assert not serializer.busy
        assert serializer.pending == 0

    @pytest.mark.asyncio
    async def test_close_cancels_queued(self) -> None:
        """Test close() cancels running and queued operations."""
        serializer = OperationSerializer()

        async def forever() -> None:
            await asyncio.Event().wait()

        running = serializer.submit(forever)
        queued = serializer.submit(forever)
        await asyncio.sleep(0)

        await serializer.close()

        assert running.cancelled()
        assert queued.cancelled()

    @pytest.mark.asyncio
    async def test_usable_after_idle(self) -> None:
        """Test a drained serializer restarts on the next submission."""
        serializer = OperationSerializer()

        async def value() -> int:
            return 42

        assert await serializer.run(value) == 42
        await asyncio.sleep(0)
        assert await serializer.run(value) == 42
