"""Single-slot FIFO queue for radio operations.

The Bluetooth adapter handles one discovery or connection at a time; a scan
running while a connect is in flight leaves BlueZ (and CoreBluetooth) in a
confused state. Every radio operation in the process is therefore submitted
to one OperationSerializer, which runs them strictly one after another in
submission order.

The serializer is created once by the process wiring and handed to each
component that touches the radio. It never raises a task's exception into
unrelated callers: each submitter gets its own future and is responsible for
observing the outcome.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

Operation = Callable[[], Awaitable[Any]]


@dataclass
class _Pending:
    operation: Operation
    future: asyncio.Future[Any]
    label: str


class OperationSerializer:
    """Mutual-exclusion task queue with concurrency limit 1.

    Attributes:
        _queue: Admitted operations waiting to run, oldest first.
        _drain_task: Task running queued operations, None when idle.
        _active: Label of the operation currently executing.
    """

    def __init__(self, name: str = "radio") -> None:
        self._name = name
        self._queue: deque[_Pending] = deque()
        self._drain_task: Optional[asyncio.Task[None]] = None
        self._active: Optional[str] = None
        self._closing = False

    def submit(self, operation: Operation, label: str = "") -> asyncio.Future[Any]:
        """Admit an operation and return a future for its result.

        The operation is a zero-argument coroutine function. It runs exactly
        once, after every previously submitted operation has finished,
        whether that one succeeded or raised.

        Args:
            operation: Coroutine function to run.
            label: Short name used in debug logs.

        Returns:
            Future resolved with the operation's return value or exception.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[Any] = loop.create_future()
        self._queue.append(_Pending(operation, future, label or repr(operation)))
        logger.debug(
            "[%s] admitted %s (queued=%d)", self._name, label, len(self._queue)
        )
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = loop.create_task(self._drain())
        return future

    async def run(self, operation: Operation, label: str = "") -> Any:
        """Submit an operation and wait for its result."""
        return await self.submit(operation, label)

    async def _drain(self) -> None:
        while self._queue:
            pending = self._queue.popleft()
            if pending.future.cancelled():
                logger.debug("[%s] skipping cancelled %s", self._name, pending.label)
                continue

            self._active = pending.label
            logger.debug("[%s] running %s", self._name, pending.label)
            try:
                result = await pending.operation()
            except asyncio.CancelledError:
                pending.future.cancel()
                if self._closing:
                    raise
                logger.debug("[%s] %s was cancelled", self._name, pending.label)
            except Exception as e:
                logger.debug("[%s] %s failed: %s", self._name, pending.label, e)
                if not pending.future.done():
                    pending.future.set_exception(e)
            else:
                if not pending.future.done():
                    pending.future.set_result(result)
            finally:
                self._active = None

    @property
    def busy(self) -> bool:
        return self._active is not None

    @property
    def pending(self) -> int:
        return len(self._queue)

    async def close(self) -> None:
        """Cancel the running operation and every queued one."""
        self._closing = True
        while self._queue:
            self._queue.popleft().future.cancel()
        if self._drain_task is not None and not self._drain_task.done():
            self._drain_task.cancel()
            try:
                await self._drain_task
            except asyncio.CancelledError:
                pass
        self._drain_task = None
        self._closing = False
