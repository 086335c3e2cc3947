"""Executors that spawn tunnel tasks on the event loop."""

from __future__ import annotations

import asyncio
import weakref
from collections.abc import Awaitable, Coroutine
from typing import Any


class TaskExecutor:
    """Spawns tasks on an event loop (the running one by default)."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Run ``coro`` as a task; the task can be cancelled to abort it."""
        loop = self._loop or asyncio.get_running_loop()
        return loop.create_task(coro)

    def ref_clone(self) -> TaskExecutor:
        """An executor handle sharing this one's loop."""
        return self


async def _discard_result(awaitable: Awaitable[Any]) -> None:
    await awaitable


async def _pending_forever() -> None:
    await asyncio.get_running_loop().create_future()


class _TaskSet:
    def __init__(self) -> None:
        self.tasks: set[asyncio.Task] = set()

    def spawn(self, awaitable: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(_discard_result(awaitable))
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)
        return task

    def abort_all(self) -> None:
        for task in list(self.tasks):
            if not task.done() and not task.get_loop().is_closed():
                task.cancel()


class JoinSetExecutor:
    """Tracks every task it spawns and cancels them all on abort or disposal."""

    def __init__(self) -> None:
        self._tasks = _TaskSet()
        weakref.finalize(self, self._tasks.abort_all)

    def spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        """Run ``coro`` as a tracked task; its result is discarded."""
        return self._tasks.spawn(coro)

    def abort_all(self) -> None:
        """Cancel every task still running."""
        self._tasks.abort_all()

    def ref_clone(self) -> JoinSetExecutorRef:
        """A weak handle that spawns here while this executor is alive."""
        return JoinSetExecutorRef(self)

    def __enter__(self) -> JoinSetExecutor:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.abort_all()


class JoinSetExecutorRef:
    """Weak handle to a :class:`JoinSetExecutor`.

    Once the executor is gone, spawning runs nothing and returns a task
    that was cancelled along with the executor.
    """

    def __init__(self, executor: JoinSetExecutor) -> None:
        self._default_abort_handle = executor.spawn(_pending_forever())
        self._executor = weakref.ref(executor)

    def spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        """Spawn on the executor if it still exists."""
        executor = self._executor()
        if executor is None:
            close = getattr(coro, "close", None)
            if close is not None:
                close()
            return self._default_abort_handle
        return executor.spawn(coro)