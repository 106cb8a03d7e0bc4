"""
Fleet Uplink -- explicit observer registration.

A :class:`Listeners` instance is a named, ordered list of callbacks.  The
connection manager exposes one per notification (connected, disconnected,
authenticated, error, status-changed) and fires them *outside* any held
lock.

Callbacks may be plain functions or coroutine functions.  Plain callbacks
run inline in registration order; coroutine callbacks are scheduled as
tasks on the running loop so a slow subscriber (e.g. a cache flush) never
stalls the caller.  A failing callback is logged and does not prevent the
remaining callbacks from running.

Usage::

    on_authenticated = Listeners("authenticated")
    on_authenticated.add(coordinator.flush_all)
    on_authenticated.fire()
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)


class Listeners:
    """Ordered callback registry with exception isolation."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._callbacks: list[Callable[..., Any]] = []
        self._tasks: set[asyncio.Task[Any]] = set()

    def add(self, callback: Callable[..., Any]) -> Callable[..., Any]:
        """Register *callback*; returns it so this can be used as a decorator."""
        self._callbacks.append(callback)
        return callback

    def remove(self, callback: Callable[..., Any]) -> None:
        """Unregister *callback*.  Removing an unknown callback is a no-op."""
        try:
            self._callbacks.remove(callback)
        except ValueError:
            pass

    def clear(self) -> None:
        self._callbacks.clear()

    def __len__(self) -> int:
        return len(self._callbacks)

    @property
    def pending_tasks(self) -> set[asyncio.Task[Any]]:
        """Coroutine callbacks that have been scheduled but not finished."""
        return set(self._tasks)

    def fire(self, *args: Any) -> None:
        """Invoke every registered callback with *args*."""
        for callback in list(self._callbacks):
            try:
                result = callback(*args)
            except Exception as exc:
                logger.error(
                    "Listener %r for %s raised: %s",
                    callback,
                    self.name,
                    exc,
                    exc_info=True,
                )
                continue

            if inspect.isawaitable(result):
                self._schedule(result)

    async def wait(self) -> None:
        """Wait for all scheduled coroutine callbacks to finish (tests, shutdown)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _schedule(self, awaitable: Any) -> None:
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Async listener for %s raised: %s",
                self.name,
                exc,
                exc_info=exc,
            )
