"""Tracked fire-and-forget tasks with an error boundary and a completion signal."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Coroutine


class BackgroundTaskGroup:
    """Owns detached tasks so they are never garbage collected mid-flight.

    Failures are logged through ``error_logger`` and counted; they never
    reach the code that spawned the task. ``drain()`` waits for everything
    spawned so far, ``close()`` waits with a timeout and cancels stragglers.
    """

    def __init__(self, name: str, error_logger: logging.Logger | None = None) -> None:
        self.name = name
        self.error_logger = error_logger or logging.getLogger(__name__)
        self._pending_tasks: set[asyncio.Task[Any]] = set()
        self.failures = 0
        self._closed = False

    def __len__(self) -> int:
        return len(self._pending_tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], *, label: str) -> asyncio.Task[Any] | None:
        """Schedule ``coro`` as a tracked task.

        Returns:
            The task, or None when the group is closed (the coroutine is closed unawaited).

        """
        if self._closed:
            coro.close()
            self.error_logger.debug("[%s] Dropping '%s': task group closed", self.name, label)
            return None
        task = asyncio.create_task(coro, name=f"{self.name}:{label}")
        self._pending_tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._pending_tasks.discard(task)
        if task.cancelled():
            return
        if (exc := task.exception()) is not None:
            self.failures += 1
            self.error_logger.warning(
                "[%s] Background task %s failed: %s: %s",
                self.name,
                task.get_name(),
                type(exc).__name__,
                exc,
            )

    async def drain(self) -> None:
        """Wait until every task spawned so far (and any they spawn) has finished."""
        while self._pending_tasks:
            await asyncio.gather(*list(self._pending_tasks), return_exceptions=True)

    async def close(self, timeout: float = 5.0) -> None:
        """Stop accepting work, wait up to ``timeout`` seconds, then cancel what is left."""
        self._closed = True
        if not self._pending_tasks:
            return
        pending = list(self._pending_tasks)
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        if still_running:
            self.error_logger.warning(
                "[%s] Cancelling %d background task(s) that exceeded %.1fs shutdown timeout",
                self.name,
                len(still_running),
                timeout,
            )
            for task in still_running:
                task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await asyncio.gather(*still_running, return_exceptions=True)
        self._pending_tasks.clear()
