from __future__ import annotations

import asyncio
import json
import logging
from typing import Awaitable, Set


class BackgroundTasks:
    """Fire-and-forget runner for post-response work (usage accounting, learning queue, metrics).

    Tasks keep a strong reference until done; failures are logged, never raised to the request.
    """

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, coro: Awaitable, *, name: str) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._done(t, name))
        return task

    def _done(self, task: asyncio.Task, name: str) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logging.warning(
                json.dumps(
                    {"event": "background_task_failed", "task": name, "error": str(exc)},
                    ensure_ascii=False,
                )
            )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
