"""Background worker bookkeeping shared by the adapter and its middleware."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine
from typing import Any

from loguru import logger

type WorkerFactory = Callable[[], Coroutine[Any, Any, None]]


class WorkerRegistry:
    """Typing workers keyed by conversation id, plus fire-and-forget tasks.

    Typing workers are stopped with cancel-and-await so none of them can
    emit an activity after the turn that started it is over. Detached
    tasks are only held until they finish.
    """

    def __init__(self) -> None:
        self._typing: dict[str, asyncio.Task[None]] = {}
        self._background: set[asyncio.Task[Any]] = set()

    @property
    def active_conversations(self) -> list[str]:
        return [key for key, task in self._typing.items() if not task.done()]

    @property
    def background_count(self) -> int:
        return len(self._background)

    async def start_typing(self, conversation_id: str, factory: WorkerFactory) -> asyncio.Task[None]:
        await self.stop_typing(conversation_id)
        task = asyncio.create_task(factory(), name=f"parley.typing:{conversation_id}")
        self._typing[conversation_id] = task
        logger.debug("typing.worker.start conversation={}", conversation_id)
        return task

    async def stop_typing(self, conversation_id: str) -> None:
        task = self._typing.pop(conversation_id, None)
        if task is None:
            return
        if not task.done():
            task.cancel()
            await asyncio.wait([task])
        logger.debug("typing.worker.stop conversation={}", conversation_id)

    async def stop_all_typing(self) -> None:
        for conversation_id in list(self._typing):
            await self.stop_typing(conversation_id)

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task[Any]:
        """Run ``coro`` detached from the current turn."""

        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for detached tasks; cancel whatever is still running after ``timeout``."""

        pending = set(self._background)
        if not pending:
            return
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.wait(still_running)
            logger.info("workers.drain.cancelled count={}", len(still_running))

    async def shutdown(self) -> None:
        await self.stop_all_typing()
        await self.drain(timeout=0)
