"""Middleware that keeps a typing indicator alive while the bot works on a message."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import TYPE_CHECKING

from loguru import logger

from parley.hookspecs import hookimpl
from parley.schema import Activity, ActivityTypes, ResourceResponse
from parley.workers import WorkerRegistry

if TYPE_CHECKING:
    from parley.turn_context import TurnContext
    from parley.types import NextTurn, SendNext


class ShowTypingMiddleware:
    """Send ``typing`` activities until the bot's first message of the turn.

    The first indicator goes out after ``delay`` seconds, then one every
    ``period`` seconds. The worker is stopped on the first outbound
    message and always when the turn ends.
    """

    def __init__(self, delay: float = 0.5, period: float = 2.0, workers: WorkerRegistry | None = None) -> None:
        if delay < 0:
            raise ValueError("delay must be greater than or equal to zero")
        if period <= 0:
            raise ValueError("period must be greater than zero")
        self.delay = delay
        self.period = period
        self._workers = workers
        self._fallback_workers = WorkerRegistry()

    @hookimpl
    async def on_turn(self, turn_context: TurnContext, next_turn: NextTurn) -> None:
        activity = turn_context.activity
        conversation_id = activity.conversation.id if activity.conversation else None
        if activity.type != ActivityTypes.MESSAGE or not conversation_id or _is_skill_turn(turn_context):
            await next_turn()
            return

        workers = self._resolve_workers(turn_context)
        await workers.start_typing(conversation_id, lambda: self._typing_loop(turn_context, conversation_id))

        async def stop_on_message(
            context: TurnContext, activities: Sequence[Activity], send_next: SendNext
        ) -> list[ResourceResponse]:
            if any(item.type == ActivityTypes.MESSAGE for item in activities):
                await workers.stop_typing(conversation_id)
            return await send_next()

        turn_context.on_send_activities(stop_on_message)
        try:
            await next_turn()
        finally:
            await workers.stop_typing(conversation_id)

    async def _typing_loop(self, turn_context: TurnContext, conversation_id: str) -> None:
        try:
            await asyncio.sleep(self.delay)
            while not turn_context.closed:
                typing = Activity(type=ActivityTypes.TYPING, relates_to=turn_context.activity.relates_to)
                typing.apply_conversation_reference(turn_context.get_conversation_reference())
                await turn_context.adapter.send_activities(turn_context, [typing])
                await asyncio.sleep(self.period)
        except asyncio.CancelledError:
            return
        except Exception:
            logger.exception("typing.loop.error conversation={}", conversation_id)
            return

    def _resolve_workers(self, turn_context: TurnContext) -> WorkerRegistry:
        if self._workers is not None:
            return self._workers
        adapter_workers = getattr(turn_context.adapter, "workers", None)
        if isinstance(adapter_workers, WorkerRegistry):
            return adapter_workers
        return self._fallback_workers


def _is_skill_turn(turn_context: TurnContext) -> bool:
    identity = turn_context.turn_state.identity
    return identity is not None and identity.is_skill_claim()
