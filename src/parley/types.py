"""Callable aliases shared across the turn engine."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from parley.schema import Activity, ConversationReference, ResourceResponse
    from parley.turn_context import TurnContext

type BotCallback = Callable[[TurnContext], Awaitable[Any]]
type TurnErrorHandler = Callable[[TurnContext, Exception], Awaitable[None]]
type NextTurn = Callable[[], Awaitable[None]]

type SendNext = Callable[[], Awaitable[list[ResourceResponse]]]
type UpdateNext = Callable[[], Awaitable[ResourceResponse | None]]
type DeleteNext = Callable[[], Awaitable[None]]

type SendActivitiesHandler = Callable[[TurnContext, list[Activity], SendNext], Awaitable[list[ResourceResponse]]]
type UpdateActivityHandler = Callable[[TurnContext, Activity, UpdateNext], Awaitable[ResourceResponse | None]]
type DeleteActivityHandler = Callable[[TurnContext, ConversationReference, DeleteNext], Awaitable[None]]
