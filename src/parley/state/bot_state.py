"""Cached, hash-diffed bot state scoped by conversation or user."""

from __future__ import annotations

import copy
import json
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Self

from loguru import logger
from pydantic_core import to_jsonable_python

from parley.errors import PropertyNotFoundError, StateKeyError
from parley.state.storage import Storage

if TYPE_CHECKING:
    from collections.abc import Callable

    from parley.turn_context import TurnContext

VALUE_TYPES: tuple[type, ...] = (int, float, bool, complex, Decimal)

_MISSING = object()


def compute_hash(state: Any) -> str:
    """Canonical serialization used to detect unsaved changes."""

    return json.dumps(state, sort_keys=True, default=to_jsonable_python, separators=(",", ":"))


class CachedBotState:
    """Materialized state plus the hash recorded at the last load or save."""

    def __init__(self, state: dict[str, Any] | None = None) -> None:
        self.state: dict[str, Any] = state if state is not None else {}
        self.hash = compute_hash(self.state)

    @property
    def is_changed(self) -> bool:
        return self.hash != compute_hash(self.state)


class BotState(ABC):
    """Base for one persistence scope; the cache lives in the turn's state registry."""

    def __init__(self, storage: Storage, context_service_key: str | None = None) -> None:
        if storage is None:
            raise ValueError("bot state requires a storage")
        self._storage = storage
        self._context_service_key = context_service_key or type(self).__name__

    @property
    def storage(self) -> Storage:
        return self._storage

    def create_property(self, name: str, value_type: type | None = None) -> StatePropertyAccessor:
        if not name or not name.strip():
            raise ValueError("property name must not be empty")
        return StatePropertyAccessor(self, name, value_type)

    def get_cached_state(self, turn_context: TurnContext) -> CachedBotState | None:
        return turn_context.turn_state.get(self._context_service_key)

    def get(self, turn_context: TurnContext) -> dict[str, Any]:
        cached = self.get_cached_state(turn_context)
        return cached.state if cached is not None else {}

    async def load(self, turn_context: TurnContext, force: bool = False) -> None:
        cached = self.get_cached_state(turn_context)
        if cached is not None and not force:
            return
        storage_key = self.get_storage_key(turn_context)
        items = await self._storage.read([storage_key])
        value = items.get(storage_key)
        turn_context.turn_state[self._context_service_key] = CachedBotState(value if value is not None else {})
        logger.debug("state.load scope={} key={} found={}", self._context_service_key, storage_key, value is not None)

    async def save_changes(self, turn_context: TurnContext, force: bool = False) -> None:
        cached = self.get_cached_state(turn_context)
        if cached is None or not (force or cached.is_changed):
            return
        storage_key = self.get_storage_key(turn_context)
        await self._storage.write({storage_key: cached.state})
        cached.hash = compute_hash(cached.state)
        logger.debug("state.save scope={} key={}", self._context_service_key, storage_key)

    async def clear_state(self, turn_context: TurnContext) -> None:
        """Replace the cache with an empty state that always saves."""

        cleared = CachedBotState()
        cleared.hash = ""
        turn_context.turn_state[self._context_service_key] = cleared

    async def delete(self, turn_context: TurnContext) -> None:
        turn_context.turn_state.pop(self._context_service_key)
        storage_key = self.get_storage_key(turn_context)
        await self._storage.delete([storage_key])
        logger.debug("state.delete scope={} key={}", self._context_service_key, storage_key)

    @abstractmethod
    def get_storage_key(self, turn_context: TurnContext) -> str:
        """Derive the storage key of this scope from the turn's activity."""

    async def get_property_value(self, turn_context: TurnContext, name: str) -> Any:
        cached = self.get_cached_state(turn_context)
        if cached is None:
            raise RuntimeError(f"{self._context_service_key} is not loaded")
        return cached.state[name]

    async def set_property_value(self, turn_context: TurnContext, name: str, value: Any) -> None:
        cached = self.get_cached_state(turn_context)
        if cached is None:
            raise RuntimeError(f"{self._context_service_key} is not loaded")
        cached.state[name] = value

    async def delete_property_value(self, turn_context: TurnContext, name: str) -> None:
        cached = self.get_cached_state(turn_context)
        if cached is None:
            raise RuntimeError(f"{self._context_service_key} is not loaded")
        cached.state.pop(name, None)


class StatePropertyAccessor:
    """Named property of a bot state scope; every call loads the scope first."""

    def __init__(self, bot_state: BotState, name: str, value_type: type | None = None) -> None:
        self._bot_state = bot_state
        self.name = name
        self.value_type = value_type

    async def get(self, turn_context: TurnContext, default_factory: Callable[[], Any] | Any = _MISSING) -> Any:
        await self._bot_state.load(turn_context, False)
        try:
            return await self._bot_state.get_property_value(turn_context, self.name)
        except KeyError:
            pass

        if default_factory is _MISSING or default_factory is None:
            if isinstance(self.value_type, type) and issubclass(self.value_type, VALUE_TYPES):
                raise PropertyNotFoundError(self.name) from None
            return None

        value = default_factory() if callable(default_factory) else copy.deepcopy(default_factory)
        await self.set(turn_context, value)
        return value

    async def set(self, turn_context: TurnContext, value: Any) -> None:
        await self._bot_state.load(turn_context, False)
        await self._bot_state.set_property_value(turn_context, self.name, value)

    async def delete(self, turn_context: TurnContext) -> None:
        await self._bot_state.load(turn_context, False)
        await self._bot_state.delete_property_value(turn_context, self.name)


class ConversationState(BotState):
    """State shared by everyone in a conversation."""

    def __init__(self, storage: Storage) -> None:
        super().__init__(storage, "ConversationState")

    def get_storage_key(self, turn_context: TurnContext) -> str:
        activity = turn_context.activity
        channel_id = activity.channel_id
        conversation_id = activity.conversation.id if activity.conversation else None
        if not channel_id:
            raise StateKeyError("invalid activity: missing channel_id")
        if not conversation_id:
            raise StateKeyError("invalid activity: missing conversation.id")
        return f"{channel_id}/conversations/{conversation_id}"


class UserState(BotState):
    """State that follows a user across conversations on one channel."""

    def __init__(self, storage: Storage) -> None:
        super().__init__(storage, "UserState")

    def get_storage_key(self, turn_context: TurnContext) -> str:
        activity = turn_context.activity
        channel_id = activity.channel_id
        user_id = activity.from_property.id if activity.from_property else None
        if not channel_id:
            raise StateKeyError("invalid activity: missing channel_id")
        if not user_id:
            raise StateKeyError("invalid activity: missing from.id")
        return f"{channel_id}/users/{user_id}"


class PrivateConversationState(BotState):
    """State private to one user inside one conversation."""

    def __init__(self, storage: Storage) -> None:
        super().__init__(storage, "PrivateConversationState")

    def get_storage_key(self, turn_context: TurnContext) -> str:
        activity = turn_context.activity
        channel_id = activity.channel_id
        conversation_id = activity.conversation.id if activity.conversation else None
        user_id = activity.from_property.id if activity.from_property else None
        if not channel_id:
            raise StateKeyError("invalid activity: missing channel_id")
        if not conversation_id:
            raise StateKeyError("invalid activity: missing conversation.id")
        if not user_id:
            raise StateKeyError("invalid activity: missing from.id")
        return f"{channel_id}/conversations/{conversation_id}/users/{user_id}"


class BotStateSet:
    """Load or save several state scopes together."""

    def __init__(self, *bot_states: BotState) -> None:
        self.bot_states: list[BotState] = list(bot_states)

    def add(self, bot_state: BotState) -> Self:
        if bot_state is None:
            raise ValueError("bot_state must not be None")
        self.bot_states.append(bot_state)
        return self

    async def load_all(self, turn_context: TurnContext, force: bool = False) -> None:
        for bot_state in self.bot_states:
            await bot_state.load(turn_context, force)

    async def save_all_changes(self, turn_context: TurnContext, force: bool = False) -> None:
        for bot_state in self.bot_states:
            await bot_state.save_changes(turn_context, force)
