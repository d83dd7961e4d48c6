"""Middleware pipeline backed by a pluggy plugin manager."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Self

import pluggy
from loguru import logger

from parley.hookspecs import PARLEY_HOOK_NAMESPACE, MiddlewareSpecs, hookimpl
from parley.state import BotStateSet

if TYPE_CHECKING:
    from parley.schema import Activity
    from parley.state.bot_state import BotState
    from parley.turn_context import TurnContext
    from parley.types import BotCallback, NextTurn

type MiddlewareFunction = Callable[[TurnContext, NextTurn], Awaitable[None]]


class CallableMiddleware:
    """Adapt a bare ``async (turn_context, next_turn)`` function into a middleware plugin."""

    def __init__(self, function: MiddlewareFunction) -> None:
        self._function = function

    @hookimpl
    async def on_turn(self, turn_context: TurnContext, next_turn: NextTurn) -> None:
        await self._function(turn_context, next_turn)

    def __repr__(self) -> str:
        return f"CallableMiddleware({getattr(self._function, '__qualname__', self._function)!r})"


class MiddlewareSet:
    """Ordered middleware; each one may call ``next_turn`` or short-circuit the turn."""

    def __init__(self) -> None:
        self._plugin_manager = pluggy.PluginManager(PARLEY_HOOK_NAMESPACE)
        self._plugin_manager.add_hookspecs(MiddlewareSpecs)
        self._registered = 0

    def use(self, middleware: Any) -> Self:
        """Register a middleware plugin, or a bare async function, after the existing ones."""

        if not _has_hookimpl(middleware):
            if not callable(middleware):
                raise TypeError(f"{middleware!r} is neither a middleware plugin nor a callable")
            middleware = CallableMiddleware(middleware)
        self._registered += 1
        name = f"{self._registered}:{type(middleware).__name__}"
        self._plugin_manager.register(middleware, name=name)
        logger.debug("middleware.registered name={}", name)
        return self

    def __len__(self) -> int:
        return len(self._iter_hookimpls("on_turn"))

    async def receive_activity(self, turn_context: TurnContext) -> None:
        await self.receive_activity_with_status(turn_context, None)

    async def receive_activity_with_status(self, turn_context: TurnContext, callback: BotCallback | None) -> None:
        """Run every middleware in registration order, then ``callback``."""

        impls = self._iter_hookimpls("on_turn")

        async def run(index: int) -> None:
            if index == len(impls):
                if callback is not None:
                    await callback(turn_context)
                return
            impl = impls[index]
            call_kwargs = {"turn_context": turn_context, "next_turn": lambda: run(index + 1)}
            value = impl.function(**_kwargs_for_impl(impl, call_kwargs))
            if inspect.isawaitable(value):
                await value

        await run(0)

    async def notify_error(self, *, stage: str, error: Exception, activity: Activity | None) -> None:
        """Call on_error hooks, swallowing observer failures."""

        for impl in self._iter_hookimpls("on_error"):
            call_kwargs = {"stage": stage, "error": error, "activity": activity}
            try:
                value = impl.function(**_kwargs_for_impl(impl, call_kwargs))
                if inspect.isawaitable(value):
                    await value
            except Exception:
                logger.opt(exception=True).warning(
                    "middleware.on_error_failed stage={} middleware={}",
                    stage,
                    impl.plugin_name or "<unknown>",
                )

    def hook_report(self) -> dict[str, list[str]]:
        """Build a hook->middleware mapping for diagnostics."""

        report: dict[str, list[str]] = {}
        for hook_name in ("on_turn", "on_error"):
            names = [impl.plugin_name for impl in self._iter_hookimpls(hook_name)]
            if names:
                report[hook_name] = names
        return report

    def _iter_hookimpls(self, hook_name: str) -> list[Any]:
        hook = getattr(self._plugin_manager.hook, hook_name, None)
        if hook is None or not hasattr(hook, "get_hookimpls"):
            return []
        # pluggy keeps registration order here; it is the order the turn runs in.
        return list(hook.get_hookimpls())


class AutoSaveStateMiddleware:
    """Save every registered bot state once the rest of the turn completes."""

    def __init__(self, *bot_states: BotState) -> None:
        self.bot_state_set = BotStateSet(*bot_states)

    def add(self, bot_state: BotState) -> Self:
        self.bot_state_set.add(bot_state)
        return self

    @hookimpl
    async def on_turn(self, turn_context: TurnContext, next_turn: NextTurn) -> None:
        await next_turn()
        await self.bot_state_set.save_all_changes(turn_context, False)


def _has_hookimpl(candidate: Any) -> bool:
    method = getattr(candidate, "on_turn", None) or getattr(candidate, "on_error", None)
    if method is None:
        return False
    return getattr(method, f"{PARLEY_HOOK_NAMESPACE}_impl", None) is not None


def _kwargs_for_impl(impl: Any, kwargs: dict[str, Any]) -> dict[str, Any]:
    return {name: kwargs[name] for name in impl.argnames if name in kwargs}
