"""Pluggy hook namespace and middleware hook specifications."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pluggy

if TYPE_CHECKING:
    from parley.schema import Activity
    from parley.turn_context import TurnContext
    from parley.types import NextTurn

PARLEY_HOOK_NAMESPACE = "parley"
hookspec = pluggy.HookspecMarker(PARLEY_HOOK_NAMESPACE)
hookimpl = pluggy.HookimplMarker(PARLEY_HOOK_NAMESPACE)


class MiddlewareSpecs:
    """Hook contract for turn middleware."""

    @hookspec
    async def on_turn(self, turn_context: TurnContext, next_turn: NextTurn) -> None:
        """Observe or rewrite one turn; await ``next_turn`` to continue the pipeline."""

    @hookspec
    def on_error(self, stage: str, error: Exception, activity: Activity | None) -> None:
        """Observe turn errors before the adapter's error handler runs."""
