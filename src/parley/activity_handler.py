"""Table-based activity dispatcher.

``ActivityHandler`` routes each turn to exactly one top-level hook chosen
by activity type. The routing hooks for composite kinds
(conversation updates, reactions, events, invokes, installation updates)
fan out further to leaf hooks. Every hook is a plain async callable in a
table; bots customize behaviour with ``on`` (replace) and ``wrap``
(decorate with access to the previous hook)::

    handler = ActivityHandler()

    @handler.on("message_activity")
    async def echo(turn_context):
        await turn_context.send_activity(f"echo: {turn_context.activity.text}")

The handler instance itself is the bot callback passed to the adapter.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from http import HTTPStatus
from typing import TYPE_CHECKING, Any, ClassVar

from loguru import logger
from pydantic import ValidationError

from parley.errors import InvokeError, MissingActivityError, MissingTypeError
from parley.schema import (
    ActivityTypes,
    AdaptiveCardInvokeValue,
    Channels,
    InvokeNames,
    InvokeResponse,
    SearchInvokeValue,
    SignInConstants,
    invoke_response_activity,
)

if TYPE_CHECKING:
    from parley.turn_context import TurnContext

type Hook = Callable[..., Awaitable[Any]]

ADAPTIVE_CARD_EXECUTE_ACTION = "Action.Execute"


def chain(*hooks: Hook) -> Hook:
    """Combine hooks that take the same arguments; the last non-``None`` result wins."""

    async def chained(*args: Any) -> Any:
        result = None
        for hook in hooks:
            value = await hook(*args)
            if value is not None:
                result = value
        return result

    return chained


class ActivityHandler:
    """Dispatch one turn to the hook registered for the activity's type."""

    ROUTES: ClassVar[dict[str, str]] = {
        ActivityTypes.MESSAGE: "message_activity",
        ActivityTypes.MESSAGE_UPDATE: "message_update_activity",
        ActivityTypes.MESSAGE_DELETE: "message_delete_activity",
        ActivityTypes.CONVERSATION_UPDATE: "conversation_update_activity",
        ActivityTypes.MESSAGE_REACTION: "message_reaction_activity",
        ActivityTypes.EVENT: "event_activity",
        ActivityTypes.INVOKE: "invoke_activity",
        ActivityTypes.END_OF_CONVERSATION: "end_of_conversation_activity",
        ActivityTypes.TYPING: "typing_activity",
        ActivityTypes.INSTALLATION_UPDATE: "installation_update_activity",
        ActivityTypes.COMMAND: "command_activity",
        ActivityTypes.COMMAND_RESULT: "command_result_activity",
    }
    UNRECOGNIZED = "unrecognized_activity_type"

    def __init__(self) -> None:
        self._hooks: dict[str, Hook] = {
            # Top-level routes, one per activity type.
            "message_activity": _noop,
            "message_update_activity": _noop,
            "message_delete_activity": _noop,
            "conversation_update_activity": self._dispatch_conversation_update,
            "message_reaction_activity": self._dispatch_message_reaction,
            "event_activity": self._dispatch_event,
            "invoke_activity": self._dispatch_invoke,
            "end_of_conversation_activity": _noop,
            "typing_activity": _noop,
            "installation_update_activity": self._dispatch_installation_update,
            "command_activity": _noop,
            "command_result_activity": _noop,
            self.UNRECOGNIZED: _noop,
            # Leaves.
            "members_added": _noop,
            "members_removed": _noop,
            "reactions_added": _noop,
            "reactions_removed": _noop,
            "token_response_event": _noop,
            "event": _noop,
            "search_invoke": _not_implemented,
            "adaptive_card_invoke": _not_implemented,
            "sign_in_invoke": _not_implemented,
            "healthcheck": _healthcheck,
            "installation_update_add": _noop,
            "installation_update_remove": _noop,
        }

    @property
    def hook_names(self) -> list[str]:
        return sorted(self._hooks)

    def hook(self, name: str) -> Hook:
        try:
            return self._hooks[name]
        except KeyError:
            raise KeyError(f"unknown activity handler hook: {name}") from None

    def on(self, name: str) -> Callable[[Hook], Hook]:
        """Replace the hook ``name`` with the decorated function."""

        self.hook(name)

        def decorator(function: Hook) -> Hook:
            self._hooks[name] = function
            return function

        return decorator

    def wrap(self, name: str) -> Callable[[Callable[..., Awaitable[Any]]], Hook]:
        """Install ``function(*args, base)`` in front of the current hook ``name``."""

        base = self.hook(name)

        def decorator(function: Callable[..., Awaitable[Any]]) -> Hook:
            async def wrapped(*args: Any) -> Any:
                return await function(*args, base)

            self._hooks[name] = wrapped
            return wrapped

        return decorator

    async def __call__(self, turn_context: TurnContext) -> None:
        await self.on_turn(turn_context)

    async def on_turn(self, turn_context: TurnContext) -> None:
        if turn_context is None:
            raise ValueError("on_turn requires a turn context")
        activity = turn_context.activity
        if activity is None:
            raise MissingActivityError()
        if not activity.type:
            raise MissingTypeError()

        route = self.ROUTES.get(activity.type, self.UNRECOGNIZED)
        logger.debug("handler.dispatch type={} route={}", activity.type, route)
        if activity.type != ActivityTypes.INVOKE:
            await self._hooks[route](turn_context)
            return

        try:
            response = await self._hooks[route](turn_context)
        except InvokeError as exc:
            response = exc.to_invoke_response()
        if response is None:
            response = InvokeResponse(status=200)
        # A hook may already have sent its own invoke response.
        if turn_context.turn_state.invoke_response is None:
            await turn_context.send_activity(invoke_response_activity(response))

    async def _dispatch_conversation_update(self, turn_context: TurnContext) -> None:
        activity = turn_context.activity
        bot_id = activity.recipient.id if activity.recipient else None
        added = [member for member in activity.members_added or [] if member.id != bot_id]
        removed = [member for member in activity.members_removed or [] if member.id != bot_id]
        if added:
            await self._hooks["members_added"](turn_context, added)
        elif removed:
            await self._hooks["members_removed"](turn_context, removed)

    async def _dispatch_message_reaction(self, turn_context: TurnContext) -> None:
        activity = turn_context.activity
        if activity.reactions_added:
            await self._hooks["reactions_added"](turn_context, activity.reactions_added)
        if activity.reactions_removed:
            await self._hooks["reactions_removed"](turn_context, activity.reactions_removed)

    async def _dispatch_event(self, turn_context: TurnContext) -> None:
        if turn_context.activity.name == SignInConstants.TOKEN_RESPONSE_EVENT_NAME:
            await self._hooks["token_response_event"](turn_context)
        else:
            await self._hooks["event"](turn_context)

    async def _dispatch_invoke(self, turn_context: TurnContext) -> InvokeResponse | None:
        activity = turn_context.activity
        match activity.name:
            case InvokeNames.ADAPTIVE_CARD_ACTION:
                value = _adaptive_card_invoke_value(activity.value)
                return await self._hooks["adaptive_card_invoke"](turn_context, value)
            case InvokeNames.SEARCH:
                value = _search_invoke_value(activity.value, activity.channel_id)
                return await self._hooks["search_invoke"](turn_context, value)
            case SignInConstants.VERIFY_STATE_OPERATION_NAME | SignInConstants.TOKEN_EXCHANGE_OPERATION_NAME:
                await self._hooks["sign_in_invoke"](turn_context)
                return InvokeResponse(status=200)
            case InvokeNames.HEALTH_CHECK:
                return InvokeResponse(status=200, body=await self._hooks["healthcheck"](turn_context))
            case _:
                raise InvokeError(HTTPStatus.NOT_IMPLEMENTED)

    async def _dispatch_installation_update(self, turn_context: TurnContext) -> None:
        match (turn_context.activity.action or "").lower():
            case "add" | "add-upgrade":
                await self._hooks["installation_update_add"](turn_context)
            case "remove" | "remove-upgrade":
                await self._hooks["installation_update_remove"](turn_context)


async def _noop(*args: Any) -> None:
    return None


async def _not_implemented(*args: Any) -> InvokeResponse:
    raise InvokeError(HTTPStatus.NOT_IMPLEMENTED)


async def _healthcheck(turn_context: TurnContext) -> dict[str, Any]:
    return {"healthResults": {"success": True, "messages": ["Health check succeeded."]}}


def _bad_request(message: str, code: str = "BadRequest") -> InvokeError:
    return InvokeError(HTTPStatus.BAD_REQUEST, code=code, message=message)


def _adaptive_card_invoke_value(raw: Any) -> AdaptiveCardInvokeValue:
    if raw is None:
        raise _bad_request("Missing value property")
    try:
        value = AdaptiveCardInvokeValue.model_validate(raw)
    except ValidationError:
        raise _bad_request("Value property is not properly formed") from None
    if value.action is None:
        raise _bad_request("Missing action property")
    if value.action.type != ADAPTIVE_CARD_EXECUTE_ACTION:
        raise _bad_request(f"The action '{value.action.type}' is not supported.", code="NotSupported")
    return value


def _search_invoke_value(raw: Any, channel_id: str | None) -> SearchInvokeValue:
    if raw is None:
        raise _bad_request("Missing value property for search")
    try:
        value = SearchInvokeValue.model_validate(raw)
    except ValidationError:
        raise _bad_request("Value property is not valid for search") from None
    if not value.kind:
        if channel_id != Channels.MSTEAMS:
            raise _bad_request("Missing kind property for search.")
        value.kind = "search"
    if not value.query_text:
        raise _bad_request("Missing queryText for search.")
    return value

