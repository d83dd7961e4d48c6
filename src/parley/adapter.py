"""Adapters drive turns: build the context, run middleware and the bot, deliver output."""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any, Self

from loguru import logger

from parley.auth import BotFrameworkAuthentication, ClaimsIdentity
from parley.config import Settings
from parley.connector import ConnectorClient, UserTokenClient
from parley.culture import use_locale
from parley.errors import MissingActivityError, MissingInvokeResponseError, MissingTypeError
from parley.logging_utils import conversation_scope
from parley.middleware import MiddlewareSet
from parley.schema import (
    OAUTH_CARD_CONTENT_TYPE,
    Activity,
    ActivityTypes,
    Channels,
    ConversationReference,
    DeliveryModes,
    ExpectedReplies,
    InvokeResponse,
    ResourceResponse,
)
from parley.token_resolver import TokenResolver
from parley.turn_context import TurnContext
from parley.types import BotCallback, TurnErrorHandler
from parley.workers import WorkerRegistry


class BotAdapter(ABC):
    """Base adapter: middleware registration, the turn pipeline and the delivery contract."""

    def __init__(self, on_turn_error: TurnErrorHandler | None = None) -> None:
        self.middleware = MiddlewareSet()
        self.on_turn_error = on_turn_error
        # Processing locale for turns whose activity carries none.
        self.default_locale: str | None = None

    def use(self, middleware: Any) -> Self:
        self.middleware.use(middleware)
        return self

    @abstractmethod
    async def send_activities(self, turn_context: TurnContext, activities: Sequence[Activity]) -> list[ResourceResponse]:
        """Deliver activities to the channel; the terminal step of the send chain."""

    @abstractmethod
    async def update_activity(self, turn_context: TurnContext, activity: Activity) -> ResourceResponse | None:
        """Replace a previously sent activity."""

    @abstractmethod
    async def delete_activity(self, turn_context: TurnContext, reference: ConversationReference) -> None:
        """Remove a previously sent activity."""

    async def continue_conversation(self, reference: ConversationReference, callback: BotCallback, **kwargs: Any) -> None:
        """Run ``callback`` in a proactive turn resuming ``reference``."""

        if reference is None:
            raise ValueError("continue_conversation requires a conversation reference")
        async with TurnContext(self, reference.get_continuation_activity()) as turn_context:
            await self.run_pipeline(turn_context, callback)

    async def run_pipeline(self, turn_context: TurnContext, callback: BotCallback | None) -> None:
        """Run middleware then ``callback``, routing failures to the turn error handler."""

        if turn_context is None:
            raise ValueError("run_pipeline requires a turn context")
        activity = turn_context.activity
        conversation_id = activity.conversation.id if activity.conversation else None
        with conversation_scope(conversation_id), use_locale(activity.locale, self.default_locale):
            try:
                await self.middleware.receive_activity_with_status(turn_context, callback)
            except Exception as exc:
                await self.middleware.notify_error(stage="turn", error=exc, activity=activity)
                if self.on_turn_error is None:
                    raise
                logger.opt(exception=True).warning("adapter.turn.error type={} handled=true", activity.type)
                await self.on_turn_error(turn_context, exc)


class CloudAdapter(BotAdapter):
    """Adapter for channel-hosted bots: inbound requests and proactive turns.

    Authentication, connector construction and token clients are all
    delegated to ``auth``; the adapter itself only owns the turn lifecycle
    and the background workers started by it.
    """

    def __init__(
        self,
        auth: BotFrameworkAuthentication,
        on_turn_error: TurnErrorHandler | None = None,
        *,
        settings: Settings | None = None,
        workers: WorkerRegistry | None = None,
    ) -> None:
        super().__init__(on_turn_error)
        if auth is None:
            raise ValueError("cloud adapter requires an authentication provider")
        self.auth = auth
        self.settings = settings if settings is not None else Settings()
        self.default_locale = self.settings.default_locale
        self.workers = workers if workers is not None else WorkerRegistry()
        self.token_resolver = TokenResolver(self, self.settings, self.workers)

    async def process_inbound(
        self,
        auth_header: str,
        activity: Activity | Mapping[str, Any],
        callback: BotCallback,
    ) -> InvokeResponse | None:
        """Process one inbound activity; the result is the body owed to the caller, if any."""

        if activity is None:
            raise MissingActivityError("inbound request")
        if isinstance(activity, Mapping):
            activity = Activity.model_validate(activity)
        if not activity.type:
            raise MissingTypeError()

        conversation_id = activity.conversation.id if activity.conversation else None
        with conversation_scope(conversation_id):
            result = await self.auth.authenticate_request(activity, auth_header)
            activity.caller_id = result.caller_id

            connector_client = await result.connector_factory.create(activity.service_url or "", result.audience)
            user_token_client = await self.auth.create_user_token_client(result.claims_identity)
            turn_context = self._create_turn_context(
                activity,
                result.claims_identity,
                result.audience,
                connector_client,
                user_token_client,
                callback,
            )
            started = time.monotonic()
            logger.info("adapter.turn.start type={} channel={} name={}", activity.type, activity.channel_id, activity.name)
            try:
                await self.run_pipeline(turn_context, callback)
            finally:
                await self._end_turn(turn_context)
                logger.info(
                    "adapter.turn.end type={} elapsed_ms={}",
                    activity.type,
                    int((time.monotonic() - started) * 1000),
                )
            return self._process_turn_results(turn_context)

    async def continue_conversation(
        self,
        reference: ConversationReference,
        callback: BotCallback,
        *,
        bot_app_id: str | None = None,
        claims_identity: ClaimsIdentity | None = None,
        audience: str | None = None,
    ) -> None:
        if reference is None:
            raise ValueError("continue_conversation requires a conversation reference")
        if callback is None:
            raise ValueError("continue_conversation requires a callback")
        if claims_identity is None:
            claims_identity = ClaimsIdentity.for_app_id(bot_app_id if bot_app_id is not None else self.settings.app_id)
        await self.process_proactive(
            claims_identity,
            reference.get_continuation_activity(),
            audience or self.auth.get_originating_audience(),
            callback,
        )

    async def process_proactive(
        self,
        claims_identity: ClaimsIdentity,
        continuation_activity: Activity,
        audience: str | None,
        callback: BotCallback,
    ) -> None:
        """Run a turn the bot initiated itself, e.g. a resumed conversation or a token response."""

        conversation_id = continuation_activity.conversation.id if continuation_activity.conversation else None
        with conversation_scope(conversation_id):
            logger.info("adapter.proactive.start type={} name={}", continuation_activity.type, continuation_activity.name)
            connector_factory = self.auth.create_connector_factory(claims_identity)
            connector_client = await connector_factory.create(continuation_activity.service_url or "", audience)
            user_token_client = await self.auth.create_user_token_client(claims_identity)
            turn_context = self._create_turn_context(
                continuation_activity,
                claims_identity,
                audience,
                connector_client,
                user_token_client,
                callback,
            )
            try:
                await self.run_pipeline(turn_context, callback)
            finally:
                await self._end_turn(turn_context)

    async def send_activities(self, turn_context: TurnContext, activities: Sequence[Activity]) -> list[ResourceResponse]:
        if turn_context is None:
            raise ValueError("send_activities requires a turn context")
        if not activities:
            raise ValueError("expecting one or more activities, but the batch was empty")

        responses: list[ResourceResponse] = []
        for activity in activities:
            activity.id = None
            response: ResourceResponse | None = None
            logger.debug("adapter.send type={} reply_to_id={}", activity.type, activity.reply_to_id)

            if activity.type == ActivityTypes.DELAY:
                await asyncio.sleep(int(activity.value or 0) / 1000)
            elif activity.type == ActivityTypes.INVOKE_RESPONSE:
                turn_context.turn_state.invoke_response = activity
            elif activity.type == ActivityTypes.TRACE and activity.channel_id != Channels.EMULATOR:
                logger.debug("adapter.send.trace_dropped channel={}", activity.channel_id)
            else:
                if _has_oauth_card(activity):
                    self.token_resolver.check_for_oauth_cards(turn_context, activity)
                connector_client: ConnectorClient = turn_context.turn_state.require("connector_client")
                if (activity.reply_to_id or "").strip():
                    response = await connector_client.reply_to_activity(activity)
                else:
                    response = await connector_client.send_to_conversation(activity)

            responses.append(response if response is not None else ResourceResponse(id=activity.id or ""))
        return responses

    async def update_activity(self, turn_context: TurnContext, activity: Activity) -> ResourceResponse | None:
        connector_client: ConnectorClient = turn_context.turn_state.require("connector_client")
        logger.debug("adapter.update activity_id={}", activity.id)
        return await connector_client.update_activity(activity)

    async def delete_activity(self, turn_context: TurnContext, reference: ConversationReference) -> None:
        connector_client: ConnectorClient = turn_context.turn_state.require("connector_client")
        conversation_id = reference.conversation.id if reference.conversation else None
        logger.debug("adapter.delete activity_id={}", reference.activity_id)
        await connector_client.delete_activity(conversation_id or "", reference.activity_id or "")

    async def shutdown(self, timeout: float | None = None) -> None:
        """Stop typing workers and wait for detached tasks such as token pollers."""

        await self.workers.stop_all_typing()
        await self.workers.drain(timeout)

    def _create_turn_context(
        self,
        activity: Activity,
        claims_identity: ClaimsIdentity,
        audience: str | None,
        connector_client: ConnectorClient,
        user_token_client: UserTokenClient | None,
        callback: BotCallback,
    ) -> TurnContext:
        turn_context = TurnContext(self, activity)
        state = turn_context.turn_state
        state.identity = claims_identity
        state.audience = audience
        state.connector_client = connector_client
        state.user_token_client = user_token_client
        state.callback = callback
        return turn_context

    async def _end_turn(self, turn_context: TurnContext) -> None:
        conversation = turn_context.activity.conversation
        if conversation is not None and conversation.id:
            await self.workers.stop_typing(conversation.id)
        turn_context.close()

    @staticmethod
    def _process_turn_results(turn_context: TurnContext) -> InvokeResponse | None:
        activity = turn_context.activity
        if activity.delivery_mode == DeliveryModes.EXPECT_REPLIES:
            return InvokeResponse(status=200, body=ExpectedReplies(activities=turn_context.buffered_reply_activities))

        if activity.type == ActivityTypes.INVOKE:
            captured = turn_context.turn_state.invoke_response
            if captured is None:
                raise MissingInvokeResponseError(activity.name)
            value = captured.value
            return value if isinstance(value, InvokeResponse) else InvokeResponse.model_validate(value)

        return None


def _has_oauth_card(activity: Activity) -> bool:
    return any(attachment.content_type == OAUTH_CARD_CONTENT_TYPE for attachment in activity.attachments or [])
