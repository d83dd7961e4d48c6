"""Token-exchange poller started when the bot sends an OAuth card."""

from __future__ import annotations

import asyncio
import uuid
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from loguru import logger

from parley.config import Settings
from parley.errors import ConfigurationError
from parley.schema import (
    OAUTH_CARD_CONTENT_TYPE,
    Activity,
    ActivityTypes,
    ConversationReference,
    OAuthCard,
    SignInConstants,
    TokenResponse,
)
from parley.workers import WorkerRegistry

if TYPE_CHECKING:
    from parley.adapter import CloudAdapter
    from parley.auth import ClaimsIdentity
    from parley.connector import UserTokenClient
    from parley.turn_context import TurnContext
    from parley.types import BotCallback

LOGIN_TIMEOUT_KEY = "loginTimeout"
TOKEN_POLLING_SETTINGS_KEY = "tokenPollingSettings"


class TokenResolver:
    """Polls the token service for a user who was shown an OAuth card.

    A successful poll is delivered to the bot as a ``tokens/response``
    event in a new proactive turn. Polling ends at the first token, when
    the timeout elapses, or when the token service sets a non-positive
    timeout.
    """

    def __init__(self, adapter: CloudAdapter, settings: Settings, workers: WorkerRegistry) -> None:
        self.adapter = adapter
        self.settings = settings
        self.workers = workers

    def check_for_oauth_cards(self, turn_context: TurnContext, activity: Activity) -> list[asyncio.Task[Any]]:
        tasks: list[asyncio.Task[Any]] = []
        for attachment in activity.attachments or []:
            if attachment.content_type != OAUTH_CARD_CONTENT_TYPE:
                continue
            card = attachment.content if isinstance(attachment.content, OAuthCard) else OAuthCard.model_validate(
                attachment.content or {}
            )
            if not card.connection_name:
                raise ValueError("oauth card requires a connection name")

            state = turn_context.turn_state
            user_token_client = state.user_token_client
            if user_token_client is None:
                raise ConfigurationError("oauth card sent but the turn has no user token client")

            inbound = turn_context.activity
            user_id = inbound.from_property.id if inbound.from_property else None
            if not user_id or not inbound.channel_id:
                raise ValueError("oauth card polling requires the inbound user id and channel id")

            task = self.workers.spawn(
                self._poll_for_token(
                    user_token_client=user_token_client,
                    identity=state.identity,
                    audience=state.audience,
                    callback=state.callback,
                    reference=inbound.get_conversation_reference(),
                    connection_name=card.connection_name,
                    user_id=user_id,
                    channel_id=inbound.channel_id,
                    timeout=self._login_timeout(turn_context),
                ),
                name=f"parley.token_poll:{card.connection_name}",
            )
            logger.info("token.poll.start connection={} user_id={}", card.connection_name, user_id)
            tasks.append(task)
        return tasks

    def _login_timeout(self, turn_context: TurnContext) -> float:
        override = turn_context.turn_state.get(LOGIN_TIMEOUT_KEY)
        if isinstance(override, timedelta):
            return override.total_seconds()
        if isinstance(override, int | float):
            return float(override)
        return self.settings.token_polling_timeout_seconds

    async def _poll_for_token(
        self,
        *,
        user_token_client: UserTokenClient,
        identity: ClaimsIdentity | None,
        audience: str | None,
        callback: BotCallback | None,
        reference: ConversationReference,
        connection_name: str,
        user_id: str,
        channel_id: str,
        timeout: float,
    ) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()
        interval = self.settings.token_polling_interval_seconds
        attempts = 0
        try:
            while loop.time() - started < timeout:
                attempts += 1
                token_response = await user_token_client.get_user_token(user_id, connection_name, channel_id, None)
                if token_response is not None:
                    polling = (token_response.properties or {}).get(TOKEN_POLLING_SETTINGS_KEY) or {}
                    if "timeout" in polling:
                        timeout = float(polling["timeout"]) / 1000
                    if "interval" in polling:
                        interval = float(polling["interval"]) / 1000
                    if token_response.token:
                        logger.info("token.poll.success connection={} attempts={}", connection_name, attempts)
                        await self._deliver_token(identity, audience, callback, reference, token_response)
                        return
                    if timeout <= 0:
                        break
                await asyncio.sleep(interval)
            logger.info("token.poll.timeout connection={} attempts={}", connection_name, attempts)
        except asyncio.CancelledError:
            return
        except Exception:
            logger.exception("token.poll.error connection={} user_id={}", connection_name, user_id)

    async def _deliver_token(
        self,
        identity: ClaimsIdentity | None,
        audience: str | None,
        callback: BotCallback | None,
        reference: ConversationReference,
        token_response: TokenResponse,
    ) -> None:
        if identity is None or callback is None:
            raise ConfigurationError("token response cannot be delivered without the originating identity and callback")
        event = Activity(type=ActivityTypes.EVENT, name=SignInConstants.TOKEN_RESPONSE_EVENT_NAME, value=token_response)
        event.apply_conversation_reference(reference, is_incoming=True)
        event.id = str(uuid.uuid4())
        await self.adapter.process_proactive(identity, event, audience, callback)
