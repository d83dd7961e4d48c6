from __future__ import annotations

import pytest
from conftest import FakeAuth, FakeConnector, FakeUserTokenClient, make_activity

from parley.activity_handler import ActivityHandler
from parley.adapter import CloudAdapter
from parley.config import Settings
from parley.errors import ConfigurationError
from parley.schema import OAUTH_CARD_CONTENT_TYPE, Activity, ActivityTypes, Attachment, TokenResponse
from parley.turn_context import TurnContext


def _oauth_card(connection_name: str | None = "graph") -> Activity:
    content = {"text": "Please sign in"}
    if connection_name is not None:
        content["connectionName"] = connection_name
    return Activity(
        type=ActivityTypes.MESSAGE,
        attachments=[Attachment(content_type=OAUTH_CARD_CONTENT_TYPE, content=content)],
    )


def _sign_in_bot(tokens: list[str | None], *, login_timeout: float | None = None) -> ActivityHandler:
    handler = ActivityHandler()

    @handler.on("message_activity")
    async def prompt(turn_context: TurnContext) -> None:
        if login_timeout is not None:
            turn_context.turn_state["loginTimeout"] = login_timeout
        await turn_context.send_activity(_oauth_card())

    @handler.on("token_response_event")
    async def on_token(turn_context: TurnContext) -> None:
        tokens.append(turn_context.activity.value.token)
        await turn_context.send_activity("signed in")

    return handler


def _adapter(connector: FakeConnector, settings: Settings, client: FakeUserTokenClient | None) -> CloudAdapter:
    return CloudAdapter(FakeAuth(connector, user_token_client=client), settings=settings)


@pytest.mark.asyncio
async def test_poller_reinjects_token_response_turn(connector: FakeConnector, settings: Settings) -> None:
    client = FakeUserTokenClient([None, TokenResponse(connection_name="graph", token="secret")])
    adapter = _adapter(connector, settings, client)
    tokens: list[str | None] = []

    await adapter.process_inbound("", make_activity(text="login"), _sign_in_bot(tokens))
    await adapter.workers.drain(timeout=2)

    assert tokens == ["secret"]
    assert client.calls[0] == ("user-1", "graph", "test")
    assert len(client.calls) == 2
    assert connector.texts[-1] == "signed in"


@pytest.mark.asyncio
async def test_polling_settings_can_end_polling(connector: FakeConnector, settings: Settings) -> None:
    client = FakeUserTokenClient([TokenResponse(properties={"tokenPollingSettings": {"timeout": 0}})])
    adapter = _adapter(connector, settings, client)
    tokens: list[str | None] = []

    await adapter.process_inbound("", make_activity(), _sign_in_bot(tokens))
    await adapter.workers.drain(timeout=2)

    assert tokens == []
    assert len(client.calls) == 1


@pytest.mark.asyncio
async def test_login_timeout_override(connector: FakeConnector, settings: Settings) -> None:
    client = FakeUserTokenClient([TokenResponse(token="never")])
    adapter = _adapter(connector, settings, client)
    tokens: list[str | None] = []

    await adapter.process_inbound("", make_activity(), _sign_in_bot(tokens, login_timeout=0))
    await adapter.workers.drain(timeout=2)

    assert client.calls == []
    assert tokens == []


@pytest.mark.asyncio
async def test_poller_gives_up_after_timeout(connector: FakeConnector) -> None:
    settings = Settings(_env_file=None, token_polling_interval_seconds=0.01, token_polling_timeout_seconds=0.05)
    client = FakeUserTokenClient()
    adapter = _adapter(connector, settings, client)
    tokens: list[str | None] = []

    await adapter.process_inbound("", make_activity(), _sign_in_bot(tokens))
    await adapter.workers.drain(timeout=2)

    assert tokens == []
    assert 1 <= len(client.calls) <= 6
    assert adapter.workers.background_count == 0


@pytest.mark.asyncio
async def test_oauth_card_requires_user_token_client(connector: FakeConnector, settings: Settings) -> None:
    adapter = _adapter(connector, settings, None)

    with pytest.raises(ConfigurationError):
        await adapter.process_inbound("", make_activity(), _sign_in_bot([]))


@pytest.mark.asyncio
async def test_oauth_card_requires_connection_name(connector: FakeConnector, settings: Settings) -> None:
    adapter = _adapter(connector, settings, FakeUserTokenClient())

    async def bot(turn_context: TurnContext) -> None:
        await turn_context.send_activity(_oauth_card(connection_name=None))

    with pytest.raises(ValueError, match="connection name"):
        await adapter.process_inbound("", make_activity(), bot)
