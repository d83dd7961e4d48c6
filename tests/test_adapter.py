from __future__ import annotations

import asyncio

import pytest
from conftest import FakeAuth, FakeConnector, make_activity

from parley.activity_handler import ActivityHandler
from parley.adapter import CloudAdapter
from parley.auth import ClaimsIdentity
from parley.config import Settings
from parley.culture import current_locale
from parley.errors import MissingInvokeResponseError, MissingTypeError, UnauthorizedError
from parley.schema import (
    CONTINUE_CONVERSATION_EVENT_NAME,
    ActivityTypes,
    Channels,
    DeliveryModes,
    ExpectedReplies,
    InvokeNames,
    InvokeResponse,
    delay_activity,
)
from parley.turn_context import TurnContext


@pytest.mark.asyncio
async def test_message_turn_replies_through_connector(adapter: CloudAdapter, connector: FakeConnector) -> None:
    async def bot(turn_context: TurnContext) -> None:
        await turn_context.send_activity(f"echo: {turn_context.activity.text}")

    result = await adapter.process_inbound("Bearer token", make_activity(text="hi"), bot)

    assert result is None
    assert connector.texts == ["echo: hi"]
    kind, sent = connector.sent[0]
    assert kind == "reply"
    assert sent.reply_to_id == "activity-1"


@pytest.mark.asyncio
async def test_process_inbound_accepts_wire_dict(adapter: CloudAdapter, connector: FakeConnector) -> None:
    seen: list[str | None] = []

    async def bot(turn_context: TurnContext) -> None:
        seen.append(turn_context.activity.from_property.id)
        seen.append(turn_context.activity.caller_id)

    await adapter.process_inbound(
        "",
        {
            "type": "message",
            "text": "hi",
            "channelId": "test",
            "serviceUrl": "https://service.example",
            "conversation": {"id": "conv-9"},
            "from": {"id": "user-9"},
            "recipient": {"id": "bot-1"},
        },
        bot,
    )

    assert seen == ["user-9", "urn:botframework:azure"]


@pytest.mark.asyncio
async def test_missing_type_is_rejected(adapter: CloudAdapter) -> None:
    async def bot(turn_context: TurnContext) -> None:
        raise AssertionError("bot must not run")

    with pytest.raises(MissingTypeError):
        await adapter.process_inbound("", make_activity(activity_type=None), bot)


@pytest.mark.asyncio
async def test_unauthorized_request_skips_error_handler(connector: FakeConnector, settings: Settings) -> None:
    handled: list[Exception] = []

    async def on_error(turn_context: TurnContext, error: Exception) -> None:
        handled.append(error)

    adapter = CloudAdapter(FakeAuth(connector, required_header="Bearer ok"), on_error, settings=settings)

    async def bot(turn_context: TurnContext) -> None:
        raise AssertionError("bot must not run")

    with pytest.raises(UnauthorizedError):
        await adapter.process_inbound("Bearer nope", make_activity(), bot)
    assert handled == []


@pytest.mark.asyncio
async def test_expect_replies_returns_buffered_activities(adapter: CloudAdapter, connector: FakeConnector) -> None:
    async def bot(turn_context: TurnContext) -> None:
        await turn_context.send_activity("one")
        await turn_context.send_activity("two")

    result = await adapter.process_inbound(
        "", make_activity(delivery_mode=DeliveryModes.EXPECT_REPLIES), bot
    )

    assert isinstance(result, InvokeResponse)
    assert result.status == 200
    assert isinstance(result.body, ExpectedReplies)
    assert [activity.text for activity in result.body.activities] == ["one", "two"]
    assert connector.sent == []


@pytest.mark.asyncio
async def test_expect_replies_invoke_carries_its_response(adapter: CloudAdapter, connector: FakeConnector) -> None:
    activity = make_activity(
        ActivityTypes.INVOKE, name=InvokeNames.HEALTH_CHECK, delivery_mode=DeliveryModes.EXPECT_REPLIES
    )

    result = await adapter.process_inbound("", activity, ActivityHandler())

    assert result.status == 200
    [reply] = result.body.activities
    assert reply.type == ActivityTypes.INVOKE_RESPONSE
    assert reply.value.status == 200
    assert reply.value.body["healthResults"]["success"] is True
    assert connector.sent == []


@pytest.mark.asyncio
async def test_unknown_invoke_returns_not_implemented(adapter: CloudAdapter) -> None:
    result = await adapter.process_inbound("", make_activity(ActivityTypes.INVOKE, name="custom/op"), ActivityHandler())

    assert result == InvokeResponse(status=501)


@pytest.mark.asyncio
async def test_invoke_without_response_raises(adapter: CloudAdapter) -> None:
    async def bot(turn_context: TurnContext) -> None:
        return None

    with pytest.raises(MissingInvokeResponseError) as exc_info:
        await adapter.process_inbound("", make_activity(ActivityTypes.INVOKE, name="custom/op"), bot)
    assert exc_info.value.status == 501


@pytest.mark.asyncio
async def test_trace_activities_only_reach_the_emulator(adapter: CloudAdapter, connector: FakeConnector) -> None:
    async def bot(turn_context: TurnContext) -> None:
        await turn_context.send_trace_activity("debug", value=1)

    await adapter.process_inbound("", make_activity(), bot)
    assert connector.of_type(ActivityTypes.TRACE) == []

    await adapter.process_inbound("", make_activity(channel_id=Channels.EMULATOR), bot)
    assert len(connector.of_type(ActivityTypes.TRACE)) == 1


@pytest.mark.asyncio
async def test_delay_activity_suspends_delivery(adapter: CloudAdapter, connector: FakeConnector) -> None:
    async def bot(turn_context: TurnContext) -> None:
        await turn_context.send_activities([delay_activity(30), make_activity(text="after")])

    loop = asyncio.get_running_loop()
    started = loop.time()
    await adapter.process_inbound("", make_activity(), bot)

    assert loop.time() - started >= 0.025
    assert connector.texts == ["after"]
    assert connector.of_type(ActivityTypes.DELAY) == []


@pytest.mark.asyncio
async def test_missing_connector_response_is_synthesized(settings: Settings) -> None:
    connector = FakeConnector(return_none=True)
    adapter = CloudAdapter(FakeAuth(connector), settings=settings)
    responses = []

    async def bot(turn_context: TurnContext) -> None:
        responses.append(await turn_context.send_activity("x"))

    await adapter.process_inbound("", make_activity(), bot)

    assert responses[0].id == ""


@pytest.mark.asyncio
async def test_error_handler_receives_bot_failure(connector: FakeConnector, settings: Settings) -> None:
    handled: list[str] = []

    async def on_error(turn_context: TurnContext, error: Exception) -> None:
        handled.append(str(error))
        await turn_context.send_activity("sorry")

    adapter = CloudAdapter(FakeAuth(connector), on_error, settings=settings)

    async def bot(turn_context: TurnContext) -> None:
        raise RuntimeError("boom")

    await adapter.process_inbound("", make_activity(), bot)

    assert handled == ["boom"]
    assert connector.texts == ["sorry"]


@pytest.mark.asyncio
async def test_error_without_handler_propagates(adapter: CloudAdapter) -> None:
    async def bot(turn_context: TurnContext) -> None:
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        await adapter.process_inbound("", make_activity(), bot)


@pytest.mark.asyncio
async def test_pipeline_sets_processing_locale(adapter: CloudAdapter) -> None:
    seen: list[str] = []

    async def bot(turn_context: TurnContext) -> None:
        seen.append(current_locale())

    await adapter.process_inbound("", make_activity(locale="fr-FR"), bot)
    await adapter.process_inbound("", make_activity(locale="not a locale!"), bot)

    assert seen == ["fr-FR", "en-US"]


@pytest.mark.asyncio
async def test_configured_default_locale_applies_to_turns_without_one(connector: FakeConnector) -> None:
    adapter = CloudAdapter(FakeAuth(connector), settings=Settings(_env_file=None, default_locale="de-DE"))
    seen: list[str] = []

    async def bot(turn_context: TurnContext) -> None:
        seen.append(current_locale())

    await adapter.process_inbound("", make_activity(), bot)
    await adapter.process_inbound("", make_activity(locale="not a locale!"), bot)
    await adapter.process_inbound("", make_activity(locale="fr-FR"), bot)

    assert seen == ["de-DE", "de-DE", "fr-FR"]


@pytest.mark.asyncio
async def test_continue_conversation_runs_proactive_turn(adapter: CloudAdapter, connector: FakeConnector) -> None:
    reference = make_activity().get_conversation_reference()
    seen: list[tuple[str | None, str | None, bool]] = []

    async def bot(turn_context: TurnContext) -> None:
        activity = turn_context.activity
        identity = turn_context.turn_state.identity
        seen.append((activity.type, activity.name, identity.is_authenticated))
        await turn_context.send_activity("proactive hello")

    await adapter.continue_conversation(reference, bot, bot_app_id="app-1")

    assert seen == [(ActivityTypes.EVENT, CONTINUE_CONVERSATION_EVENT_NAME, True)]
    assert connector.texts == ["proactive hello"]


@pytest.mark.asyncio
async def test_continue_conversation_with_explicit_identity(adapter: CloudAdapter) -> None:
    identity = ClaimsIdentity({"aud": "skill-app", "appid": "parent-app"}, True)
    audiences: list[str | None] = []

    async def bot(turn_context: TurnContext) -> None:
        audiences.append(turn_context.turn_state.audience)

    await adapter.continue_conversation(
        make_activity().get_conversation_reference(), bot, claims_identity=identity, audience="custom-scope"
    )

    assert audiences == ["custom-scope"]


@pytest.mark.asyncio
async def test_update_and_delete_use_connector(adapter: CloudAdapter, connector: FakeConnector) -> None:
    async def bot(turn_context: TurnContext) -> None:
        response = await turn_context.send_activity("draft")
        edited = make_activity(id=response.id, text="final")
        await turn_context.update_activity(edited)
        await turn_context.delete_activity(response.id)

    await adapter.process_inbound("", make_activity(), bot)

    assert connector.updated[0].text == "final"
    assert connector.deleted == [("conv-1", "reply-1")]
