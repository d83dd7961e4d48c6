"""Activity schema shared by the adapter, turn context and handlers."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ActivityTypes(StrEnum):
    MESSAGE = "message"
    MESSAGE_UPDATE = "messageUpdate"
    MESSAGE_DELETE = "messageDelete"
    CONVERSATION_UPDATE = "conversationUpdate"
    MESSAGE_REACTION = "messageReaction"
    EVENT = "event"
    INVOKE = "invoke"
    END_OF_CONVERSATION = "endOfConversation"
    TYPING = "typing"
    INSTALLATION_UPDATE = "installationUpdate"
    COMMAND = "command"
    COMMAND_RESULT = "commandResult"
    TRACE = "trace"
    HANDOFF = "handoff"
    SUGGESTION = "suggestion"
    # Internal kinds handled by the terminal delivery step, never sent to a channel.
    DELAY = "delay"
    INVOKE_RESPONSE = "invokeResponse"


class DeliveryModes(StrEnum):
    NORMAL = "normal"
    NOTIFICATION = "notification"
    EXPECT_REPLIES = "expectReplies"
    EPHEMERAL = "ephemeral"


class Channels(StrEnum):
    CONSOLE = "console"
    DIRECTLINE = "directline"
    EMULATOR = "emulator"
    MSTEAMS = "msteams"
    TEST = "test"
    WEBCHAT = "webchat"


class SignInConstants:
    TOKEN_RESPONSE_EVENT_NAME = "tokens/response"
    VERIFY_STATE_OPERATION_NAME = "signin/verifyState"
    TOKEN_EXCHANGE_OPERATION_NAME = "signin/tokenExchange"


class InvokeNames:
    SEARCH = "application/search"
    ADAPTIVE_CARD_ACTION = "adaptiveCard/action"
    HEALTH_CHECK = "healthCheck"


CONTINUE_CONVERSATION_EVENT_NAME = "ContinueConversation"
OAUTH_CARD_CONTENT_TYPE = "application/vnd.microsoft.card.oauth"
ERROR_CONTENT_TYPE = "application/vnd.microsoft.error"


class SchemaModel(BaseModel):
    """Base model: snake_case attributes, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        use_enum_values=True,
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ChannelAccount(SchemaModel):
    id: str | None = None
    name: str | None = None
    role: str | None = None
    aad_object_id: str | None = None


class ConversationAccount(SchemaModel):
    id: str | None = None
    name: str | None = None
    is_group: bool | None = None
    conversation_type: str | None = None
    tenant_id: str | None = None


class MessageReaction(SchemaModel):
    type: str


class Attachment(SchemaModel):
    content_type: str
    content: Any = None
    content_url: str | None = None
    name: str | None = None


class ResourceResponse(SchemaModel):
    id: str = ""


class InvokeResponse(SchemaModel):
    status: int
    body: Any = None

    def is_successful(self) -> bool:
        return 200 <= self.status < 300


class ConversationReference(SchemaModel):
    """Addressing tuple captured from an activity, used to resume a conversation."""

    activity_id: str | None = None
    user: ChannelAccount | None = None
    bot: ChannelAccount | None = None
    conversation: ConversationAccount | None = None
    channel_id: str | None = None
    service_url: str | None = None
    locale: str | None = None

    def get_continuation_activity(self) -> Activity:
        """Synthesize the event activity that opens a proactive turn."""

        return Activity(
            type=ActivityTypes.EVENT,
            name=CONTINUE_CONVERSATION_EVENT_NAME,
            id=str(uuid.uuid4()),
            channel_id=self.channel_id,
            service_url=self.service_url,
            conversation=self.conversation,
            recipient=self.bot,
            from_property=self.user,
            locale=self.locale,
            relates_to=self,
        )


class Activity(SchemaModel):
    """One message, event or notification exchanged with a channel."""

    type: str | None = None
    id: str | None = None
    timestamp: datetime | None = None
    local_timestamp: datetime | None = None
    service_url: str | None = None
    channel_id: str | None = None
    from_property: ChannelAccount | None = Field(default=None, alias="from")
    conversation: ConversationAccount | None = None
    recipient: ChannelAccount | None = None
    text: str | None = None
    speak: str | None = None
    input_hint: str | None = None
    locale: str | None = None
    attachments: list[Attachment] | None = None
    entities: list[dict[str, Any]] | None = None
    channel_data: Any = None
    reply_to_id: str | None = None
    relates_to: ConversationReference | None = None
    value: Any = None
    value_type: str | None = None
    name: str | None = None
    label: str | None = None
    code: str | None = None
    action: str | None = None
    delivery_mode: str | None = None
    members_added: list[ChannelAccount] | None = None
    members_removed: list[ChannelAccount] | None = None
    reactions_added: list[MessageReaction] | None = None
    reactions_removed: list[MessageReaction] | None = None
    caller_id: str | None = None

    def get_conversation_reference(self) -> ConversationReference:
        return ConversationReference(
            activity_id=self.id,
            user=self.from_property,
            bot=self.recipient,
            conversation=self.conversation,
            channel_id=self.channel_id,
            service_url=self.service_url,
            locale=self.locale,
        )

    def apply_conversation_reference(self, reference: ConversationReference, is_incoming: bool = False) -> Activity:
        """Bind routing fields from ``reference``; outgoing activities become replies."""

        self.channel_id = reference.channel_id
        self.service_url = reference.service_url
        self.conversation = reference.conversation
        if reference.locale is not None and self.locale is None:
            self.locale = reference.locale
        if is_incoming:
            self.from_property = reference.user
            self.recipient = reference.bot
            if reference.activity_id is not None:
                self.id = reference.activity_id
        else:
            self.from_property = reference.bot
            self.recipient = reference.user
            if reference.activity_id is not None and self.type != ActivityTypes.CONVERSATION_UPDATE:
                self.reply_to_id = reference.activity_id
        return self

    def create_reply(self, text: str | None = None) -> Activity:
        return Activity(
            type=ActivityTypes.MESSAGE,
            timestamp=datetime.now(UTC),
            from_property=self.recipient,
            recipient=self.from_property,
            reply_to_id=self.id,
            service_url=self.service_url,
            channel_id=self.channel_id,
            conversation=self.conversation,
            text=text or "",
            locale=self.locale,
        )


class ExpectedReplies(SchemaModel):
    activities: list[Activity] = Field(default_factory=list)


class TokenResponse(SchemaModel):
    connection_name: str | None = None
    token: str | None = None
    expiration: str | None = None
    channel_id: str | None = None
    properties: dict[str, Any] | None = None


class OAuthCard(SchemaModel):
    text: str | None = None
    connection_name: str | None = None
    buttons: list[dict[str, Any]] | None = None


class AdaptiveCardInvokeAction(SchemaModel):
    type: str | None = None
    id: str | None = None
    verb: str | None = None
    data: dict[str, Any] | None = None


class AdaptiveCardInvokeValue(SchemaModel):
    action: AdaptiveCardInvokeAction | None = None
    authentication: dict[str, Any] | None = None
    state: str | None = None


class SearchInvokeValue(SchemaModel):
    kind: str | None = None
    query_text: str | None = None
    query_options: dict[str, Any] | None = None
    context: Any = None


def message_activity(text: str, speak: str | None = None, input_hint: str | None = None) -> Activity:
    return Activity(type=ActivityTypes.MESSAGE, text=text, speak=speak, input_hint=input_hint)


def trace_activity(name: str, value: Any = None, value_type: str | None = None, label: str | None = None) -> Activity:
    return Activity(
        type=ActivityTypes.TRACE,
        timestamp=datetime.now(UTC),
        name=name,
        value=value,
        value_type=value_type,
        label=label,
    )


def delay_activity(milliseconds: int) -> Activity:
    return Activity(type=ActivityTypes.DELAY, value=milliseconds)


def invoke_response_activity(response: InvokeResponse) -> Activity:
    return Activity(type=ActivityTypes.INVOKE_RESPONSE, value=response)
