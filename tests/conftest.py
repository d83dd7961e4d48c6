from __future__ import annotations

import itertools
from collections.abc import Sequence
from typing import Any

import pytest

from parley.adapter import BotAdapter, CloudAdapter
from parley.auth import AuthenticateRequestResult, BotFrameworkAuthentication, ClaimsIdentity
from parley.config import Settings
from parley.errors import UnauthorizedError
from parley.schema import (
    Activity,
    ActivityTypes,
    ChannelAccount,
    ConversationAccount,
    ConversationReference,
    ResourceResponse,
    TokenResponse,
)
from parley.turn_context import TurnContext


class FakeConnector:
    def __init__(self, *, return_none: bool = False) -> None:
        self.sent: list[tuple[str, Activity]] = []
        self.updated: list[Activity] = []
        self.deleted: list[tuple[str, str]] = []
        self.return_none = return_none
        self._ids = itertools.count(1)

    async def send_to_conversation(self, activity: Activity) -> ResourceResponse | None:
        self.sent.append(("send", activity))
        return None if self.return_none else ResourceResponse(id=f"sent-{next(self._ids)}")

    async def reply_to_activity(self, activity: Activity) -> ResourceResponse | None:
        self.sent.append(("reply", activity))
        return None if self.return_none else ResourceResponse(id=f"reply-{next(self._ids)}")

    async def update_activity(self, activity: Activity) -> ResourceResponse | None:
        self.updated.append(activity)
        return ResourceResponse(id=activity.id or "")

    async def delete_activity(self, conversation_id: str, activity_id: str) -> None:
        self.deleted.append((conversation_id, activity_id))

    @property
    def texts(self) -> list[str | None]:
        return [activity.text for _, activity in self.sent if activity.type == ActivityTypes.MESSAGE]

    def of_type(self, activity_type: str) -> list[Activity]:
        return [activity for _, activity in self.sent if activity.type == activity_type]


class FakeUserTokenClient:
    def __init__(self, responses: Sequence[TokenResponse | None] = ()) -> None:
        self._responses = list(responses)
        self.calls: list[tuple[str, str, str]] = []

    async def get_user_token(
        self,
        user_id: str,
        connection_name: str,
        channel_id: str,
        magic_code: str | None = None,
    ) -> TokenResponse | None:
        self.calls.append((user_id, connection_name, channel_id))
        if not self._responses:
            return None
        return self._responses.pop(0)

    async def sign_out_user(self, user_id: str, connection_name: str, channel_id: str) -> None:
        return None


class FakeConnectorFactory:
    def __init__(self, connector: FakeConnector) -> None:
        self.connector = connector
        self.requests: list[tuple[str, str | None]] = []

    async def create(self, service_url: str, audience: str | None) -> FakeConnector:
        self.requests.append((service_url, audience))
        return self.connector


class FakeAuth(BotFrameworkAuthentication):
    def __init__(
        self,
        connector: FakeConnector,
        *,
        identity: ClaimsIdentity | None = None,
        user_token_client: FakeUserTokenClient | None = None,
        required_header: str | None = None,
    ) -> None:
        self.factory = FakeConnectorFactory(connector)
        self.identity = identity or ClaimsIdentity.anonymous()
        self.user_token_client = user_token_client
        self.required_header = required_header

    async def authenticate_request(self, activity: Activity, auth_header: str) -> AuthenticateRequestResult:
        if self.required_header is not None and auth_header != self.required_header:
            raise UnauthorizedError("bad header")
        return AuthenticateRequestResult(
            claims_identity=self.identity,
            audience="https://api.botframework.com",
            connector_factory=self.factory,
            caller_id="urn:botframework:azure",
        )

    def create_connector_factory(self, claims_identity: ClaimsIdentity) -> FakeConnectorFactory:
        return self.factory

    async def create_user_token_client(self, claims_identity: ClaimsIdentity) -> FakeUserTokenClient | None:
        return self.user_token_client


class RecordingAdapter(BotAdapter):
    """Adapter that records deliveries without any connector."""

    def __init__(self) -> None:
        super().__init__()
        self.sent: list[Activity] = []
        self.updated: list[Activity] = []
        self.deleted: list[ConversationReference] = []
        self._ids = itertools.count(1)

    async def send_activities(self, turn_context: TurnContext, activities: Sequence[Activity]) -> list[ResourceResponse]:
        self.sent.extend(activities)
        return [ResourceResponse(id=f"r{next(self._ids)}") for _ in activities]

    async def update_activity(self, turn_context: TurnContext, activity: Activity) -> ResourceResponse | None:
        self.updated.append(activity)
        return ResourceResponse(id="updated")

    async def delete_activity(self, turn_context: TurnContext, reference: ConversationReference) -> None:
        self.deleted.append(reference)


def make_activity(activity_type: str = ActivityTypes.MESSAGE, **fields: Any) -> Activity:
    values: dict[str, Any] = {
        "type": activity_type,
        "id": "activity-1",
        "channel_id": "test",
        "service_url": "https://service.example",
        "conversation": ConversationAccount(id="conv-1"),
        "from_property": ChannelAccount(id="user-1", name="User"),
        "recipient": ChannelAccount(id="bot-1", name="Bot"),
    }
    values.update(fields)
    return Activity(**values)


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, token_polling_interval_seconds=0.01, token_polling_timeout_seconds=1.0)


@pytest.fixture
def adapter(connector: FakeConnector, settings: Settings) -> CloudAdapter:
    return CloudAdapter(FakeAuth(connector), settings=settings)


@pytest.fixture
def recording_adapter() -> RecordingAdapter:
    return RecordingAdapter()
