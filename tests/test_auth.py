from __future__ import annotations

import pytest
from conftest import FakeConnector, make_activity

from parley.auth import ClaimsIdentity, ConfigurationBotFrameworkAuthentication
from parley.config import Settings
from parley.connector import CachingConnectorFactory, ThreadSafeCache
from parley.errors import UnauthorizedError


class StaticValidator:
    def __init__(self, identity: ClaimsIdentity) -> None:
        self.identity = identity
        self.headers: list[str] = []

    async def validate(self, auth_header: str, channel_id: str | None, service_url: str | None) -> ClaimsIdentity:
        self.headers.append(auth_header)
        return self.identity


def _settings(app_id: str = "") -> Settings:
    return Settings(_env_file=None, app_id=app_id)


def test_skill_claim_detection() -> None:
    assert ClaimsIdentity({"aud": "bot-a", "appid": "bot-b"}, True).is_skill_claim()
    assert not ClaimsIdentity({"aud": "bot-a", "appid": "bot-a"}, True).is_skill_claim()
    assert not ClaimsIdentity({"aud": "https://api.botframework.com", "appid": "x"}, True).is_skill_claim()
    assert not ClaimsIdentity.anonymous().is_skill_claim()
    assert ClaimsIdentity({"ver": "2.0", "aud": "bot-a", "azp": "bot-c"}, True).app_id == "bot-c"


@pytest.mark.asyncio
async def test_anonymous_when_no_app_id() -> None:
    auth = ConfigurationBotFrameworkAuthentication(_settings(), client_builder=lambda url, creds: FakeConnector())

    result = await auth.authenticate_request(make_activity(), "")

    assert result.claims_identity.is_authenticated is False
    assert result.caller_id is None
    assert isinstance(result.connector_factory, CachingConnectorFactory)


@pytest.mark.asyncio
async def test_header_without_validator_is_anonymous_when_auth_disabled() -> None:
    auth = ConfigurationBotFrameworkAuthentication(_settings(), client_builder=lambda url, creds: FakeConnector())

    result = await auth.authenticate_request(make_activity(), "Bearer emulator-token")

    assert result.claims_identity.is_authenticated is False
    assert result.caller_id is None


@pytest.mark.asyncio
async def test_header_required_when_app_id_configured() -> None:
    auth = ConfigurationBotFrameworkAuthentication(_settings("app-1"), client_builder=lambda url, creds: FakeConnector())

    with pytest.raises(UnauthorizedError):
        await auth.authenticate_request(make_activity(), "   ")


@pytest.mark.asyncio
async def test_header_is_validated() -> None:
    validator = StaticValidator(ClaimsIdentity({"aud": "app-1", "appid": "app-1"}, True))
    auth = ConfigurationBotFrameworkAuthentication(
        _settings("app-1"),
        client_builder=lambda url, creds: FakeConnector(),
        token_validator=validator,
    )

    result = await auth.authenticate_request(make_activity(), "Bearer abc")

    assert validator.headers == ["Bearer abc"]
    assert result.caller_id == "urn:botframework:azure"
    assert result.audience == "https://api.botframework.com"


@pytest.mark.asyncio
async def test_failed_validation_is_unauthorized() -> None:
    auth = ConfigurationBotFrameworkAuthentication(
        _settings("app-1"),
        client_builder=lambda url, creds: FakeConnector(),
        token_validator=StaticValidator(ClaimsIdentity()),
    )

    with pytest.raises(UnauthorizedError):
        await auth.authenticate_request(make_activity(), "Bearer abc")


@pytest.mark.asyncio
async def test_skill_caller_gets_bot_to_bot_caller_id() -> None:
    auth = ConfigurationBotFrameworkAuthentication(
        _settings("app-1"),
        client_builder=lambda url, creds: FakeConnector(),
        token_validator=StaticValidator(ClaimsIdentity({"aud": "app-1", "appid": "parent"}, True)),
    )

    result = await auth.authenticate_request(make_activity(), "Bearer abc")

    assert result.caller_id == "urn:botframework:aadappid:parent"
    assert result.audience == "parent"


@pytest.mark.asyncio
async def test_connector_clients_are_cached_per_service_url() -> None:
    built: list[str] = []

    def build(service_url: str, credentials: object) -> FakeConnector:
        built.append(service_url)
        return FakeConnector()

    client_cache: ThreadSafeCache = ThreadSafeCache()
    auth = ConfigurationBotFrameworkAuthentication(_settings(), client_builder=build, client_cache=client_cache)
    factory = auth.create_connector_factory(ClaimsIdentity.anonymous())

    first = await factory.create("https://a.example", "scope")
    again = await factory.create("https://a.example", "scope")
    other = await auth.create_connector_factory(ClaimsIdentity.anonymous()).create("https://b.example", "scope")

    assert first is again
    assert other is not first
    assert built == ["https://a.example", "https://b.example"]
    assert len(client_cache) == 2


@pytest.mark.asyncio
async def test_connector_factory_awaits_async_builders() -> None:
    async def build(service_url: str, credentials: object) -> FakeConnector:
        return FakeConnector()

    factory = CachingConnectorFactory(
        "app-1",
        credentials_builder=lambda app_id, audience: f"creds:{app_id}",
        client_builder=build,
        credential_cache=ThreadSafeCache(),
        client_cache=ThreadSafeCache(),
    )

    client = await factory.create("https://a.example", None)

    assert isinstance(client, FakeConnector)
    with pytest.raises(ValueError):
        await factory.create("", None)


def test_thread_safe_cache_get_or_add_creates_once() -> None:
    cache: ThreadSafeCache[str, int] = ThreadSafeCache()
    created: list[int] = []

    def factory() -> int:
        created.append(1)
        return len(created)

    assert cache.get_or_add("k", factory) == 1
    assert cache.get_or_add("k", factory) == 1
    assert "k" in cache
    assert cache.pop("k") == 1
    assert len(cache) == 0
