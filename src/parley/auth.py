"""Inbound authentication contract and the configuration-driven reference implementation."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Protocol

from loguru import logger

from parley.config import Settings
from parley.connector import (
    CachingConnectorFactory,
    ConnectorClient,
    ConnectorClientBuilder,
    ConnectorFactory,
    CredentialsBuilder,
    ThreadSafeCache,
    UserTokenClient,
)
from parley.errors import UnauthorizedError
from parley.schema import Activity


class AuthenticationConstants:
    AUDIENCE_CLAIM = "aud"
    APP_ID_CLAIM = "appid"
    AUTHORIZED_PARTY = "azp"
    VERSION_CLAIM = "ver"
    ANONYMOUS_AUTH_TYPE = "anonymous"
    ANONYMOUS_SKILL_APP_ID = "AnonymousSkill"
    TO_BOT_FROM_CHANNEL_TOKEN_ISSUER = "https://api.botframework.com"
    TO_CHANNEL_FROM_BOT_OAUTH_SCOPE = "https://api.botframework.com"


class CallerIdConstants:
    PUBLIC_AZURE_CHANNEL = "urn:botframework:azure"
    BOT_TO_BOT_PREFIX = "urn:botframework:aadappid:"


@dataclass(frozen=True)
class ClaimsIdentity:
    """Authenticated (or anonymous) caller of one turn."""

    claims: dict[str, str] = field(default_factory=dict)
    is_authenticated: bool = False
    authentication_type: str | None = None

    @property
    def audience(self) -> str | None:
        return self.claims.get(AuthenticationConstants.AUDIENCE_CLAIM)

    @property
    def app_id(self) -> str | None:
        if self.claims.get(AuthenticationConstants.VERSION_CLAIM) == "2.0":
            return self.claims.get(AuthenticationConstants.AUTHORIZED_PARTY)
        return self.claims.get(AuthenticationConstants.APP_ID_CLAIM) or self.claims.get(
            AuthenticationConstants.AUTHORIZED_PARTY
        )

    def is_skill_claim(self) -> bool:
        """True when the caller is another bot rather than a channel."""

        if self.app_id == AuthenticationConstants.ANONYMOUS_SKILL_APP_ID:
            return True
        audience = self.audience
        if not audience or audience == AuthenticationConstants.TO_BOT_FROM_CHANNEL_TOKEN_ISSUER:
            return False
        app_id = self.app_id
        return bool(app_id) and app_id != audience

    @classmethod
    def anonymous(cls) -> ClaimsIdentity:
        return cls({}, False, AuthenticationConstants.ANONYMOUS_AUTH_TYPE)

    @classmethod
    def for_app_id(cls, app_id: str) -> ClaimsIdentity:
        """Hand-crafted identity used for proactive turns."""

        return cls(
            {
                AuthenticationConstants.AUDIENCE_CLAIM: app_id,
                AuthenticationConstants.APP_ID_CLAIM: app_id,
            },
            True,
        )


@dataclass(frozen=True)
class AuthenticateRequestResult:
    claims_identity: ClaimsIdentity
    audience: str | None
    connector_factory: ConnectorFactory
    caller_id: str | None = None


class BotFrameworkAuthentication(ABC):
    """Authentication capability consumed by the cloud adapter."""

    @abstractmethod
    async def authenticate_request(self, activity: Activity, auth_header: str) -> AuthenticateRequestResult:
        """Validate an inbound request; raise ``UnauthorizedError`` on failure."""

    @abstractmethod
    def create_connector_factory(self, claims_identity: ClaimsIdentity) -> ConnectorFactory:
        """Connector factory for proactive turns of ``claims_identity``."""

    @abstractmethod
    async def create_user_token_client(self, claims_identity: ClaimsIdentity) -> UserTokenClient | None:
        """Token client for sign-in flows, or ``None`` when the bot has none."""

    def get_originating_audience(self) -> str:
        return AuthenticationConstants.TO_CHANNEL_FROM_BOT_OAUTH_SCOPE


class TokenValidator(Protocol):
    async def validate(self, auth_header: str, channel_id: str | None, service_url: str | None) -> ClaimsIdentity: ...


class ConfigurationBotFrameworkAuthentication(BotFrameworkAuthentication):
    """Authentication driven by ``Settings``.

    Without an app id the bot runs anonymously. With an app id every
    request must carry an auth header, which the injected ``TokenValidator``
    turns into a claims identity.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        client_builder: ConnectorClientBuilder,
        credentials_builder: CredentialsBuilder | None = None,
        token_validator: TokenValidator | None = None,
        user_token_client: UserTokenClient | None = None,
        credential_cache: ThreadSafeCache[tuple[str, str | None], Any] | None = None,
        client_cache: ThreadSafeCache[tuple[str, str, str | None], ConnectorClient] | None = None,
    ) -> None:
        self._settings = settings
        self._client_builder = client_builder
        self._credentials_builder = credentials_builder or _no_credentials
        self._token_validator = token_validator
        self._user_token_client = user_token_client
        self._credential_cache = credential_cache if credential_cache is not None else ThreadSafeCache()
        self._client_cache = client_cache if client_cache is not None else ThreadSafeCache()

    async def authenticate_request(self, activity: Activity, auth_header: str) -> AuthenticateRequestResult:
        has_header = bool((auth_header or "").strip())
        if not has_header and not self._settings.auth_disabled:
            logger.warning("auth.rejected reason=missing_header channel={}", activity.channel_id)
            raise UnauthorizedError("authorization header is required")
        if self._settings.auth_disabled and (not has_header or self._token_validator is None):
            # Emulator-style clients send a header even to anonymous bots.
            identity = ClaimsIdentity.anonymous()
        else:
            if self._token_validator is None:
                raise UnauthorizedError("no token validator is configured")
            identity = await self._token_validator.validate(auth_header, activity.channel_id, activity.service_url)
            if not identity.is_authenticated:
                raise UnauthorizedError("token validation failed")

        if identity.is_skill_claim():
            audience = identity.app_id
            caller_id = f"{CallerIdConstants.BOT_TO_BOT_PREFIX}{identity.app_id}"
        else:
            audience = self.get_originating_audience()
            caller_id = None if self._settings.auth_disabled else CallerIdConstants.PUBLIC_AZURE_CHANNEL
        return AuthenticateRequestResult(
            claims_identity=identity,
            audience=audience,
            connector_factory=self.create_connector_factory(identity),
            caller_id=caller_id,
        )

    def create_connector_factory(self, claims_identity: ClaimsIdentity) -> ConnectorFactory:
        return CachingConnectorFactory(
            self._settings.app_id,
            credentials_builder=self._credentials_builder,
            client_builder=self._client_builder,
            credential_cache=self._credential_cache,
            client_cache=self._client_cache,
        )

    async def create_user_token_client(self, claims_identity: ClaimsIdentity) -> UserTokenClient | None:
        return self._user_token_client


def _no_credentials(app_id: str, audience: str | None) -> None:
    return None
