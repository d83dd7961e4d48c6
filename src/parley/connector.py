"""Connector and user-token client contracts plus process-wide client caches."""

from __future__ import annotations

import inspect
import threading
from collections.abc import Awaitable, Callable, Hashable
from typing import Any, Protocol, runtime_checkable

from loguru import logger

from parley.schema import Activity, ResourceResponse, TokenResponse


@runtime_checkable
class ConnectorClient(Protocol):
    """Outbound channel capability bound to one service URL and credential pair."""

    async def send_to_conversation(self, activity: Activity) -> ResourceResponse | None: ...

    async def reply_to_activity(self, activity: Activity) -> ResourceResponse | None: ...

    async def update_activity(self, activity: Activity) -> ResourceResponse | None: ...

    async def delete_activity(self, conversation_id: str, activity_id: str) -> None: ...


@runtime_checkable
class UserTokenClient(Protocol):
    """Token service capability used for sign-in flows."""

    async def get_user_token(
        self,
        user_id: str,
        connection_name: str,
        channel_id: str,
        magic_code: str | None = None,
    ) -> TokenResponse | None: ...

    async def sign_out_user(self, user_id: str, connection_name: str, channel_id: str) -> None: ...


class ConnectorFactory(Protocol):
    async def create(self, service_url: str, audience: str | None) -> ConnectorClient: ...


type CredentialsBuilder = Callable[[str, str | None], Any]
type ConnectorClientBuilder = Callable[[str, Any], ConnectorClient | Awaitable[ConnectorClient]]


class ThreadSafeCache[K: Hashable, V]:
    """Lock-guarded map shared by concurrently running turns."""

    def __init__(self) -> None:
        self._items: dict[K, V] = {}
        self._lock = threading.Lock()

    def get(self, key: K) -> V | None:
        with self._lock:
            return self._items.get(key)

    def get_or_add(self, key: K, factory: Callable[[], V]) -> V:
        """Return the cached value, creating it under the lock on first use."""

        with self._lock:
            existing = self._items.get(key)
            if existing is not None:
                return existing
            created = factory()
            self._items[key] = created
            return created

    def set(self, key: K, value: V) -> None:
        with self._lock:
            self._items[key] = value

    def pop(self, key: K) -> V | None:
        with self._lock:
            return self._items.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._items


class CachingConnectorFactory:
    """Builds connector clients for one app id, reusing credentials and clients.

    Both caches are injected so their lifetime is owned by the host (and by
    tests); they are keyed by app id and audience so concurrent turns for
    different bots never share a client.
    """

    def __init__(
        self,
        app_id: str,
        *,
        credentials_builder: CredentialsBuilder,
        client_builder: ConnectorClientBuilder,
        credential_cache: ThreadSafeCache[tuple[str, str | None], Any],
        client_cache: ThreadSafeCache[tuple[str, str, str | None], ConnectorClient],
    ) -> None:
        self.app_id = app_id
        self._credentials_builder = credentials_builder
        self._client_builder = client_builder
        self._credential_cache = credential_cache
        self._client_cache = client_cache

    async def create(self, service_url: str, audience: str | None) -> ConnectorClient:
        if not service_url:
            raise ValueError("connector client requires a service url")
        client_key = (service_url, self.app_id, audience)
        cached = self._client_cache.get(client_key)
        if cached is not None:
            return cached

        credentials = self._credential_cache.get_or_add(
            (self.app_id, audience),
            lambda: self._credentials_builder(self.app_id, audience),
        )
        client = self._client_builder(service_url, credentials)
        if inspect.isawaitable(client):
            client = await client
        logger.debug("connector.client.created service_url={} app_id={}", service_url, self.app_id or "<anonymous>")
        # Another turn may have raced us here; keep whichever client landed first.
        return self._client_cache.get_or_add(client_key, lambda: client)
