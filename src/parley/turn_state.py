"""Typed per-turn capability registry."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from parley.errors import ConfigurationError

if TYPE_CHECKING:
    from parley.auth import ClaimsIdentity
    from parley.connector import ConnectorClient, UserTokenClient
    from parley.schema import Activity
    from parley.types import BotCallback

_MISSING = object()


@dataclass
class TurnState:
    """Collaborators and side-channel values owned by one turn.

    Well-known capabilities are explicit fields; anything else (bot state
    caches, middleware bookkeeping) lives in the string-keyed ``values`` map.
    """

    identity: ClaimsIdentity | None = None
    audience: str | None = None
    connector_client: ConnectorClient | None = None
    user_token_client: UserTokenClient | None = None
    callback: BotCallback | None = None
    locale: str | None = None
    invoke_response: Activity | None = None
    values: dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None, *, kind: type | None = None) -> Any:
        value = self.values.get(key, _MISSING)
        if value is _MISSING:
            return default
        if kind is not None and not isinstance(value, kind):
            raise TypeError(f"turn state {key!r} holds {type(value).__name__}, expected {kind.__name__}")
        return value

    def set(self, key: str, value: Any) -> None:
        self.values[key] = value

    def pop(self, key: str, default: Any = None) -> Any:
        return self.values.pop(key, default)

    def __getitem__(self, key: str) -> Any:
        return self.values[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self.values[key] = value

    def __delitem__(self, key: str) -> None:
        del self.values[key]

    def __contains__(self, key: object) -> bool:
        return key in self.values

    def require(self, capability: str) -> Any:
        """Return a well-known capability or fail when the adapter did not provide it."""

        value = getattr(self, capability, None)
        if value is None:
            raise ConfigurationError(f"turn state has no {capability}")
        return value

    def clear(self) -> None:
        self.connector_client = None
        self.user_token_client = None
        self.callback = None
