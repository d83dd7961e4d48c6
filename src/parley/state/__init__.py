"""Bot state persistence."""

from parley.state.bot_state import (
    BotState,
    BotStateSet,
    CachedBotState,
    ConversationState,
    PrivateConversationState,
    StatePropertyAccessor,
    UserState,
    compute_hash,
)
from parley.state.storage import ETAG_KEY, WILDCARD_ETAG, MemoryStorage, Storage, etag_of

__all__ = [
    "ETAG_KEY",
    "WILDCARD_ETAG",
    "BotState",
    "BotStateSet",
    "CachedBotState",
    "ConversationState",
    "MemoryStorage",
    "PrivateConversationState",
    "StatePropertyAccessor",
    "Storage",
    "UserState",
    "compute_hash",
    "etag_of",
]
