"""parley - turn engine for conversational bots."""

from .activity_handler import ActivityHandler, chain
from .adapter import BotAdapter, CloudAdapter
from .auth import ClaimsIdentity, ConfigurationBotFrameworkAuthentication
from .config import Settings
from .middleware import AutoSaveStateMiddleware, MiddlewareSet
from .schema import Activity, ActivityTypes, ConversationReference, InvokeResponse
from .state import ConversationState, MemoryStorage, PrivateConversationState, UserState
from .turn_context import TurnContext
from .typing_indicator import ShowTypingMiddleware

__version__ = "0.1.0"

__all__ = [
    "Activity",
    "ActivityHandler",
    "ActivityTypes",
    "AutoSaveStateMiddleware",
    "BotAdapter",
    "ClaimsIdentity",
    "CloudAdapter",
    "ConfigurationBotFrameworkAuthentication",
    "ConversationReference",
    "ConversationState",
    "InvokeResponse",
    "MemoryStorage",
    "MiddlewareSet",
    "PrivateConversationState",
    "Settings",
    "ShowTypingMiddleware",
    "TurnContext",
    "UserState",
    "chain",
]
