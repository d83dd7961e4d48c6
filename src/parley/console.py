"""Local console emulator: a terminal connector and a small sample bot."""

from __future__ import annotations

import asyncio
import itertools
import uuid
from datetime import UTC, datetime

from loguru import logger
from rich.console import Console
from rich.markup import escape

from parley.activity_handler import ActivityHandler
from parley.adapter import CloudAdapter
from parley.auth import ConfigurationBotFrameworkAuthentication
from parley.config import Settings
from parley.middleware import AutoSaveStateMiddleware
from parley.schema import (
    Activity,
    ActivityTypes,
    ChannelAccount,
    Channels,
    ConversationAccount,
    ResourceResponse,
)
from parley.state import ConversationState, MemoryStorage, Storage
from parley.turn_context import TurnContext
from parley.typing_indicator import ShowTypingMiddleware

CONSOLE_SERVICE_URL = "console://local"
EXIT_COMMANDS = frozenset({"exit", "quit", ":q"})


class ConsoleConnector:
    """Connector client that renders outbound activities on a rich console."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()
        self._ids = itertools.count(1)

    async def send_to_conversation(self, activity: Activity) -> ResourceResponse:
        return self._render(activity)

    async def reply_to_activity(self, activity: Activity) -> ResourceResponse:
        return self._render(activity)

    async def update_activity(self, activity: Activity) -> ResourceResponse:
        self.console.print(f"[dim](edited {activity.id})[/dim] {escape(activity.text or '')}")
        return ResourceResponse(id=activity.id or "")

    async def delete_activity(self, conversation_id: str, activity_id: str) -> None:
        self.console.print(f"[dim](deleted {activity_id})[/dim]")

    def _render(self, activity: Activity) -> ResourceResponse:
        if activity.type == ActivityTypes.TYPING:
            self.console.print("[dim]bot is typing...[/dim]")
        elif activity.type == ActivityTypes.MESSAGE:
            self.console.print(f"[bold cyan]bot>[/bold cyan] {escape(activity.text or '')}")
            for attachment in activity.attachments or []:
                self.console.print(f"[dim]  {escape(f'[attachment {attachment.content_type}]')}[/dim]")
        else:
            self.console.print(f"[dim]<{activity.type}>[/dim]")
        return ResourceResponse(id=str(next(self._ids)))


def create_console_adapter(settings: Settings, connector: ConsoleConnector) -> CloudAdapter:
    """Anonymous cloud adapter whose every connector client is ``connector``."""

    auth = ConfigurationBotFrameworkAuthentication(
        settings.model_copy(update={"app_id": "", "app_password": ""}),
        client_builder=lambda service_url, credentials: connector,
    )

    async def on_turn_error(turn_context: TurnContext, error: Exception) -> None:
        logger.opt(exception=error).error("console.turn.error")
        await turn_context.send_activity("The bot encountered an error. See the log for details.")

    return CloudAdapter(auth, on_turn_error, settings=settings)


def create_echo_bot(storage: Storage) -> tuple[ActivityHandler, ConversationState]:
    """Echo bot that counts the turns of each conversation."""

    conversation_state = ConversationState(storage)
    turn_count = conversation_state.create_property("turn_count", int)
    handler = ActivityHandler()

    @handler.on("message_activity")
    async def echo(turn_context: TurnContext) -> None:
        count = await turn_count.get(turn_context, 0) + 1
        await turn_count.set(turn_context, count)
        await turn_context.send_activity(f"[{count}] you said: {turn_context.activity.text}")

    @handler.on("members_added")
    async def greet(turn_context: TurnContext, members: list[ChannelAccount]) -> None:
        for member in members:
            await turn_context.send_activity(f"Hello {member.name or member.id}! Type 'exit' to leave.")

    return handler, conversation_state


class ConsoleSession:
    """One interactive conversation between the terminal user and a bot."""

    def __init__(self, adapter: CloudAdapter, bot: ActivityHandler, *, console: Console | None = None) -> None:
        self.adapter = adapter
        self.bot = bot
        self.console = console or Console()
        self.conversation = ConversationAccount(id=f"console-{uuid.uuid4().hex[:8]}")
        self.user = ChannelAccount(id="user", name="User", role="user")
        self.bot_account = ChannelAccount(id="bot", name="Bot", role="bot")

    def build_activity(self, activity_type: str, **fields: object) -> Activity:
        return Activity(
            type=activity_type,
            id=str(uuid.uuid4()),
            timestamp=datetime.now(UTC),
            channel_id=Channels.CONSOLE,
            service_url=CONSOLE_SERVICE_URL,
            conversation=self.conversation,
            from_property=self.user,
            recipient=self.bot_account,
            **fields,
        )

    async def send_text(self, text: str, locale: str | None = None) -> None:
        await self.adapter.process_inbound("", self.build_activity(ActivityTypes.MESSAGE, text=text, locale=locale), self.bot)

    async def start(self) -> None:
        await self.adapter.process_inbound(
            "",
            self.build_activity(ActivityTypes.CONVERSATION_UPDATE, members_added=[self.user]),
            self.bot,
        )

    async def run(self, locale: str | None = None) -> None:
        await self.start()
        try:
            while True:
                try:
                    line = await asyncio.to_thread(self.console.input, "[bold green]you>[/bold green] ")
                except EOFError:
                    break
                text = line.strip()
                if not text:
                    continue
                if text.lower() in EXIT_COMMANDS:
                    break
                await self.send_text(text, locale)
        finally:
            await self.adapter.process_inbound(
                "",
                self.build_activity(ActivityTypes.END_OF_CONVERSATION, code="completedSuccessfully"),
                self.bot,
            )
            await self.adapter.shutdown(timeout=1.0)


def build_console_session(settings: Settings, *, console: Console | None = None) -> ConsoleSession:
    console = console or Console()
    connector = ConsoleConnector(console)
    adapter = create_console_adapter(settings, connector)
    bot, conversation_state = create_echo_bot(MemoryStorage())
    adapter.use(ShowTypingMiddleware(settings.typing_delay_seconds, settings.typing_period_seconds))
    adapter.use(AutoSaveStateMiddleware(conversation_state))
    return ConsoleSession(adapter, bot, console=console)
