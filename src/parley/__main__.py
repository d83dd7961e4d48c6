"""parley CLI bootstrap."""

from __future__ import annotations

import asyncio

import typer

from parley.config import get_settings
from parley.console import build_console_session
from parley.culture import is_valid_locale
from parley.logging_utils import configure_logging


def create_cli_app() -> typer.Typer:
    app = typer.Typer(name="parley", help="Turn engine for conversational bots", add_completion=False)

    @app.command("chat")
    def chat(
        locale: str | None = typer.Option(None, "--locale", "-l", help="Locale attached to every message"),
        log_level: str | None = typer.Option(None, "--log-level", help="Override PARLEY_LOG_LEVEL"),
    ) -> None:
        """Talk to the sample echo bot in the terminal."""

        if locale is not None and not is_valid_locale(locale):
            raise typer.BadParameter(f"invalid locale: {locale}", param_hint="--locale")
        settings = get_settings()
        configure_logging(profile="chat", level=log_level or settings.log_level)
        session = build_console_session(settings)
        asyncio.run(session.run(locale or settings.default_locale))

    @app.command("hooks")
    def hooks() -> None:
        """Show the middleware registered by the console adapter."""

        session = build_console_session(get_settings())
        report = session.adapter.middleware.hook_report()
        if not report:
            typer.echo("(no middleware)")
            return
        for hook_name, names in report.items():
            typer.echo(f"{hook_name}: {', '.join(names)}")

    return app


app = create_cli_app()

if __name__ == "__main__":
    app()
