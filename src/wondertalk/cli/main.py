"""
Command Line Interface for WonderTalk.

Runs the HTTP service, or the whole discovery pipeline locally against a
photo on disk, which is handy for trying prompts and voices without a
browser client.

Example:
    $ wondertalk serve --port 8787
    $ wondertalk discover ./eiffel.jpg --chat
    $ wondertalk config show
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import sys
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from wondertalk import __version__
from wondertalk.api.app import run_server
from wondertalk.config import APIKeyManager, AppConfig, ConfigError, get_key_manager, load_config
from wondertalk.context import AppContext, build_context
from wondertalk.core.models import AnalysisStatus
from wondertalk.pipeline.conversation import ConversationError
from wondertalk.pipeline.ingestion import IngestionError
from wondertalk.utils.logging import setup_logging

logger = logging.getLogger(__name__)

console = Console()

EXIT_WORDS = {"quit", "exit", "bye"}


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================


def print_header(text: str) -> None:
    console.print()
    console.print(Panel(text, style="bold blue", expand=False))
    console.print()


def print_success(text: str) -> None:
    console.print(f"[bold green]✓[/bold green] {text}")


def print_warning(text: str) -> None:
    console.print(f"[bold yellow]⚠[/bold yellow] {text}")


def print_error(text: str) -> None:
    console.print(f"[bold red]✗[/bold red] {text}")


def _flatten(data: dict[str, Any], prefix: str = "") -> list[tuple[str, Any]]:
    rows: list[tuple[str, Any]] = []
    for key, value in data.items():
        name = f"{prefix}.{key}" if prefix else key
        if isinstance(value, dict):
            rows.extend(_flatten(value, name))
        else:
            rows.append((name, value))
    return rows


def _load(ctx: click.Context) -> AppConfig:
    try:
        return load_config(ctx.obj.get("config_path"))
    except ConfigError as e:
        print_error(str(e))
        sys.exit(1)


# =============================================================================
# MAIN CLI GROUP
# =============================================================================


@click.group()
@click.version_option(__version__, prog_name="wondertalk")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--config", "config_path", type=click.Path(path_type=Path), help="Custom config file")
@click.pass_context
def main(ctx: click.Context, verbose: bool, debug: bool, config_path: Path | None) -> None:
    """
    WonderTalk - snap a photo, then talk with what's in it.
    """
    setup_logging(level="DEBUG" if debug else "INFO" if verbose else "WARNING")
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["debug"] = debug


# =============================================================================
# SERVE COMMAND
# =============================================================================


@main.command()
@click.option("--host", help="Bind address (defaults to server.host)")
@click.option("--port", type=int, help="Port (defaults to server.port)")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Run the HTTP API."""
    config = _load(ctx)
    setup_logging(level="DEBUG" if ctx.obj["debug"] else config.log_level)
    app_ctx = build_context(config)
    bind_host = host or config.server.host
    bind_port = port or config.server.port
    print_header(f"WonderTalk API on http://{bind_host}:{bind_port}")
    run_server(app_ctx, host=bind_host, port=bind_port)


# =============================================================================
# DISCOVER COMMAND
# =============================================================================


async def _discover(app_ctx: AppContext, image: Path, chat: bool) -> int:
    mime_type = mimetypes.guess_type(image.name)[0] or "application/octet-stream"
    app_ctx.ingestion.validate_mime_type(mime_type)
    data = image.read_bytes()
    app_ctx.ingestion.validate_size(len(data))

    session = app_ctx.sessions.create_session(user_agent=f"wondertalk-cli/{__version__}")
    ticket = app_ctx.uploads.create_upload_target(session.session_id)
    upload = await app_ctx.uploads.accept_upload(
        ticket.upload_id, ticket.token, data, mime_type, original_filename=image.name
    )

    with console.status("Looking closely at your photo..."):
        analysis = app_ctx.orchestrator.create_analysis(session.session_id, upload.image_url)
        result = await app_ctx.orchestrator.wait(analysis.analysis_id)

    if result is None or result.status is not AnalysisStatus.READY:
        print_error(f"Analysis failed: {result.error if result else 'unknown analysis'}")
        return 1

    entity = result.entity
    table = Table(show_header=False, box=None)
    table.add_row("Entity", f"{entity.label} ({entity.category.value})")
    table.add_row("Speaking as", f"{entity.roleplay_name} [{entity.roleplay_mode.value}]")
    table.add_row("Confidence", f"{entity.confidence:.0%}")
    table.add_row("Safety", result.safety_status.value if result.safety_status else "-")
    table.add_row("Audio", result.first_reply_audio_stream_url or "text only")
    console.print(table)
    console.print(Panel(result.first_reply_text or "", title=entity.roleplay_name, border_style="cyan"))

    if not chat:
        return 0

    console.print("[dim]Ask a question (or type 'quit').[/dim]")
    while True:
        question = click.prompt("You", default="", show_default=False).strip()
        if not question or question.lower() in EXIT_WORDS:
            return 0
        try:
            turn = await app_ctx.conversations.chat_turn(
                session.session_id, result.conversation_id, text=question
            )
        except ConversationError as e:
            print_error(str(e))
            return 1
        console.print(
            Panel(
                turn.turn.assistant_text,
                title=f"{entity.roleplay_name} [{turn.turn.safety_verdict.value}]",
                border_style="cyan",
            )
        )
        for suggestion in turn.followup_suggestions:
            console.print(f"  [dim]• {suggestion}[/dim]")


@main.command()
@click.argument("image", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--chat", is_flag=True, help="Keep talking after the first reply")
@click.pass_context
def discover(ctx: click.Context, image: Path, chat: bool) -> None:
    """
    Run the discovery pipeline on a local photo.

    Example:
        wondertalk discover ./photos/bust.jpg --chat
    """
    config = _load(ctx)
    print_header(f"Discovering {image.name}")
    try:
        code = asyncio.run(_discover(build_context(config), image, chat))
    except IngestionError as e:
        print_error(str(e))
        sys.exit(1)
    sys.exit(code)


# =============================================================================
# CONFIG COMMANDS
# =============================================================================


@main.group()
def config() -> None:
    """Inspect configuration and manage API keys."""
    pass


@config.command("show")
@click.pass_context
def show(ctx: click.Context) -> None:
    """Show the effective configuration."""
    app_config = _load(ctx)
    manager = get_key_manager()

    table = Table(title="WonderTalk Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for name, value in _flatten(app_config.to_summary()):
        table.add_row(name, str(value))
    console.print(table)

    for provider in APIKeyManager.ENV_VARS:
        if manager.get_key(provider) is not None:
            print_success(f"{provider} API key: configured")
        else:
            print_warning(f"{provider} API key: not configured")


@config.command("set-key")
@click.argument("provider", type=click.Choice(sorted(APIKeyManager.ENV_VARS)))
def set_key(provider: str) -> None:
    """Store a provider API key in the system keyring."""
    key = click.prompt(f"Enter your {provider} API key", hide_input=True).strip()
    if len(key) < 10:
        print_error("Invalid API key format")
        sys.exit(1)
    try:
        get_key_manager().store_key(provider, key)
    except ConfigError as e:
        print_error(str(e))
        sys.exit(1)
    print_success(f"{provider} API key stored in keyring")


if __name__ == "__main__":
    main()
