"""CLI entry point for challenge-chat."""

import asyncio
import logging

import click
import uvicorn

from .config import ChatSettings
from .core import ConversationContext, PaginationState
from .export import transcript_to_json, transcript_to_markdown
from .session import ConversationSession
from .state import ConversationState
from .transports import get_transport


@click.group()
@click.option("--log-level", default="WARNING", help="Python logging level.")
def main(log_level: str):
    """Talk to the practice-challenge assistant."""
    logging.basicConfig(level=log_level.upper(), format="%(levelname)s %(name)s: %(message)s")


@main.command()
@click.option("--target", type=int, required=True, help="Challenge id.")
def chat(target: int):
    """Start an interactive conversation about a challenge."""
    asyncio.run(_chat_loop(target))


@main.command()
@click.option("--target", type=int, required=True, help="Challenge id.")
@click.option("--format", "fmt", type=click.Choice(["md", "json"]), default="md", help="Output format.")
@click.option("--all", "load_all", is_flag=True, help="Walk back through every older page.")
def history(target: int, fmt: str, load_all: bool):
    """Print a challenge's conversation history."""
    click.echo(asyncio.run(_export_history(target, fmt, load_all)))


@main.command()
@click.option("--port", default=8000, help="Port to serve on.")
@click.option("--host", default="127.0.0.1", help="Host to bind to.")
def serve(port: int, host: str):
    """Start the in-memory development backend."""
    click.echo(f"Starting challenge-chat dev backend on http://{host}:{port}/api")
    uvicorn.run("challenge_chat.server:app", host=host, port=port, reload=False)


# ── Helpers ──────────────────────────────────────────────────────


async def _export_history(target: int, fmt: str, load_all: bool) -> str:
    settings = ChatSettings.from_env()
    transport = get_transport(settings)
    try:
        async with ConversationSession(transport, settings=settings) as session:
            await session.load_latest(target)
            if session.state.banner:
                raise click.ClickException(session.state.banner.text)
            while load_all and session.pagination is PaginationState.LOADED:
                if not await session.load_older():
                    break
            context = ConversationContext(target_id=target)
            if fmt == "json":
                return transcript_to_json(context, session.messages)
            return transcript_to_markdown(context, session.messages)
    finally:
        await transport.aclose()


def _banner_printer():
    """Return a state subscriber that echoes each new banner to stderr once."""
    last = None

    def on_change(state: ConversationState) -> None:
        nonlocal last
        if state.banner is not None and state.banner is not last:
            click.echo(f"[{state.banner.kind}] {state.banner.text}", err=True)
        last = state.banner

    return on_change


async def _chat_loop(target: int) -> None:
    settings = ChatSettings.from_env()
    transport = get_transport(settings)
    try:
        async with ConversationSession(transport, settings=settings) as session:
            session.state.subscribe(_banner_printer())
            await session.load_latest(target)
            for msg in session.messages:
                click.echo(f"{msg.role}: {msg.content}")

            while True:
                text = await asyncio.to_thread(click.prompt, "you", default="", show_default=False)
                command = text.strip()
                if command in ("/quit", "/exit"):
                    break
                if command == "/older":
                    before = set(session.store.ids())
                    if await session.load_older():
                        for msg in session.messages:
                            if msg.id not in before:
                                click.echo(f"{msg.role}: {msg.content}")
                    else:
                        click.echo("(no older messages)")
                    continue
                if command == "/clear":
                    await session.clear()
                    continue
                if command == "/retry":
                    await session.retry()
                    continue
                result = await session.send(text)
                if result is not None and result.ok:
                    click.echo(f"assistant: {result.message.content}")
    finally:
        await transport.aclose()
