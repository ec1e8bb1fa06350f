from __future__ import annotations

import asyncio
import json
import sys

import typer

from .core.config import get_settings
from .core.paths import data_dir
from .core.store import USER_NAME_KEY, JsonFileStore
from .runtime.router import route

cli = typer.Typer(name="mindpod-voice", help="MindPod voice assistant")
name_cli = typer.Typer(help="Stored display name")

cli.add_typer(name_cli, name="name")


def _store() -> JsonFileStore:
    return JsonFileStore(data_dir(get_settings()) / "store.json")


@cli.command()
def run() -> None:
    """Start the assistant. Enter toggles listening, Ctrl+C quits."""
    try:
        asyncio.run(_run_interactive())
    except KeyboardInterrupt:
        typer.echo("Bye.")


async def _run_interactive() -> None:
    from .runtime.assistant import build_assistant

    assistant = build_assistant(
        navigator=lambda screen: typer.echo(f"-> {screen.value}"),
        on_transcript=lambda event: typer.echo(f"You: {event.text}"),
    )
    assistant.activation.on_change(lambda look: typer.echo(f"[{look.status.value}] {look.title}"))
    assistant.start()
    loop = asyncio.get_running_loop()
    try:
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            assistant.activation.press()
    finally:
        assistant.shutdown()


@cli.command("route")
def route_command(text: str) -> None:
    """Show which action a transcript maps to."""
    typer.echo(route(text).model_dump_json(exclude_none=True))


@cli.command()
def voices() -> None:
    """List installed synthesis voices."""
    from .audio.synthesis import PiperSynthesisBackend

    found = PiperSynthesisBackend(get_settings()).discover()
    typer.echo(json.dumps({"voices": [{"name": v.name, "lang": v.lang} for v in found]}, ensure_ascii=False))


@name_cli.command("show")
def name_show() -> None:
    name = _store().get(USER_NAME_KEY)
    typer.echo(name if name is not None else "(not set)")


@name_cli.command("forget")
def name_forget() -> None:
    _store().delete(USER_NAME_KEY)
    typer.echo("Display name cleared.")


if __name__ == "__main__":  # pragma: no cover
    cli()
