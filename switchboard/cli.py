from __future__ import annotations
from pathlib import Path
from typing import Optional
import typer
from rich import print
from rich.table import Table
from switchboard.channels.console import CONSOLE_CHANNEL
from switchboard.config import load_settings
from switchboard.text.formatter import render as render_text

app = typer.Typer(help="Switchboard CLI - run the channel gateway and inspect its configuration.")

@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Bind address (default from SWB_HOST)."),
    port: Optional[int] = typer.Option(None, help="Bind port (default from SWB_PORT)."),
    echo: bool = typer.Option(False, "--echo", help="Answer every inbound message with its own text."),
):
    """Start the gateway HTTP server and all enabled channels."""
    import uvicorn
    from switchboard.core.gateway import echo_agent
    from switchboard.server.app import create_app

    settings = load_settings()
    if host:
        settings.host = host
    if port:
        settings.port = port
    app_ = create_app(settings, agent=echo_agent if echo else None)
    uvicorn.run(app_, host=settings.host, port=settings.port, log_level=settings.log_level.lower())

@app.command()
def channels():
    """List configured channels."""
    settings = load_settings()
    t = Table(title="Channels")
    t.add_column("name"); t.add_column("kind"); t.add_column("enabled"); t.add_column("url"); t.add_column("allow_from")
    if settings.console_enabled:
        t.add_row(CONSOLE_CHANNEL, "console", "yes", "-", "*")
    for name, cfg in sorted(settings.channels.items()):
        t.add_row(
            name,
            cfg.kind,
            "yes" if cfg.enabled else "no",
            cfg.url or "-",
            ", ".join(cfg.allow_from) or "*",
        )
    print(t)

@app.command()
def render(
    text: Optional[str] = typer.Argument(None, help="Markdown text to render."),
    file: Optional[Path] = typer.Option(None, "--file", "-f", exists=True, dir_okay=False, help="Read the text from a file."),
    max_len: int = typer.Option(4000, min=1, help="Maximum characters per message."),
    markup: str = typer.Option("plain", help="plain or html."),
):
    """Preview how a reply would be chunked and marked up."""
    if markup not in ("plain", "html"):
        raise typer.BadParameter("markup must be 'plain' or 'html'")
    if file is not None:
        text = file.read_text(encoding="utf-8")
    if not text:
        raise typer.BadParameter("give a text or --file")
    chunks = render_text(text, max_len, markup)  # type: ignore[arg-type]
    for i, piece in enumerate(chunks, 1):
        typer.echo(f"--- chunk {i}/{len(chunks)} ({len(piece)} chars)")
        typer.echo(piece)

def main():
    """Entry point for the CLI."""
    app()
