"""
ollama_session/cli.py
=====================

Command‑line interface for an Ollama server, built on :class:`Session`.

Commands
--------
* ``status``            server version
* ``models``            available (or ``--running``) models as a table
* ``show`` / ``pull`` / ``copy`` / ``rm`` / ``unload``   model management
* ``ask``               one-shot query, answer rendered as Markdown
* ``chat``              interactive chat with multi‑line prompt entry
* ``embed``             embedding vectors as JSON

Inside ``chat``
---------------
* blank line or ``/send`` submits the prompt
* ``/new`` clears the history, ``/undo`` drops the last turn, ``/stats``
  shows the last response statistics
* Ctrl‑C while **typing** → draft cleared (stay in prompt)
* Ctrl‑D (or Ctrl‑Z+Enter on Windows) → quit program
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .errors import OllamaSessionError
from .messages import Reply
from .session import THINKING_LEVELS, Session
from .transport import DEFAULT_TIMEOUT, OllamaTransport, ResponseStats

# ---------------------------------------------------------------------------

console = Console()
PREFIX_TEXT = Text("🦙 Ollama - ", style="bold cyan")
COMMANDS = {"/send", "/new", "/undo", "/stats"}


# ──────────────────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────────────────
def _parse_option(raw: str) -> Tuple[str, Any]:
    """Turn ``name=value`` into a typed pair (bool, int, float, or None to clear)."""
    name, sep, text = raw.partition("=")
    if not sep or not name:
        raise click.BadParameter(f"expected NAME=VALUE, got '{raw}'", param_hint="--option")
    lowered = text.strip().lower()
    if lowered in {"true", "false"}:
        return name.strip(), lowered == "true"
    if lowered in {"", "none", "default"}:
        return name.strip(), None
    try:
        return name.strip(), int(lowered)
    except ValueError:
        pass
    try:
        return name.strip(), float(lowered)
    except ValueError:
        raise click.BadParameter(f"'{text}' is not a number or boolean", param_hint="--option")


def _open_session(
    ctx: click.Context,
    model: Optional[str] = None,
    mode: str = "query",
    options: Tuple[str, ...] = (),
    think: Optional[str] = None,
    system: Optional[str] = None,
) -> Session:
    cfg: Dict[str, Any] = ctx.obj
    try:
        session = Session(cfg["host"], model=model, mode=mode)
        session.read_timeout = cfg["read_timeout"]
        session.write_timeout = cfg["write_timeout"]
        session.set_options(**dict(_parse_option(raw) for raw in options))
        if system:
            session.system_message = system
        if think is not None:
            session.thinking = think if think in THINKING_LEVELS else think == "on"
    except OllamaSessionError as exc:
        raise click.ClickException(str(exc)) from exc
    return session


def _render_reply(reply: Reply, hide_thinking: bool = False) -> None:
    """Print thinking (dimmed), the answer as Markdown, and any tool calls."""
    if reply.thinking and not hide_thinking:
        console.print(Panel(Text(reply.thinking, style="dim"), title="thinking", expand=False))
    if reply.tool_calls:
        console.print("[yellow]The model requests the following tool calls:[/]")
        console.print_json(json.dumps(reply.tool_calls))
    if reply.text:
        console.print(PREFIX_TEXT)
        console.print(Markdown(reply.text))
    console.print()


def _render_stats(stats: Optional[ResponseStats]) -> None:
    if stats is None:
        console.print("No stats to show. Make a query first or start a chat.")
        return
    table = Table(title=f"Answered by '{stats.model}' at {stats.created_at}", show_header=False)
    table.add_row("Total duration", f"{ResponseStats.seconds(stats.total_duration)} s")
    table.add_row("Load duration", f"{ResponseStats.seconds(stats.load_duration)} s")
    table.add_row("Evaluation duration", f"{ResponseStats.seconds(stats.eval_duration)} s")
    table.add_row("Prompt count", f"{stats.prompt_eval_count} tokens")
    table.add_row("Evaluation count", f"{stats.eval_count} tokens")
    console.print(table)


def _read_multiline_question() -> str:
    """
    Read a prompt of arbitrary length from ``stdin``.

    Terminators
    -----------
    * Blank line **after** ≥ 1 line of text, or
    * A line containing only one of the chat commands (case‑insensitive).

    Special keys
    ------------
    * Ctrl‑C → abandon current draft, return ``""`` (no request sent)
    * Ctrl‑D → exit program immediately
    """
    console.print(
        "[bold magenta]You[/] "
        "(multi‑line allowed; end with blank line or /send; /new, /undo, /stats; Ctrl‑D to quit)"
    )

    lines: List[str] = []
    while True:
        try:
            line = input()
        except KeyboardInterrupt:           # Ctrl‑C while typing
            console.print("[red]⏹️  Draft cleared (Ctrl‑C)[/]\n")
            return ""
        except EOFError:                    # Ctrl‑D / Ctrl‑Z+Enter
            console.print("\nGood‑bye 👋", style="cyan")
            raise SystemExit(0)

        sentinel = line.strip().lower()
        if sentinel in COMMANDS or (line == "" and lines):
            lines.append(line)              # keep sentinel/blank for caller
            break
        if line == "" and not lines:        # stray blank at start
            continue

        lines.append(line)

    return "\n".join(lines).rstrip("\n")


# ──────────────────────────────────────────────────────────────────────────
# Commands
# ──────────────────────────────────────────────────────────────────────────
model_option = click.option("--model", "-m", required=True, help="Ollama model name")
inference_options = [
    click.option(
        "--option", "-o", "options", multiple=True, metavar="NAME=VALUE",
        help="Custom inference option, e.g. temperature=0.2 (repeatable)",
    ),
    click.option(
        "--think", type=click.Choice(["on", "off", *THINKING_LEVELS]), default=None,
        help="Thinking mode for thinking-capable models",
    ),
    click.option("--system", default=None, help="System message"),
    click.option("--hide-thinking", is_flag=True, help="Do not print the thinking trace"),
]


def with_inference_options(func):
    for option in reversed(inference_options):
        func = option(func)
    return func


@click.group()
@click.option(
    "--host", envvar="OLLAMA_HOST", default=None,
    help="Ollama server URL [default: $OLLAMA_HOST or http://localhost:11434]",
)
@click.option("--read-timeout", default=DEFAULT_TIMEOUT, type=click.IntRange(min=1),
              show_default=True, help="Seconds to wait for a response")
@click.option("--write-timeout", default=DEFAULT_TIMEOUT, type=click.IntRange(min=1),
              show_default=True, help="Seconds to wait while sending a request")
@click.option("--verbose", "-v", is_flag=True, help="Log requests and model lifecycle")
@click.pass_context
def cli(ctx: click.Context, host: Optional[str], read_timeout: int,
        write_timeout: int, verbose: bool) -> None:
    """
    Talk to a local or remote Ollama server.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )
    ctx.obj = {"host": host, "read_timeout": read_timeout, "write_timeout": write_timeout}


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show the server address and version."""
    transport = OllamaTransport(ctx.obj["host"])
    try:
        version = transport.server_version()
    except OllamaSessionError as exc:
        raise click.ClickException(str(exc)) from exc
    console.print(f"Ollama [magenta]{version}[/] running at [cyan]{transport.host}[/]")


@cli.command()
@click.option("--running", is_flag=True, help="Only models loaded in memory")
@click.pass_context
def models(ctx: click.Context, running: bool) -> None:
    """List the models available on (or running in) the server."""
    session = _open_session(ctx)
    try:
        rows = session.describe_models(running=running)
    except OllamaSessionError as exc:
        raise click.ClickException(str(exc)) from exc
    if not rows:
        console.print("No models found. Use 'pull' to download one from the Ollama library.")
        return

    table = Table(title="Running models" if running else "Available models")
    for column in ("#", "model", "family", "format", "parameters", "quantization", "size (GB)"):
        table.add_column(column)
    for idx, row in enumerate(rows, start=1):
        size = f"{row.size_bytes / 1e9:.2f}" if row.size_bytes else ""
        table.add_row(str(idx), row.name, row.family or "", row.format or "",
                      row.parameter_size or "", row.quantization or "", size)
    console.print(table)


@cli.command()
@click.argument("model")
@click.pass_context
def show(ctx: click.Context, model: str) -> None:
    """Show details and capabilities of MODEL (name or 1-based index)."""
    session = _open_session(ctx)
    try:
        info = session.model_info(int(model) if model.isdigit() else model)
    except OllamaSessionError as exc:
        raise click.ClickException(str(exc)) from exc
    table = Table(title=info.name, show_header=False)
    table.add_row("family", info.family or "")
    table.add_row("format", info.format or "")
    table.add_row("parameters", info.parameter_size or "")
    table.add_row("quantization", info.quantization or "")
    table.add_row("size (bytes)", str(info.size_bytes or ""))
    table.add_row("capabilities", ", ".join(info.capabilities))
    console.print(table)


def _manage(ctx: click.Context, action: str, *args: Any) -> None:
    session = _open_session(ctx)
    refs = [int(arg) if isinstance(arg, str) and arg.isdigit() else arg for arg in args]
    try:
        with console.status(f"{action.replace('_', ' ')} {' '.join(args)} …"):
            getattr(session, action)(*refs)
    except OllamaSessionError as exc:
        raise click.ClickException(str(exc)) from exc
    console.print(f"[green]✔[/] {action.replace('_', ' ')}: {' → '.join(args)}")


@cli.command()
@click.argument("name")
@click.pass_context
def pull(ctx: click.Context, name: str) -> None:
    """Download NAME from the Ollama library."""
    _manage(ctx, "pull_model", name)


@cli.command()
@click.argument("source")
@click.argument("target")
@click.pass_context
def copy(ctx: click.Context, source: str, target: str) -> None:
    """Copy SOURCE (name or index) to a new model TARGET."""
    _manage(ctx, "copy_model", source, target)


@cli.command()
@click.argument("model")
@click.pass_context
def rm(ctx: click.Context, model: str) -> None:
    """Delete MODEL (name or index) from the server."""
    _manage(ctx, "delete_model", model)


@cli.command()
@click.argument("model")
@click.pass_context
def unload(ctx: click.Context, model: str) -> None:
    """Unload MODEL (name or index) from memory."""
    _manage(ctx, "unload_model", model)


@cli.command()
@click.argument("prompt")
@model_option
@click.option("--image", "images", multiple=True, help="Image file or base64 data (repeatable)")
@click.option("--stats", is_flag=True, help="Print response statistics")
@with_inference_options
@click.pass_context
def ask(ctx: click.Context, prompt: str, model: str, images: Tuple[str, ...], stats: bool,
        options: Tuple[str, ...], think: Optional[str], system: Optional[str],
        hide_thinking: bool) -> None:
    """Send a single PROMPT to MODEL."""
    session = _open_session(ctx, model, "query", options, think, system)
    try:
        with console.status("Thinking …"):
            reply = session.query(prompt, list(images) or None)
    except OllamaSessionError as exc:
        raise click.ClickException(str(exc)) from exc
    _render_reply(reply, hide_thinking)
    if stats:
        _render_stats(session.last_stats)


@cli.command()
@model_option
@with_inference_options
@click.pass_context
def chat(ctx: click.Context, model: str, options: Tuple[str, ...], think: Optional[str],
         system: Optional[str], hide_thinking: bool) -> None:
    """Chat interactively with MODEL."""
    session = _open_session(ctx, model, "chat", options, think, system)
    console.print(
        f"[bold cyan]Ollama chat[/] — model: [magenta]{session.active_model}[/], "
        f"server: [yellow]{session.server_url}[/]\n"
        "Press Ctrl‑D to quit, Ctrl‑C to discard a draft\n"
    )

    while True:
        question = _read_multiline_question()
        if not question.strip():
            continue

        command = question.strip().lower().splitlines()[-1].strip()
        if command == "/new":
            session.clear_history()
            console.print("[cyan]🔄  New chat started.[/]\n")
            continue
        if command == "/undo":
            session.clear_history("last")
            console.print(f"[cyan]↩️  Last turn removed ({len(session.history)} left).[/]\n")
            continue
        if command == "/stats":
            _render_stats(session.last_stats)
            continue
        if command == "/send":
            question = question.rstrip()[: -len("/send")]

        try:
            with console.status("Thinking …"):
                reply = session.chat(question.strip())
        except OllamaSessionError as exc:
            console.print(Text(f"{exc}\n", style="red"))
            continue
        _render_reply(reply, hide_thinking)


@cli.command()
@click.argument("texts", nargs=-1, required=True)
@model_option
@click.option("--dims", default=0, type=click.IntRange(min=0), show_default=True,
              help="Vector length override (0 keeps the model's default)")
@click.pass_context
def embed(ctx: click.Context, texts: Tuple[str, ...], model: str, dims: int) -> None:
    """Print embedding vectors of TEXTS as JSON."""
    session = _open_session(ctx, model, "embed")
    try:
        vectors = session.embed(list(texts), dims)
    except OllamaSessionError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(json.dumps(vectors))


if __name__ == "__main__":
    cli()
