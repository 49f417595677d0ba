"""CLI client for supportkb.

Provides the command-line interface for collecting support messages, running
learning sessions and asking questions against the knowledge base.
"""

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from supportkb.bot.responder import QuestionResponder
from supportkb.knowledge.admin import AdminService
from supportkb.knowledge.cache import KnowledgeCache
from supportkb.knowledge.learner import Learner, LearningInProgressError
from supportkb.llm.dspy_service import DSPyKnowledgeService, configure_dspy_lm
from supportkb.models.config import AppConfig, ConfigLoader
from supportkb.models.records import LearningSession
from supportkb.sources.collector import CollectionReport, Collector
from supportkb.sources.handler import MessageEventHandler
from supportkb.sources.slack import SlackConversationsClient
from supportkb.storage import KnowledgeStorage, StorageError, create_storage

# Configure logging to stay quiet by default, will be adjusted by verbose flag
logging.basicConfig(
    level=logging.WARNING, format="%(message)s", datefmt="[%X]", handlers=[RichHandler(rich_tracebacks=True)]
)

app = typer.Typer(help="supportkb - Support knowledge base learned from Slack conversations")
console = Console()


class State:
    """Application state container."""

    def __init__(self) -> None:
        """Initialize application state."""
        self.config: AppConfig = AppConfig()
        self.data_dir: str = "data"
        self.verbose: bool = False


state = State()


@dataclass
class Runtime:
    """Wired application components sharing one store and one cache."""

    config: AppConfig
    storage: KnowledgeStorage
    cache: KnowledgeCache
    service: DSPyKnowledgeService
    learner: Learner
    admin: AdminService
    responder: QuestionResponder


def build_runtime(config: AppConfig, data_dir: str) -> Runtime:
    """Create storage, cache, learner and responder from configuration.

    The language model and the Slack client are not touched here, so commands
    that need neither can run without their credentials.
    """
    storage = create_storage(config.storage, data_dir)
    cache = KnowledgeCache(storage)
    cache.initialize()
    service = DSPyKnowledgeService()
    learner = Learner(cache, storage, service, fallback_on_failure=config.learning.fallback_on_failure)
    admin = AdminService(cache, storage, learner)
    responder = QuestionResponder(cache, service, admin, config.learning.confidence_threshold)
    return Runtime(config, storage, cache, service, learner, admin, responder)


def build_collector(runtime: Runtime) -> Collector:
    """Create a collector over the Slack API. Requires ``SLACK_BOT_TOKEN``."""
    return Collector(SlackConversationsClient(), runtime.storage, runtime.config.slack)


def _runtime() -> Runtime:
    try:
        return build_runtime(state.config, state.data_dir)
    except StorageError as e:
        console.print(f"[red]Failed to open storage: {e}[/red]")
        raise typer.Exit(code=1)


def _configure_llm() -> None:
    try:
        configure_dspy_lm(state.config.llm)
    except RuntimeError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)


def _print_report(report: CollectionReport) -> None:
    table = Table(title=f"Collection ({report.mode.value})")
    table.add_column("Channel", style="cyan")
    table.add_column("Status")
    table.add_column("Records", justify="right")
    table.add_column("Pages", justify="right")
    table.add_column("Error", style="red")
    colors = {"completed": "green", "skipped": "yellow", "failed": "red"}
    for ch in report.channels:
        color = colors.get(ch.status.value, "white")
        table.add_row(ch.channel_id, f"[{color}]{ch.status.value}[/{color}]", str(ch.records), str(ch.pages), ch.error or "")
    console.print(table)
    console.print(
        f"Collected [bold]{report.records_collected}[/bold] records in {report.duration_seconds:.1f}s, "
        f"cursor advanced: {'[green]yes[/green]' if report.cursor_advanced else '[yellow]no[/yellow]'}"
    )
    if report.error:
        console.print(f"[red]Collection aborted: {report.error}[/red]")


def _print_session(session: LearningSession) -> None:
    table = Table(title=f"Learning Session {session.id}")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="magenta")
    table.add_row("Status", session.status.value)
    table.add_row("Messages Processed", str(session.messages_processed))
    table.add_row("Knowledge Before", f"{session.knowledge_length_before} chars")
    table.add_row("Knowledge After", f"{session.knowledge_length_after} chars")
    table.add_row("Changes", str(session.change_count))
    if session.summary:
        table.add_row("Summary", session.summary)
    if session.error:
        table.add_row("Error", f"[red]{session.error}[/red]")
    console.print(table)


@app.callback()  # type: ignore[misc]
def main(
    ctx: typer.Context,
    config: str = typer.Option("config/supportkb.yaml", "--config", help="Path to configuration file"),
    data: str = typer.Option("data", "--data", help="Path to data directory"),
    verbose: bool = typer.Option(False, "--verbose", help="Enable verbose logging (DEBUG level)"),
) -> None:
    """supportkb - Support knowledge base learned from Slack conversations."""
    state.data_dir = data
    state.verbose = verbose

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logging.getLogger("supportkb").setLevel(logging.DEBUG)
    else:
        logging.getLogger().setLevel(logging.INFO)
        logging.getLogger("supportkb").setLevel(logging.INFO)

    state.config = ConfigLoader.load(config)
    Path(data).mkdir(parents=True, exist_ok=True)


@app.command()  # type: ignore[misc]
def collect() -> None:
    """Collect new messages from every channel the bot can see."""
    runtime = _runtime()
    try:
        collector = build_collector(runtime)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)

    with Progress(SpinnerColumn(), TextColumn("[bold blue]Collecting messages..."), transient=True) as progress:
        progress.add_task("collect", total=None)
        report = collector.collect()

    _print_report(report)
    if not report.completed:
        raise typer.Exit(code=1)


@app.command()  # type: ignore[misc]
def ingest(
    events_file: Path = typer.Argument(..., help="JSON file with a list of message events (or one event per line)"),
) -> None:
    """Store message events captured from the real-time API."""
    raw = events_file.read_text()
    try:
        events: List[Dict[str, Any]] = json.loads(raw)
        if isinstance(events, dict):
            events = [events]
    except json.JSONDecodeError:
        events = [json.loads(line) for line in raw.splitlines() if line.strip()]

    runtime = _runtime()
    handler = MessageEventHandler(runtime.storage, page_size=runtime.config.slack.page_size)
    stored = 0
    for event in events:
        stored += len(handler.handle_message(event))
    console.print(f"[green]Stored {stored} records from {len(events)} events.[/green]")


@app.command()  # type: ignore[misc]
def learn() -> None:
    """Run one learning session over the unconsumed records."""
    runtime = _runtime()
    _configure_llm()

    with Progress(SpinnerColumn(), TextColumn("[bold green]Learning..."), transient=True) as progress:
        progress.add_task("learn", total=None)
        session = runtime.admin.trigger_learning()

    _print_session(session)
    if not session.success:
        raise typer.Exit(code=1)


@app.command()  # type: ignore[misc]
def ask(
    question: str = typer.Argument(..., help="The question to ask"),
) -> None:
    """Ask a question against the knowledge base."""
    runtime = _runtime()
    _configure_llm()

    with Progress(SpinnerColumn(), TextColumn("[bold green]Thinking..."), transient=True) as progress:
        progress.add_task("think", total=None)
        reply = runtime.responder.respond(question)

    console.print(f"\n[bold]Question:[/bold] {question}")
    console.print(f"\n[bold]Answer:[/bold]\n{reply.text}")


@app.command()  # type: ignore[misc]
def reset() -> None:
    """Reset the knowledge base and mark every collected record consumed."""
    if not typer.confirm("Are you sure you want to clear the entire Knowledge Base?", default=False):
        console.print("[yellow]Operation cancelled.[/yellow]")
        return

    runtime = _runtime()
    try:
        cleared = runtime.admin.reset_knowledge()
    except (LearningInProgressError, StorageError) as e:
        console.print(f"[red]Reset failed: {e}[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]Knowledge Base cleared successfully ({cleared} records marked consumed).[/green]")


@app.command()  # type: ignore[misc]
def export(
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the snapshot to this file"),
) -> None:
    """Export knowledge, stats and pending records as JSON."""
    runtime = _runtime()
    snapshot = runtime.admin.export_snapshot()
    payload = json.dumps(snapshot, indent=2, ensure_ascii=False)
    if output:
        output.write_text(payload)
        console.print(f"[green]Snapshot written to {output}[/green]")
    else:
        console.print_json(payload)


@app.command()  # type: ignore[misc]
def stats() -> None:
    """Show knowledge base statistics."""
    runtime = _runtime()
    data = runtime.cache.stats()

    table = Table(title="Knowledge Base Overview")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="magenta")
    table.add_row("Knowledge Length", f"{data.knowledge_length} chars")
    table.add_row("Knowledge Version", str(data.version))
    table.add_row("Last Updated", data.last_updated.isoformat() if data.last_updated else "never")
    table.add_row("Pending Records", str(data.total_messages))
    table.add_row("Total Records", str(data.total_records))
    console.print(table)


@app.command()  # type: ignore[misc]
def health() -> None:
    """Print a health report as JSON."""
    runtime = _runtime()
    console.print_json(json.dumps(runtime.admin.health()))


@app.command()  # type: ignore[misc]
def run(
    max_sessions: Optional[int] = typer.Option(None, "--max-sessions", help="Stop after this many learning sessions"),
) -> None:
    """Collect on startup, then collect and learn every configured interval."""
    runtime = _runtime()
    _configure_llm()
    try:
        collector = build_collector(runtime)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)

    interval = runtime.config.learning.interval_hours * 3600
    sessions = 0
    try:
        _print_report(collector.collect())
        while max_sessions is None or sessions < max_sessions:
            console.print(f"[dim]Next learning session in {runtime.config.learning.interval_hours:g}h[/dim]")
            time.sleep(interval)
            _print_report(collector.collect())
            _print_session(runtime.learner.run_learning_session())
            sessions += 1
    except KeyboardInterrupt:
        console.print("[yellow]Stopped.[/yellow]")
    finally:
        runtime.storage.close()


if __name__ == "__main__":
    app()
