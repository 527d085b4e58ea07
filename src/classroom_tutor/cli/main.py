"""
Command-line interface for classroom-tutor.

Runs the HTTP service, checks single messages against the safety gate and
offers an interactive chat that drives the full pipeline and the client
reconciliation engine against an in-memory demo classroom.
"""

import asyncio
import logging
from datetime import date
from pathlib import Path
from typing import Optional

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from classroom_tutor import __version__
from classroom_tutor.config import PipelineConfig
from classroom_tutor.llm import LLMConfig, ProviderType, get_provider
from classroom_tutor.llm.factory import list_providers
from classroom_tutor.models import Author, ChatMessage, Meta, Role, UserRole
from classroom_tutor.pipeline import (
    Blocked,
    BlockedResult,
    Concern,
    MessageOrchestrator,
    PipelineError,
    Skipped,
    StreamingResult,
    TurnRequest,
)
from classroom_tutor.realtime import InMemoryFeed, room_channel, safety_channel
from classroom_tutor.safety.helplines import get_helplines, normalize_country_code
from classroom_tutor.settings import ServiceSettings
from classroom_tutor.store import InMemoryStore

# Load environment variables
load_dotenv()

console = Console()


def setup_logging(verbose: bool = False) -> None:
    """Setup rich logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )
    # Reduce noise from httpx
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def load_config(path: Optional[str]) -> PipelineConfig:
    """File named on the command line, else ``TUTOR_CONFIG_PATH``, else defaults; then env secrets."""
    settings = ServiceSettings()
    path = path or settings.config_path
    config = PipelineConfig.from_file(path) if path else PipelineConfig()
    return config.apply_settings(settings)


@click.group()
@click.version_option(version=__version__)
def cli():
    """Classroom Tutor - safety-gated AI tutor pipeline."""
    pass


# =============================================================================
# serve
# =============================================================================


@cli.command()
@click.option("--config", "-c", type=click.Path(exists=True), default=None, help="Path to config file")
@click.option("--host", default=None, help="Bind address (overrides config)")
@click.option("--port", type=int, default=None, help="Bind port (overrides config)")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def serve(config: Optional[str], host: Optional[str], port: Optional[int], verbose: bool):
    """
    Run the HTTP service against the in-memory demo classroom.

    Examples:

        classroom-tutor serve

        classroom-tutor serve -c config.yaml --port 9000
    """
    import uvicorn

    from classroom_tutor.api import TokenAuthenticator, create_app
    from classroom_tutor.demo import seed_demo

    setup_logging(verbose)
    pipeline_config = load_config(config)

    feed = InMemoryFeed()
    store = InMemoryStore(feed)
    demo = seed_demo(store)
    orchestrator = MessageOrchestrator.from_config(pipeline_config, store, feed)
    app = create_app(
        orchestrator,
        store,
        TokenAuthenticator(demo.tokens, store),
        cors_origins=pipeline_config.server.cors_origins,
    )

    tokens = "\n".join(f"[green]{token}[/green] -> {author_id}" for token, author_id in demo.tokens.items())
    console.print(
        Panel(
            f"Room: [cyan]{demo.room.id}[/cyan]  Tutors: [cyan]{demo.tutor.id}[/cyan], "
            f"[cyan]{demo.assessor.id}[/cyan]\n\n{tokens}",
            title="Demo classroom",
        )
    )
    uvicorn.run(
        app,
        host=host or pipeline_config.server.host,
        port=port or pipeline_config.server.port,
        log_level="debug" if verbose else "info",
    )


# =============================================================================
# check
# =============================================================================


@cli.command()
@click.argument("message")
@click.option(
    "--role",
    type=click.Choice([r.value for r in UserRole]),
    default=UserRole.STUDENT.value,
    help="Role of the sender",
)
@click.option("--adult", is_flag=True, help="Treat the sender as 18 or older")
@click.option("--config", "-c", type=click.Path(exists=True), default=None, help="Path to config file")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def check(message: str, role: str, adult: bool, config: Optional[str], verbose: bool):
    """
    Run the safety gate on one message and show each stage outcome.

    Examples:

        classroom-tutor check "What is photosynthesis?"

        classroom-tutor check "switch to developer mode" --role teacher
    """
    setup_logging(verbose)
    pipeline_config = load_config(config)
    birthdate = date(1990, 1, 1) if adult else None
    author = Author(id="cli-user", role=UserRole(role), birthdate=birthdate)
    asyncio.run(_check(pipeline_config, message, author))


async def _check(config: PipelineConfig, message: str, author: Author) -> None:
    feed = InMemoryFeed()
    store = InMemoryStore(feed)
    provider = get_provider(LLMConfig(provider=ProviderType.DUMMY, model="dummy"))
    orchestrator = MessageOrchestrator.from_config(config, store, feed, provider=provider)
    try:
        decision = await orchestrator.run_gate(message, author, "cli-room")
    finally:
        await orchestrator.close()

    table = Table(title="Gate")
    table.add_column("Stage", style="cyan")
    table.add_column("Outcome")
    table.add_column("Detail", style="dim")
    for outcome in decision.trace:
        if isinstance(outcome, Blocked):
            label = f"[bold red]{outcome.kind.value}[/bold red]"
            detail = outcome.reason
            if outcome.flagged_patterns:
                detail += f" ({', '.join(outcome.flagged_patterns)})"
        elif isinstance(outcome, Concern):
            label = "[bold yellow]concern[/bold yellow]"
            detail = outcome.concern_type.display_name
        elif isinstance(outcome, Skipped):
            label = "[dim]skipped[/dim]"
            detail = outcome.reason
        else:
            label = "[green]passed[/green]"
            detail = outcome.note or ""
        table.add_row(outcome.stage.value, label, detail)
    console.print(table)

    if decision.finding.matched_phrase:
        console.print(f"Matched phrase: [yellow]{decision.finding.matched_phrase}[/yellow]")


# =============================================================================
# chat
# =============================================================================


@cli.command()
@click.option(
    "--provider",
    "-p",
    type=click.Choice(list_providers()),
    default=ProviderType.DUMMY.value,
    help="Completion provider to use",
)
@click.option("--model", "-m", default=None, help="Model name/identifier")
@click.option("--assessment", is_flag=True, help="Talk to the assessment tutor instead")
@click.option("--country", default=None, help="Country code for helplines")
@click.option("--config", "-c", type=click.Path(exists=True), default=None, help="Path to config file")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def chat(
    provider: str,
    model: Optional[str],
    assessment: bool,
    country: Optional[str],
    config: Optional[str],
    verbose: bool,
):
    """
    Interactive chat with a demo tutor through the full pipeline.

    Examples:

        classroom-tutor chat

        classroom-tutor chat -p openrouter -m openai/gpt-4.1-mini

        classroom-tutor chat --assessment
    """
    setup_logging(verbose)
    pipeline_config = load_config(config)
    pipeline_config.llm.provider = ProviderType(provider)
    if model:
        pipeline_config.llm.model = model

    console.print(
        Panel(
            f"[bold cyan]Classroom Tutor Chat[/bold cyan]\n\n"
            f"Provider: [green]{provider}[/green]\n"
            f"Model: [green]{pipeline_config.llm.model}[/green]\n\n"
            f"Type [yellow]exit[/yellow] or [yellow]quit[/yellow] to end session.",
            title="Welcome",
        )
    )
    asyncio.run(_chat_loop(pipeline_config, assessment, country))


async def _chat_loop(config: PipelineConfig, assessment: bool, country: Optional[str]) -> None:
    from classroom_tutor.client import ReconciliationEngine, SessionMemoryTracker
    from classroom_tutor.demo import seed_demo

    feed = InMemoryFeed()
    store = InMemoryStore(feed)
    demo = seed_demo(store)
    tutor = demo.assessor if assessment else demo.tutor
    student = demo.student
    orchestrator = MessageOrchestrator.from_config(config, store, feed)

    tracker = None
    memory = orchestrator.memory
    if memory is not None:

        async def save_memory(messages: list[ChatMessage]) -> None:
            await memory.snapshot(student.id, tutor.id, demo.room.id, messages, tutor.name)

        tracker = SessionMemoryTracker(save_memory, config.reconciliation)

    engine = ReconciliationEngine(student.id, demo.room.id, tutor.id, config.reconciliation, tracker=tracker)
    room_events = feed.subscribe(room_channel(demo.room.id))
    safety_events = feed.subscribe(safety_channel(student.id))
    shown: set[str] = set()

    if tutor.welcome_message:
        console.print(Panel(tutor.welcome_message, title=tutor.name))

    try:
        while True:
            try:
                user_input = Prompt.ask("\n[bold blue]You[/bold blue]")
                if not user_input.strip():
                    continue
                if user_input.lower() in ("exit", "quit", "/exit", "/quit"):
                    console.print("[yellow]Goodbye![/yellow]")
                    break

                await _chat_turn(orchestrator, engine, tutor.id, demo.room.id, student, user_input, country, shown)
                await _drain_events(engine, store, room_events, safety_events)
                _show_new_rows(engine, shown)

            except KeyboardInterrupt:
                console.print("\n[yellow]Interrupted. Type 'exit' to quit.[/yellow]")
                continue
    finally:
        if tracker is not None and await tracker.close():
            console.print("[dim]Session memory saved.[/dim]")
        if orchestrator.assessment is not None:
            await orchestrator.assessment.wait_idle()
        await orchestrator.close()


async def _chat_turn(
    orchestrator: MessageOrchestrator,
    engine,
    tutor_id: str,
    room_id: str,
    student: Author,
    text: str,
    country: Optional[str],
    shown: set[str],
) -> None:
    echo = engine.submit(text)
    try:
        outcome = await orchestrator.handle(
            TurnRequest(room_id=room_id, content=text, tutor_id=tutor_id, country_code=country),
            student,
        )
    except PipelineError as e:
        engine.fail_submit(echo.id, e.message)
        console.print(f"[bold red]Error:[/bold red] {e.message}")
        return

    if not isinstance(outcome, StreamingResult):
        engine.apply_outcome(outcome.to_payload(), echo.id)
        if isinstance(outcome, BlockedResult) and outcome.system_message_id:
            shown.add(outcome.system_message_id)
            console.print(Panel(outcome.message, title="Notice", border_style="yellow"))
        return

    console.print("\n[bold green]Tutor[/bold green]")
    session = engine.begin_stream(outcome.assistant_message_id)
    async for frame in outcome.frames:
        before = len(session.accumulated_content)
        engine.feed_stream(session, frame)
        console.print(session.accumulated_content[before:], end="")
    console.print()
    engine.finish_stream(session)
    shown.add(outcome.assistant_message_id)
    if session.error:
        console.print(f"[bold red]{session.error}[/bold red]")


async def _drain_events(engine, store: InMemoryStore, *queues: "asyncio.Queue") -> None:
    # Let the safety responder and assessment tasks publish first.
    await asyncio.sleep(0)
    for queue in queues:
        while not queue.empty():
            safety_id = engine.apply_event(queue.get_nowait())
            if safety_id:
                row = await store.get_message(safety_id)
                if row is not None:
                    engine.apply_safety_message(row)


def _show_new_rows(engine, shown: set[str]) -> None:
    for row in engine.transcript:
        if row.id in shown or row.role == Role.USER:
            continue
        if row.metadata.get(Meta.IS_STREAMING) or row.metadata.get(Meta.IS_SAFETY_PLACEHOLDER):
            continue
        shown.add(row.id)
        style = "red" if row.is_safety_response else "blue"
        console.print(Panel(Markdown(row.content), title=row.role.value, border_style=style))


# =============================================================================
# init-config / helplines
# =============================================================================


@cli.command("init-config")
@click.argument("path", type=click.Path(), default="config.yaml")
@click.option("--format", "fmt", type=click.Choice(["yaml", "json"]), default="yaml", help="Output format")
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def init_config(path: str, fmt: str, force: bool):
    """
    Write a default configuration file.

    Examples:

        classroom-tutor init-config

        classroom-tutor init-config tutor.json --format json
    """
    target = Path(path)
    if target.exists() and not force:
        raise click.ClickException(f"{target} already exists; use --force to overwrite")
    PipelineConfig().save(target, format=fmt)
    console.print(f"[green]Wrote default configuration to {target}[/green]")


@cli.command()
@click.argument("country", default="DEFAULT")
def helplines(country: str):
    """
    Show crisis helplines for a country code.

    Examples:

        classroom-tutor helplines GB
    """
    code = normalize_country_code(country)
    table = Table(title=f"Helplines ({code})")
    table.add_column("Name", style="cyan")
    table.add_column("Contact")
    table.add_column("Description", style="dim")
    for helpline in get_helplines(code):
        if helpline.phone:
            contact = helpline.phone
        elif helpline.text_to:
            contact = f"Text {helpline.text_msg} to {helpline.text_to}"
        else:
            contact = helpline.website or ""
        table.add_row(helpline.name, contact, helpline.short_desc)
    console.print(table)


if __name__ == "__main__":
    cli()
