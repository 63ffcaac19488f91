"""CLI interface for deltasync."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import structlog
import typer
from pydantic import SecretStr, ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from deltasync.config import (
    DEFAULT_CLIENT_NAME,
    ApiMode,
    AppConfig,
    SyncInitOptions,
    SyncOptions,
    ensure_dirs,
    get_base_dir,
    load_config,
    save_config,
)
from deltasync.logging import setup_logging
from deltasync.registry import ClientRegistry
from deltasync.storage import Database
from deltasync.sync.errors import SyncError
from deltasync.sync.models import DeltaResponse, EntityCategory
from deltasync.sync.session import SyncSession

app = typer.Typer(
    name="deltasync",
    help="Pull incremental content changes from a sync API.",
    add_completion=False,
)
console = Console()


def main() -> None:
    """Entry point that wraps ``app()`` with a clean KeyboardInterrupt handler."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("Interrupted.")
        raise SystemExit(130) from None


@dataclass
class _CliState:
    config_path: Path | None = None
    log_level: str | None = None
    verbose: bool = False


@app.callback()
def _root(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to config.toml"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override the configured log level"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Also log to stderr"),
) -> None:
    ctx.obj = _CliState(config_path=config, log_level=log_level, verbose=verbose)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load(ctx: typer.Context) -> AppConfig:
    state: _CliState = ctx.obj or _CliState()
    try:
        cfg = load_config(state.config_path)
    except ValidationError as exc:
        console.print(f"[red]Invalid configuration:[/red]\n{exc}")
        raise typer.Exit(2) from None
    ensure_dirs()
    setup_logging(state.log_level or cfg.logging.level, cfg.log_dir, console=state.verbose)
    return cfg


def _build_registry(cfg: AppConfig) -> ClientRegistry:
    return ClientRegistry.from_config(cfg)


def _db_path() -> Path:
    return get_base_dir() / "checkpoints.db"


def _require_client(registry: ClientRegistry, name: str) -> None:
    if name not in registry:
        console.print(
            f"[red]No client named[/red] [bold]{name}[/bold].  "
            f"Configured: {', '.join(registry.names()) or '(none)'}",
        )
        raise typer.Exit(1)


def _print_error(error: SyncError | None, status_code: int | None = None) -> None:
    if error is None:
        return
    status = f" (HTTP {status_code})" if status_code else ""
    console.print(f"[red]Error[/red] [bold]{error.reason.value}[/bold]{status}: {escape(error.message)}")
    if error.request_id:
        console.print(f"  request id: {error.request_id}")


def _counts_table(pages: list[DeltaResponse]) -> Table:
    table = Table(title="Changes")
    table.add_column("category")
    table.add_column("records", justify="right")
    for category in EntityCategory:
        total = sum(len(page.changes(category)) for page in pages)
        table.add_row(category.value, str(total))
    return table


def _emit_records(pages: list[DeltaResponse]) -> None:
    for page in pages:
        for category in EntityCategory:
            for record in page.changes(category):
                line = {
                    "category": category.value,
                    "change_type": record.change_type.value,
                    "data": record.data,
                }
                typer.echo(json.dumps(line, ensure_ascii=False))


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def init(
    ctx: typer.Context,
    client: str = typer.Option(DEFAULT_CLIENT_NAME, "--client", help="Configured client name"),
    content_type: Optional[List[str]] = typer.Option(None, "--type", "-t", help="Content type codename"),
    collection: Optional[List[str]] = typer.Option(None, "--collection", help="Collection codename"),
    language: Optional[str] = typer.Option(None, "--language", "-l", help="Language codename"),
    ignore_fallbacks: bool = typer.Option(False, "--ignore-fallbacks", help="Only exact language matches"),
) -> None:
    """Initialize a sync session and store its continuation token."""
    cfg = _load(ctx)
    filters = SyncInitOptions(
        content_types=frozenset(content_type or ()),
        collections=frozenset(collection or ()),
        language=language,
        ignore_language_fallbacks=ignore_fallbacks,
    )

    async def _run() -> SyncSession:
        registry = _build_registry(cfg)
        _require_client(registry, client)
        async with registry, Database(_db_path()) as db:
            session = SyncSession(registry.get(client))
            result = await session.initialize(filters)
            if session.sync_token is not None:
                await db.save_checkpoint(client, session.sync_token)
            if not result.is_success:
                _print_error(result.error, result.status_code)
            elif session.error is not None:
                _print_error(session.error)
            return session

    session = asyncio.run(_run())
    if session.sync_token is None:
        raise typer.Exit(1)
    console.print(f"[green]Sync initialized[/green] for [bold]{client}[/bold].")
    console.print(f"  token: {session.sync_token}")


@app.command()
def delta(
    ctx: typer.Context,
    token: Optional[str] = typer.Argument(None, help="Continuation token (default: stored checkpoint)"),
    client: str = typer.Option(DEFAULT_CLIENT_NAME, "--client", help="Configured client name"),
    as_json: bool = typer.Option(False, "--json", help="Print change records as JSON lines"),
) -> None:
    """Fetch a single page of changes without advancing the checkpoint."""
    cfg = _load(ctx)

    async def _run():
        registry = _build_registry(cfg)
        _require_client(registry, client)
        async with registry, Database(_db_path()) as db:
            sync_token = token
            if sync_token is None:
                checkpoint = await db.get_checkpoint(client)
                if checkpoint is None:
                    console.print("[yellow]No stored checkpoint.[/yellow]  Run [bold]deltasync init[/bold] first.")
                    raise typer.Exit(1)
                sync_token = checkpoint.sync_token
            try:
                return await registry.get(client).get_delta(sync_token)
            except ValueError as exc:
                console.print(f"[red]{escape(str(exc))}[/red]")
                raise typer.Exit(2) from None

    result = asyncio.run(_run())
    if not result.is_success:
        _print_error(result.error, result.status_code)
        raise typer.Exit(1)

    if as_json:
        _emit_records([result.value])
        return
    console.print(_counts_table([result.value]))
    console.print(f"  next token:   {result.sync_token or '(unchanged)'}")
    console.print(f"  more changes: {result.has_more_changes}")


@app.command()
def pull(
    ctx: typer.Context,
    token: Optional[str] = typer.Option(None, "--token", help="Start from this token instead of the checkpoint"),
    max_pages: Optional[int] = typer.Option(None, "--max-pages", min=1, help="Stop after this many pages"),
    client: str = typer.Option(DEFAULT_CLIENT_NAME, "--client", help="Configured client name"),
    as_json: bool = typer.Option(False, "--json", help="Print change records as JSON lines"),
) -> None:
    """Fetch pages until caught up and advance the stored checkpoint."""
    cfg = _load(ctx)

    async def _run():
        registry = _build_registry(cfg)
        _require_client(registry, client)
        async with registry, Database(_db_path()) as db:
            sync_token = token
            if sync_token is None:
                checkpoint = await db.get_checkpoint(client)
                if checkpoint is None:
                    console.print("[yellow]No stored checkpoint.[/yellow]  Run [bold]deltasync init[/bold] first.")
                    raise typer.Exit(1)
                sync_token = checkpoint.sync_token

            try:
                session = SyncSession(registry.get(client), sync_token=sync_token)
            except ValueError as exc:
                console.print(f"[red]{escape(str(exc))}[/red]")
                raise typer.Exit(2) from None
            run = await db.start_run(client)
            try:
                with structlog.contextvars.bound_contextvars(run_id=run.id):
                    result = await session.pull(max_pages)
            except asyncio.CancelledError:
                await db.finish_run(run.id, status="cancelled", pages_fetched=0)
                raise

            if result.is_success:
                status = "limited" if result.was_limited_by_max_pages else "completed"
                await db.finish_run(run.id, status=status, pages_fetched=result.pages_fetched)
            else:
                assert result.error is not None  # noqa: S101
                await db.finish_run(
                    run.id,
                    status="failed",
                    pages_fetched=result.pages_fetched,
                    error_message=result.error.message,
                )
            await db.save_checkpoint(client, result.final_sync_token)
            return result

    result = asyncio.run(_run())

    if as_json:
        _emit_records(list(result.responses))
    else:
        console.print(_counts_table(list(result.responses)))
        console.print(f"  pages fetched: {result.pages_fetched}")
        if result.was_limited_by_max_pages:
            console.print("  [yellow]Stopped at --max-pages; more changes are available.[/yellow]")

    if not result.is_success:
        _print_error(result.error)
        raise typer.Exit(1)


@app.command()
def checkpoints() -> None:
    """List stored continuation tokens."""

    async def _run():
        async with Database(_db_path()) as db:
            return await db.list_checkpoints()

    ensure_dirs()
    stored = asyncio.run(_run())
    if not stored:
        console.print("[dim]No checkpoints stored.[/dim]")
        return

    table = Table(title="Checkpoints")
    table.add_column("client")
    table.add_column("token")
    table.add_column("updated")
    for cp in stored:
        shown = cp.sync_token if len(cp.sync_token) <= 40 else f"{cp.sync_token[:37]}..."
        table.add_row(cp.client_name, shown, cp.updated_at.isoformat() if cp.updated_at else "-")
    console.print(table)


@app.command()
def runs(
    client: Optional[str] = typer.Option(None, "--client", help="Only show runs for this client"),
    limit: int = typer.Option(10, "--limit", "-n", min=1, help="Number of runs to show"),
) -> None:
    """Show recent pull runs."""

    async def _run():
        async with Database(_db_path()) as db:
            return await db.get_recent_runs(client, limit=limit)

    ensure_dirs()
    recent = asyncio.run(_run())
    if not recent:
        console.print("[dim]No pull runs recorded.[/dim]")
        return

    colors = {"completed": "green", "limited": "yellow", "failed": "red", "cancelled": "dim"}
    table = Table(title="Pull runs")
    for column in ("id", "client", "started", "status", "pages", "error"):
        table.add_column(column)
    for run in recent:
        color = colors.get(run.status, "white")
        table.add_row(
            str(run.id),
            run.client_name,
            run.started_at.isoformat(),
            f"[{color}]{run.status}[/{color}]",
            str(run.pages_fetched),
            run.error_message or "",
        )
    console.print(table)


@app.command()
def reset(
    client: str = typer.Option(DEFAULT_CLIENT_NAME, "--client", help="Configured client name"),
) -> None:
    """Forget the stored token so the next pull needs a fresh init."""

    async def _run() -> bool:
        async with Database(_db_path()) as db:
            return await db.delete_checkpoint(client)

    ensure_dirs()
    if not asyncio.run(_run()):
        console.print(f"[yellow]No checkpoint stored for[/yellow] [bold]{client}[/bold].")
        raise typer.Exit(1)
    console.print(f"[green]Checkpoint removed[/green] for [bold]{client}[/bold].")


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


def _mask(secret: SecretStr) -> str:
    """Return '***' if the secret is non-empty, else '(not set)'."""
    return "[bold]***[/bold]" if secret.get_secret_value() else "[dim](not set)[/dim]"


config_app = typer.Typer(name="config", help="View configuration.", add_completion=False)
app.add_typer(config_app)


@config_app.command(name="show")
def config_show(ctx: typer.Context) -> None:
    """Show current configuration (API keys are masked)."""
    state: _CliState = ctx.obj or _CliState()
    try:
        cfg = load_config(state.config_path)
    except ValidationError as exc:
        console.print(f"[red]Invalid configuration:[/red]\n{exc}")
        raise typer.Exit(2) from None

    console.print("\n[bold]Current Configuration[/bold]\n")
    console.print("[bold cyan]\\[logging][/bold cyan]")
    console.print(f"  level = {cfg.logging.level}")

    if not cfg.clients:
        console.print("\n[dim]No clients configured.[/dim]")
    for name, options in cfg.clients.items():
        console.print(f"\n[bold cyan]\\[clients.{name}][/bold cyan]")
        console.print(f"  environment_id    = {options.environment_id}")
        console.print(f"  api_mode          = {options.api_mode.value}")
        console.print(f"  api_key           = {_mask(options.api_key)}")
        console.print(f"  endpoint          = {options.base_url}")
        console.print(f"  enable_resilience = {options.enable_resilience}")
        retry = options.retry
        console.print(
            f"  retry             = {retry.max_retries} retries, "
            f"{retry.base_delay}s base delay, {retry.timeout}s timeout",
        )
    console.print()


@config_app.command(name="add")
def config_add(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Client name"),
    environment_id: str = typer.Option(..., "--environment-id", "-e", help="Environment GUID"),
    api_mode: ApiMode = typer.Option(ApiMode.PUBLIC, "--mode", help="public, preview or secure"),
    api_key: Optional[str] = typer.Option(None, "--api-key", help="Preview or secure API key"),
    force: bool = typer.Option(False, "--force", help="Replace an existing client"),
) -> None:
    """Add a client to the configuration file."""
    state: _CliState = ctx.obj or _CliState()
    try:
        cfg = load_config(state.config_path)
        options = SyncOptions(environment_id=environment_id, api_mode=api_mode, api_key=api_key or "")
    except ValidationError as exc:
        console.print(f"[red]Invalid configuration:[/red]\n{exc}")
        raise typer.Exit(2) from None

    if not name.strip():
        console.print("[red]Client name must not be blank.[/red]")
        raise typer.Exit(2)
    if name in cfg.clients and not force:
        console.print(f"[yellow]Client[/yellow] [bold]{escape(name)}[/bold] already exists.  Use --force to replace it.")
        raise typer.Exit(1)

    cfg.clients[name] = options
    save_config(cfg, state.config_path)
    console.print(f"[green]Saved client[/green] [bold]{escape(name)}[/bold].")
