"""Command-line interface for notesync."""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from notesync import __version__
from notesync.core.config import AppConfig, load_config
from notesync.core.errors import NoteNotFoundError
from notesync.core.runtime import Runtime, open_runtime
from notesync.core.scheduler import SyncScheduler
from notesync.core.sync import SyncResult
from notesync.utils.credentials import CredentialStore
from notesync.utils.db import NotesDB
from notesync.utils.logging import setup_logging

# Create Typer app
app = typer.Typer(
    name="notesync",
    help="Offline-first notes with synchronization to a remote note collection",
    add_completion=False,
)

# Create console for rich output
console = Console()


@app.callback()
def main(
    ctx: typer.Context,
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file",
        exists=True,
        dir_okay=False,
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        "-l",
        help="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    ),
) -> None:
    """notesync - offline-first notes."""
    ctx.ensure_object(dict)
    cfg = load_config(config_file)
    ctx.obj["config"] = cfg

    try:
        setup_logging(cfg, level_name=log_level, console=console)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from e


def _run(ctx: typer.Context, action, failure: str):
    """Open a runtime, run ``action(runtime)`` and report failures."""
    cfg: AppConfig = ctx.obj["config"]

    async def runner():
        async with open_runtime(cfg) as runtime:
            return await action(runtime)

    try:
        return asyncio.run(runner())
    except typer.Exit:
        raise
    except NoteNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from e
    except Exception as e:
        console.print(f"[red]{failure}: {e}[/red]")
        logging.exception(failure)
        raise typer.Exit(1) from e


def _print_result(result: SyncResult | None) -> None:
    if result is None:
        console.print("[yellow]Sync skipped (offline or already syncing)[/yellow]")
        return

    if not result.ok:
        console.print(f"[red]✗ Sync failed: {result.error}[/red]")
        return

    table = Table(title="Sync Summary")
    table.add_column("Operation", style="cyan")
    table.add_column("Count", style="green", justify="right")
    table.add_row("Pushed", str(result.pushed))
    table.add_row("Failed", str(result.failed))
    table.add_row("Skipped", str(result.skipped))
    table.add_row("Re-keyed", str(result.rekeyed))
    table.add_row("Pulled", str(result.pulled))
    table.add_row("Notes after merge", str(result.merged))
    console.print(table)

    for note_id, message in result.errors:
        console.print(f"  [red]✗[/red] {note_id}: {message}", style="dim")


@app.command()
def version() -> None:
    """Show version information."""
    import platform

    table = Table(title="notesync Version Information")
    table.add_column("Property", style="cyan", no_wrap=True)
    table.add_column("Value", style="green")

    table.add_row("Version", __version__)
    table.add_row("Python", platform.python_version())
    table.add_row("Platform", platform.platform())

    console.print(table)


@app.command()
def config(
    ctx: typer.Context,
    show: bool = typer.Option(False, "--show", "-s", help="Show current configuration"),
    init: bool = typer.Option(False, "--init", "-i", help="Create a default configuration file"),
) -> None:
    """Manage configuration."""
    cfg: AppConfig = ctx.obj["config"]

    if init:
        config_path = cfg.general.config_file or cfg.default_config_path

        if config_path.exists():
            console.print(f"[yellow]Config file already exists:[/yellow] {config_path}")
            overwrite = typer.confirm("Overwrite existing config?")
            if not overwrite:
                console.print("[dim]Config creation cancelled[/dim]")
                raise typer.Exit(0)

        cfg.save_to_file(config_path)
        console.print(f"[green]✓ Config file created:[/green] {config_path}")
        console.print("[yellow]Set remote.base_url in this file to enable syncing.[/yellow]")
        return

    if show:
        table = Table(title="notesync Configuration")
        table.add_column("Setting", style="cyan", no_wrap=True)
        table.add_column("Value", style="green")

        table.add_row("Data Directory", str(cfg.general.data_dir))
        table.add_row("Config File", str(cfg.general.config_file or "Not set"))
        table.add_row("Log Level", cfg.general.log_level)

        table.add_row("", "")
        table.add_row("[bold]Remote[/bold]", "")
        table.add_row("Base URL", cfg.remote.base_url or "Not set")
        table.add_row("Collection", cfg.remote.collection_path)
        table.add_row("API User", cfg.remote.api_user or "Not set")

        table.add_row("", "")
        table.add_row("[bold]Sync[/bold]", "")
        table.add_row("Auto Sync", "✓" if cfg.sync.auto_sync else "✗")
        table.add_row("Retain Failed Changes", "✓" if cfg.sync.retain_failed_changes else "✗")
        table.add_row("Connectivity Check", f"{cfg.sync.connectivity_check_seconds}s")
        table.add_row("Periodic Sync", f"{cfg.sync.auto_sync_minutes} min")

        console.print(table)
    else:
        console.print(f"[yellow]Configuration file:[/yellow] {cfg.general.config_file or 'Not set'}")
        console.print(f"[yellow]Data directory:[/yellow] {cfg.general.data_dir}")
        console.print("\n[dim]Use --show to display full configuration[/dim]")
        console.print("[dim]Use --init to create a default config file[/dim]")


# Notes subcommand group
notes_app = typer.Typer(help="Create, edit and browse notes")
app.add_typer(notes_app, name="notes")


def _apply_sync_flag(runtime: Runtime, sync_after: Optional[bool]) -> None:
    if sync_after is not None and runtime.engine is not None:
        runtime.engine.auto_sync = sync_after


@notes_app.command("add")
def notes_add(
    ctx: typer.Context,
    title: str = typer.Argument(..., help="Note title"),
    body: str = typer.Option("", "--body", "-b", help="Note body"),
    sync_after: Optional[bool] = typer.Option(None, "--sync/--no-sync", help="Sync right after saving"),
) -> None:
    """Create a note."""

    async def action(runtime: Runtime):
        _apply_sync_flag(runtime, sync_after)
        return await runtime.notes.create_note(title, body)

    note = _run(ctx, action, "Failed to create note")
    console.print(f"[green]✓ Created note[/green] {note.id}")


@notes_app.command("edit")
def notes_edit(
    ctx: typer.Context,
    note_id: str = typer.Argument(..., help="Note id"),
    title: Optional[str] = typer.Option(None, "--title", "-t", help="New title"),
    body: Optional[str] = typer.Option(None, "--body", "-b", help="New body"),
    sync_after: Optional[bool] = typer.Option(None, "--sync/--no-sync", help="Sync right after saving"),
) -> None:
    """Edit a note's title and/or body."""
    if title is None and body is None:
        console.print("[yellow]Nothing to change (use --title and/or --body)[/yellow]")
        raise typer.Exit(1)

    async def action(runtime: Runtime):
        _apply_sync_flag(runtime, sync_after)
        return await runtime.notes.update_note(note_id, title=title, body=body)

    note = _run(ctx, action, "Failed to update note")
    console.print(f"[green]✓ Updated note[/green] {note.id}")


@notes_app.command("delete")
def notes_delete(
    ctx: typer.Context,
    note_id: str = typer.Argument(..., help="Note id"),
    confirm: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
    sync_after: Optional[bool] = typer.Option(None, "--sync/--no-sync", help="Sync right after deleting"),
) -> None:
    """Delete a note."""
    if not confirm and not typer.confirm(f"Delete note {note_id}?"):
        console.print("[dim]Delete cancelled[/dim]")
        raise typer.Exit(0)

    async def action(runtime: Runtime):
        _apply_sync_flag(runtime, sync_after)
        return await runtime.notes.delete_note(note_id)

    _run(ctx, action, "Failed to delete note")
    console.print(f"[green]✓ Deleted note[/green] {note_id}")


@notes_app.command("list")
def notes_list(
    ctx: typer.Context,
    search: str = typer.Option("", "--search", "-s", help="Filter by title or body"),
) -> None:
    """List notes, newest first."""

    async def action(runtime: Runtime):
        return await runtime.notes.list_notes(search), runtime.config.sync.local_id_prefix

    notes, prefix = _run(ctx, action, "Failed to list notes")

    if not notes:
        console.print("[yellow]No notes found[/yellow]" if search else "[yellow]No notes yet[/yellow]")
        return

    table = Table(title="Notes")
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Title", style="cyan")
    table.add_column("Updated", style="green")
    table.add_column("State")

    for note in notes:
        if note.is_local(prefix):
            state = "[yellow]Local[/yellow]"
        elif note.is_dirty:
            state = "[yellow]Modified[/yellow]"
        else:
            state = "[green]Synced[/green]"
        table.add_row(note.id, note.title or "Untitled", note.updated_at, state)

    console.print(table)
    console.print(f"\n[dim]Total: {len(notes)} notes[/dim]")


@notes_app.command("show")
def notes_show(
    ctx: typer.Context,
    note_id: str = typer.Argument(..., help="Note id"),
) -> None:
    """Print a single note."""

    async def action(runtime: Runtime):
        note = await runtime.notes.get_note(note_id)
        if note is None:
            raise NoteNotFoundError(note_id)
        return note

    note = _run(ctx, action, "Failed to read note")
    console.print(f"[bold]{note.title or 'Untitled'}[/bold]  [dim]{note.id} · {note.updated_at}[/dim]")
    console.print(note.body)


# Sync subcommand group
sync_app = typer.Typer(help="Synchronize with the remote note collection")
app.add_typer(sync_app, name="sync")


def _require_remote(cfg: AppConfig) -> None:
    if not cfg.remote.base_url:
        console.print("[red]Remote collection is not configured[/red]")
        console.print("[dim]Set NOTESYNC_REMOTE__BASE_URL or remote.base_url in your config[/dim]")
        raise typer.Exit(1)


@sync_app.command("run")
def sync_run(ctx: typer.Context) -> None:
    """Push pending changes, pull the remote snapshot and merge."""
    _require_remote(ctx.obj["config"])

    async def action(runtime: Runtime):
        return await runtime.require_engine().trigger()

    result = _run(ctx, action, "Sync failed")
    _print_result(result)
    if result is not None and not result.ok:
        raise typer.Exit(1)


@sync_app.command("status")
def sync_status(ctx: typer.Context) -> None:
    """Show pending changes and the last sync time."""
    cfg: AppConfig = ctx.obj["config"]

    async def action(runtime: Runtime):
        store = runtime.store.active
        if isinstance(store, NotesDB):
            stats = await store.get_stats()
        else:
            notes = await store.get_all()
            stats = {
                "active": sum(1 for n in notes if not n.deleted),
                "dirty": sum(1 for n in notes if n.is_dirty),
            }
        last_sync = runtime.engine.status.last_sync_display() if runtime.engine else "Never"
        online = await runtime.client.check_connection() if runtime.client else False
        return stats, len(runtime.queue), last_sync, online, runtime.store.degraded

    stats, pending, last_sync, online, degraded = _run(ctx, action, "Failed to get status")

    table = Table(title="Sync Status")
    table.add_column("Property", style="cyan", no_wrap=True)
    table.add_column("Value", style="green")

    table.add_row("Remote", cfg.remote.base_url or "Not set")
    table.add_row("Connection", "[green]Online[/green]" if online else "[red]Offline[/red]")
    table.add_row("Last Sync", last_sync)
    table.add_row("Pending Changes", str(pending))
    table.add_row("Notes", str(stats["active"]))
    table.add_row("Unsynced Edits", str(stats["dirty"]))
    table.add_row("Database", str(cfg.notes_db_path))
    if degraded:
        table.add_row("Storage", "[red]In-memory fallback[/red]")

    console.print(table)


@sync_app.command("reset")
def sync_reset(
    ctx: typer.Context,
    confirm: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
) -> None:
    """Clear the local replica, pending changes and sync metadata."""
    if not confirm:
        console.print("[yellow]⚠ Warning: This deletes every local note and unsynced change![/yellow]")
        console.print("[dim]Notes already on the remote will come back on the next sync.[/dim]\n")
        if not typer.confirm("Are you sure you want to reset?"):
            console.print("[dim]Reset cancelled[/dim]")
            raise typer.Exit(0)

    async def action(runtime: Runtime):
        if runtime.engine is not None:
            await runtime.engine.reset()
        else:
            await runtime.store.clear()
            await runtime.queue.clear()

    _run(ctx, action, "Failed to reset")
    console.print("[green]✓ Local data reset successfully[/green]")


@sync_app.command("watch")
def sync_watch(ctx: typer.Context) -> None:
    """Keep running, syncing when the network returns and on a timer."""
    cfg: AppConfig = ctx.obj["config"]
    _require_remote(cfg)

    async def action(runtime: Runtime):
        scheduler = SyncScheduler(
            runtime.require_engine(),
            check_seconds=cfg.sync.connectivity_check_seconds,
            auto_sync_minutes=cfg.sync.auto_sync_minutes,
        )
        await scheduler.start()
        console.print("[cyan]Watching for changes. Press Ctrl+C to stop.[/cyan]")
        try:
            await asyncio.Event().wait()
        finally:
            await scheduler.stop()

    try:
        _run(ctx, action, "Watch failed")
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped[/yellow]")


# Remote credentials subcommand group
remote_app = typer.Typer(help="Manage remote collection credentials")
app.add_typer(remote_app, name="remote")


@remote_app.command("set-token")
def remote_set_token(
    ctx: typer.Context,
    user: Optional[str] = typer.Option(None, "--user", "-u", help="API user (defaults to remote.api_user)"),
) -> None:
    """Store the remote API token in the system keyring."""
    cfg: AppConfig = ctx.obj["config"]
    user = user or cfg.remote.api_user
    if not user:
        console.print("[red]No API user given (use --user or set remote.api_user)[/red]")
        raise typer.Exit(1)

    token = typer.prompt("API token", hide_input=True)
    try:
        CredentialStore().set_api_token(user, token)
    except Exception as e:
        console.print(f"[red]Failed to store token: {e}[/red]")
        raise typer.Exit(1) from e
    console.print(f"[green]✓ Token stored for[/green] {user}")


@remote_app.command("delete-token")
def remote_delete_token(
    ctx: typer.Context,
    user: Optional[str] = typer.Option(None, "--user", "-u", help="API user (defaults to remote.api_user)"),
) -> None:
    """Remove the remote API token from the system keyring."""
    cfg: AppConfig = ctx.obj["config"]
    user = user or cfg.remote.api_user
    if not user:
        console.print("[red]No API user given (use --user or set remote.api_user)[/red]")
        raise typer.Exit(1)

    if CredentialStore().delete_api_token(user):
        console.print(f"[green]✓ Token deleted for[/green] {user}")
    else:
        console.print(f"[yellow]No token stored for[/yellow] {user}")


def main_entry() -> None:
    """Entry point for the CLI."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        logging.exception("Unhandled exception")
        sys.exit(1)


if __name__ == "__main__":
    main_entry()
