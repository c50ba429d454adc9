"""sitesync CLI — deploy, roll back and inspect a site from the command line."""

import logging
import sys

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from sitesync import __version__

console = Console()

STATUS_STYLES = {
    "succeeded": "green",
    "in_progress": "cyan",
    "idle": "green",
    "rolled_back": "yellow",
    "busy": "yellow",
    "skipped": "red",
    "not_found": "red",
    "failed": "red",
}

OUTCOME_STYLES = {"success": "green", "rolled_back": "yellow", "failed": "red"}


def _build(ctx: click.Context):
    """Create the orchestrator and its collaborators from the loaded settings."""
    from sitesync.remote import repository_from_settings
    from sitesync.store.kv import JsonFileStore
    from sitesync.sync.orchestrator import DeploymentOrchestrator

    settings = ctx.obj["settings"]
    store = JsonFileStore(settings.store_file)
    try:
        repository = repository_from_settings(settings)
    except ValueError as e:
        raise click.ClickException(str(e))
    return settings, store, repository, DeploymentOrchestrator(settings, store, repository)


def _report(result) -> None:
    """Print an operation result and exit non-zero when it did not succeed."""
    style = STATUS_STYLES.get(result.status.value, "white")
    console.print(f"[bold {style}]{result.status.value.replace('_', ' ').upper()}[/] {result.message}")
    for warning in result.warnings:
        console.print(f"  [yellow]![/] {warning}")
    if result.progress is not None and result.progress.total_steps:
        console.print(
            f"  [dim]progress {result.progress.current_step}/{result.progress.total_steps} "
            f"({result.progress.percent}%)[/]"
        )
    if not result.ok:
        sys.exit(1)


def _print_changes(changes, limit: int = 50) -> None:
    table = Table(title=f"Changes ({changes.summary()})")
    table.add_column("Action", style="cyan", width=8)
    table.add_column("Path")
    for action in list(changes)[:limit]:
        table.add_row(action.kind.value, action.path + ("/" if action.is_dir else ""))
    console.print(table)
    if len(changes) > limit:
        console.print(f"  [dim]... and {len(changes) - limit} more[/]")


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "-c", "config_path", default=None, help="Path to sitesync.yaml")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool):
    """sitesync — keep a live site in step with its git repository.

    Deploys a branch, tag or commit onto the site root, snapshots what it
    touches first, and rolls back on failure or on demand.
    """
    from sitesync.config import load_settings

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)],
    )
    try:
        settings = load_settings(config_path)
    except (OSError, ValueError) as e:
        raise click.ClickException(f"Could not load configuration: {e}")
    ctx.obj = {"settings": settings}


# ── Deploy ───────────────────────────────────────────────────────────


@main.command()
@click.argument("ref", required=False, default="")
@click.option("--actor", default="cli", help="Name recorded in the deployment history")
@click.pass_context
def deploy(ctx: click.Context, ref: str, actor: str):
    """Deploy REF (branch, tag or commit) to the site. Defaults to the configured branch."""
    settings, _, _, orchestrator = _build(ctx)
    console.print(f"\n[bold blue]sitesync[/] — Deploying {ref or settings.branch} to {settings.site_root}\n")
    result = orchestrator.deploy(ref, actor=actor)
    if result.changes is not None and not result.changes.is_empty:
        _print_changes(result.changes)
    _report(result)


@main.command()
@click.option("--actor", default="cli", help="Name recorded in the deployment history")
@click.pass_context
def resume(ctx: click.Context, actor: str):
    """Apply the next chunk of a suspended deployment."""
    _, _, _, orchestrator = _build(ctx)
    _report(orchestrator.resume(actor=actor))


@main.command()
@click.argument("ref", required=False, default="")
@click.pass_context
def preview(ctx: click.Context, ref: str):
    """Show what deploying REF would change, without touching the site."""
    _, _, _, orchestrator = _build(ctx)
    result = orchestrator.preview(ref)
    if result.changes is not None and not result.changes.is_empty:
        _print_changes(result.changes)
    _report(result)


# ── Upload ───────────────────────────────────────────────────────────


@main.command()
@click.option("--message", "-m", default="", help="Commit message for the upload")
@click.option("--branch", "-b", default="", help="Branch to commit to (default: the configured branch)")
@click.option("--actor", default="cli", help="Name recorded in the deployment history")
@click.pass_context
def upload(ctx: click.Context, message: str, branch: str, actor: str):
    """Commit the site's current files to the repository (initial or full sync)."""
    settings, _, repository, orchestrator = _build(ctx)
    console.print(
        f"\n[bold blue]sitesync[/] — Uploading {settings.site_root} to "
        f"{repository.display_name} ({branch or settings.branch})\n"
    )
    _report(orchestrator.upload(message, branch=branch, actor=actor))


# ── Rollback ─────────────────────────────────────────────────────────


@main.command()
@click.argument("target", default="previous")
@click.option("--actor", default="cli", help="Name recorded in the deployment history")
@click.pass_context
def rollback(ctx: click.Context, target: str, actor: str):
    """Roll back to TARGET: a deployment id, a commit SHA, or 'previous'."""
    _, _, _, orchestrator = _build(ctx)
    console.print(f"\n[bold blue]sitesync[/] — Rolling back to {target}\n")
    _report(orchestrator.rollback(target, actor=actor))


# ── Status & history ─────────────────────────────────────────────────


@main.command()
@click.pass_context
def status(ctx: click.Context):
    """Show lock, progress and update status."""
    settings, _, repository, orchestrator = _build(ctx)
    result = orchestrator.status()
    details = result.details

    lines = [
        f"Site root:     {settings.site_root}",
        f"Repository:    {repository.display_name} ({settings.branch})",
        f"State:         {result.message}",
        f"Last deployed: {details.get('last_deployed_commit') or '-'}",
        f"Maintenance:   {'on' if details.get('maintenance') else 'off'}",
    ]
    if details.get("update_available"):
        lines.append(f"Update:        {details.get('latest_commit', '')[:8]} available")
    if result.record is not None:
        lines.append(
            f"Last run:      {result.record.id} {result.record.outcome.value} at {result.record.timestamp}"
        )
    console.print(Panel("\n".join(lines), title="sitesync status"))


@main.command()
@click.option("--limit", "-n", default=20, help="Number of records to show (0 for all)")
@click.pass_context
def history(ctx: click.Context, limit: int):
    """List recent deployments and rollbacks, newest first."""
    _, _, _, orchestrator = _build(ctx)
    records = orchestrator.list_deployments(limit).items
    if not records:
        console.print("[yellow]No deployments recorded yet.[/]")
        return

    table = Table(title=f"Deployment History ({len(records)} shown)")
    table.add_column("ID", style="cyan")
    table.add_column("When", style="dim")
    table.add_column("Commit")
    table.add_column("Outcome")
    table.add_column("Type")
    table.add_column("Actor")
    table.add_column("Message")
    for record in records:
        style = OUTCOME_STYLES.get(record.outcome.value, "white")
        table.add_row(
            record.id,
            record.timestamp[:19].replace("T", " "),
            record.short_commit,
            f"[{style}]{record.outcome.value}[/]",
            "rollback" if record.is_rollback else record.kind.value,
            record.actor,
            record.message[:60],
        )
    console.print(table)


# ── Scheduled check ──────────────────────────────────────────────────


@main.command()
@click.pass_context
def check(ctx: click.Context):
    """Run one scheduled check: resume a suspended run or look for updates."""
    from sitesync.triggers.scheduler import ScheduledCheck

    settings, store, repository, orchestrator = _build(ctx)
    _report(ScheduledCheck(settings, orchestrator, repository, store).tick())


@main.command()
@click.option("--abandon", is_flag=True, help="Also discard the suspended run")
@click.option("--actor", default="cli", help="Name recorded with the forced clear")
@click.pass_context
def unlock(ctx: click.Context, abandon: bool, actor: str):
    """Force-clear the deployment lock."""
    _, _, _, orchestrator = _build(ctx)
    _report(orchestrator.force_unlock(abandon=abandon, actor=actor))


@main.command(name="init-repo")
@click.argument("name")
@click.option("--description", "-d", default="", help="Repository description")
@click.option("--upload", "push", is_flag=True, help="Commit the site's files to the new repository")
@click.pass_context
def init_repo(ctx: click.Context, name: str, description: str, push: bool):
    """Create the configured repository if it does not exist yet."""
    from sitesync.result import RemoteError

    _, _, repository, orchestrator = _build(ctx)
    try:
        if repository.repository_exists():
            console.print(f"[yellow]Repository {repository.display_name} already exists.[/]")
            return
        location = repository.create_repository(name, description)
    except RemoteError as e:
        raise click.ClickException(e.message)
    console.print(f"[green]Repository created:[/] {location}")
    if push:
        _report(orchestrator.upload("Initial import of the site", actor="cli"))


# ── Snapshots ────────────────────────────────────────────────────────


@main.group()
def snapshots():
    """Manage site snapshots."""


@snapshots.command(name="list")
@click.pass_context
def list_snapshots(ctx: click.Context):
    """List stored snapshots, newest first."""
    _, _, _, orchestrator = _build(ctx)
    items = orchestrator.list_snapshots().items
    if not items:
        console.print("[yellow]No snapshots stored.[/]")
        return

    table = Table(title=f"Snapshots ({len(items)})")
    table.add_column("ID", style="cyan")
    table.add_column("Created", style="dim")
    table.add_column("Paths", justify="right")
    table.add_column("Actor")
    for snapshot in items:
        table.add_row(snapshot.id, snapshot.created_at[:19].replace("T", " "), str(len(snapshot.paths)), snapshot.actor)
    console.print(table)


@snapshots.command(name="create")
@click.argument("paths", nargs=-1, required=True)
@click.option("--actor", default="cli")
@click.pass_context
def create_snapshot(ctx: click.Context, paths: tuple, actor: str):
    """Snapshot PATHS (relative to the site root)."""
    _, _, _, orchestrator = _build(ctx)
    result = orchestrator.snapshots.create(paths, actor=actor)
    for warning in result.warnings:
        console.print(f"  [yellow]![/] {warning}")
    if not result.ok:
        console.print(f"[red]{result.message}[/]")
        sys.exit(1)
    console.print(f"[green]Snapshot created:[/] {result.value.id}")


@snapshots.command(name="restore")
@click.argument("snapshot_id")
@click.option("--actor", default="cli")
@click.pass_context
def restore_snapshot(ctx: click.Context, snapshot_id: str, actor: str):
    """Restore SNAPSHOT_ID onto the site (a pre-restore snapshot is taken first)."""
    _, _, _, orchestrator = _build(ctx)
    _report(orchestrator.restore_snapshot(snapshot_id, actor=actor))


@snapshots.command(name="delete")
@click.argument("snapshot_id")
@click.pass_context
def delete_snapshot(ctx: click.Context, snapshot_id: str):
    """Delete SNAPSHOT_ID."""
    _, _, _, orchestrator = _build(ctx)
    if not orchestrator.snapshots.delete(snapshot_id):
        console.print(f"[red]Snapshot not found:[/] {snapshot_id}")
        sys.exit(1)
    console.print(f"[green]Deleted[/] {snapshot_id}")


if __name__ == "__main__":
    main()
