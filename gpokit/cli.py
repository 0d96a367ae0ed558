"""
CLI entry point for gpokit.
"""

import logging
from contextlib import nullcontext
from datetime import datetime
from functools import wraps
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from gpokit.exceptions import (
    BackupNotFoundError,
    GpoKitError,
    ProviderNotAvailableError,
    WorkspaceNotFoundError,
    format_error_for_cli,
)
from gpokit.providers import get_provider
from gpokit.providers.base import GroupPolicyProvider
from gpokit.util.transcript import transcript
from gpokit.workspace import Workspace

app = typer.Typer(
    name="gpokit",
    help="Back up, generalize, archive and import Group Policy Objects",
    add_completion=False,
)
console = Console()
logger = logging.getLogger(__name__)

state: dict = {"workspace": None}


def handle_errors(func):
    """Decorator to handle exceptions in CLI commands with nice formatting."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except typer.Exit:
            raise
        except GpoKitError as e:
            console.print(format_error_for_cli(e))
            raise typer.Exit(1)
        except Exception as e:
            logger.exception("Unexpected error")
            console.print(f"[red]Unexpected error:[/red] {str(e)}")
            raise typer.Exit(1)

    return wrapper


@app.callback()
def main(
    workspace: Path | None = typer.Option(
        None,
        "--workspace",
        "-w",
        envvar="GPOKIT_WORKSPACE",
        help="Workspace directory (default: current directory)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    """Group Policy backup and portability toolkit."""
    state["workspace"] = workspace
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False, level=level)],
        force=True,
    )


def _workspace() -> Workspace:
    workspace = Workspace(state["workspace"] or Path.cwd())
    if not workspace.exists():
        raise WorkspaceNotFoundError(str(workspace.root) if state["workspace"] else None)
    workspace.load_config()
    return workspace


def _provider(workspace: Workspace) -> GroupPolicyProvider:
    provider = get_provider(workspace.load_config())
    if not provider.is_available():
        raise ProviderNotAvailableError(provider.name)
    return provider


def _transcript(workspace: Workspace, name: str):
    settings = workspace.load_config().get("logging", {})
    if not settings.get("transcript", True):
        return nullcontext(None)
    level = getattr(logging, settings.get("level", "INFO"))
    return transcript(workspace.logs_dir, name, level=level)


def _patterns(cli_values: list[str] | None, configured: list[str] | None) -> list[str]:
    return list(cli_values) if cli_values else list(configured or [])


def _warn_unmapped(unmapped: dict[str, list[str]]) -> None:
    if not unmapped:
        return
    console.print(
        "[yellow]⚠ Domain names in an unmapped letter case were left in place "
        "and will reach the target domain unchanged:[/yellow]"
    )
    for name, names in unmapped.items():
        console.print(f"  {name}: {', '.join(names)}")


@app.command()
@handle_errors
def init(
    workspace_dir: Path = typer.Argument(..., help="Workspace directory to initialize"),
):
    """Initialize a new gpokit workspace."""
    console.print(f"[bold blue]Initializing workspace:[/bold blue] {workspace_dir}")

    workspace = Workspace(workspace_dir)
    workspace.initialize()

    console.print(f"[green]✓ Created directory structure in {workspace_dir}[/green]")
    console.print(f"[green]✓ Wrote configuration to {Workspace.CONFIG_NAME}[/green]")

    console.print("\n[dim]Next steps:[/dim]")
    console.print(f"  cd {workspace_dir}")
    console.print(f"  # Review provider and domain settings in {Workspace.CONFIG_NAME}")
    console.print("  gpokit backup")


@app.command(name="list")
@handle_errors
def list_cmd(
    include: list[str] | None = typer.Option(None, "--include", "-i", help="Display name wildcard"),
    exclude: list[str] | None = typer.Option(None, "--exclude", "-x", help="Display name wildcard"),
):
    """List live GPOs and whether each needs a backup."""
    from gpokit.backup.model import find_backups
    from gpokit.backup.sync import plan_backups

    workspace = _workspace()
    provider = _provider(workspace)
    settings = workspace.backup_settings()

    plan = plan_backups(
        provider.list_gpos(),
        find_backups(workspace.backups_dir),
        _patterns(include, settings.get("include")),
        _patterns(exclude, settings.get("exclude")),
    )

    table = Table(title="Group Policy Objects")
    table.add_column("Display name")
    table.add_column("GUID", style="dim")
    table.add_column("Versions (U/C)")
    table.add_column("Backup status")
    for action in plan:
        status = {
            "new": "[yellow]no backup[/yellow]",
            "changed": "[yellow]changed[/yellow]",
            "unchanged": "[green]up to date[/green]",
        }[action.reason.value]
        table.add_row(
            action.gpo.display_name,
            action.gpo.guid,
            f"{action.gpo.user_version}/{action.gpo.computer_version}",
            status,
        )
    console.print(table)


@app.command()
@handle_errors
def backup(
    include: list[str] | None = typer.Option(None, "--include", "-i", help="Display name wildcard"),
    exclude: list[str] | None = typer.Option(None, "--exclude", "-x", help="Display name wildcard"),
    comment: str | None = typer.Option(None, "--comment", help="Backup comment"),
    what_if: bool = typer.Option(False, "--what-if", help="Show what would be backed up"),
):
    """Back up every GPO that is new or changed since its last backup."""
    from gpokit.backup.model import find_backups
    from gpokit.backup.sync import plan_backups, run_backups
    from gpokit.util.progress import track_progress

    workspace = _workspace()
    provider = _provider(workspace)
    settings = workspace.backup_settings()

    with _transcript(workspace, "backup"):
        plan = plan_backups(
            provider.list_gpos(),
            find_backups(workspace.backups_dir),
            _patterns(include, settings.get("include")),
            _patterns(exclude, settings.get("exclude")),
        )
        needed = [action for action in plan if action.needed]

        if not needed:
            console.print(f"[green]✓ All {len(plan)} GPO(s) up to date[/green]")
            return

        console.print(f"[bold blue]Backing up {len(needed)} of {len(plan)} GPO(s)...[/bold blue]")
        with track_progress("Backing up GPOs", total=len(plan)) as progress:
            task = progress.add_task("backup", total=len(plan))
            result = run_backups(
                provider,
                workspace.backups_dir,
                plan,
                what_if=what_if,
                comment=comment if comment is not None else settings.get("comment", ""),
                on_progress=lambda action: progress.update(task, advance=1),
            )

    for action in result.planned:
        console.print(f"  [dim]What if:[/dim] {action.gpo.display_name} ({action.reason.value})")
    for created in result.created:
        console.print(f"[green]✓ {created.display_name}[/green] [dim]{created.backup_id}[/dim]")
    for gpo, error in result.failed:
        console.print(f"[red]✗ {gpo.display_name}: {error}[/red]")

    if not result.ok:
        raise typer.Exit(1)


@app.command()
@handle_errors
def prune(
    keep: int | None = typer.Option(None, "--keep", help="Backups to keep per GPO"),
    what_if: bool = typer.Option(False, "--what-if", help="Show what would be removed"),
):
    """Remove old backups, keeping the newest N per GPO."""
    from gpokit.backup.sync import prune_backups

    workspace = _workspace()
    keep = keep if keep is not None else int(workspace.backup_settings().get("keep", 5))

    with _transcript(workspace, "prune"):
        removed = prune_backups(workspace.backups_dir, keep, what_if=what_if)

    verb = "Would remove" if what_if else "Removed"
    for item in removed:
        console.print(f"  {verb} {item.backup_id} [dim]{item.display_name}[/dim]")
    console.print(f"[green]✓ {verb} {len(removed)} backup(s), keeping {keep} per GPO[/green]")


@app.command()
@handle_errors
def export(
    archive: Path | None = typer.Argument(None, help="Archive to write (default: archives/)"),
    generalize: bool = typer.Option(
        False, "--generalize", help="Replace domain names with placeholders"
    ),
    include: list[str] | None = typer.Option(None, "--include", "-i", help="Display name wildcard"),
    exclude: list[str] | None = typer.Option(None, "--exclude", "-x", help="Display name wildcard"),
    all_backups: bool = typer.Option(
        False, "--all", help="Export every backup instead of the newest per GPO"
    ),
):
    """Pack backups into a zip archive, optionally generalized."""
    from gpokit.backup.archive import export_archive
    from gpokit.backup.model import find_backups, latest_backups
    from gpokit.util.filters import is_selected

    workspace = _workspace()
    backups = find_backups(workspace.backups_dir)
    if not all_backups:
        backups = list(latest_backups(backups).values())
    settings = workspace.backup_settings()
    include = _patterns(include, settings.get("include"))
    exclude = _patterns(exclude, settings.get("exclude"))
    backups = [b for b in backups if is_selected(b.display_name, include, exclude)]
    if not backups:
        raise BackupNotFoundError(str(workspace.backups_dir))

    real = generic = None
    if generalize:
        config = workspace.load_config()
        provider = None if config.get("domain") else _provider(workspace)
        real = workspace.domain_identity(provider)
        generic = workspace.generic_identity()

    if archive is None:
        suffix = "-generic" if generalize else ""
        archive = workspace.archives_dir / f"gpo-backups-{datetime.now():%Y%m%d-%H%M%S}{suffix}.zip"

    with _transcript(workspace, "export"):
        result = export_archive(
            backups,
            archive,
            workspace.staging_dir / "export",
            generalize=generalize,
            real=real,
            generic=generic,
        )

    console.print(f"[green]✓ Exported {len(backups)} backup(s) to {result.archive}[/green]")
    if generalize:
        console.print(f"[green]✓ Generalized with {result.replacements} replacement(s)[/green]")
        _warn_unmapped(result.unmapped)


@app.command(name="import")
@handle_errors
def import_cmd(
    archive: Path = typer.Argument(..., help="Archive written by 'gpokit export'"),
    include: list[str] | None = typer.Option(None, "--include", "-i", help="Display name wildcard"),
    exclude: list[str] | None = typer.Option(None, "--exclude", "-x", help="Display name wildcard"),
    what_if: bool = typer.Option(False, "--what-if", help="Show what would be imported"),
):
    """Import an archive into the domain, matching GPOs by GUID then name."""
    from gpokit.backup.restore import import_archive
    from gpokit.util.progress import show_summary

    if not archive.is_file():
        raise BackupNotFoundError(str(archive))

    workspace = _workspace()
    provider = _provider(workspace)
    target = workspace.domain_identity() if workspace.load_config().get("domain") else None
    settings = workspace.backup_settings()

    with _transcript(workspace, "import"):
        result = import_archive(
            provider,
            archive,
            workspace.staging_dir / "import",
            target=target,
            include=_patterns(include, settings.get("include")),
            exclude=_patterns(exclude, settings.get("exclude")),
            what_if=what_if,
        )

    for action in result.planned:
        console.print(f"  [dim]What if:[/dim] {action.description}")
    for action, gpo in result.imported:
        console.print(f"[green]✓ {action.backup.display_name}[/green] → {gpo.guid}")
    for action, error in result.failed:
        console.print(f"[red]✗ {action.backup.display_name}: {error}[/red]")

    show_summary(
        "Import summary",
        {
            "Imported": len(result.imported),
            "Failed": len(result.failed),
            "What if": len(result.planned),
        },
    )

    if not result.ok:
        raise typer.Exit(1)


@app.command(name="generalize")
@handle_errors
def generalize_cmd(
    source: Path = typer.Argument(..., help="Backup folder to read"),
    dest: Path = typer.Argument(..., help="Folder to write"),
):
    """Copy a backup folder replacing domain names with placeholders."""
    from gpokit.policy.convert import generalize_tree

    workspace = _workspace()
    provider = None if workspace.load_config().get("domain") else _provider(workspace)
    real = workspace.domain_identity(provider)
    with _transcript(workspace, "generalize"):
        summary = generalize_tree(source, dest, real, workspace.generic_identity())
    console.print(
        f"[green]✓ {len(summary.converted)} file(s) generalized, "
        f"{len(summary.copied)} copied, {summary.replacements} replacement(s)[/green]"
    )
    _warn_unmapped({relative.as_posix(): names for relative, names in summary.unmapped.items()})


@app.command(name="specialize")
@handle_errors
def specialize_cmd(
    source: Path = typer.Argument(..., help="Generalized backup folder to read"),
    dest: Path = typer.Argument(..., help="Folder to write"),
):
    """Copy a generalized backup folder replacing placeholders with domain names."""
    from gpokit.policy.convert import specialize_tree

    workspace = _workspace()
    provider = None if workspace.load_config().get("domain") else _provider(workspace)
    real = workspace.domain_identity(provider)
    with _transcript(workspace, "specialize"):
        summary = specialize_tree(source, dest, real, workspace.generic_identity())
    console.print(
        f"[green]✓ {len(summary.converted)} file(s) specialized, "
        f"{len(summary.copied)} copied, {summary.replacements} replacement(s)[/green]"
    )


@app.command(name="pol-dump")
@handle_errors
def pol_dump(file: Path = typer.Argument(..., help="registry.pol file")):
    """Print the entries of a registry.pol file."""
    from gpokit.policy.pol import read_pol

    pol = read_pol(file)
    table = Table(title=f"{file.name} (version {pol.version})")
    table.add_column("Key")
    table.add_column("Value name")
    table.add_column("Type")
    table.add_column("Data")
    for entry in pol.entries:
        table.add_row(entry.key, entry.value_name, entry.type_name, str(entry.value))
    console.print(table)


@app.command()
@handle_errors
def report(
    out: Path | None = typer.Option(None, help="Output directory (default: reports/)"),
):
    """Generate an HTML inventory of the backups in the workspace."""
    from gpokit.report import generate_html_report

    workspace = _workspace()
    report_file = generate_html_report(workspace, output_path=out)

    console.print("[green]✓ Report generated successfully[/green]")
    console.print(f"\n[bold]Report location:[/bold] {report_file}")


if __name__ == "__main__":
    app()
