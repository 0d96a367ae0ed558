"""
HTML report generation.

Renders an inventory of the backups in a workspace: one row per GPO with its
newest backup, backup count, age and size on disk.
"""

import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, select_autoescape

from gpokit.backup.model import BackupInfo, find_backups, group_by_gpo
from gpokit.util.formatting import format_bytes, format_timespan
from gpokit.workspace import Workspace

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent.parent / "templates"
REPORT_TEMPLATE = "report.html.j2"

STALE_AFTER = timedelta(days=30)


def _folder_size(path: Path | None) -> int:
    if path is None or not path.exists():
        return 0
    return sum(p.stat().st_size for p in path.rglob("*") if p.is_file())


def build_report_context(
    backups: list[BackupInfo],
    workspace_name: str,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Build data context for the report template.

    Args:
        backups: Backups to report on
        workspace_name: Shown in the page title
        now: Reference time for ages (defaults to the current time)

    Returns:
        Template context dictionary
    """
    now = now or datetime.now()
    rows = []
    total_size = 0

    for guid, items in group_by_gpo(backups).items():
        latest = items[0]
        size = sum(_folder_size(b.path) for b in items)
        total_size += size
        age = max(now - latest.backup_time, timedelta(0))
        rows.append(
            {
                "guid": guid,
                "display_name": latest.display_name,
                "backup_count": len(items),
                "latest_time": latest.backup_time.isoformat(sep=" ", timespec="seconds"),
                "age": format_timespan(timedelta(seconds=int(age.total_seconds()) // 60 * 60)),
                "stale": age > STALE_AFTER,
                "user_version": latest.user_version,
                "computer_version": latest.computer_version,
                "size": format_bytes(size),
            }
        )

    rows.sort(key=lambda r: r["display_name"].lower())
    return {
        "workspace_name": workspace_name,
        "generated": now.isoformat(sep=" ", timespec="seconds"),
        "gpo_count": len(rows),
        "backup_count": len(backups),
        "total_size": format_bytes(total_size),
        "gpos": rows,
    }


def render_report_template(context: dict[str, Any]) -> str:
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATES_DIR)),
        autoescape=select_autoescape(["html", "j2"]),
    )
    return env.get_template(REPORT_TEMPLATE).render(**context)


def generate_html_report(workspace: Workspace, output_path: Path | None = None) -> Path:
    """
    Generate the backup inventory report for a workspace.

    Args:
        workspace: Workspace instance
        output_path: Optional output directory (defaults to reports/)

    Returns:
        Path to the generated index.html
    """
    if output_path is None:
        output_path = workspace.reports_dir
    output_path.mkdir(parents=True, exist_ok=True)

    backups = find_backups(workspace.backups_dir)
    if not backups:
        logger.warning(f"No backups found in {workspace.backups_dir}")

    context = build_report_context(backups, workspace.root.name)
    report_file = output_path / "index.html"
    report_file.write_text(render_report_template(context), encoding="utf-8")
    return report_file
