"""
Idempotent GPO backups.

A GPO is backed up when it has no backup yet or when its user/computer version
numbers differ from those recorded in its newest backup. Running a sync twice
without edits in between backs up nothing the second time.
"""

import logging
import shutil
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from gpokit.backup.model import BackupInfo, find_backups, group_by_gpo, latest_backups
from gpokit.exceptions import GpoKitError, InvalidBackupError
from gpokit.providers.base import GPOInfo, GroupPolicyProvider
from gpokit.util.filters import is_selected

logger = logging.getLogger(__name__)


class BackupReason(str, Enum):
    NEW = "new"
    CHANGED = "changed"
    UNCHANGED = "unchanged"


@dataclass
class BackupAction:
    gpo: GPOInfo
    reason: BackupReason
    last_backup: BackupInfo | None = None

    @property
    def needed(self) -> bool:
        return self.reason != BackupReason.UNCHANGED


@dataclass
class SyncResult:
    created: list[BackupInfo] = field(default_factory=list)
    planned: list[BackupAction] = field(default_factory=list)
    skipped: list[BackupAction] = field(default_factory=list)
    failed: list[tuple[GPOInfo, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


def plan_backups(
    live_gpos: list[GPOInfo],
    backups: list[BackupInfo],
    include: list[str] | None = None,
    exclude: list[str] | None = None,
) -> list[BackupAction]:
    """
    Compare live GPOs with their newest backups.

    Args:
        live_gpos: GPOs currently in the domain
        backups: Existing backups (any order)
        include: Display name wildcards to select (empty selects all)
        exclude: Display name wildcards to skip

    Returns:
        One action per selected GPO, ordered by display name
    """
    latest = latest_backups(backups)
    actions = []

    for gpo in sorted(live_gpos, key=lambda g: g.display_name.lower()):
        if not is_selected(gpo.display_name, include, exclude):
            continue

        last = latest.get(gpo.guid)
        if last is None:
            reason = BackupReason.NEW
        elif (last.user_version, last.computer_version) != (gpo.user_version, gpo.computer_version):
            reason = BackupReason.CHANGED
        else:
            reason = BackupReason.UNCHANGED
        actions.append(BackupAction(gpo=gpo, reason=reason, last_backup=last))

    return actions


def run_backups(
    provider: GroupPolicyProvider,
    root: Path,
    plan: list[BackupAction],
    what_if: bool = False,
    comment: str = "",
    on_progress: Callable[[BackupAction], None] | None = None,
) -> SyncResult:
    """
    Execute the needed actions of a backup plan.

    A failing GPO is logged and recorded; the remaining GPOs are still backed up.
    """
    result = SyncResult()
    root = Path(root)

    for action in plan:
        if not action.needed:
            result.skipped.append(action)
        elif what_if:
            logger.info(f"What if: back up '{action.gpo.display_name}' ({action.reason.value})")
            result.planned.append(action)
        else:
            try:
                backup = provider.backup_gpo(action.gpo.guid, root, comment=comment)
            except (GpoKitError, OSError) as e:
                logger.warning(f"Backup of '{action.gpo.display_name}' failed: {e}")
                result.failed.append((action.gpo, str(e)))
            else:
                logger.info(
                    f"Backed up '{action.gpo.display_name}' as {backup.backup_id} "
                    f"({action.reason.value})"
                )
                result.created.append(backup)

        if on_progress is not None:
            on_progress(action)

    return result


def sync_backups(
    provider: GroupPolicyProvider,
    root: Path,
    include: list[str] | None = None,
    exclude: list[str] | None = None,
    what_if: bool = False,
    comment: str = "",
) -> SyncResult:
    """List live GPOs, plan against the backups under root and run the plan."""
    plan = plan_backups(provider.list_gpos(), find_backups(root), include, exclude)
    return run_backups(provider, root, plan, what_if=what_if, comment=comment)


def prune_backups(root: Path, keep: int, what_if: bool = False) -> list[BackupInfo]:
    """
    Delete all but the newest `keep` backups of every GPO.

    Returns:
        The backups that were (or, with what_if, would be) removed
    """
    if keep < 1:
        raise ValueError(f"keep must be at least 1, got {keep}")

    removed = []
    for items in group_by_gpo(find_backups(root)).values():
        for backup in items[keep:]:
            removed.append(backup)
            if what_if:
                logger.info(f"What if: remove backup {backup.backup_id} of '{backup.display_name}'")
                continue
            if backup.path is None:
                raise InvalidBackupError(backup.backup_id, "backup has no folder on disk")
            shutil.rmtree(backup.path)
            logger.info(f"Removed backup {backup.backup_id} of '{backup.display_name}'")

    return removed
