"""
Import GPO backups into a domain.

Each backup is matched to a live GPO by the GPO GUID recorded in its
bkupInfo.xml. When the GUID is unknown in the target domain the display name is
tried, and when that fails too a new GPO is created.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from gpokit.backup.archive import archive_backups_dir, extract_archive
from gpokit.backup.model import BackupInfo, find_backups
from gpokit.exceptions import BackupNotFoundError, GpoKitError
from gpokit.identity import DomainIdentity
from gpokit.policy.convert import specialize_tree
from gpokit.providers.base import GPOInfo, GroupPolicyProvider
from gpokit.util.files import reset_dir
from gpokit.util.filters import is_selected

logger = logging.getLogger(__name__)


class MatchKind(str, Enum):
    GUID = "guid"
    NAME = "name"
    CREATE = "create"


@dataclass
class ImportAction:
    backup: BackupInfo
    match: MatchKind
    target: GPOInfo | None = None

    @property
    def description(self) -> str:
        if self.match == MatchKind.CREATE:
            return f"create '{self.backup.display_name}'"
        assert self.target is not None
        return f"import into '{self.target.display_name}' {self.target.guid} (by {self.match.value})"


@dataclass
class ImportResult:
    manifest: dict[str, Any] | None = None
    imported: list[tuple[ImportAction, GPOInfo]] = field(default_factory=list)
    planned: list[ImportAction] = field(default_factory=list)
    failed: list[tuple[ImportAction, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def guid_map(self) -> dict[str, str]:
        """GPO GUID recorded in each backup -> GUID of the live GPO that received it."""
        return {action.backup.gpo_guid: gpo.guid for action, gpo in self.imported}


def plan_imports(
    backups: list[BackupInfo],
    live_gpos: list[GPOInfo],
    include: list[str] | None = None,
    exclude: list[str] | None = None,
) -> list[ImportAction]:
    """
    Resolve the import target of every selected backup.

    When several backups of one GPO are present only the newest is imported.
    """
    by_guid = {gpo.guid: gpo for gpo in live_gpos}
    by_name = {gpo.display_name.lower(): gpo for gpo in live_gpos}

    newest: dict[str, BackupInfo] = {}
    for backup in backups:
        current = newest.get(backup.gpo_guid)
        if current is None or backup.backup_time > current.backup_time:
            newest[backup.gpo_guid] = backup

    actions = []
    for backup in sorted(newest.values(), key=lambda b: b.display_name.lower()):
        if not is_selected(backup.display_name, include, exclude):
            continue
        if backup.gpo_guid in by_guid:
            actions.append(ImportAction(backup, MatchKind.GUID, by_guid[backup.gpo_guid]))
        elif backup.display_name.lower() in by_name:
            actions.append(ImportAction(backup, MatchKind.NAME, by_name[backup.display_name.lower()]))
        else:
            actions.append(ImportAction(backup, MatchKind.CREATE))
    return actions


def run_imports(
    provider: GroupPolicyProvider,
    backups_root: Path,
    plan: list[ImportAction],
    what_if: bool = False,
    wait: bool = True,
    on_progress: Callable[[ImportAction], None] | None = None,
) -> ImportResult:
    """Import every planned backup; failures are logged and the loop continues."""
    result = ImportResult()

    for action in plan:
        if what_if:
            logger.info(f"What if: {action.description}")
            result.planned.append(action)
        else:
            try:
                gpo = provider.import_gpo(
                    action.backup.backup_id,
                    backups_root,
                    target_name=action.backup.display_name,
                    target_guid=action.target.guid if action.target else None,
                    create_if_needed=action.match == MatchKind.CREATE,
                )
            except (GpoKitError, OSError) as e:
                logger.warning(f"Import of '{action.backup.display_name}' failed: {e}")
                result.failed.append((action, str(e)))
            else:
                if action.match == MatchKind.CREATE and wait and not provider.wait_for_gpo(gpo.guid):
                    logger.warning(f"'{gpo.display_name}' {gpo.guid} not visible yet after import")
                logger.info(f"Imported '{action.backup.display_name}': {action.description}")
                result.imported.append((action, gpo))

        if on_progress is not None:
            on_progress(action)

    return result


def import_archive(
    provider: GroupPolicyProvider,
    archive_path: Path,
    staging: Path,
    target: DomainIdentity | None = None,
    include: list[str] | None = None,
    exclude: list[str] | None = None,
    what_if: bool = False,
) -> ImportResult:
    """
    Extract an archive, specialize it if it was generalized, and import it.

    Args:
        provider: Provider for the target domain
        archive_path: Archive written by export_archive
        staging: Scratch directory, emptied first
        target: Identity of the target domain (asked from the provider when None)
        include: Display name wildcards to select (empty selects all)
        exclude: Display name wildcards to skip
        what_if: Plan only, import nothing

    Returns:
        ImportResult with the archive manifest attached
    """
    staging = Path(staging)
    manifest = extract_archive(archive_path, staging / "extracted")
    backups_root = archive_backups_dir(staging / "extracted")

    if manifest["generalized"]:
        if target is None:
            target = provider.get_domain_identity()
        generic = DomainIdentity.from_dict(manifest["generic_identity"])
        specialized = reset_dir(staging / "specialized")
        for folder in sorted(p for p in backups_root.iterdir() if p.is_dir()):
            summary = specialize_tree(folder, specialized / folder.name, target, generic)
            logger.debug(f"Specialized {folder.name}: {summary.replacements} replacement(s)")
        backups_root = specialized

    backups = find_backups(backups_root)
    if not backups:
        raise BackupNotFoundError(str(archive_path))

    plan = plan_imports(backups, provider.list_gpos(), include, exclude)
    result = run_imports(provider, backups_root, plan, what_if=what_if)
    result.manifest = manifest
    return result
