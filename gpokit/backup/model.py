"""
GPO backup folders as written by Backup-GPO.

A backup root holds one folder per backup, named after the backup ID:

    <root>/{BACKUP-ID}/bkupInfo.xml    backup metadata (GPO GUID, name, time)
    <root>/{BACKUP-ID}/Backup.xml      GPO core settings and version numbers
    <root>/{BACKUP-ID}/gpreport.xml    settings report
    <root>/{BACKUP-ID}/DomainSysvol/GPO/{Machine,User}/...
"""

import codecs
import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from defusedxml import ElementTree  # type: ignore[import-untyped]
from lxml import etree

from gpokit.exceptions import InvalidBackupError

logger = logging.getLogger(__name__)

BKUPINFO_FILE = "bkupInfo.xml"
BACKUP_XML_FILE = "Backup.xml"
GPREPORT_FILE = "gpreport.xml"

MANIFEST_NS = "http://www.microsoft.com/GroupPolicy/GPOOperations/Manifest"
OPERATIONS_NS = "http://www.microsoft.com/GroupPolicy/GPOOperations"
SETTINGS_NS = "http://www.microsoft.com/GroupPolicy/Settings"
TYPES_NS = "http://www.microsoft.com/GroupPolicy/Types"

_GUID_RE = re.compile(r"^\{?([0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12})\}?$")


def normalize_guid(value: str) -> str:
    """Return a GUID as upper case with braces, e.g. {31B2F340-016D-11D2-945F-00C04FB984F9}."""
    match = _GUID_RE.match(value.strip())
    if not match:
        raise ValueError(f"Not a GUID: {value!r}")
    return "{" + match.group(1).upper() + "}"


def new_guid() -> str:
    return normalize_guid(str(uuid.uuid4()))


@dataclass
class BackupInfo:
    """Metadata of one GPO backup folder."""

    backup_id: str
    gpo_guid: str
    display_name: str
    domain: str
    domain_controller: str
    backup_time: datetime
    comment: str = ""
    path: Path | None = None
    user_version: int = 0
    computer_version: int = 0

    def to_dict(self) -> dict:
        return {
            "backup_id": self.backup_id,
            "gpo_guid": self.gpo_guid,
            "display_name": self.display_name,
            "domain": self.domain,
            "domain_controller": self.domain_controller,
            "backup_time": self.backup_time.isoformat(),
            "comment": self.comment,
            "user_version": self.user_version,
            "computer_version": self.computer_version,
        }


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _find_text(root, name: str) -> str | None:
    """Text of the first element with the given local name, ignoring namespaces."""
    for element in root.iter():
        if isinstance(element.tag, str) and _local_name(element.tag) == name:
            return (element.text or "").strip()
    return None


def _parse_xml(path: Path):
    try:
        return ElementTree.parse(str(path)).getroot()
    except ElementTree.ParseError as e:
        raise InvalidBackupError(str(path.parent), f"{path.name} is not valid XML: {e}") from e


def _parse_version(value: str | None) -> int:
    if not value:
        return 0
    try:
        return int(value)
    except ValueError:
        return 0


def load_backup(path: str | Path) -> BackupInfo:
    """
    Read the metadata of one backup folder.

    Raises:
        InvalidBackupError: If bkupInfo.xml is missing, malformed or incomplete
    """
    path = Path(path)
    info_file = path / BKUPINFO_FILE
    if not info_file.is_file():
        raise InvalidBackupError(str(path), f"{BKUPINFO_FILE} not found")

    root = _parse_xml(info_file)

    gpo_guid = _find_text(root, "GPOGuid")
    backup_id = _find_text(root, "ID")
    if not gpo_guid or not backup_id:
        raise InvalidBackupError(str(path), f"{BKUPINFO_FILE} lacks GPOGuid or ID")

    backup_time_text = _find_text(root, "BackupTime") or ""
    try:
        backup_time = datetime.fromisoformat(backup_time_text)
    except ValueError as e:
        raise InvalidBackupError(str(path), f"bad BackupTime {backup_time_text!r}") from e

    try:
        gpo_guid = normalize_guid(gpo_guid)
        backup_id = normalize_guid(backup_id)
    except ValueError as e:
        raise InvalidBackupError(str(path), str(e)) from e

    user_version = computer_version = 0
    backup_xml = path / BACKUP_XML_FILE
    if backup_xml.is_file():
        core = _parse_xml(backup_xml)
        user_version = _parse_version(_find_text(core, "UserVersionNumber"))
        computer_version = _parse_version(_find_text(core, "MachineVersionNumber"))

    return BackupInfo(
        backup_id=backup_id,
        gpo_guid=gpo_guid,
        display_name=_find_text(root, "GPODisplayName") or "",
        domain=_find_text(root, "GPODomain") or "",
        domain_controller=_find_text(root, "GPODomainController") or "",
        backup_time=backup_time,
        comment=_find_text(root, "Comment") or "",
        path=path,
        user_version=user_version,
        computer_version=computer_version,
    )


def find_backups(root: str | Path) -> list[BackupInfo]:
    """
    List every readable backup below root, oldest first.

    Folders that are not backups are ignored; broken backups are logged and skipped.
    """
    root = Path(root)
    if not root.is_dir():
        return []

    backups = []
    for candidate in sorted(root.iterdir()):
        if not candidate.is_dir() or not (candidate / BKUPINFO_FILE).exists():
            continue
        try:
            backups.append(load_backup(candidate))
        except InvalidBackupError as e:
            logger.warning(f"Skipping backup: {e.message}")

    backups.sort(key=lambda b: (b.backup_time, b.backup_id))
    return backups


def group_by_gpo(backups: list[BackupInfo]) -> dict[str, list[BackupInfo]]:
    """Backups per GPO GUID, each list newest first."""
    groups: dict[str, list[BackupInfo]] = {}
    for backup in backups:
        groups.setdefault(backup.gpo_guid, []).append(backup)
    for items in groups.values():
        items.sort(key=lambda b: (b.backup_time, b.backup_id), reverse=True)
    return groups


def latest_backups(backups: list[BackupInfo]) -> dict[str, BackupInfo]:
    """Newest backup per GPO GUID."""
    return {guid: items[0] for guid, items in group_by_gpo(backups).items()}


def _cdata_element(parent, tag: str, text: str):
    element = etree.SubElement(parent, tag)
    element.text = etree.CDATA(text)
    return element


def write_backup_metadata(info: BackupInfo, path: str | Path, report_name: str | None = None) -> Path:
    """
    Write bkupInfo.xml, Backup.xml and gpreport.xml for a backup.

    Used by the mock provider to produce folders shaped like Backup-GPO output.
    """
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)

    bkup = etree.Element(f"{{{MANIFEST_NS}}}BackupInst", nsmap={None: MANIFEST_NS})
    for tag, value in (
        ("GPOGuid", info.gpo_guid),
        ("GPODomain", info.domain),
        ("GPODomainController", info.domain_controller),
        ("BackupTime", info.backup_time.isoformat(timespec="seconds")),
        ("ID", info.backup_id),
        ("Comment", info.comment),
        ("GPODisplayName", info.display_name),
    ):
        _cdata_element(bkup, f"{{{MANIFEST_NS}}}{tag}", value)
    (path / BKUPINFO_FILE).write_bytes(
        etree.tostring(bkup, xml_declaration=True, encoding="utf-8")
    )

    scheme = etree.Element(f"{{{OPERATIONS_NS}}}GroupPolicyBackupScheme", nsmap={None: OPERATIONS_NS})
    gpo = etree.SubElement(scheme, f"{{{OPERATIONS_NS}}}GroupPolicyObject")
    core = etree.SubElement(gpo, f"{{{OPERATIONS_NS}}}GroupPolicyCoreSettings")
    for tag, value in (
        ("ID", info.gpo_guid),
        ("Domain", info.domain),
        ("DisplayName", info.display_name),
        ("UserVersionNumber", str(info.user_version)),
        ("MachineVersionNumber", str(info.computer_version)),
    ):
        _cdata_element(core, f"{{{OPERATIONS_NS}}}{tag}", value)
    (path / BACKUP_XML_FILE).write_bytes(
        etree.tostring(scheme, xml_declaration=True, encoding="utf-8", pretty_print=True)
    )

    report = etree.Element(f"{{{SETTINGS_NS}}}GPO", nsmap={None: SETTINGS_NS, "types": TYPES_NS})
    identifier = etree.SubElement(report, f"{{{SETTINGS_NS}}}Identifier")
    etree.SubElement(identifier, f"{{{TYPES_NS}}}Identifier").text = info.gpo_guid
    etree.SubElement(identifier, f"{{{TYPES_NS}}}Domain").text = info.domain
    etree.SubElement(report, f"{{{SETTINGS_NS}}}Name").text = report_name or info.display_name
    # Backup-GPO writes the report as UTF-16LE with a byte order mark.
    body = etree.tostring(report, encoding="unicode", pretty_print=True)
    declaration = '<?xml version="1.0" encoding="utf-16"?>\r\n'
    (path / GPREPORT_FILE).write_bytes(codecs.BOM_UTF16_LE + (declaration + body).encode("utf-16-le"))

    return path
