"""
Backup archives: zip files holding a set of GPO backups plus a manifest.

Archive layout:
    gpokit-manifest.json
    backups/{BACKUP-ID}/...

The manifest records whether the backups were generalized, the placeholder
identity that was used, the backups it contains and a SHA256 per file.
"""

import json
import logging
import shutil
import zipfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from jsonschema import ValidationError, validate

from gpokit.backup.model import BackupInfo, load_backup
from gpokit.exceptions import (
    ChecksumMismatchError,
    DomainIdentityMissingError,
    InvalidBackupError,
    ManifestError,
    UnsafeArchiveMemberError,
)
from gpokit.identity import DomainIdentity
from gpokit.policy.convert import ConversionSummary, generalize_tree
from gpokit.util.files import ensure_dir, reset_dir
from gpokit.util.hashing import sha256_bytes, sha256_file

logger = logging.getLogger(__name__)

MANIFEST_NAME = "gpokit-manifest.json"
BACKUPS_DIR = "backups"
FORMAT_VERSION = 1

_IDENTITY_SCHEMA = {
    "type": "object",
    "required": ["server_fqdn", "dns_domain", "netbios_name"],
    "properties": {
        "server_fqdn": {"type": "string"},
        "dns_domain": {"type": "string"},
        "netbios_name": {"type": "string"},
    },
}

MANIFEST_SCHEMA = {
    "type": "object",
    "required": ["format_version", "created", "generalized", "backups", "files"],
    "properties": {
        "format_version": {"type": "integer", "const": FORMAT_VERSION},
        "created": {"type": "string"},
        "generalized": {"type": "boolean"},
        "generic_identity": {"oneOf": [{"type": "null"}, _IDENTITY_SCHEMA]},
        "backups": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["backup_id", "gpo_guid", "display_name"],
            },
        },
        "files": {
            "type": "object",
            "additionalProperties": {"type": "string", "pattern": "^[0-9a-f]{64}$"},
        },
    },
    "if": {"properties": {"generalized": {"const": True}}},
    "then": {
        "required": ["generic_identity"],
        "properties": {"generic_identity": _IDENTITY_SCHEMA},
    },
}


@dataclass
class ExportResult:
    archive: Path
    manifest: dict[str, Any]
    replacements: int = 0
    unmapped: dict[str, list[str]] = field(default_factory=dict)


def export_archive(
    backups: list[BackupInfo],
    archive_path: Path,
    staging: Path,
    generalize: bool = False,
    real: DomainIdentity | None = None,
    generic: DomainIdentity | None = None,
) -> ExportResult:
    """
    Stage, optionally generalize, and zip a set of backups.

    Args:
        backups: Backups to include (each must have a path)
        archive_path: Zip file to write
        staging: Scratch directory, emptied first
        generalize: Replace real domain names with placeholders
        real: Identity of the domain the backups came from (needed to generalize)
        generic: Placeholder identity (needed to generalize)

    Returns:
        ExportResult with the manifest that was written
    """
    if generalize and (real is None or generic is None):
        raise DomainIdentityMissingError("domain" if real is None else "generic")

    reset_dir(staging)
    backups_root = ensure_dir(Path(staging) / BACKUPS_DIR)
    staged = []
    replacements = 0
    unmapped: dict[str, list[str]] = {}

    for backup in backups:
        if backup.path is None:
            raise InvalidBackupError(backup.backup_id, "backup has no folder on disk")
        dest = backups_root / backup.backup_id
        if generalize:
            summary: ConversionSummary = generalize_tree(backup.path, dest, real, generic)
            replacements += summary.replacements
            for relative, names in summary.unmapped.items():
                unmapped[f"{backup.backup_id}/{relative.as_posix()}"] = names
            logger.info(
                f"Generalized '{backup.display_name}': {len(summary.converted)} file(s), "
                f"{summary.replacements} replacement(s)"
            )
        else:
            shutil.copytree(backup.path, dest)
        staged.append(load_backup(dest))

    files = {
        path.relative_to(staging).as_posix(): sha256_file(path)
        for path in sorted(backups_root.rglob("*"))
        if path.is_file()
    }
    manifest = {
        "format_version": FORMAT_VERSION,
        "created": datetime.now().isoformat(timespec="seconds"),
        "generalized": generalize,
        "generic_identity": generic.to_dict() if generalize and generic else None,
        "backups": [b.to_dict() for b in staged],
        "files": files,
    }
    (Path(staging) / MANIFEST_NAME).write_text(json.dumps(manifest, indent=2))

    archive_path = Path(archive_path)
    archive_path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(archive_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.write(Path(staging) / MANIFEST_NAME, MANIFEST_NAME)
        for relative in files:
            zf.write(Path(staging) / relative, relative)

    return ExportResult(
        archive=archive_path, manifest=manifest, replacements=replacements, unmapped=unmapped
    )


def _validate_manifest(manifest: Any, archive_path: Path) -> dict[str, Any]:
    try:
        validate(instance=manifest, schema=MANIFEST_SCHEMA)
    except ValidationError as e:
        location = ".".join(str(p) for p in e.path) or "(root)"
        raise ManifestError(str(archive_path), f"{e.message} at {location}") from e
    return manifest


def read_manifest(archive_path: Path) -> dict[str, Any]:
    """Read and validate the manifest of an archive without extracting it."""
    archive_path = Path(archive_path)
    try:
        with zipfile.ZipFile(archive_path) as zf:
            raw = zf.read(MANIFEST_NAME)
    except KeyError as e:
        raise ManifestError(str(archive_path), f"{MANIFEST_NAME} not found") from e
    except zipfile.BadZipFile as e:
        raise ManifestError(str(archive_path), f"not a zip file ({e})") from e

    try:
        manifest = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ManifestError(str(archive_path), f"invalid JSON: {e}") from e
    return _validate_manifest(manifest, archive_path)


def extract_archive(archive_path: Path, dest: Path) -> dict[str, Any]:
    """
    Extract an archive into an emptied dest and verify every checksum.

    Raises:
        ManifestError: Manifest missing or invalid
        UnsafeArchiveMemberError: A member would land outside dest
        ChecksumMismatchError: A file differs from the manifest or is unlisted
    """
    archive_path = Path(archive_path)
    manifest = read_manifest(archive_path)
    dest = reset_dir(dest)
    dest_root = dest.resolve()
    expected = manifest["files"]

    with zipfile.ZipFile(archive_path) as zf:
        for member in zf.infolist():
            target = (dest / member.filename).resolve()
            if dest_root not in target.parents and target != dest_root:
                raise UnsafeArchiveMemberError(member.filename)
            if member.is_dir():
                target.mkdir(parents=True, exist_ok=True)
                continue

            data = zf.read(member)
            if member.filename != MANIFEST_NAME:
                actual = sha256_bytes(data)
                wanted = expected.get(member.filename)
                if wanted != actual:
                    raise ChecksumMismatchError(member.filename, wanted or "(unlisted)", actual)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

    missing = [name for name in expected if not (dest / name).is_file()]
    if missing:
        raise ManifestError(str(archive_path), f"listed files missing: {', '.join(missing[:5])}")

    return manifest


def archive_backups_dir(extracted: Path) -> Path:
    return Path(extracted) / BACKUPS_DIR
