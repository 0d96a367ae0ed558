"""
Abstract base class for Group Policy providers.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from gpokit.backup.model import BackupInfo
from gpokit.identity import DomainIdentity
from gpokit.util.retry import poll_until


@dataclass
class GPOInfo:
    """A live GPO as reported by the domain."""

    guid: str
    display_name: str
    domain: str
    modification_time: datetime | None = None
    user_version: int = 0
    computer_version: int = 0

    def to_dict(self) -> dict:
        return {
            "guid": self.guid,
            "display_name": self.display_name,
            "domain": self.domain,
            "modification_time": (
                self.modification_time.isoformat() if self.modification_time else None
            ),
            "user_version": self.user_version,
            "computer_version": self.computer_version,
        }


class GroupPolicyProvider(ABC):
    """Access to a domain's Group Policy objects."""

    name = "base"

    def __init__(self, config: dict):
        """
        Initialize provider.

        Args:
            config: Provider configuration dict ('domain', 'server', ...)
        """
        self.config = config
        self.domain = config.get("domain")
        self.server = config.get("server")

    @abstractmethod
    def get_domain_identity(self) -> DomainIdentity:
        """Names of the domain the provider talks to (PDC FQDN, DNS root, NetBIOS)."""
        pass

    @abstractmethod
    def list_gpos(self) -> list[GPOInfo]:
        """All GPOs in the domain."""
        pass

    @abstractmethod
    def backup_gpo(self, guid: str, path: Path, comment: str = "") -> BackupInfo:
        """
        Back up one GPO into a new folder below path.

        Returns:
            Metadata of the backup that was written
        """
        pass

    @abstractmethod
    def import_gpo(
        self,
        backup_id: str,
        path: Path,
        target_name: str | None = None,
        target_guid: str | None = None,
        create_if_needed: bool = True,
    ) -> GPOInfo:
        """
        Import settings from a backup into an existing or new GPO.

        Args:
            backup_id: Backup folder ID below path
            path: Backup root containing the backup folder
            target_name: Display name of the GPO to import into
            target_guid: GUID of the GPO to import into (wins over target_name)
            create_if_needed: Create the GPO when target_name does not exist

        Returns:
            The GPO that received the settings
        """
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """
        Check if the provider can run here.

        Returns:
            True if provider can be used, False otherwise
        """
        pass

    def find_gpo(self, guid: str | None = None, display_name: str | None = None) -> GPOInfo | None:
        """Look up a GPO by GUID, else by case-insensitive display name."""
        gpos = self.list_gpos()
        if guid:
            for gpo in gpos:
                if gpo.guid == guid:
                    return gpo
        if display_name:
            lowered = display_name.lower()
            for gpo in gpos:
                if gpo.display_name.lower() == lowered:
                    return gpo
        return None

    def refresh(self) -> None:
        """Drop any cached directory state."""
        pass

    def wait_for_gpo(self, guid: str, attempts: int = 10, interval: float = 3.0) -> bool:
        """
        Wait until a GPO is visible through this provider.

        A freshly created GPO can take a moment to appear on the queried domain
        controller.
        """

        def visible() -> bool:
            self.refresh()
            return self.find_gpo(guid=guid) is not None

        return poll_until(visible, attempts=attempts, interval=interval)
