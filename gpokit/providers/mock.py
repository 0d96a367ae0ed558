"""
Mock Group Policy provider for testing and dry runs (no domain access).
"""

from dataclasses import replace
from datetime import datetime
from pathlib import Path

from gpokit.backup.model import BackupInfo, load_backup, new_guid, normalize_guid, write_backup_metadata
from gpokit.exceptions import GPONotFoundError
from gpokit.identity import DomainIdentity
from gpokit.policy.pol import PolEntry, PolFile, RegType, parse_pol, serialize_pol
from gpokit.providers.base import GPOInfo, GroupPolicyProvider

MACHINE_POL = Path("DomainSysvol") / "GPO" / "Machine" / "registry.pol"

DEFAULT_IDENTITY = {
    "server_fqdn": "dc01.contoso.com",
    "dns_domain": "contoso.com",
    "netbios_name": "CONTOSO",
}


class MockProvider(GroupPolicyProvider):
    """
    In-memory GPO store.

    Backups are real folders with bkupInfo.xml, Backup.xml, gpreport.xml and a
    machine registry.pol, so the rest of the pipeline can run against them.
    """

    name = "mock"

    def __init__(self, config: dict):
        super().__init__(config)
        self.identity = DomainIdentity.from_dict(config.get("identity") or DEFAULT_IDENTITY)
        self._gpos: dict[str, GPOInfo] = {}
        self._policies: dict[str, bytes] = {}
        self.imports: list[tuple[str, str]] = []

        for item in config.get("gpos", []):
            self.add_gpo(
                item["display_name"],
                guid=item.get("guid"),
                user_version=item.get("user_version", 0),
                computer_version=item.get("computer_version", 0),
            )

    def is_available(self) -> bool:
        """Mock provider is always available."""
        return True

    def get_domain_identity(self) -> DomainIdentity:
        return self.identity

    def add_gpo(
        self,
        display_name: str,
        guid: str | None = None,
        user_version: int = 0,
        computer_version: int = 0,
    ) -> GPOInfo:
        guid = normalize_guid(guid) if guid else new_guid()
        gpo = GPOInfo(
            guid=guid,
            display_name=display_name,
            domain=self.identity.dns_domain,
            modification_time=datetime.now(),
            user_version=user_version,
            computer_version=computer_version,
        )
        self._gpos[guid] = gpo
        self._policies[guid] = serialize_pol(self._default_policy(display_name))
        return gpo

    def _default_policy(self, display_name: str) -> PolFile:
        share = f"\\\\{self.identity.server_fqdn}\\NETLOGON\\{display_name}.cmd"
        return PolFile(
            entries=[
                PolEntry(
                    key="Software\\Policies\\Microsoft\\Windows\\System",
                    value_name="LogonScript",
                    reg_type=RegType.REG_SZ,
                    data=(share + "\x00").encode("utf-16-le"),
                ),
                PolEntry(
                    key="Software\\Policies\\Microsoft\\Windows NT\\DNSClient",
                    value_name="SearchList",
                    reg_type=RegType.REG_SZ,
                    data=(self.identity.dns_domain + "\x00").encode("utf-16-le"),
                ),
                PolEntry(
                    key="Software\\Policies\\Microsoft\\Windows\\WindowsUpdate\\AU",
                    value_name="NoAutoUpdate",
                    reg_type=RegType.REG_DWORD,
                    data=(0).to_bytes(4, "little"),
                ),
            ]
        )

    def modify_gpo(self, guid: str) -> GPOInfo:
        """Simulate an edit in the Group Policy editor (computer version bump)."""
        gpo = self._get(guid)
        updated = replace(
            gpo,
            computer_version=gpo.computer_version + 1,
            modification_time=datetime.now(),
        )
        self._gpos[gpo.guid] = updated
        return updated

    def policy(self, guid: str) -> PolFile:
        return parse_pol(self._policies[self._get(guid).guid])

    def _get(self, guid: str) -> GPOInfo:
        guid = normalize_guid(guid)
        if guid not in self._gpos:
            raise GPONotFoundError(guid)
        return self._gpos[guid]

    def list_gpos(self) -> list[GPOInfo]:
        return sorted(self._gpos.values(), key=lambda g: g.display_name.lower())

    def backup_gpo(self, guid: str, path: Path, comment: str = "") -> BackupInfo:
        gpo = self._get(guid)
        info = BackupInfo(
            backup_id=new_guid(),
            gpo_guid=gpo.guid,
            display_name=gpo.display_name,
            domain=self.identity.dns_domain,
            domain_controller=self.identity.server_fqdn,
            backup_time=datetime.now().replace(microsecond=0),
            comment=comment,
            user_version=gpo.user_version,
            computer_version=gpo.computer_version,
        )
        folder = write_backup_metadata(info, Path(path) / info.backup_id)
        pol_file = folder / MACHINE_POL
        pol_file.parent.mkdir(parents=True, exist_ok=True)
        pol_file.write_bytes(self._policies[gpo.guid])
        return load_backup(folder)

    def import_gpo(
        self,
        backup_id: str,
        path: Path,
        target_name: str | None = None,
        target_guid: str | None = None,
        create_if_needed: bool = True,
    ) -> GPOInfo:
        folder = Path(path) / normalize_guid(backup_id)
        backup = load_backup(folder)

        if target_guid:
            target = self._get(target_guid)
        else:
            target = self.find_gpo(display_name=target_name)
            if target is None:
                if not create_if_needed or not target_name:
                    raise GPONotFoundError(target_name or backup.display_name)
                target = self.add_gpo(target_name)

        pol_file = folder / MACHINE_POL
        if pol_file.exists():
            self._policies[target.guid] = pol_file.read_bytes()

        updated = replace(
            target,
            user_version=target.user_version + 1,
            computer_version=target.computer_version + 1,
            modification_time=datetime.now(),
        )
        self._gpos[target.guid] = updated
        self.imports.append((backup.backup_id, updated.guid))
        return updated
