"""
Group Policy provider backed by the Windows PowerShell GroupPolicy module.

Every operation is a short PowerShell script whose result is emitted with
ConvertTo-Json and parsed here.
"""

import json
import logging
import shutil
import subprocess
from datetime import datetime
from pathlib import Path
from typing import Any

from gpokit.backup.model import BackupInfo, load_backup, normalize_guid
from gpokit.exceptions import (
    GPONotFoundError,
    ProviderCommandError,
    ProviderNotAvailableError,
    RetryableError,
)
from gpokit.identity import DomainIdentity
from gpokit.providers.base import GPOInfo, GroupPolicyProvider
from gpokit.util.retry import PROVIDER_RETRY, is_retryable_error, retry_with_backoff

logger = logging.getLogger(__name__)

DEFAULT_EXECUTABLE = "powershell.exe"
DEFAULT_TIMEOUT = 600

# Shapes a Microsoft.GroupPolicy.Gpo into the fields GPOInfo needs.
GPO_PROJECTION = (
    "ForEach-Object { [PSCustomObject]@{ "
    "guid = $_.Id.ToString('B'); "
    "display_name = $_.DisplayName; "
    "domain = $_.DomainName; "
    "modification_time = $_.ModificationTime.ToUniversalTime().ToString(\"yyyy-MM-dd'T'HH:mm:ss\"); "
    "user_version = $_.User.DSVersion; "
    "computer_version = $_.Computer.DSVersion "
    "} }"
)


def ps_quote(value: str) -> str:
    """Quote a value as a PowerShell single-quoted string literal."""
    return "'" + str(value).replace("'", "''") + "'"


def _parse_gpo(item: dict[str, Any]) -> GPOInfo:
    modified = item.get("modification_time")
    return GPOInfo(
        guid=normalize_guid(item["guid"]),
        display_name=item.get("display_name") or "",
        domain=item.get("domain") or "",
        modification_time=datetime.fromisoformat(modified) if modified else None,
        user_version=int(item.get("user_version") or 0),
        computer_version=int(item.get("computer_version") or 0),
    )


class PowerShellProvider(GroupPolicyProvider):
    """Runs GroupPolicy/ActiveDirectory cmdlets through powershell.exe."""

    name = "powershell"

    def __init__(self, config: dict):
        super().__init__(config)
        self.executable = config.get("executable") or DEFAULT_EXECUTABLE
        self.timeout = int(config.get("timeout") or DEFAULT_TIMEOUT)
        self._gpo_cache: list[GPOInfo] | None = None

    def is_available(self) -> bool:
        return shutil.which(self.executable) is not None

    def refresh(self) -> None:
        self._gpo_cache = None

    def _scope_args(self) -> str:
        args = []
        if self.domain:
            args.append(f"-Domain {ps_quote(self.domain)}")
        if self.server:
            args.append(f"-Server {ps_quote(self.server)}")
        return " ".join(args)

    def _command(self, script: str) -> list[str]:
        return [
            self.executable,
            "-NoProfile",
            "-NonInteractive",
            "-ExecutionPolicy",
            "Bypass",
            "-Command",
            "$ErrorActionPreference = 'Stop'; $ProgressPreference = 'SilentlyContinue'; " + script,
        ]

    @retry_with_backoff(
        **PROVIDER_RETRY,  # type: ignore[arg-type]
        retryable_exceptions=(ProviderCommandError,),
        should_retry=is_retryable_error,
    )
    def _execute(self, operation: str, script: str) -> str:
        logger.debug(f"{operation}: {script}")
        try:
            result = subprocess.run(
                self._command(script),
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise ProviderCommandError(operation, f"timed out after {self.timeout}s") from e

        if result.returncode != 0:
            error = (result.stderr or result.stdout or "").strip()
            raise ProviderCommandError(operation, error or f"exit code {result.returncode}")
        return result.stdout

    def run_json(self, operation: str, script: str) -> Any:
        """
        Run a script and parse its JSON output.

        Raises:
            ProviderNotAvailableError: If the PowerShell executable is missing
            ProviderCommandError: If the script fails or prints invalid JSON
        """
        if not self.is_available():
            raise ProviderNotAvailableError(self.name, f"'{self.executable}' not found on PATH.")

        try:
            output = self._execute(operation, script)
        except RetryableError as e:
            original = e.original_error
            details = original.error_message if isinstance(original, ProviderCommandError) else str(original)
            raise ProviderCommandError(operation, details, e.max_attempts - 1) from e

        output = output.strip()
        if not output:
            return None
        try:
            return json.loads(output)
        except json.JSONDecodeError as e:
            raise ProviderCommandError(operation, f"invalid JSON output: {e}") from e

    def get_domain_identity(self) -> DomainIdentity:
        server = f" -Server {ps_quote(self.server)}" if self.server else ""
        identity = f" -Identity {ps_quote(self.domain)}" if self.domain else ""
        script = (
            "Import-Module ActiveDirectory; "
            f"$d = Get-ADDomain{identity}{server}; "
            "[PSCustomObject]@{ server_fqdn = $d.PDCEmulator; dns_domain = $d.DNSRoot; "
            "netbios_name = $d.NetBIOSName } | ConvertTo-Json -Compress"
        )
        data = self.run_json("Get-ADDomain", script)
        return DomainIdentity.from_dict(data or {})

    def list_gpos(self, refresh: bool = False) -> list[GPOInfo]:
        if self._gpo_cache is not None and not refresh:
            return list(self._gpo_cache)

        script = (
            "Import-Module GroupPolicy; "
            f"$items = @(Get-GPO -All {self._scope_args()} | {GPO_PROJECTION}); "
            "ConvertTo-Json -InputObject $items -Compress -Depth 3"
        )
        data = self.run_json("Get-GPO", script) or []
        if isinstance(data, dict):
            data = [data]
        self._gpo_cache = [_parse_gpo(item) for item in data]
        return list(self._gpo_cache)

    def backup_gpo(self, guid: str, path: Path, comment: str = "") -> BackupInfo:
        path = Path(path)
        path.mkdir(parents=True, exist_ok=True)
        script = (
            "Import-Module GroupPolicy; "
            f"$b = Backup-GPO -Guid {ps_quote(guid.strip('{}'))} -Path {ps_quote(str(path))} "
            f"-Comment {ps_quote(comment)} {self._scope_args()}; "
            "[PSCustomObject]@{ backup_id = $b.Id.ToString('B') } | ConvertTo-Json -Compress"
        )
        data = self.run_json("Backup-GPO", script)
        if not data or "backup_id" not in data:
            raise ProviderCommandError("Backup-GPO", "no backup ID returned")
        return load_backup(path / normalize_guid(data["backup_id"]))

    def import_gpo(
        self,
        backup_id: str,
        path: Path,
        target_name: str | None = None,
        target_guid: str | None = None,
        create_if_needed: bool = True,
    ) -> GPOInfo:
        if target_guid:
            target = f"-TargetGuid {ps_quote(target_guid.strip('{}'))}"
        elif target_name:
            target = f"-TargetName {ps_quote(target_name)}"
            if create_if_needed:
                target += " -CreateIfNeeded"
        else:
            raise GPONotFoundError("import target (neither GUID nor name given)")

        script = (
            "Import-Module GroupPolicy; "
            f"$items = @(Import-GPO -BackupId {ps_quote(backup_id.strip('{}'))} "
            f"-Path {ps_quote(str(path))} {target} {self._scope_args()} | {GPO_PROJECTION}); "
            "ConvertTo-Json -InputObject $items -Compress -Depth 3"
        )
        data = self.run_json("Import-GPO", script) or []
        if isinstance(data, dict):
            data = [data]
        if not data:
            raise ProviderCommandError("Import-GPO", "no GPO returned")

        self._gpo_cache = None
        return _parse_gpo(data[0])
