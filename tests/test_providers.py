"""
Tests for Group Policy provider modules.
"""

import json
import subprocess
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest

from gpokit.backup.model import BackupInfo, write_backup_metadata
from gpokit.exceptions import (
    GPONotFoundError,
    ProviderCommandError,
    ProviderNotAvailableError,
)
from gpokit.providers import get_provider
from gpokit.providers.mock import MACHINE_POL, MockProvider
from gpokit.providers.powershell import PowerShellProvider, ps_quote

DEFAULT_DOMAIN_POLICY_GUID = "{31B2F340-016D-11D2-945F-00C04FB984F9}"
BACKUP_ID = "{A1B2C3D4-0000-1111-2222-333344445555}"

GPO_JSON = {
    "guid": "{31b2f340-016d-11d2-945f-00c04fb984f9}",
    "display_name": "Default Domain Policy",
    "domain": "contoso.com",
    "modification_time": "2024-03-01T10:15:00",
    "user_version": 0,
    "computer_version": 3,
}


def _completed(stdout="", stderr="", returncode=0):
    return MagicMock(returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def ps_provider():
    return PowerShellProvider({"name": "powershell", "executable": "pwsh", "domain": "contoso.com"})


@pytest.fixture
def which():
    with patch("gpokit.providers.powershell.shutil.which", return_value="/usr/bin/pwsh") as mock_which:
        yield mock_which


@pytest.fixture
def no_sleep():
    with patch("gpokit.util.retry.time.sleep") as mock_sleep:
        yield mock_sleep


class TestGetProvider:
    """Tests for the provider factory."""

    def test_get_powershell_provider(self):
        provider = get_provider({"provider": {"name": "powershell"}})

        assert isinstance(provider, PowerShellProvider)
        assert provider.executable == "powershell.exe"

    def test_get_mock_provider(self, mock_provider_config):
        provider = get_provider(mock_provider_config)

        assert isinstance(provider, MockProvider)
        assert len(provider.list_gpos()) == 2

    def test_default_is_powershell(self):
        assert isinstance(get_provider({}), PowerShellProvider)

    def test_get_provider_case_insensitive(self):
        assert isinstance(get_provider({"provider": {"name": "MOCK"}}), MockProvider)

    def test_unsupported_provider(self):
        with pytest.raises(ValueError, match="Unsupported provider"):
            get_provider({"provider": {"name": "ldap"}})


class TestPowerShellProvider:
    """Tests for PowerShellProvider with subprocess mocked."""

    def test_ps_quote(self):
        assert ps_quote("O'Brien's GPO") == "'O''Brien''s GPO'"

    def test_not_available(self, ps_provider):
        with patch("gpokit.providers.powershell.shutil.which", return_value=None):
            assert not ps_provider.is_available()
            with pytest.raises(ProviderNotAvailableError):
                ps_provider.list_gpos()

    @patch("gpokit.providers.powershell.subprocess.run")
    def test_list_gpos(self, mock_run, ps_provider, which):
        mock_run.return_value = _completed(json.dumps([GPO_JSON]))

        gpos = ps_provider.list_gpos()

        assert len(gpos) == 1
        assert gpos[0].guid == DEFAULT_DOMAIN_POLICY_GUID
        assert gpos[0].computer_version == 3
        assert gpos[0].modification_time == datetime(2024, 3, 1, 10, 15)

        command = mock_run.call_args[0][0]
        assert command[0] == "pwsh"
        assert "-NonInteractive" in command
        assert "Get-GPO -All -Domain 'contoso.com'" in command[-1]

    @patch("gpokit.providers.powershell.subprocess.run")
    def test_list_gpos_single_object_and_cache(self, mock_run, ps_provider, which):
        mock_run.return_value = _completed(json.dumps(GPO_JSON))

        first = ps_provider.list_gpos()
        second = ps_provider.list_gpos()
        ps_provider.list_gpos(refresh=True)

        assert first == second
        assert mock_run.call_count == 2

    @patch("gpokit.providers.powershell.subprocess.run")
    def test_empty_output(self, mock_run, ps_provider, which):
        mock_run.return_value = _completed("")

        assert ps_provider.list_gpos() == []

    @patch("gpokit.providers.powershell.subprocess.run")
    def test_get_domain_identity(self, mock_run, ps_provider, which):
        mock_run.return_value = _completed(
            json.dumps(
                {"server_fqdn": "dc01.contoso.com", "dns_domain": "contoso.com", "netbios_name": "CONTOSO"}
            )
        )

        identity = ps_provider.get_domain_identity()

        assert identity.netbios_name == "CONTOSO"
        assert "Get-ADDomain -Identity 'contoso.com'" in mock_run.call_args[0][0][-1]

    @patch("gpokit.providers.powershell.subprocess.run")
    def test_backup_gpo(self, mock_run, ps_provider, which, tmp_path):
        info = BackupInfo(
            backup_id=BACKUP_ID,
            gpo_guid=DEFAULT_DOMAIN_POLICY_GUID,
            display_name="Default Domain Policy",
            domain="contoso.com",
            domain_controller="dc01.contoso.com",
            backup_time=datetime(2024, 3, 1, 10, 15),
        )
        write_backup_metadata(info, tmp_path / BACKUP_ID)
        mock_run.return_value = _completed(json.dumps({"backup_id": BACKUP_ID.lower()}))

        backup = ps_provider.backup_gpo(DEFAULT_DOMAIN_POLICY_GUID, tmp_path, comment="it's weekly")

        assert backup.backup_id == BACKUP_ID
        assert backup.path == tmp_path / BACKUP_ID
        script = mock_run.call_args[0][0][-1]
        assert "Backup-GPO -Guid '31B2F340-016D-11D2-945F-00C04FB984F9'" in script
        assert "-Comment 'it''s weekly'" in script

    @patch("gpokit.providers.powershell.subprocess.run")
    def test_import_by_guid(self, mock_run, ps_provider, which, tmp_path):
        mock_run.return_value = _completed(json.dumps([GPO_JSON]))

        gpo = ps_provider.import_gpo(BACKUP_ID, tmp_path, target_guid=DEFAULT_DOMAIN_POLICY_GUID)

        script = mock_run.call_args[0][0][-1]
        assert "-TargetGuid '31B2F340-016D-11D2-945F-00C04FB984F9'" in script
        assert "-CreateIfNeeded" not in script
        assert gpo.display_name == "Default Domain Policy"

    @patch("gpokit.providers.powershell.subprocess.run")
    def test_import_by_name_creates(self, mock_run, ps_provider, which, tmp_path):
        mock_run.return_value = _completed(json.dumps(GPO_JSON))

        ps_provider.import_gpo(BACKUP_ID, tmp_path, target_name="Default Domain Policy")

        script = mock_run.call_args[0][0][-1]
        assert "-TargetName 'Default Domain Policy' -CreateIfNeeded" in script

    def test_import_without_target(self, ps_provider, tmp_path):
        with pytest.raises(GPONotFoundError):
            ps_provider.import_gpo(BACKUP_ID, tmp_path)

    @patch("gpokit.providers.powershell.subprocess.run")
    def test_command_failure_not_retried(self, mock_run, ps_provider, which, no_sleep):
        mock_run.return_value = _completed(stderr="Access is denied.", returncode=1)

        with pytest.raises(ProviderCommandError, match="Access is denied"):
            ps_provider.list_gpos()

        assert mock_run.call_count == 1
        no_sleep.assert_not_called()

    @patch("gpokit.providers.powershell.subprocess.run")
    def test_transient_failure_retried(self, mock_run, ps_provider, which, no_sleep):
        mock_run.side_effect = [
            _completed(stderr="The RPC server is unavailable.", returncode=1),
            _completed(json.dumps([GPO_JSON])),
        ]

        gpos = ps_provider.list_gpos()

        assert len(gpos) == 1
        assert mock_run.call_count == 2
        no_sleep.assert_called_once_with(2.0)

    @patch("gpokit.providers.powershell.subprocess.run")
    def test_transient_failure_exhausts_retries(self, mock_run, ps_provider, which, no_sleep):
        mock_run.return_value = _completed(stderr="The server is not operational.", returncode=1)

        with pytest.raises(ProviderCommandError) as exc_info:
            ps_provider.list_gpos()

        assert mock_run.call_count == 3
        assert "after 2 retries" in exc_info.value.message
        assert "not operational" in exc_info.value.message

    @patch("gpokit.providers.powershell.subprocess.run")
    def test_timeout_is_retried(self, mock_run, ps_provider, which, no_sleep):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="pwsh", timeout=600)

        with pytest.raises(ProviderCommandError, match="timed out"):
            ps_provider.list_gpos()

        assert mock_run.call_count == 3

    @patch("gpokit.providers.powershell.subprocess.run")
    def test_invalid_json(self, mock_run, ps_provider, which):
        mock_run.return_value = _completed("WARNING: something\n")

        with pytest.raises(ProviderCommandError, match="invalid JSON"):
            ps_provider.list_gpos()


class TestMockProvider:
    """Tests for MockProvider."""

    def test_seeded_gpos(self, mock_provider):
        names = [gpo.display_name for gpo in mock_provider.list_gpos()]

        assert names == ["Default Domain Policy", "Workstation Baseline"]
        assert mock_provider.is_available()

    def test_backup_writes_folder(self, mock_provider, tmp_path):
        backup = mock_provider.backup_gpo(DEFAULT_DOMAIN_POLICY_GUID, tmp_path, comment="c")

        assert backup.gpo_guid == DEFAULT_DOMAIN_POLICY_GUID
        assert backup.computer_version == 3
        assert (backup.path / MACHINE_POL).exists()

    def test_modify_bumps_version(self, mock_provider):
        gpo = mock_provider.modify_gpo(DEFAULT_DOMAIN_POLICY_GUID)

        assert gpo.computer_version == 4
        assert mock_provider.find_gpo(guid=DEFAULT_DOMAIN_POLICY_GUID).computer_version == 4

    def test_unknown_gpo(self, mock_provider, tmp_path):
        with pytest.raises(GPONotFoundError):
            mock_provider.backup_gpo("{00000000-0000-0000-0000-000000000000}", tmp_path)

    def test_find_gpo_by_name_case_insensitive(self, mock_provider):
        gpo = mock_provider.find_gpo(display_name="workstation baseline")

        assert gpo is not None
        assert gpo.display_name == "Workstation Baseline"

    def test_wait_for_gpo(self, mock_provider):
        assert mock_provider.wait_for_gpo(DEFAULT_DOMAIN_POLICY_GUID, attempts=1)

    def test_wait_for_missing_gpo(self, mock_provider, no_sleep):
        assert not mock_provider.wait_for_gpo("{00000000-0000-0000-0000-000000000000}", attempts=3)
        assert no_sleep.call_count == 2
