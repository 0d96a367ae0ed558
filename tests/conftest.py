"""
Pytest configuration and shared fixtures.
"""

import tempfile
from pathlib import Path

import pytest
import yaml

from gpokit.identity import GENERIC_IDENTITY, DomainIdentity
from gpokit.providers.mock import MockProvider
from gpokit.workspace import Workspace

DEFAULT_DOMAIN_POLICY_GUID = "{31B2F340-016D-11D2-945F-00C04FB984F9}"
WORKSTATION_POLICY_GUID = "{6AC1786C-016F-11D2-945F-00C04FB984F9}"

CONTOSO = {
    "server_fqdn": "dc01.contoso.com",
    "dns_domain": "contoso.com",
    "netbios_name": "CONTOSO",
}

FABRIKAM = {
    "server_fqdn": "dc1.fabrikam.net",
    "dns_domain": "fabrikam.net",
    "netbios_name": "FABRIKAM",
}

SEED_GPOS = [
    {
        "display_name": "Default Domain Policy",
        "guid": DEFAULT_DOMAIN_POLICY_GUID,
        "user_version": 0,
        "computer_version": 3,
    },
    {
        "display_name": "Workstation Baseline",
        "guid": WORKSTATION_POLICY_GUID,
        "user_version": 2,
        "computer_version": 7,
    },
]


@pytest.fixture
def contoso():
    return DomainIdentity.from_dict(CONTOSO)


@pytest.fixture
def fabrikam():
    return DomainIdentity.from_dict(FABRIKAM)


@pytest.fixture
def generic():
    return GENERIC_IDENTITY


@pytest.fixture
def mock_provider_config():
    """Return configuration for the mock Group Policy provider."""
    return {"provider": {"name": "mock", "identity": dict(CONTOSO), "gpos": list(SEED_GPOS)}}


@pytest.fixture
def mock_provider(mock_provider_config):
    return MockProvider(mock_provider_config["provider"])


@pytest.fixture
def fabrikam_provider():
    return MockProvider({"name": "mock", "identity": dict(FABRIKAM)})


@pytest.fixture
def temp_workspace(mock_provider_config):
    """Create a temporary workspace wired to the mock provider."""
    with tempfile.TemporaryDirectory() as tmpdir:
        workspace = Workspace(Path(tmpdir))
        workspace.initialize()

        config = yaml.safe_load(workspace.config_file.read_text())
        config["provider"] = mock_provider_config["provider"]
        config["domain"] = dict(CONTOSO)
        workspace.config_file.write_text(yaml.dump(config, sort_keys=False))

        yield workspace


@pytest.fixture
def backup_root(tmp_path, mock_provider):
    """A backup root holding one backup of every seeded GPO."""
    root = tmp_path / "backups"
    for gpo in mock_provider.list_gpos():
        mock_provider.backup_gpo(gpo.guid, root, comment="fixture")
    return root
