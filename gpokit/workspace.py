"""
Workspace management for gpokit.
"""

import json
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validate

from gpokit.exceptions import DomainIdentityMissingError, InvalidConfigError
from gpokit.identity import GENERIC_IDENTITY, DomainIdentity
from gpokit.providers.base import GroupPolicyProvider

SCHEMA_FILE = Path(__file__).parent / "schema" / "config.schema.json"


class Workspace:
    """Manages the gpokit workspace structure and configuration."""

    CONFIG_NAME = "gpokit.yaml"

    REQUIRED_DIRS = [
        "backups",
        "staging",
        "archives",
        "reports",
        "logs",
    ]

    DEFAULT_CONFIG = {
        "provider": {
            "name": "powershell",
            "executable": "powershell.exe",
            "domain": None,
            "server": None,
            "timeout": 600,
        },
        # Real domain names; asked from the provider when left empty.
        "domain": None,
        "generic": GENERIC_IDENTITY.to_dict(),
        "backup": {
            "keep": 5,
            "comment": "gpokit",
            "include": [],
            "exclude": [],
        },
        "logging": {
            "transcript": True,
            "level": "INFO",
        },
    }

    def __init__(self, root: Path):
        self.root = Path(root)
        self.config_file = self.root / self.CONFIG_NAME
        self._config_cache: dict[str, Any] | None = None

    @property
    def backups_dir(self) -> Path:
        return self.root / "backups"

    @property
    def staging_dir(self) -> Path:
        return self.root / "staging"

    @property
    def archives_dir(self) -> Path:
        return self.root / "archives"

    @property
    def reports_dir(self) -> Path:
        return self.root / "reports"

    @property
    def logs_dir(self) -> Path:
        return self.root / "logs"

    def exists(self) -> bool:
        return self.config_file.exists()

    def initialize(self) -> None:
        """Initialize workspace directory structure and config."""
        for dir_path in self.REQUIRED_DIRS:
            (self.root / dir_path).mkdir(parents=True, exist_ok=True)

        if not self.config_file.exists():
            with open(self.config_file, "w") as f:
                yaml.dump(self.DEFAULT_CONFIG, f, default_flow_style=False, sort_keys=False)

    def load_config(self) -> dict[str, Any]:
        """Load and validate workspace configuration (cached after the first call)."""
        if self._config_cache is not None:
            return self._config_cache

        if not self.config_file.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_file}")

        try:
            with open(self.config_file) as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise InvalidConfigError(f"YAML syntax error: {e}") from e

        if config is None:
            raise InvalidConfigError(f"{self.config_file} is empty")

        if not isinstance(config, dict):
            raise InvalidConfigError(f"expected a mapping, got {type(config).__name__}")

        self._validate_config_schema(config)

        self._config_cache = config
        return config

    def _validate_config_schema(self, config: dict) -> None:
        """Validate config against JSON schema."""
        schema = json.loads(SCHEMA_FILE.read_text())
        try:
            validate(instance=config, schema=schema)
        except ValidationError as e:
            location = ".".join(str(p) for p in e.path) or "(root)"
            raise InvalidConfigError(f"{e.message} (at {location})") from e

    def generic_identity(self) -> DomainIdentity:
        return DomainIdentity.from_dict(self.load_config()["generic"])

    def domain_identity(self, provider: GroupPolicyProvider | None = None) -> DomainIdentity:
        """
        Identity of the workspace's domain: from config, else from the provider.

        Raises:
            DomainIdentityMissingError: If neither source is available
        """
        configured = self.load_config().get("domain")
        if configured:
            return DomainIdentity.from_dict(configured)
        if provider is None:
            raise DomainIdentityMissingError("domain")
        return provider.get_domain_identity()

    def backup_settings(self) -> dict[str, Any]:
        return self.load_config().get("backup", {})
