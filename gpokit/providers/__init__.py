"""
Group Policy provider abstraction layer.
"""

from gpokit.providers.base import GPOInfo, GroupPolicyProvider
from gpokit.providers.mock import MockProvider
from gpokit.providers.powershell import PowerShellProvider


def get_provider(config: dict) -> GroupPolicyProvider:
    """
    Factory function to get a Group Policy provider based on config.

    Args:
        config: Configuration dict with 'provider' section

    Returns:
        GroupPolicyProvider instance

    Raises:
        ValueError: If provider is not supported
    """
    provider_config = config.get("provider", {})
    provider_name = provider_config.get("name", "powershell").lower()

    providers = {
        "powershell": PowerShellProvider,
        "mock": MockProvider,
    }

    if provider_name not in providers:
        raise ValueError(
            f"Unsupported provider: {provider_name}. Must be one of: {list(providers.keys())}"
        )

    return providers[provider_name](provider_config)


__all__ = ["GPOInfo", "GroupPolicyProvider", "MockProvider", "PowerShellProvider", "get_provider"]
