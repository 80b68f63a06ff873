"""
Provider Factory

Resolves the CloudInfraProvider for a repository's cloud vendor from a
static table. Providers are created on first use and cached per vendor.
"""

import logging
from typing import Dict, Optional, Type, Union

from ...enums import CloudVendor
from ...exceptions import ConfigurationError
from .base import CloudInfraProvider
from .ncp import NcpInfraProvider

logger = logging.getLogger(__name__)


class ProviderFactory:
    """
    Factory for cloud infrastructure providers.

    Only vendors listed in `_providers` can be resolved; every other tag,
    including known vendors without an implementation, is a configuration
    error.
    """

    # Registry of available providers
    _providers: Dict[CloudVendor, Type[CloudInfraProvider]] = {
        CloudVendor.NCP: NcpInfraProvider,
    }

    def __init__(self, providers: Optional[Dict[CloudVendor, CloudInfraProvider]] = None):
        # Cached provider instances
        self._instances: Dict[CloudVendor, CloudInfraProvider] = dict(providers or {})

    def get_provider(self, vendor: Union[CloudVendor, str]) -> CloudInfraProvider:
        """
        Get the provider for a vendor tag.

        Args:
            vendor: CloudVendor or its string tag

        Returns:
            Provider instance (cached)

        Raises:
            ConfigurationError: If the vendor is unknown or has no provider
        """
        if not isinstance(vendor, CloudVendor):
            vendor = CloudVendor.from_string(vendor)

        if vendor in self._instances:
            return self._instances[vendor]

        provider_class = self._providers.get(vendor)
        if provider_class is None:
            available = ", ".join(v.value for v in self._providers)
            raise ConfigurationError(
                f"No infrastructure provider for vendor {vendor.value}. "
                f"Available providers: {available}"
            )

        provider = provider_class()
        self._instances[vendor] = provider
        logger.info(f"[INFRA] Created {provider_class.__name__} for vendor {vendor.value}")
        return provider


_provider_factory: Optional[ProviderFactory] = None


def get_provider_factory() -> ProviderFactory:
    """Get the global provider factory."""
    global _provider_factory
    if _provider_factory is None:
        _provider_factory = ProviderFactory()
    return _provider_factory
