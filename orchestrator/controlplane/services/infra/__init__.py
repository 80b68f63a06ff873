"""
Cloud infrastructure providers.

Architecture:
- CloudInfraProvider: abstract contract every vendor implements
- NcpInfraProvider: NCP Object Storage + in-cluster Kaniko builds
- ProviderFactory: static CloudVendor -> provider table with cached instances
"""

from .base import CloudInfraProvider
from .ncp import NcpInfraProvider
from .factory import ProviderFactory, get_provider_factory

__all__ = ["CloudInfraProvider", "NcpInfraProvider", "ProviderFactory", "get_provider_factory"]
