from .app_client import GitHubAppClient
from .token_cache import InstallationTokenCache, CachedToken, get_token_cache

__all__ = ["GitHubAppClient", "InstallationTokenCache", "CachedToken", "get_token_cache"]
