"""
Installation token cache.

Installation tokens are valid for one hour upstream. They are cached per
repository for 55 minutes so a token is never handed out in its last few
minutes of life.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from .app_client import GitHubAppClient

logger = logging.getLogger(__name__)

TOKEN_TTL = timedelta(minutes=55)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CachedToken:
    token: str
    expires_at: datetime

    def is_valid(self, now: datetime) -> bool:
        return now < self.expires_at


class InstallationTokenCache:
    """
    Process-local cache of GitHub App installation tokens keyed "owner/repo".

    Hits are lock-free. On a miss one cache-wide lock is taken and the entry
    is re-checked, so concurrent misses for the same key mint a single token.
    """

    def __init__(
        self,
        client: Optional[GitHubAppClient] = None,
        clock: Callable[[], datetime] = _utcnow,
        ttl: timedelta = TOKEN_TTL,
    ):
        self.client = client or GitHubAppClient()
        self._clock = clock
        self._ttl = ttl
        self._entries: Dict[str, CachedToken] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def _key(owner: str, repo: str) -> str:
        return f"{owner}/{repo}"

    def _lookup(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry and entry.is_valid(self._clock()):
            return entry.token
        return None

    async def get_installation_token(self, owner: str, repo: str) -> str:
        """
        Return a valid installation token for the repository.

        Raises:
            CredentialError: If the token cannot be issued
        """
        key = self._key(owner, repo)

        token = self._lookup(key)
        if token:
            return token

        async with self._lock:
            token = self._lookup(key)
            if token:
                return token

            logger.info(f"[GITHUB] Issuing installation token for {key}")
            installation_id = await self.client.get_installation_id(owner, repo)
            token = await self.client.create_installation_token(installation_id)
            self._entries[key] = CachedToken(token=token, expires_at=self._clock() + self._ttl)
            return token

    def invalidate(self, owner: str, repo: str) -> None:
        """Drop the cached token for a repository."""
        self._entries.pop(self._key(owner, repo), None)


_token_cache: Optional[InstallationTokenCache] = None


def get_token_cache() -> InstallationTokenCache:
    """Get the global installation token cache."""
    global _token_cache
    if _token_cache is None:
        _token_cache = InstallationTokenCache()
    return _token_cache
