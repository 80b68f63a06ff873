"""
GitHub App API client for installation tokens and source archives.
"""
import logging
import os
import time
from typing import Any, Dict, Optional

import httpx
import jwt

from ...config import get_settings
from ...exceptions import CredentialError, GitHubAppNotInstalledError, SourceUploadError

logger = logging.getLogger(__name__)

REDIRECT_STATUSES = (301, 302, 303, 307, 308)


class GitHubAppClient:
    """Client for authenticated GitHub App interactions."""

    def __init__(
        self,
        app_id: Optional[str] = None,
        private_key: Optional[str] = None,
        api_base: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the GitHub App client.

        Args:
            app_id: GitHub App ID (defaults to settings)
            private_key: PEM private key content (defaults to settings / key file)
            api_base: API base URL (defaults to settings)
            transport: Optional httpx transport (used by tests)
        """
        settings = get_settings()
        self.app_id = app_id or settings.github_app_id
        self.api_base = (api_base or settings.github_api_base).rstrip("/")
        self.private_key_path = settings.github_app_private_key_path
        self.timeout = settings.github_request_timeout
        self._private_key = private_key or settings.github_app_private_key or None
        self._transport = transport

        if not self.app_id:
            logger.warning("[GITHUB] GITHUB_APP_ID is not configured")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self.timeout)

    def _load_private_key(self) -> str:
        if self._private_key:
            return self._private_key

        if not os.path.exists(self.private_key_path):
            raise CredentialError(f"GitHub App private key not found at {self.private_key_path}")

        with open(self.private_key_path) as f:
            self._private_key = f.read()
        return self._private_key

    def _generate_jwt(self) -> str:
        """Generate a short-lived JWT for GitHub App authentication."""
        pem = self._load_private_key()
        now = int(time.time())
        # Backdated to tolerate clock drift; GitHub caps exp at 10 minutes
        payload = {"iat": now - 60, "exp": now + (9 * 60), "iss": str(self.app_id)}
        return jwt.encode(payload, pem, algorithm="RS256")

    def _app_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._generate_jwt()}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    async def _request(self, method: str, endpoint: str) -> Dict[str, Any]:
        """
        Make an App-authenticated request to the GitHub API.

        Raises:
            httpx.HTTPStatusError: If the request fails
        """
        async with self._client() as client:
            response = await client.request(
                method=method,
                url=f"{self.api_base}{endpoint}",
                headers=self._app_headers(),
            )
            response.raise_for_status()
            return response.json()

    async def get_installation_id(self, owner: str, repo: str) -> int:
        """
        Resolve the App installation id for a repository.

        Raises:
            GitHubAppNotInstalledError: If the App is not installed on the repository
            CredentialError: If the lookup fails for any other reason
        """
        try:
            data = await self._request("GET", f"/repos/{owner}/{repo}/installation")
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                raise GitHubAppNotInstalledError(owner, repo) from e
            raise CredentialError(
                f"GitHub App installation lookup failed for {owner}/{repo}: HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise CredentialError(f"GitHub App installation lookup failed for {owner}/{repo}: {e}") from e

        logger.debug(f"[GITHUB] Installation for {owner}/{repo}: {data.get('id')}")
        return data["id"]

    async def create_installation_token(self, installation_id: int) -> str:
        """
        Mint an installation access token (valid for about an hour).

        Raises:
            CredentialError: If the token cannot be issued
        """
        try:
            data = await self._request("POST", f"/app/installations/{installation_id}/access_tokens")
        except httpx.HTTPStatusError as e:
            raise CredentialError(
                f"GitHub App installation token request failed: HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise CredentialError(f"GitHub App installation token request failed: {e}") from e

        token = data.get("token")
        if not token:
            raise CredentialError("GitHub App installation token response has no token")
        return token

    async def download_zipball(self, owner: str, repo: str, ref: str, token: str) -> bytes:
        """
        Download the source archive of a repository at a ref.

        The zipball endpoint answers with a redirect to a pre-signed download
        URL. The redirect is followed by hand so the Authorization header is
        only ever sent to the API host.

        Raises:
            SourceUploadError: On any non-success response or transport error
        """
        url = f"{self.api_base}/repos/{owner}/{repo}/zipball/{ref}"
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

        try:
            async with self._client() as client:
                response = await client.get(url, headers=headers, follow_redirects=False)

                if response.status_code in REDIRECT_STATUSES:
                    location = response.headers.get("location")
                    if not location:
                        raise SourceUploadError(
                            f"Archive redirect for {owner}/{repo}@{ref} has no Location header"
                        )
                    logger.debug(f"[GITHUB] Following archive redirect for {owner}/{repo}@{ref}")
                    # Pre-signed URL: no Authorization header
                    response = await client.get(location, follow_redirects=False)

                if not response.is_success:
                    raise SourceUploadError(
                        f"Source archive download failed for {owner}/{repo}@{ref}: HTTP {response.status_code}"
                    )
                content = response.content
        except httpx.HTTPError as e:
            raise SourceUploadError(f"Source archive download failed for {owner}/{repo}@{ref}: {e}") from e

        if not content:
            raise SourceUploadError(f"Source archive for {owner}/{repo}@{ref} is empty")

        logger.info(f"[GITHUB] Downloaded archive {owner}/{repo}@{ref} ({len(content)} bytes)")
        return content
