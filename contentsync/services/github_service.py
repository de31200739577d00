"""GitHub contents API client used to fetch content files at a commit."""

from __future__ import annotations

import base64
import binascii
import logging
from typing import TYPE_CHECKING, Any, Protocol
from urllib.parse import quote

import httpx

from contentsync.exceptions import FetchError

if TYPE_CHECKING:
    from contentsync.config import Settings

logger = logging.getLogger(__name__)

GITHUB_API_VERSION = "2022-11-28"


class ContentFetcher(Protocol):
    """Retrieves raw file content at an exact commit."""

    async def fetch(self, path: str, ref: str) -> str: ...


class GitHubContentFetcher:
    """Reads files from one repository through the GitHub REST contents API.

    The caller owns the lifetime: call :meth:`aclose` when done, or pass in a
    pre-built ``client`` (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        owner: str,
        repo: str,
        token: str = "",
        api_url: str = "https://api.github.com",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._owner = owner
        self._repo = repo
        self._api_url = api_url.rstrip("/")
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._headers = headers
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(
        cls, settings: Settings, client: httpx.AsyncClient | None = None
    ) -> GitHubContentFetcher:
        return cls(
            owner=settings.github_repo_owner,
            repo=settings.github_repo_name,
            token=settings.github_token,
            api_url=settings.github_api_url,
            timeout=settings.fetch_timeout_seconds,
            client=client,
        )

    @property
    def repository(self) -> str:
        return f"{self._owner}/{self._repo}"

    async def aclose(self) -> None:
        await self._client.aclose()

    def _contents_url(self, path: str) -> str:
        return (
            f"{self._api_url}/repos/{quote(self._owner, safe='')}/{quote(self._repo, safe='')}"
            f"/contents/{quote(path.strip('/'))}"
        )

    async def _get_json(
        self, url: str, params: dict[str, str], what: str, *, allow_missing: bool = False
    ) -> Any:
        try:
            response = await self._client.get(url, params=params, headers=self._headers)
        except httpx.HTTPError as exc:
            raise FetchError(f"Request for {what} failed: {exc}") from exc

        if response.status_code == 404:
            if allow_missing:
                return None
            raise FetchError(f"{what} not found")
        if response.status_code in (401, 403):
            raise FetchError(f"Access to {what} denied (HTTP {response.status_code})")
        if response.status_code != 200:
            raise FetchError(f"Fetching {what} failed (HTTP {response.status_code})")

        try:
            return response.json()
        except ValueError:
            raise FetchError(f"GitHub returned non-JSON response for {what}") from None

    async def fetch(self, path: str, ref: str) -> str:
        """Return the UTF-8 text of *path* at commit *ref*.

        Raises:
            FetchError: If the path does not exist at that ref, is a
                directory or other non-file entry, the request fails, or the
                content is not valid base64-encoded UTF-8.
        """
        data = await self._get_json(self._contents_url(path), {"ref": ref}, f"{path}@{ref}")

        if isinstance(data, list):
            raise FetchError(f"{path} is a directory, not a file")
        if not isinstance(data, dict) or data.get("type") != "file":
            raise FetchError(f"{path} is not a regular file")

        encoded = data.get("content")
        if data.get("encoding") != "base64" or not isinstance(encoded, str):
            # Files over 1 MB come back without inline content
            raise FetchError(f"{path} has no inline base64 content")
        try:
            raw = base64.b64decode(encoded)
            return raw.decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as exc:
            raise FetchError(f"{path} content could not be decoded: {exc}") from exc

    async def list_files(self, directory: str, ref: str) -> list[str]:
        """Recursively list file paths under *directory* at *ref*.

        A directory that does not exist yields an empty list.
        """
        data = await self._get_json(
            self._contents_url(directory), {"ref": ref}, f"{directory}@{ref}", allow_missing=True
        )
        if data is None:
            logger.info("Directory %s not found at %s", directory, ref)
            return []
        if not isinstance(data, list):
            raise FetchError(f"{directory} is not a directory")

        paths: list[str] = []
        for entry in data:
            if not isinstance(entry, dict):
                continue
            entry_path = entry.get("path")
            if not isinstance(entry_path, str):
                continue
            if entry.get("type") == "file":
                paths.append(entry_path)
            elif entry.get("type") == "dir":
                paths.extend(await self.list_files(entry_path, ref))
        return sorted(paths)

    async def resolve_ref(self, branch: str) -> str:
        """Return the commit SHA *branch* currently points at."""
        url = (
            f"{self._api_url}/repos/{quote(self._owner, safe='')}/{quote(self._repo, safe='')}"
            f"/commits/{quote(branch, safe='')}"
        )
        data = await self._get_json(url, {}, f"branch {branch}")
        sha = data.get("sha") if isinstance(data, dict) else None
        if not isinstance(sha, str) or not sha:
            raise FetchError(f"Could not resolve branch {branch} to a commit")
        return sha
