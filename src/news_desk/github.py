"""Create-or-update writes of report files through the GitHub contents API."""

from __future__ import annotations

import base64
import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx

from .config import get_settings
from .errors import GitHubPublishError
from .models import PublishConfig

logger = logging.getLogger(__name__)

ACCEPT_HEADER = "application/vnd.github.v3+json"


def encode_content(text: str) -> str:
    """Base64 of the UTF-8 bytes of ``text`` (multi-byte characters included)."""
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def content_path(base_path: str, file_name: str) -> str:
    """Join base path and file name without duplicate slashes, URL-quoting each segment."""
    segments = [seg for seg in f"{base_path}/{file_name}".split("/") if seg]
    if not segments:
        raise ValueError("A file name is required.")
    return "/".join(quote(seg) for seg in segments)


def commit_message(file_name: str) -> str:
    return f"Add news: {file_name}"


def _error_message(response: httpx.Response) -> str:
    try:
        data: Any = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return f"Failed to upload to GitHub (HTTP {response.status_code})."


class GitHubContentWriter:
    """
    Idempotent upsert of files into ``{owner}/{repository}``.

    The existing blob sha is read first; when present it is sent with the PUT so
    the write becomes a conditional update instead of a create.
    """

    def __init__(
        self,
        *,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self.api_url = (api_url or settings.github_api_url).rstrip("/")
        self.timeout = httpx.Timeout(timeout if timeout is not None else settings.request_timeout)
        self._transport = transport

    def contents_url(self, config: PublishConfig, file_name: str) -> str:
        path = content_path(config.base_path, file_name)
        return f"{self.api_url}/repos/{config.owner}/{config.repository}/contents/{path}"

    @staticmethod
    def _headers(config: PublishConfig) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {config.credential}",
            "Accept": ACCEPT_HEADER,
        }

    async def _current_sha(
        self, client: httpx.AsyncClient, url: str, headers: dict[str, str]
    ) -> Optional[str]:
        try:
            response = await client.get(url, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("Could not read %s, treating as new file: %s", url, exc)
            return None
        if response.status_code != 200:
            return None
        try:
            sha = response.json().get("sha")
        except (ValueError, AttributeError):
            return None
        return sha if isinstance(sha, str) and sha else None

    async def upsert(self, config: PublishConfig, file_name: str, content: str) -> None:
        """Create or update ``base_path/file_name``; raises GitHubPublishError on rejection."""
        if not config.credential:
            raise GitHubPublishError("A GitHub credential is required.")
        url = self.contents_url(config, file_name)
        headers = self._headers(config)

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            sha = await self._current_sha(client, url, headers)
            body: dict[str, str] = {
                "message": commit_message(file_name),
                "content": encode_content(content),
            }
            if sha:
                body["sha"] = sha
            try:
                response = await client.put(url, headers=headers, json=body)
            except httpx.HTTPError as exc:
                raise GitHubPublishError(f"Failed to upload to GitHub: {exc}") from exc

        if not response.is_success:
            message = _error_message(response)
            logger.warning("Upload of %s failed (%s): %s", file_name, response.status_code, message)
            raise GitHubPublishError(message, status_code=response.status_code)
        logger.info("%s %s", "Updated" if sha else "Created", url)
