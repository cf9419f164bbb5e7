"""
GitHub REST API implementation of :class:`RepositorySource`.

Binary-or-text is decided here, once, from the raw bytes GitHub returns; the
rest of the pipeline carries the tag through unchanged.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from ..exceptions import AuthenticationRequiredError, SourceError
from ..logger import get_logger
from ..models import DirectoryEntry, FileContent, RepositorySummary
from ..settings import settings

log = get_logger(__name__)

API_VERSION = "2022-11-28"
JSON_MEDIA_TYPE = "application/vnd.github+json"
RAW_MEDIA_TYPE = "application/vnd.github.raw"
_BINARY_SNIFF_BYTES = 8192


def is_binary_payload(data: bytes) -> bool:
    """True unless ``data`` is NUL-free, valid UTF-8."""
    if b"\x00" in data[:_BINARY_SNIFF_BYTES]:
        return True
    try:
        data.decode("utf-8")
    except UnicodeDecodeError:
        return True
    return False


def summary_from_payload(payload: Dict[str, Any]) -> RepositorySummary:
    return RepositorySummary(
        full_name=payload["full_name"],
        clone_url=payload.get("clone_url") or "",
        description=payload.get("description"),
        language=payload.get("language"),
        stars=int(payload.get("stargazers_count") or 0),
    )


class GitHubSource:
    """Async GitHub client; usable as an async context manager."""

    def __init__(
        self,
        token: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
        per_page: Optional[int] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.token = token if token is not None else settings.github_token
        self.api_url = (api_url or settings.github_api_url).rstrip("/")
        self.per_page = per_page or settings.search_per_page
        headers = {
            "Accept": JSON_MEDIA_TYPE,
            "X-GitHub-Api-Version": API_VERSION,
            "User-Agent": "repospace",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self.api_url,
            timeout=timeout or settings.request_timeout,
            follow_redirects=True,
        )
        self._client.headers.update(headers)

    @property
    def authenticated(self) -> bool:
        return bool(self.token)

    async def __aenter__(self) -> "GitHubSource":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.get(url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            log.warning("github_request_failed", url=url, status=status)
            raise SourceError("GitHub request failed", cause=exc, status=status, url=url) from exc
        except httpx.HTTPError as exc:
            log.warning("github_request_error", url=url, error=str(exc))
            raise SourceError("GitHub request error", cause=exc, url=url) from exc
        return response

    async def _json(self, url: str, **kwargs: Any) -> Any:
        response = await self._request(url, **kwargs)
        try:
            return response.json()
        except ValueError as exc:
            raise SourceError("GitHub returned malformed JSON", cause=exc, url=url) from exc

    @staticmethod
    def _contents_url(owner: str, name: str, path: str) -> str:
        url = f"/repos/{quote(owner, safe='')}/{quote(name, safe='')}/contents"
        path = path.strip("/")
        if path:
            url = f"{url}/{quote(path, safe='/')}"
        return url

    async def search(self, query: str, page: int = 1) -> List[RepositorySummary]:
        data = await self._json(
            "/search/repositories",
            params={
                "q": query,
                "sort": "stars",
                "order": "desc",
                "per_page": self.per_page,
                "page": page,
            },
        )
        items = data.get("items") or []
        log.info("github_search", query=query, page=page, results=len(items))
        return [summary_from_payload(item) for item in items]

    async def get_repository(self, owner: str, name: str) -> RepositorySummary:
        data = await self._json(f"/repos/{quote(owner, safe='')}/{quote(name, safe='')}")
        return summary_from_payload(data)

    async def list_user_repositories(self) -> List[RepositorySummary]:
        if not self.authenticated:
            raise AuthenticationRequiredError("Listing your repositories requires a GitHub token")
        data = await self._json("/user/repos", params={"sort": "updated", "per_page": 100})
        return [summary_from_payload(item) for item in data]

    async def list_directory(self, owner: str, name: str, path: str = "") -> List[DirectoryEntry]:
        data = await self._json(self._contents_url(owner, name, path))
        items = data if isinstance(data, list) else [data]
        entries: List[DirectoryEntry] = []
        for item in items:
            kind = item.get("type")
            if kind in ("file", "dir"):
                entries.append(DirectoryEntry(path=item["path"], type=kind))
            else:
                log.debug("github_entry_skipped", path=item.get("path"), type=kind)
        return entries

    async def get_file_content(self, owner: str, name: str, path: str) -> FileContent:
        response = await self._request(
            self._contents_url(owner, name, path),
            headers={"Accept": RAW_MEDIA_TYPE},
        )
        data = response.content
        return FileContent(data=data, is_binary=is_binary_payload(data))
