"""Package metadata records: code-forge enrichment and meta.toml output."""

from __future__ import annotations

import json
import re
from http.client import HTTPException
from pathlib import Path
from typing import Any, Callable, Dict, Mapping
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

import tomli_w

from .logging import get_logger

logger = get_logger("metadata")

META_FILENAME = "meta.toml"
GITHUB_API = "https://api.github.com"

_GITHUB_REPO = re.compile(r"github\.com[:/]+([^/]+)/([^/]+?)(?:\.git)?/?$")

JsonFetcher = Callable[[str, Mapping[str, str]], Any]


class GitHubMetadataProvider:
    """Best-effort repository metadata from the GitHub REST API.

    A missing token or a non-GitHub URL yields an empty mapping; API errors
    are logged and whatever was collected before the failure is returned.
    """

    def __init__(
        self,
        token: str | None,
        *,
        api_url: str = GITHUB_API,
        fetch: JsonFetcher | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.token = token
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._fetch = fetch or self._fetch_json

    def fetch(self, name: str, url: str) -> Dict[str, Any]:
        if not self.token:
            logger.warning("No GitHub token found. Skipping metadata retrieval.")
            return {}
        match = _GITHUB_REPO.search(url)
        if match is None:
            logger.warning("Can't retrieve metadata for %s (not hosted on github)", name)
            return {}

        owner, repo = match.group(1), match.group(2)
        base = f"{self.api_url}/repos/{owner}/{repo}"
        headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {self.token}",
        }
        meta: Dict[str, Any] = {}
        logger.info("Querying metadata for %s", name)
        try:
            info = self._fetch(base, headers)
            meta["description"] = info.get("description") or ""
            meta["stargazers_count"] = info.get("stargazers_count") or 0
            meta["owner"] = owner

            license_info = (self._fetch(f"{base}/license", headers) or {}).get("license") or {}
            meta["license"] = license_info.get("name") or ""
            meta["license_url"] = license_info.get("url") or ""

            topics = self._fetch(f"{base}/topics", headers) or {}
            meta["tags"] = list(topics.get("names") or [])

            contributors = self._fetch(f"{base}/contributors", headers) or []
            meta["contributors"] = [
                {"name": entry.get("login", ""), "contributions": entry.get("contributions", 0)}
                for entry in contributors
                if isinstance(entry, dict)
            ]
        except (
            HTTPError,
            URLError,
            HTTPException,
            OSError,
            ValueError,
            AttributeError,
            TypeError,
        ) as exc:
            logger.error("Couldn't get info for %s: %s", url, exc)
        logger.info("Done querying metadata for %s", name)
        return meta

    def _fetch_json(self, url: str, headers: Mapping[str, str]) -> Any:
        request = Request(url, headers=dict(headers), method="GET")
        with urlopen(request, timeout=self.timeout) as response:  # type: ignore[arg-type]
            return json.loads(response.read().decode("utf-8"))


def write_meta(buildpath: Path, meta: Mapping[str, Any]) -> Path:
    """Serialise ``meta`` to ``buildpath/meta.toml``; ``None`` values are dropped."""
    buildpath.mkdir(parents=True, exist_ok=True)
    path = buildpath / META_FILENAME
    path.write_text(tomli_w.dumps(_clean(meta)), encoding="utf-8")
    return path


def _clean(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(key): _clean(item) for key, item in value.items() if item is not None}
    if isinstance(value, (list, tuple)):
        return [_clean(item) for item in value if item is not None]
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


__all__ = ["GitHubMetadataProvider", "META_FILENAME", "write_meta"]
