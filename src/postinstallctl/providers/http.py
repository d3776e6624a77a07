"""HTTP downloads via :mod:`urllib` with a bounded timeout."""
from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from .. import __version__
from ..errors import StepFailure
from ..files import atomic_write

logger = logging.getLogger("postinstallctl.providers.http")

GITHUB_API = "https://api.github.com"


class HttpError(StepFailure):
    """Raised when a download fails or times out."""


@dataclass(slots=True)
class HttpFetcher:
    """Fetch URLs into memory or onto disk."""

    timeout: float = 120.0
    user_agent: str = f"postinstallctl/{__version__}"

    def fetch_bytes(self, url: str, *, accept: str | None = None) -> bytes:
        """Return the body of *url*."""
        headers = {"User-Agent": self.user_agent}
        if accept:
            headers["Accept"] = accept
        request = urllib.request.Request(url, headers=headers)
        logger.debug("GET %s", url)
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:  # noqa: S310
                return response.read()
        except urllib.error.HTTPError as exc:
            raise HttpError(f"GET {url} failed: HTTP {exc.code}") from exc
        except urllib.error.URLError as exc:
            raise HttpError(f"GET {url} failed: {exc.reason}") from exc
        except (TimeoutError, OSError) as exc:
            raise HttpError(f"GET {url} failed: {exc}") from exc

    def fetch_json(self, url: str) -> object:
        """Return the decoded JSON document at *url*."""
        payload = self.fetch_bytes(url, accept="application/json")
        try:
            return json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise HttpError(f"GET {url} returned invalid JSON: {exc}") from exc

    def download(self, url: str, destination: Path, *, mode: int = 0o644) -> Path:
        """Download *url* to *destination* atomically."""
        data = self.fetch_bytes(url)
        if not data:
            raise HttpError(f"GET {url} returned an empty body.")
        atomic_write(Path(destination), data, mode=mode)
        return Path(destination)

    def latest_release_asset(self, repository: str, match: Callable[[str], bool]) -> str:
        """Return the download URL of the first latest-release asset accepted by *match*."""
        document = self.fetch_json(f"{GITHUB_API}/repos/{repository}/releases/latest")
        assets = document.get("assets", []) if isinstance(document, dict) else []
        for asset in assets:
            if not isinstance(asset, dict):
                continue
            name = str(asset.get("name", ""))
            url = asset.get("browser_download_url")
            if url and match(name):
                return str(url)
        raise HttpError(f"No matching release asset found for {repository}.")


__all__ = ["GITHUB_API", "HttpError", "HttpFetcher"]
