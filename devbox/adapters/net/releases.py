"""
HTTP fetcher — GitHub release metadata, installer scripts, archives.

The one wire contract that matters here is the GitHub release JSON:

    {"tag_name": "v0.10.0",
     "assets": [{"name": "nvim-linux-x86_64.tar.gz",
                 "browser_download_url": "https://..."}, ...]}

An asset is picked by exact filename match. Network problems raise
``TransientError`` (worth retrying); a release that simply does not
carry the asset raises ``PreconditionError``.
"""

from __future__ import annotations

import json
import logging
import shutil
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any

from devbox import __version__
from devbox.adapters.base import Adapter
from devbox.core.errors import PreconditionError, TransientError

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"
USER_AGENT = f"devbox/{__version__}"


def select_asset(release: dict[str, Any], filename: str) -> dict[str, Any]:
    """Return the asset whose ``name`` equals ``filename`` exactly.

    Raises:
        PreconditionError: No such asset, or the asset has no download URL.
    """
    assets = release.get("assets")
    if not isinstance(assets, list):
        raise PreconditionError("Release metadata has no 'assets' list")

    for asset in assets:
        if isinstance(asset, dict) and asset.get("name") == filename:
            if not asset.get("browser_download_url"):
                raise PreconditionError(f"Asset '{filename}' has no browser_download_url")
            return asset

    tag = release.get("tag_name", "?")
    available = [a.get("name", "?") for a in assets[:10] if isinstance(a, dict)]
    raise PreconditionError(
        f"No asset named '{filename}' in release {tag}"
        + (f" (available: {', '.join(available)})" if available else "")
    )


class ReleaseFetcher(Adapter):
    """Fetch JSON documents and files over HTTPS."""

    @property
    def name(self) -> str:
        return "http"

    def is_available(self) -> bool:
        return True

    def _open(self, url: str, timeout: float, accept: str):
        req = urllib.request.Request(
            url, headers={"Accept": accept, "User-Agent": USER_AGENT},
        )
        try:
            return urllib.request.urlopen(req, timeout=timeout)
        except urllib.error.HTTPError as e:
            if e.code == 404:
                raise PreconditionError(f"{url} not found (HTTP 404)") from e
            raise TransientError(f"HTTP {e.code} from {url}") from e
        except (urllib.error.URLError, TimeoutError, OSError) as e:
            raise TransientError(f"Cannot reach {url}: {e}") from e

    def fetch_json(self, url: str, *, timeout: float = 60) -> dict[str, Any]:
        """GET ``url`` and decode a JSON object."""
        logger.debug("Fetching %s", url)
        with self._open(url, timeout, "application/vnd.github+json") as resp:
            try:
                raw = resp.read()
            except (TimeoutError, OSError) as e:
                raise TransientError(f"Reading {url} failed: {e}") from e
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise TransientError(f"Invalid JSON from {url}: {e}") from e
        if not isinstance(data, dict):
            raise TransientError(f"Expected a JSON object from {url}")
        return data

    def latest_release(self, repo: str, *, timeout: float = 60) -> dict[str, Any]:
        """Metadata of the latest release of ``owner/repo``."""
        return self.fetch_json(f"{GITHUB_API}/repos/{repo}/releases/latest", timeout=timeout)

    def download(self, url: str, dest: Path, *, timeout: float = 60) -> Path:
        """Stream ``url`` into ``dest``. A partial file is removed on failure."""
        logger.info("Downloading %s", url)
        dest.parent.mkdir(parents=True, exist_ok=True)
        try:
            with self._open(url, timeout, "application/octet-stream") as resp, \
                    dest.open("wb") as out:
                shutil.copyfileobj(resp, out)
        except (TimeoutError, OSError) as e:
            dest.unlink(missing_ok=True)
            raise TransientError(f"Download of {url} failed: {e}") from e
        except Exception:
            dest.unlink(missing_ok=True)
            raise
        return dest
