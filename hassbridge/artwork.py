"""Content-addressed on-disk cache for media_player artwork."""

from __future__ import annotations

import asyncio
import base64
import contextlib
import hashlib
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Dict, Optional

import httpx

from .errors import ArtworkFetchError

log = logging.getLogger(__name__)


class ArtworkCache:
    """
    Resolve artwork locators (usually ``/api/media_player_proxy/...``) to local
    ``file://`` references.

    Files are named after sha256(locator), so resolving the same locator is
    idempotent and never re-fetches. Failures return "" and cache nothing.
    Entries are never evicted; close() removes the whole directory.
    """

    def __init__(
        self,
        *,
        base_url: str,
        token: str = "",
        directory: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._dir = Path(directory or tempfile.mkdtemp(prefix="hassbridge")).resolve()
        self._dir.mkdir(parents=True, exist_ok=True)
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout
        self._inflight: Dict[str, asyncio.Task[str]] = {}
        self.fetches = 0

    @property
    def directory(self) -> Path:
        return self._dir

    @staticmethod
    def key(locator: str) -> str:
        digest = hashlib.sha256(locator.encode("utf-8")).digest()
        return base64.urlsafe_b64encode(digest).decode("ascii")

    def path_for(self, locator: str) -> Path:
        return self._dir / self.key(locator)

    async def resolve(self, locator: Optional[str]) -> str:
        """Return a file:// reference for locator, or "" if it can't be had."""
        if not locator:
            return ""
        path = self.path_for(locator)
        if path.exists():
            return path.as_uri()

        task = self._inflight.get(locator)
        if task is None:
            task = asyncio.create_task(self._fetch_or_empty(locator, path), name="artwork_fetch")
            self._inflight[locator] = task
            task.add_done_callback(lambda _t, loc=locator: self._inflight.pop(loc, None))
        # one caller giving up must not cancel the download for the others
        return await asyncio.shield(task)

    async def close(self) -> None:
        for task in list(self._inflight.values()):
            task.cancel()
        if self._owns_client and self._client is not None:
            with contextlib.suppress(Exception):
                await self._client.aclose()
        self._client = None
        try:
            shutil.rmtree(self._dir)
        except FileNotFoundError:
            pass
        except OSError as exc:
            log.error("remove artwork cache %s failed: %s", self._dir, exc)

    # ── Internals ───────────────────────────────────────────────────────────

    def _url_for(self, locator: str) -> str:
        if locator.startswith(("http://", "https://")):
            return locator
        return f"{self._base_url}/{locator.lstrip('/')}"

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True
        return self._client

    async def _fetch_or_empty(self, locator: str, path: Path) -> str:
        try:
            await self._fetch(locator, path)
        except ArtworkFetchError as exc:
            log.error("download artwork failed: %s", exc)
            return ""
        log.debug("artwork %s cached as %s", locator, path.name)
        return path.as_uri()

    async def _fetch(self, locator: str, path: Path) -> None:
        url = self._url_for(locator)
        headers = {}
        # only the hub gets the token, never a third-party image host
        if self._token and not locator.startswith(("http://", "https://")):
            headers["Authorization"] = f"Bearer {self._token}"

        part = path.with_name(path.name + ".part")
        self.fetches += 1
        try:
            async with self._ensure_client().stream("GET", url, headers=headers) as resp:
                if not resp.is_success:
                    raise ArtworkFetchError(f"GET {url} returned HTTP {resp.status_code}")
                with open(part, "wb") as out:
                    async for chunk in resp.aiter_bytes():
                        out.write(chunk)
            os.replace(part, path)
        except httpx.HTTPError as exc:
            raise ArtworkFetchError(f"GET {url} failed: {exc!r}") from exc
        except OSError as exc:
            raise ArtworkFetchError(f"storing {url} failed: {exc}") from exc
        finally:
            with contextlib.suppress(FileNotFoundError):
                part.unlink()
