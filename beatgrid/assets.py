"""Remote asset fetching and a request-coalescing cache.

``AssetCache`` guarantees that at most one load per key is in flight: later
callers for the same key await the same task and receive the same object.
Failed loads leave no entry, so the next request retries.
"""

from __future__ import annotations

import asyncio
import http.client
import logging
import urllib.error
import urllib.request
from collections.abc import Awaitable, Callable, Hashable
from typing import Generic, Protocol, TypeVar

from .errors import AssetUnavailableError

_LOGGER = logging.getLogger("beatgrid.assets")

USER_AGENT = "Mozilla/5.0 (beatgrid asset loader)"

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class Fetcher(Protocol):
    async def fetch(self, url: str) -> bytes: ...


class UrllibFetcher:
    """Blocking ``urllib`` download run in a worker thread."""

    def __init__(self, *, timeout: float = 30.0, user_agent: str = USER_AGENT) -> None:
        self.timeout = timeout
        self.user_agent = user_agent

    async def fetch(self, url: str) -> bytes:
        return await asyncio.to_thread(self._fetch_sync, url)

    def _fetch_sync(self, url: str) -> bytes:
        request = urllib.request.Request(url, headers={"User-Agent": self.user_agent})
        _LOGGER.debug("GET %s", url)
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                status = getattr(response, "status", None)
                if status is not None and not 200 <= status < 300:
                    raise AssetUnavailableError(f"HTTP {status} for {url}")
                return bytes(response.read())
        except urllib.error.HTTPError as exc:
            raise AssetUnavailableError(f"HTTP {exc.code} for {url}") from exc
        except (urllib.error.URLError, http.client.HTTPException, OSError, ValueError) as exc:
            raise AssetUnavailableError(f"failed to fetch {url}: {exc}") from exc


class AssetCache(Generic[K, V]):
    def __init__(self, name: str) -> None:
        self.name = name
        self._entries: dict[K, V] = {}
        self._inflight: dict[K, asyncio.Task[V | None]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    @property
    def pending(self) -> int:
        return len(self._inflight)

    def peek(self, key: K) -> V | None:
        return self._entries.get(key)

    async def get_or_load(self, key: K, loader: Callable[[], Awaitable[V]]) -> V | None:
        """Return the cached value, joining or starting a single load on a miss.

        Cancelling one waiter does not cancel the shared load.
        """
        if key in self._entries:
            return self._entries[key]
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.create_task(self._load(key, loader))
            self._inflight[key] = task
        else:
            _LOGGER.debug("%s: joining in-flight load for %s", self.name, key)
        return await asyncio.shield(task)

    async def _load(self, key: K, loader: Callable[[], Awaitable[V]]) -> V | None:
        try:
            value = await loader()
        except AssetUnavailableError as exc:
            _LOGGER.warning("%s: %s unavailable: %s", self.name, key, exc)
            return None
        except Exception as exc:
            _LOGGER.warning("%s: failed to load %s: %s", self.name, key, exc, exc_info=True)
            return None
        finally:
            self._inflight.pop(key, None)
        self._entries[key] = value
        _LOGGER.debug("%s: cached %s", self.name, key)
        return value

    def clear(self) -> None:
        self._entries.clear()

    def cancel(self) -> None:
        for task in list(self._inflight.values()):
            task.cancel()
        self._inflight.clear()
