from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Mapping
from typing import Any
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .assets import AssetCache, Fetcher
from .audio import AudioBuffer, decode_audio
from .config import DEFAULT_SAMPLE_MAP_URL
from .errors import AssetUnavailableError

_LOGGER = logging.getLogger("beatgrid.samples")

# Characters JavaScript's encodeURI leaves untouched.
_URI_SAFE = "/;,?:@&=+$-_.!~*'()#"

SampleKey = tuple[str, str, int]


class SampleMap(BaseModel):
    """Drum-machine manifest: ``{"_base": url, "<Machine>_<sound>": [paths]}``."""

    base: str = ""
    entries: dict[str, tuple[str, ...]] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @classmethod
    def from_json(cls, raw: bytes | str | Mapping[str, Any]) -> SampleMap:
        try:
            data = json.loads(raw) if isinstance(raw, (bytes, str)) else dict(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise AssetUnavailableError(f"sample map is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise AssetUnavailableError("sample map must be a JSON object")
        entries = {
            key: value
            for key, value in data.items()
            if key != "_base" and isinstance(value, list)
        }
        try:
            return cls(base=str(data.get("_base", "")), entries=entries)
        except ValidationError as exc:
            raise AssetUnavailableError(f"sample map has invalid entries: {exc}") from exc

    @staticmethod
    def key(machine: str, sound_type: str) -> str:
        return f"{machine}_{sound_type}"

    def paths(self, machine: str, sound_type: str) -> tuple[str, ...]:
        return self.entries.get(self.key(machine, sound_type), ())

    def url(self, path: str) -> str:
        return f"{self.base}{quote(path, safe=_URI_SAFE)}"

    def machines(self) -> list[str]:
        return sorted({key.split("_", 1)[0] for key in self.entries})

    def sound_types(self, machine: str) -> list[str]:
        prefix = f"{machine}_"
        return [key[len(prefix) :] for key in self.entries if key.startswith(prefix)]


class SampleLibrary:
    """Loads and caches drum-machine samples described by a :class:`SampleMap`."""

    def __init__(
        self,
        fetcher: Fetcher,
        *,
        map_url: str = DEFAULT_SAMPLE_MAP_URL,
        decoder: Callable[[bytes], AudioBuffer] = decode_audio,
    ) -> None:
        self._fetcher = fetcher
        self._map_url = map_url
        self._decoder = decoder
        self._map: SampleMap | None = None
        self._cache: AssetCache[SampleKey, AudioBuffer] = AssetCache("samples")

    async def init(self) -> bool:
        """Fetch the manifest once. Failure leaves the library empty but usable."""
        if self._map is not None:
            return True
        try:
            raw = await self._fetcher.fetch(self._map_url)
            self._map = SampleMap.from_json(raw)
        except AssetUnavailableError as exc:
            _LOGGER.warning("Sample map unavailable, drums will be synthesized: %s", exc)
            return False
        except Exception as exc:
            _LOGGER.warning(
                "Sample map failed to load, drums will be synthesized: %s", exc, exc_info=True
            )
            return False
        _LOGGER.info("Loaded sample map with %d entries", len(self._map.entries))
        return True

    @property
    def initialized(self) -> bool:
        return self._map is not None

    @property
    def sample_map(self) -> SampleMap | None:
        return self._map

    def has_samples(self, machine: str, sound_type: str) -> bool:
        return self._map is not None and self._map.key(machine, sound_type) in self._map.entries

    def sample_count(self, machine: str, sound_type: str) -> int:
        if self._map is None:
            return 0
        return len(self._map.paths(machine, sound_type))

    def machines(self) -> list[str]:
        return self._map.machines() if self._map is not None else []

    def sound_types(self, machine: str) -> list[str]:
        return self._map.sound_types(machine) if self._map is not None else []

    def cache_key(self, machine: str, sound_type: str, variation: int = 0) -> SampleKey | None:
        count = self.sample_count(machine, sound_type)
        if count == 0:
            return None
        return (machine, sound_type, max(0, min(variation, count - 1)))

    def peek(self, machine: str, sound_type: str, variation: int = 0) -> AudioBuffer | None:
        key = self.cache_key(machine, sound_type, variation)
        return self._cache.peek(key) if key is not None else None

    async def load_sample(
        self, machine: str, sound_type: str, variation: int = 0
    ) -> AudioBuffer | None:
        if self._map is None:
            _LOGGER.warning("Sample library not initialized")
            return None
        key = self.cache_key(machine, sound_type, variation)
        if key is None:
            _LOGGER.warning("No samples found for %s", self._map.key(machine, sound_type))
            return None
        url = self._map.url(self._map.paths(machine, sound_type)[key[2]])
        return await self._cache.get_or_load(key, lambda: self._fetch_and_decode(url))

    async def _fetch_and_decode(self, url: str) -> AudioBuffer:
        _LOGGER.debug("Loading sample %s", url)
        data = await self._fetcher.fetch(url)
        return await asyncio.to_thread(self._decoder, data)

    async def preload_machine(self, machine: str) -> int:
        """Load the first variation of every sound on ``machine``; returns how many loaded."""
        results = await asyncio.gather(
            *(self.load_sample(machine, sound_type) for sound_type in self.sound_types(machine))
        )
        loaded = sum(1 for buffer in results if buffer is not None)
        _LOGGER.info("Preloaded %d/%d sounds for %s", loaded, len(results), machine)
        return loaded

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def clear_cache(self) -> None:
        self._cache.clear()

    def close(self) -> None:
        self._cache.cancel()
