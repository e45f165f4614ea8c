"""Reference data — countries, cities, hotels and board types, cached for a day."""

import asyncio
import logging
import time
from collections.abc import Mapping, Sequence
from types import MappingProxyType
from typing import Any

from tourdesk.config import settings
from tourdesk.errors import UnknownLocationError, UpstreamRequestError
from tourdesk.services.biblio_globus.client import ApiClient
from tourdesk.services.cache_service import Clock, InMemoryBackend, TTLCache

logger = logging.getLogger(__name__)

Record = Mapping[str, Any]

# Paths under settings.biblio_globus_export_url
REFERENCE_PATHS: dict[str, str] = {
    "countries": "/yandex?action=countries",
    "cities": "/auto/jsonResorts.json",
    "hotels": "/yandex?action=hotelsJson",
    "accommodations": "/yandex?action=vr",
    "meals": "/yandex?action=boards",
}


def _freeze(records: list[dict]) -> tuple[Record, ...]:
    return tuple(MappingProxyType(dict(r)) for r in records if isinstance(r, dict))


def _identity(value):
    return value


def _norm(value: Any) -> str:
    return str(value or "").strip().casefold()


class ReferenceDataCache:
    """One upstream fetch per kind per TTL window, shared by all callers.

    Tables are handed out as tuples of read-only mappings. Lookup tables are
    huge (hotels), so they always live in process memory.
    """

    def __init__(
        self,
        ttl: int | None = None,
        *,
        base_url: str | None = None,
        clock: Clock | None = None,
    ):
        self._cache: TTLCache[tuple[Record, ...]] = TTLCache(
            "references",
            ttl if ttl is not None else settings.reference_cache_ttl,
            backend=InMemoryBackend(),
            encode=_identity,
            decode=_identity,
            clock=clock or time.time,
        )
        self._base_url = (base_url or settings.biblio_globus_export_url).rstrip("/")
        self._locks: dict[str, asyncio.Lock] = {kind: asyncio.Lock() for kind in REFERENCE_PATHS}

    def url_for(self, kind: str) -> str:
        return f"{self._base_url}{REFERENCE_PATHS[kind]}"

    async def get(self, kind: str, client: ApiClient) -> tuple[Record, ...]:
        if kind not in REFERENCE_PATHS:
            raise ValueError(f"Unknown reference kind: {kind}")

        cached = await self._cache.get(kind)
        if cached is not None:
            return cached

        async with self._locks[kind]:
            # Another caller may have filled it while we waited
            cached = await self._cache.get(kind)
            if cached is not None:
                return cached

            data = await client.get_json(self.url_for(kind))
            if not isinstance(data, list):
                raise UpstreamRequestError(f"Reference data for {kind} is not a list")
            records = _freeze(data)
            await self._cache.set(kind, records)
            logger.info(f"Loaded {len(records)} {kind} reference records")
            return records

    async def countries(self, client: ApiClient) -> tuple[Record, ...]:
        return await self.get("countries", client)

    async def cities(self, client: ApiClient) -> tuple[Record, ...]:
        return await self.get("cities", client)

    async def hotels(self, client: ApiClient) -> tuple[Record, ...]:
        return await self.get("hotels", client)

    async def meals(self, client: ApiClient) -> tuple[Record, ...]:
        return await self.get("meals", client)

    async def accommodations(self, client: ApiClient) -> tuple[Record, ...]:
        return await self.get("accommodations", client)

    async def invalidate(self, kind: str | None = None) -> None:
        for k in [kind] if kind else list(REFERENCE_PATHS):
            await self._cache.delete(k)


def resolve_country(name: str, countries: Sequence[Record]) -> Record:
    """Country whose localized title equals ``name``, ignoring case.

    Russian titles win; English titles are accepted as a second pass.
    """
    wanted = _norm(name)
    for field in ("title_ru", "title_en"):
        for country in countries:
            if _norm(country.get(field)) == wanted:
                return country
    raise UnknownLocationError("country", name)


def resolve_city(name: str, cities: Sequence[Record], country_id: str | None = None) -> Record:
    wanted = _norm(name)
    for city in cities:
        if country_id is not None and str(city.get("country")) != str(country_id):
            continue
        if _norm(city.get("title_ru")) == wanted:
            return city
    raise UnknownLocationError("city", name)


def index_by(records: Sequence[Record], field: str) -> dict[str, Record]:
    return {str(r[field]): r for r in records if r.get(field) is not None}


reference_cache = ReferenceDataCache()
