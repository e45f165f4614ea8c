"""Search orchestrator — resolves criteria, walks price lists and normalizes offers into tours."""

import asyncio
import logging
import re
import time
from collections.abc import Mapping
from datetime import date, datetime, timedelta
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import TypeAdapter

from tourdesk.config import settings
from tourdesk.errors import (
    AuthProtocolError,
    ConfigurationError,
    SessionExpiredError,
    UnknownLocationError,
    UpstreamRequestError,
)
from tourdesk.schemas.tour import HotelSummary, SearchCriteria, SearchOutcome, Tour
from tourdesk.services.biblio_globus.auth import SessionAuthenticator, SessionCredentials
from tourdesk.services.biblio_globus.client import ApiClient
from tourdesk.services.biblio_globus.references import (
    ReferenceDataCache,
    index_by,
    reference_cache,
    resolve_city,
    resolve_country,
)
from tourdesk.services.cache_service import TTLCache

logger = logging.getLogger(__name__)

UPSTREAM_DATE_FORMAT = "%d.%m.%Y"

_tours_adapter = TypeAdapter(list[Tour])


def make_tour_id(hotel_id: Any, price_list_id: Any, offer_id: Any) -> str:
    """Deterministic tour id for one upstream offer."""
    return f"{hotel_id}-{price_list_id}-{offer_id}"


def parse_upstream_date(value: str) -> date:
    return datetime.strptime(value.strip(), UPSTREAM_DATE_FORMAT).date()


def overlaps(departure: date, return_date: date, date_from: date | None, date_to: date | None) -> bool:
    """True if [departure, return_date] touches the requested range. Open ends match anything."""
    if date_to is not None and departure > date_to:
        return False
    if date_from is not None and return_date < date_from:
        return False
    return True


def _to_int(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(float(str(value).replace(" ", "").replace(",", ".")))
    except ValueError:
        return None


def _parse_stars(value: Any) -> int:
    match = re.search(r"\d+", str(value or ""))
    return int(match.group()) if match else 0


def make_search_cache(**options) -> TTLCache[list[Tour]]:
    return TTLCache(
        "search",
        settings.search_cache_ttl,
        **options,
        encode=lambda tours: _tours_adapter.dump_python(tours, mode="json"),
        decode=_tours_adapter.validate_python,
    )


class TourSearchOrchestrator:
    """Coordinates a catalog search: cache, references, price lists, offers.

    Holds one upstream session and reuses it across searches. A 401 drops the
    session, logs in again and replays the fetch sequence once.
    """

    def __init__(
        self,
        authenticator: SessionAuthenticator | None = None,
        references: ReferenceDataCache | None = None,
        cache: TTLCache[list[Tour]] | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        base_url: str | None = None,
        departure_city: str | None = None,
        price_list_limit: int | None = None,
        max_results: int | None = None,
        age_bands: list[str] | None = None,
    ):
        self._authenticator = authenticator or SessionAuthenticator()
        self.references = references or reference_cache
        self.cache = cache or make_search_cache()
        self._client = http_client
        self._owns_client = http_client is None
        self._base_url = (base_url or settings.biblio_globus_export_url).rstrip("/")
        self.departure_city = departure_city or settings.default_departure_city
        self.price_list_limit = price_list_limit or settings.price_list_limit
        self.max_results = max_results or settings.max_search_results
        self.age_bands = age_bands or settings.adult_age_band_list
        self._session: SessionCredentials | None = None
        self._session_lock = asyncio.Lock()

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=settings.upstream_timeout_seconds)
        return self._client

    async def search(self, criteria: SearchCriteria) -> SearchOutcome:
        """Run a search. Never raises except for configuration and login failures."""
        start_time = time.monotonic()
        cache_key = self.cache.key_for(criteria.cache_payload())

        cached = await self.cache.get(cache_key)
        if cached is not None:
            logger.info(f"Returning cached tour search results for {criteria.country}")
            return SearchOutcome(tours=cached, cached=True)

        logger.info(f"Starting tour search: {criteria.model_dump(mode='json')}")
        try:
            tours = await self._search_with_session(criteria)
        except UnknownLocationError as e:
            logger.warning(str(e))
            return SearchOutcome(status="not_found")
        except (ConfigurationError, AuthProtocolError):
            raise
        except Exception as e:
            logger.error(f"Tour search for {criteria.country} degraded: {e}")
            return SearchOutcome(status="degraded", error=str(e))

        await self.cache.set(cache_key, tours)
        elapsed_ms = int((time.monotonic() - start_time) * 1000)
        logger.info(f"Tour search for {criteria.country}: {len(tours)} tours in {elapsed_ms}ms")
        return SearchOutcome(tours=tours)

    async def search_tours(self, criteria: SearchCriteria) -> list[Tour]:
        return (await self.search(criteria)).tours

    # ---- Session handling ----

    async def _api_client(self) -> ApiClient:
        async with self._session_lock:
            if self._session is None:
                self._session = await self._authenticator.authenticate()
            session = self._session
        return ApiClient(session, http_client=await self._get_client())

    async def _drop_session(self, stale: SessionCredentials) -> None:
        async with self._session_lock:
            if self._session is stale:
                self._session = None

    async def _search_with_session(self, criteria: SearchCriteria) -> list[Tour]:
        client = await self._api_client()
        try:
            return await self._fetch_tours(client, criteria)
        except SessionExpiredError:
            logger.info("Biblio-Globus session expired, re-authenticating once")
            await self._drop_session(client.credentials)
            client = await self._api_client()
            return await self._fetch_tours(client, criteria)

    # ---- Fetch sequence ----

    async def _fetch_tours(self, client: ApiClient, criteria: SearchCriteria) -> list[Tour]:
        countries, cities, hotels = await asyncio.gather(
            self.references.countries(client),
            self.references.cities(client),
            self.references.hotels(client),
        )

        country = resolve_country(criteria.country, countries)
        departure_city = resolve_city(self.departure_city, cities)

        price_lists = await client.get_json(
            self._price_list_url(country, departure_city, criteria), key="entries"
        )
        if not isinstance(price_lists, list):
            raise UpstreamRequestError("Price list listing is not a list")

        hotels_by_key = index_by(hotels, "key")
        cities_by_id = index_by(cities, "id")

        all_tours: list[Tour] = []
        for price_list in price_lists[: self.price_list_limit]:
            if not isinstance(price_list, Mapping):
                logger.warning(f"Skipping malformed price list: {price_list!r}")
                continue
            try:
                departure = parse_upstream_date(price_list["date"])
            except (KeyError, TypeError, ValueError):
                logger.warning(f"Skipping price list with bad date: {price_list.get('date')!r}")
                continue
            duration = _to_int(price_list.get("duration")) or 0
            if not overlaps(
                departure, departure + timedelta(days=duration), criteria.date_from, criteria.date_to
            ):
                continue

            detail_url = self._detail_url(price_list.get("url", ""), criteria)
            try:
                entries = await client.get_json(detail_url, key="entries")
            except UpstreamRequestError as e:
                logger.warning(f"Failed to fetch tour details from {detail_url}: {e}")
                continue
            if not isinstance(entries, list):
                logger.warning(f"Tour details from {detail_url} are not a list, skipping")
                continue

            for entry in entries:
                if not isinstance(entry, Mapping):
                    logger.warning(f"Skipping malformed offer in {detail_url}: {entry!r}")
                    continue
                tour = self._normalize_offer(
                    entry, price_list, departure, country, hotels_by_key, cities_by_id
                )
                if tour is not None:
                    all_tours.append(tour)

        return all_tours[: self.max_results]

    def _price_list_url(
        self, country: Mapping[str, Any], departure_city: Mapping[str, Any], criteria: SearchCriteria
    ) -> str:
        url = (
            f"{self._base_url}/yandex?action=files"
            f"&flt={country['id']}&flt2={departure_city['id']}&xml=11"
        )
        if criteria.stars:
            url += f"&f3={quote(criteria.stars)}"
        if criteria.meal_type:
            url += f"&f8={quote(criteria.meal_type)}"
        return url

    @staticmethod
    def _detail_url(url: str, criteria: SearchCriteria) -> str:
        if criteria.stars and "&f3=" not in url:
            url += f"&f3={quote(criteria.stars)}"
        if criteria.meal_type and "&f8=" not in url:
            url += f"&f8={quote(criteria.meal_type)}"
        return url

    # ---- Normalization ----

    def is_adult_price(self, price: Mapping[str, Any]) -> bool:
        band = str(price.get("ag") or "")
        return any(marker in band for marker in self.age_bands)

    def _normalize_offer(
        self,
        entry: Mapping[str, Any],
        price_list: Mapping[str, Any],
        departure: date,
        country: Mapping[str, Any],
        hotels_by_key: dict[str, Mapping[str, Any]],
        cities_by_id: dict[str, Mapping[str, Any]],
    ) -> Tour | None:
        """One offer as a Tour, or None when the hotel or adult price is missing."""
        hotel = hotels_by_key.get(str(entry.get("id_hotel")))
        if hotel is None:
            return None

        amounts = [
            amount
            for amount in (
                _to_int(p.get("RUR") or p.get("amount"))
                for p in entry.get("prices") or []
                if isinstance(p, Mapping) and self.is_adult_price(p)
            )
            if amount is not None
        ]
        if not amounts:
            return None

        duration = _to_int(entry.get("duration"))
        if duration is None:
            duration = _to_int(price_list.get("duration")) or 0

        city = cities_by_id.get(str(hotel.get("cityKey")))
        city_name = city.get("title_ru") if city else None
        country_name = country.get("title_ru") or ""

        return Tour(
            id=make_tour_id(entry.get("id_hotel"), price_list.get("id_price"), entry.get("id_ns")),
            country=country_name,
            city=city_name or "Unknown City",
            departure_date=departure,
            return_date=departure + timedelta(days=duration),
            price=amounts[0],
            price_min=min(amounts),
            price_max=max(amounts),
            hotel=HotelSummary(
                name=hotel.get("name") or "",
                address=f"{city_name or 'Unknown City'}, {country_name}",
                stars=_parse_stars(hotel.get("stars")),
            ),
            image_url=f"https://picsum.photos/seed/{entry.get('id_hotel')}/600/400",
        )

    async def close(self):
        await self._authenticator.close()
        if self._client and self._owns_client:
            await self._client.aclose()
        self._client = None


tour_search_orchestrator = TourSearchOrchestrator()
