"""Google Places client — hotel lookup by name and address, then rating/photos/types/reviews."""

import asyncio
import logging
from typing import Any
from urllib.parse import urlencode

import httpx

from tourdesk.config import settings
from tourdesk.data.amenities import map_amenities
from tourdesk.errors import ConfigurationError, UpstreamRequestError
from tourdesk.schemas.tour import PlaceInfo

logger = logging.getLogger(__name__)

DETAIL_FIELDS = "place_id,rating,photos,types,reviews"


class PlacesClient:
    """Adapter for the Google Places web service."""

    def __init__(
        self,
        api_key: str | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        base_url: str | None = None,
        max_concurrency: int | None = None,
    ):
        self._api_key = api_key
        self._client = http_client
        self._owns_client = http_client is None
        self._base_url = (base_url or settings.google_places_base_url).rstrip("/")
        self._semaphore = asyncio.Semaphore(max_concurrency or settings.places_max_concurrency)

    @property
    def api_key(self) -> str:
        key = self._api_key if self._api_key is not None else settings.google_places_api_key
        if not key:
            raise ConfigurationError("GOOGLE_PLACES_API_KEY must be set")
        return key

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=settings.places_timeout_seconds)
        return self._client

    async def _get(self, path: str, params: dict[str, Any]) -> dict:
        client = await self._get_client()
        params = {**params, "key": self.api_key}

        async with self._semaphore:
            for attempt in range(3):
                try:
                    resp = await client.get(f"{self._base_url}{path}", params=params)
                except httpx.TimeoutException as e:
                    raise UpstreamRequestError(f"Places request timed out: {path}", retryable=True) from e
                except httpx.HTTPError as e:
                    raise UpstreamRequestError(f"Places request failed: {e}", retryable=True) from e

                if resp.status_code == 429 and attempt < 2:
                    await asyncio.sleep(2 ** attempt)
                    continue
                if not resp.is_success:
                    raise UpstreamRequestError(
                        f"Places returned HTTP {resp.status_code} for {path}",
                        status_code=resp.status_code,
                    )
                try:
                    data = resp.json()
                except ValueError as e:
                    raise UpstreamRequestError(f"Malformed JSON from Places {path}") from e

                status = data.get("status", "OK")
                if status == "OVER_QUERY_LIMIT" and attempt < 2:
                    await asyncio.sleep(2 ** attempt)
                    continue
                if status not in ("OK", "ZERO_RESULTS"):
                    raise UpstreamRequestError(
                        f"Places {path} answered {status}: {data.get('error_message', '')}"
                    )
                return data

        raise UpstreamRequestError(f"Places rate limit exceeded for {path}", retryable=True)

    async def find_place_id(self, name: str, address: str) -> str | None:
        data = await self._get(
            "/findplacefromtext/json",
            {"input": f"{name}, {address}", "inputtype": "textquery", "fields": "place_id"},
        )
        candidates = data.get("candidates") or []
        return candidates[0].get("place_id") if candidates else None

    async def place_details(self, place_id: str) -> dict:
        data = await self._get(
            "/details/json",
            {"place_id": place_id, "fields": DETAIL_FIELDS},
        )
        return data.get("result") or {}

    def photo_url(self, photo_reference: str) -> str:
        query = urlencode({
            "maxwidth": settings.places_photo_max_width,
            "photo_reference": photo_reference,
            "key": self.api_key,
        })
        return f"{self._base_url}/photo?{query}"

    async def lookup_hotel(self, name: str, address: str) -> PlaceInfo | None:
        """Place info for a hotel, or None if Places has no match."""
        place_id = await self.find_place_id(name, address)
        if not place_id:
            logger.info(f"No Places match for hotel {name!r}")
            return None

        details = await self.place_details(place_id)
        photos = [
            self.photo_url(p["photo_reference"])
            for p in (details.get("photos") or [])[: settings.places_max_photos]
            if p.get("photo_reference")
        ]
        reviews = [
            r["text"].strip()
            for r in details.get("reviews") or []
            if isinstance(r.get("text"), str) and r["text"].strip()
        ]
        rating = details.get("rating")

        return PlaceInfo(
            place_id=place_id,
            rating=float(rating) if rating is not None else None,
            photos=photos,
            amenities=map_amenities(details.get("types")),
            reviews=reviews,
        )

    async def close(self):
        if self._client and self._owns_client:
            await self._client.aclose()
        self._client = None


places_client = PlacesClient()
