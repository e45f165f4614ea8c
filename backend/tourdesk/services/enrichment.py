"""Enrichment orchestrator — concurrent per-tour hotel enrichment with failure isolation."""

import asyncio
import logging

from tourdesk.config import settings
from tourdesk.errors import EnrichmentItemError
from tourdesk.schemas.tour import EnrichedTour, HotelSummary, PlaceInfo, Tour
from tourdesk.services.cache_service import TTLCache
from tourdesk.services.places_client import PlacesClient, places_client
from tourdesk.services.review_summarizer import ReviewSummarizer, review_summarizer

logger = logging.getLogger(__name__)


def make_enrichment_cache(**options) -> TTLCache[PlaceInfo]:
    return TTLCache(
        "enrichment",
        settings.enrichment_cache_ttl,
        **options,
        encode=lambda info: info.model_dump(mode="json"),
        decode=PlaceInfo.model_validate,
    )


def hotel_cache_payload(hotel: HotelSummary) -> dict:
    return {"name": hotel.name.strip(), "address": hotel.address.strip()}


class EnrichmentOrchestrator:
    """Attaches Places data and a review summary to each tour in a batch.

    Every tour is enriched in its own task; the batch waits for all of them and
    a failed item comes back as the plain tour.
    """

    def __init__(
        self,
        places: PlacesClient | None = None,
        summarizer: ReviewSummarizer | None = None,
        cache: TTLCache[PlaceInfo] | None = None,
        *,
        summarize_reviews: bool = True,
    ):
        self._places = places or places_client
        self._summarizer = summarizer or review_summarizer
        self.cache = cache or make_enrichment_cache()
        self._summarize_reviews = summarize_reviews

    async def enrich(self, tours: list[Tour]) -> list[EnrichedTour]:
        if not tours:
            return []

        # Fail the whole batch on a missing key
        _ = self._places.api_key

        results = await asyncio.gather(
            *(self.enrich_one(tour) for tour in tours),
            return_exceptions=True,
        )

        enriched: list[EnrichedTour] = []
        failures = 0
        for tour, result in zip(tours, results):
            if isinstance(result, BaseException):
                failures += 1
                logger.warning(str(EnrichmentItemError(tour.id, result)))
                enriched.append(EnrichedTour.from_tour(tour))
            else:
                enriched.append(result)

        if failures:
            logger.info(f"Enriched {len(tours) - failures}/{len(tours)} tours, {failures} failed")
        return enriched

    async def enrich_one(self, tour: Tour) -> EnrichedTour:
        place_info = await self.place_info_for(tour.hotel)
        if place_info is None:
            return EnrichedTour.from_tour(tour)

        summary = None
        if place_info.reviews and self._summarize_reviews:
            try:
                summary = await self._summarizer.summarize(tour.hotel.name, place_info.reviews)
            except Exception as e:
                logger.warning(f"Review summary failed for {tour.hotel.name!r}: {e}")

        return EnrichedTour.from_tour(tour, place_info=place_info, review_summary=summary)

    async def place_info_for(self, hotel: HotelSummary) -> PlaceInfo | None:
        key = self.cache.key_for(hotel_cache_payload(hotel))
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        place_info = await self._places.lookup_hotel(hotel.name, hotel.address)
        if place_info is not None:
            await self.cache.set(key, place_info)
        return place_info


enrichment_orchestrator = EnrichmentOrchestrator()
