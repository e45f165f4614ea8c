"""Tour recommender — client preferences to a short, explained list of tour packages.

Search and enrichment run first; one LLM call then picks and describes the
packages. Falls back to rule-based picks (best rated, then cheapest) when the
LLM is unavailable or answers with nothing usable.
"""

import logging
from datetime import timedelta

from pydantic import BaseModel, Field

from tourdesk.errors import NarrativeGenerationError
from tourdesk.prompts import load_prompt
from tourdesk.schemas.recommendation import (
    RecommendationRequest,
    RecommendationResult,
    TourRecommendation,
)
from tourdesk.schemas.tour import EnrichedTour, SearchCriteria
from tourdesk.services.enrichment import EnrichmentOrchestrator, enrichment_orchestrator
from tourdesk.services.llm_client import LLMClient, llm_client
from tourdesk.services.search_orchestrator import TourSearchOrchestrator, tour_search_orchestrator

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = load_prompt("tour_recommendation.md")


class _Pick(BaseModel):
    tour_id: str
    title: str
    description: str


class _Picks(BaseModel):
    recommendations: list[_Pick] = Field(default_factory=list)
    summary: str = ""


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."


class TourRecommender:
    def __init__(
        self,
        search: TourSearchOrchestrator | None = None,
        enrichment: EnrichmentOrchestrator | None = None,
        llm: LLMClient | None = None,
        *,
        max_candidates: int = 8,
        max_picks: int = 3,
    ):
        self._search = search or tour_search_orchestrator
        self._enrichment = enrichment or enrichment_orchestrator
        self._llm = llm or llm_client
        self.max_candidates = max_candidates
        self.max_picks = max_picks

    async def recommend(self, request: RecommendationRequest) -> RecommendationResult:
        outcome = await self._search.search(self._criteria_for(request))

        # Tour prices are per traveler, the budget covers the whole party
        affordable = sorted(
            (t for t in outcome.tours if t.price * request.travelers <= request.budget),
            key=lambda t: t.price,
        )[: self.max_candidates]

        if not affordable:
            return RecommendationResult(
                summary=f"No tours to {request.country} fit a budget of {request.budget:.0f}.",
                search_status=outcome.status,
            )

        candidates = await self._enrichment.enrich(affordable)

        try:
            result = await self._llm_recommend(request, candidates)
            result.search_status = outcome.status
            return result
        except Exception as e:
            logger.warning(f"LLM recommendation failed, using fallback: {e}")

        result = self._fallback_recommend(request, candidates)
        result.search_status = outcome.status
        return result

    @staticmethod
    def _criteria_for(request: RecommendationRequest) -> SearchCriteria:
        date_to = None
        if request.departure_date:
            date_to = request.departure_date + timedelta(days=request.duration)
        return SearchCriteria(
            country=request.country,
            date_from=request.departure_date,
            date_to=date_to,
            travelers=request.travelers,
        )

    # ---- LLM path ----

    async def _llm_recommend(
        self, request: RecommendationRequest, candidates: list[EnrichedTour]
    ) -> RecommendationResult:
        payload = {
            "preferences": request.model_dump(mode="json"),
            "candidates": [self._candidate_view(t) for t in candidates],
        }
        picks = await self._llm.complete_structured(
            SYSTEM_PROMPT, payload, _Picks, max_tokens=800, temperature=0.4
        )

        by_id = {t.id: t for t in candidates}
        recommendations = []
        for pick in picks.recommendations:
            tour = by_id.pop(pick.tour_id, None)
            if tour is None:
                continue
            recommendations.append(TourRecommendation(
                tour=tour,
                title=_truncate(pick.title, 80),
                description=_truncate(pick.description, 300),
            ))
            if len(recommendations) >= self.max_picks:
                break

        if not recommendations:
            raise NarrativeGenerationError("LLM picked no known tours")

        return RecommendationResult(
            recommendations=recommendations,
            summary=_truncate(picks.summary, 300),
            source="llm",
        )

    @staticmethod
    def _candidate_view(tour: EnrichedTour) -> dict:
        view = {
            "id": tour.id,
            "hotel": tour.hotel.name,
            "stars": tour.hotel.stars,
            "city": tour.city,
            "price": tour.price,
            "currency": tour.currency,
            "departure_date": tour.departure_date.isoformat(),
            "return_date": tour.return_date.isoformat(),
        }
        if tour.place_info:
            view["rating"] = tour.place_info.rating
            view["amenities"] = tour.place_info.amenities
        if tour.review_summary:
            view["review_summary"] = tour.review_summary
        return view

    # ---- Fallback ----

    def _fallback_recommend(
        self, request: RecommendationRequest, candidates: list[EnrichedTour]
    ) -> RecommendationResult:
        def rank(tour: EnrichedTour):
            rating = tour.place_info.rating if tour.place_info and tour.place_info.rating else 0
            return (-rating, -tour.hotel.stars, tour.price)

        picks = sorted(candidates, key=rank)[: self.max_picks]
        recommendations = []
        for tour in picks:
            nights = (tour.return_date - tour.departure_date).days
            description = (
                f"{nights} nights in {tour.city}, {tour.country} from "
                f"{tour.departure_date.isoformat()} at {tour.price} {tour.currency} per traveler."
            )
            if tour.place_info and tour.place_info.rating:
                description += f" Rated {tour.place_info.rating:.1f} on Google."
            stars = f" {tour.hotel.stars}*" if tour.hotel.stars else ""
            recommendations.append(TourRecommendation(
                tour=tour,
                title=f"{tour.hotel.name}{stars}",
                description=description,
            ))

        return RecommendationResult(
            recommendations=recommendations,
            summary=(
                f"{len(recommendations)} of {len(candidates)} tours to {request.country} "
                f"within budget, best rated first."
            ),
            source="fallback",
        )


tour_recommender = TourRecommender()
