"""Tests for tour package recommendations."""

from datetime import date
from unittest.mock import AsyncMock

import pytest

from tourdesk.errors import NarrativeGenerationError
from tourdesk.schemas.recommendation import RecommendationRequest
from tourdesk.schemas.tour import EnrichedTour, HotelSummary, PlaceInfo, SearchOutcome, Tour
from tourdesk.services.recommender import TourRecommender


def make_tour(tour_id: str, price: int, stars: int = 4) -> Tour:
    return Tour(
        id=tour_id,
        country="Турция",
        city="Анталья",
        departure_date=date(2024, 9, 12),
        return_date=date(2024, 9, 19),
        price=price,
        hotel=HotelSummary(name=f"Hotel {tour_id}", address="Анталья, Турция", stars=stars),
        image_url=f"https://picsum.photos/seed/{tour_id}/600/400",
    )


TOURS = [
    make_tour("T1", 90000, stars=5),
    make_tour("T2", 60000, stars=3),
    make_tour("T3", 150000, stars=5),
    make_tour("T4", 70000, stars=4),
]

RATINGS = {"T1": 4.2, "T2": 4.8, "T4": None}


class FakeEnrichment:
    def __init__(self):
        self.batches: list[list[str]] = []

    async def enrich(self, tours):
        self.batches.append([t.id for t in tours])
        enriched = []
        for tour in tours:
            rating = RATINGS.get(tour.id)
            info = PlaceInfo(rating=rating) if rating is not None else None
            enriched.append(EnrichedTour.from_tour(tour, place_info=info))
        return enriched


def make_search(outcome: SearchOutcome):
    search = AsyncMock()
    search.search.return_value = outcome
    return search


def make_llm(picks: dict | None = None, error: Exception | None = None):
    llm = AsyncMock()
    if error:
        llm.complete_structured.side_effect = error
    else:
        async def answer(system, payload, schema, **kwargs):
            return schema.model_validate(picks)

        llm.complete_structured.side_effect = answer
    return llm


def request(**overrides) -> RecommendationRequest:
    data = {
        "budget": 200000,
        "interests": "beaches",
        "travel_style": "relaxed",
        "country": "Турция",
        "departure_date": date(2024, 9, 10),
        "duration": 10,
        "travelers": 2,
    }
    data.update(overrides)
    return RecommendationRequest(**data)


@pytest.mark.asyncio
async def test_llm_picks_are_mapped_to_candidates():
    enrichment = FakeEnrichment()
    llm = make_llm({
        "recommendations": [
            {"tour_id": "T2", "title": "Budget beach week", "description": "Top rated and cheap."},
            {"tour_id": "T9", "title": "Ghost", "description": "Not a candidate."},
        ],
        "summary": "One great fit.",
    })
    recommender = TourRecommender(make_search(SearchOutcome(tours=TOURS)), enrichment, llm)

    result = await recommender.recommend(request())

    assert result.source == "llm"
    assert [r.tour.id for r in result.recommendations] == ["T2"]
    assert result.recommendations[0].title == "Budget beach week"
    assert result.recommendations[0].tour.place_info.rating == 4.8
    assert result.summary == "One great fit."
    assert result.search_status == "ok"

    payload = llm.complete_structured.await_args.args[1]
    assert [c["id"] for c in payload["candidates"]] == ["T2", "T4", "T1"]
    assert payload["preferences"]["interests"] == "beaches"


@pytest.mark.asyncio
async def test_budget_covers_all_travelers():
    enrichment = FakeEnrichment()
    recommender = TourRecommender(
        make_search(SearchOutcome(tours=TOURS)),
        enrichment,
        make_llm(error=NarrativeGenerationError("down")),
    )
    await recommender.recommend(request(budget=150000))
    assert enrichment.batches == [["T2", "T4"]]


@pytest.mark.asyncio
async def test_fallback_ranks_by_rating_then_stars():
    recommender = TourRecommender(
        make_search(SearchOutcome(tours=TOURS)),
        FakeEnrichment(),
        make_llm(error=NarrativeGenerationError("All LLM providers failed")),
    )

    result = await recommender.recommend(request())

    assert result.source == "fallback"
    assert [r.tour.id for r in result.recommendations] == ["T2", "T1", "T4"]
    assert result.recommendations[0].title == "Hotel T2 3*"
    assert "Rated 4.8" in result.recommendations[0].description
    assert "7 nights" in result.recommendations[0].description


@pytest.mark.asyncio
async def test_llm_with_no_known_picks_falls_back():
    llm = make_llm({"recommendations": [{"tour_id": "nope", "title": "x", "description": "y"}]})
    recommender = TourRecommender(make_search(SearchOutcome(tours=TOURS)), FakeEnrichment(), llm)

    result = await recommender.recommend(request())
    assert result.source == "fallback"


@pytest.mark.asyncio
async def test_nothing_affordable_skips_enrichment():
    enrichment = FakeEnrichment()
    llm = make_llm(error=NarrativeGenerationError("unused"))
    recommender = TourRecommender(make_search(SearchOutcome(tours=TOURS)), enrichment, llm)

    result = await recommender.recommend(request(budget=1000))

    assert result.recommendations == []
    assert "budget" in result.summary
    assert enrichment.batches == []
    llm.complete_structured.assert_not_awaited()


@pytest.mark.asyncio
async def test_degraded_search_is_reported():
    recommender = TourRecommender(
        make_search(SearchOutcome(status="degraded", error="HTTP 500")),
        FakeEnrichment(),
        make_llm(error=NarrativeGenerationError("unused")),
    )
    result = await recommender.recommend(request())
    assert result.search_status == "degraded"
    assert result.recommendations == []


@pytest.mark.asyncio
async def test_search_window_spans_duration():
    search = make_search(SearchOutcome())
    recommender = TourRecommender(search, FakeEnrichment(), make_llm(error=RuntimeError()))

    await recommender.recommend(request(departure_date=date(2024, 9, 10), duration=10, travelers=3))

    criteria = search.search.await_args.args[0]
    assert criteria.country == "Турция"
    assert criteria.date_from == date(2024, 9, 10)
    assert criteria.date_to == date(2024, 9, 20)
    assert criteria.travelers == 3
