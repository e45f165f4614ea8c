from datetime import date
from typing import Literal

from pydantic import BaseModel, Field

from tourdesk.schemas.tour import EnrichedTour


class RecommendationRequest(BaseModel):
    budget: float = Field(gt=0)
    interests: str = ""
    travel_style: str = ""
    country: str = Field(min_length=1)
    departure_city: str | None = None
    departure_date: date | None = None
    duration: int = Field(default=7, ge=1)
    travelers: int = Field(default=2, ge=1)


class TourRecommendation(BaseModel):
    tour: EnrichedTour
    title: str
    description: str


class RecommendationResult(BaseModel):
    recommendations: list[TourRecommendation] = Field(default_factory=list)
    summary: str = ""
    source: Literal["llm", "fallback"] = "fallback"
    search_status: str = "ok"
