from datetime import date
from typing import Literal

from pydantic import BaseModel, Field, model_validator


class SearchCriteria(BaseModel):
    country: str = Field(min_length=1)
    date_from: date | None = None
    date_to: date | None = None
    travelers: int = Field(default=2, ge=1)
    stars: str | None = None
    meal_type: str | None = None

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_range(self) -> "SearchCriteria":
        if self.date_from and self.date_to and self.date_to < self.date_from:
            raise ValueError("date_to must not be before date_from")
        return self

    def cache_payload(self) -> dict:
        """Canonical dict used for fingerprinting. Country case is folded."""
        data = self.model_dump(mode="json")
        data["country"] = self.country.strip().casefold()
        return data


class HotelSummary(BaseModel):
    name: str
    address: str
    stars: int = 0


class Tour(BaseModel):
    id: str
    country: str
    city: str
    departure_date: date
    return_date: date
    price: int
    price_min: int | None = None
    price_max: int | None = None
    currency: str = "RUB"
    hotel: HotelSummary
    image_url: str
    image_hint: str = "hotel exterior"


class PlaceInfo(BaseModel):
    place_id: str | None = None
    rating: float | None = None
    photos: list[str] = Field(default_factory=list)
    amenities: list[str] = Field(default_factory=list)
    reviews: list[str] = Field(default_factory=list)


class ReviewSummary(BaseModel):
    summary: str = Field(min_length=1)


class EnrichedTour(Tour):
    place_info: PlaceInfo | None = None
    review_summary: str | None = None

    @classmethod
    def from_tour(cls, tour: Tour, **extra) -> "EnrichedTour":
        return cls(**{**tour.model_dump(), **extra})


SearchStatus = Literal["ok", "not_found", "degraded"]


class SearchOutcome(BaseModel):
    """Search result that keeps "nothing found" apart from "upstream degraded"."""

    tours: list[Tour] = Field(default_factory=list)
    status: SearchStatus = "ok"
    error: str | None = None
    cached: bool = False

    @property
    def degraded(self) -> bool:
        return self.status == "degraded"
