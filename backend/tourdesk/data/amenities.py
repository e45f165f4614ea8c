"""Amenity vocabulary — Google Places category tags mapped to display amenities."""

# Place type / tag -> amenity label. Tags not listed here are dropped.
PLACE_TAG_AMENITIES: dict[str, str] = {
    "restaurant": "Restaurant",
    "meal_takeaway": "Restaurant",
    "meal_delivery": "Restaurant",
    "food": "Restaurant",
    "cafe": "Cafe",
    "bar": "Bar",
    "night_club": "Bar",
    "spa": "Spa",
    "beauty_salon": "Spa",
    "gym": "Gym",
    "fitness_center": "Gym",
    "parking": "Parking",
    "swimming_pool": "Swimming pool",
    "aquarium": "Swimming pool",
    "wifi": "Free WiFi",
    "free_wifi": "Free WiFi",
    "air_conditioning": "Air conditioning",
    "casino": "Casino",
    "amusement_park": "Kids club",
    "playground": "Kids club",
    "beach": "Beach access",
    "car_rental": "Car rental",
    "airport_shuttle": "Airport shuttle",
}

DEFAULT_AMENITIES: tuple[str, ...] = ("Free WiFi", "Swimming pool", "Restaurant")


def map_amenities(tags: list[str] | None) -> list[str]:
    """Known amenities for ``tags``, deduplicated in first-seen order.

    Falls back to the default trio when nothing maps.
    """
    seen: set[str] = set()
    amenities: list[str] = []
    for tag in tags or []:
        label = PLACE_TAG_AMENITIES.get(str(tag).strip().lower())
        if label and label not in seen:
            seen.add(label)
            amenities.append(label)
    return amenities or list(DEFAULT_AMENITIES)
