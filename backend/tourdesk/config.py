from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Biblio-Globus tour operator
    biblio_globus_login: str = ""
    biblio_globus_password: str = ""
    biblio_globus_auth_url: str = "https://login.bgoperator.ru/auth"
    biblio_globus_export_url: str = "http://export.bgoperator.ru"
    upstream_timeout_seconds: float = 30.0
    serialize_session_calls: bool = True

    # Search policy
    default_departure_city: str = "Москва"
    price_list_limit: int = 3
    max_search_results: int = 25
    adult_age_bands: str = "14-99,12+"

    # Google Places
    google_places_api_key: str = ""
    google_places_base_url: str = "https://maps.googleapis.com/maps/api/place"
    places_timeout_seconds: float = 15.0
    places_max_concurrency: int = 5
    places_photo_max_width: int = 800
    places_max_photos: int = 5

    # LLM providers
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-5-20250929"

    # Caching
    cache_backend: str = "memory"  # "memory" | "redis"
    redis_url: str = "redis://localhost:6379/0"
    search_cache_ttl: int = 5 * 60
    enrichment_cache_ttl: int = 10 * 60
    reference_cache_ttl: int = 24 * 60 * 60
    cache_max_entries: int = 100

    # Logging
    log_level: str = "INFO"
    log_dir: str = "logs"

    @property
    def adult_age_band_list(self) -> list[str]:
        return [band.strip() for band in self.adult_age_bands.split(",") if band.strip()]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
