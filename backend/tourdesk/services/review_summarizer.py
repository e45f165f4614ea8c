"""Review summarizer — one LLM call turning raw hotel reviews into a short summary."""

import logging

from tourdesk.config import settings
from tourdesk.prompts import load_prompt
from tourdesk.schemas.tour import ReviewSummary
from tourdesk.services.cache_service import TTLCache
from tourdesk.services.llm_client import LLMClient, llm_client

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = load_prompt("review_summary.md")

MAX_REVIEWS = 10


class ReviewSummarizer:
    """Summarizes Google Places reviews. Results are cached like enrichment data."""

    def __init__(self, llm: LLMClient | None = None, cache: TTLCache[str] | None = None):
        self._llm = llm or llm_client
        self.cache = cache or TTLCache("review_summaries", settings.enrichment_cache_ttl)

    async def summarize(self, hotel_name: str, reviews: list[str]) -> str | None:
        """Summary text, or None when there is nothing to summarize.

        Provider failures propagate as NarrativeGenerationError.
        """
        reviews = [r for r in reviews if r and r.strip()][:MAX_REVIEWS]
        if not reviews:
            return None

        key = self.cache.key_for({"hotel_name": hotel_name, "reviews": reviews})
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        result = await self._llm.complete_structured(
            SYSTEM_PROMPT,
            {"hotel_name": hotel_name, "hotel_reviews": reviews},
            ReviewSummary,
            max_tokens=400,
        )
        await self.cache.set(key, result.summary)
        logger.info(f"Summarized {len(reviews)} reviews for {hotel_name!r}")
        return result.summary


review_summarizer = ReviewSummarizer()
