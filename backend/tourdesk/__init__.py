"""tourdesk — tour operator search, caching and hotel enrichment for travel agents."""

__version__ = "0.1.0"
