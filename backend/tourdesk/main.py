"""Command-line entry point — search, enrich and recommend tours from a terminal."""

import argparse
import asyncio
import json
import logging
import sys
from datetime import date
from logging.handlers import RotatingFileHandler
from pathlib import Path

from tourdesk.config import settings
from tourdesk.errors import AuthProtocolError, ConfigurationError

logger = logging.getLogger(__name__)


def configure_logging(level: str | None = None, log_dir: str | None = None) -> None:
    """Console + rotating file logging, noisy HTTP libraries quieted."""
    directory = Path(log_dir or settings.log_dir)
    directory.mkdir(parents=True, exist_ok=True)

    log_level = getattr(logging, (level or settings.log_level).upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stderr),
            RotatingFileHandler(
                directory / "tourdesk.log",
                maxBytes=10 * 1024 * 1024,  # 10 MB
                backupCount=5,
                encoding="utf-8",
            ),
        ],
    )

    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tourdesk", description="Biblio-Globus tour search")
    parser.add_argument("--log-level", default=None)
    sub = parser.add_subparsers(dest="command", required=True)

    for name in ("search", "enrich"):
        p = sub.add_parser(name, help=f"{name} tours for a country")
        p.add_argument("country")
        p.add_argument("--date-from", type=date.fromisoformat)
        p.add_argument("--date-to", type=date.fromisoformat)
        p.add_argument("--travelers", type=int, default=2)
        p.add_argument("--stars")
        p.add_argument("--meal-type")

    rec = sub.add_parser("recommend", help="recommend tour packages")
    rec.add_argument("country")
    rec.add_argument("--budget", type=float, required=True)
    rec.add_argument("--interests", default="")
    rec.add_argument("--travel-style", default="")
    rec.add_argument("--departure-date", type=date.fromisoformat)
    rec.add_argument("--duration", type=int, default=7)
    rec.add_argument("--travelers", type=int, default=2)
    return parser


async def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    # Imported late so settings and logging are in place first
    from tourdesk.schemas.recommendation import RecommendationRequest
    from tourdesk.schemas.tour import SearchCriteria
    from tourdesk.services.enrichment import enrichment_orchestrator
    from tourdesk.services.places_client import places_client
    from tourdesk.services.recommender import tour_recommender
    from tourdesk.services.search_orchestrator import tour_search_orchestrator

    try:
        if args.command == "recommend":
            result = await tour_recommender.recommend(RecommendationRequest(
                budget=args.budget,
                interests=args.interests,
                travel_style=args.travel_style,
                country=args.country,
                departure_date=args.departure_date,
                duration=args.duration,
                travelers=args.travelers,
            ))
            output = result.model_dump(mode="json")
        else:
            criteria = SearchCriteria(
                country=args.country,
                date_from=args.date_from,
                date_to=args.date_to,
                travelers=args.travelers,
                stars=args.stars,
                meal_type=args.meal_type,
            )
            outcome = await tour_search_orchestrator.search(criteria)
            output = outcome.model_dump(mode="json")
            if args.command == "enrich":
                enriched = await enrichment_orchestrator.enrich(outcome.tours)
                output["tours"] = [t.model_dump(mode="json") for t in enriched]
    except (ConfigurationError, AuthProtocolError) as e:
        logger.error(str(e))
        return 2
    finally:
        await tour_search_orchestrator.close()
        await places_client.close()

    print(json.dumps(output, ensure_ascii=False, indent=2))
    return 0


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
