"""CLI job: discover businesses, research them and write a CSV of leads."""

import argparse
import asyncio
import logging
from typing import List, Optional, Sequence

from leadfinder.app import build_engine
from leadfinder.core.config import get_settings
from leadfinder.core.engine import ReconciliationEngine
from leadfinder.core.errors import ConfigMissing, DiscoveryFailed
from leadfinder.etl.export import write_csv
from leadfinder.models import Candidate, DiscoveryQuery, EnrichmentState, SearchArea

logger = logging.getLogger(__name__)


async def run_search_job(
    engine: ReconciliationEngine,
    query: DiscoveryQuery,
    *,
    research: bool = True,
) -> List[Candidate]:
    """Discover, then research every new candidate, and return the final snapshot.

    Streaming discovery starts research as each business arrives; batch
    discovery researches everything once the batch is in.
    """
    streaming = query.area is None and engine.settings.discovery_mode == "stream" and engine.stream_source is not None
    admitted = 0
    async for candidate in engine.discover(query, auto_enrich=research and streaming):
        admitted += 1
        logger.info("Discovered %s (%s)", candidate.discovery_name, candidate.best_website or candidate.place_id)
    logger.info("Discovery admitted %d candidates", admitted)

    if research:
        await engine.research_all(wait=False)
        await engine.drain()

    snapshot = engine.snapshot()
    failed = sum(1 for c in snapshot if c.enrichment_state is EnrichmentState.FAILED)
    logger.info("Completed run: candidates=%d failed_research=%d", len(snapshot), failed)
    return snapshot


def _parse_floats(raw: str, count: int, label: str) -> List[float]:
    parts = [part.strip() for part in raw.split(",")]
    if len(parts) != count:
        raise argparse.ArgumentTypeError(f"{label} expects {count} comma-separated numbers")
    try:
        return [float(part) for part in parts]
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"{label} expects numbers: {raw}") from exc


def circle_arg(raw: str) -> SearchArea:
    lat, lng, radius = _parse_floats(raw, 3, "--circle")
    try:
        return SearchArea.circle(lat, lng, radius)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def rectangle_arg(raw: str) -> SearchArea:
    return SearchArea.rectangle(*_parse_floats(raw, 4, "--rectangle"))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Discover and research business leads")
    where = parser.add_mutually_exclusive_group(required=True)
    where.add_argument("--location", dest="location", help="Free-text location, e.g. 'Austin, TX'")
    where.add_argument("--circle", dest="area", type=circle_arg, help="lat,lng,radius_m")
    where.add_argument("--rectangle", dest="area", type=rectangle_arg, help="low_lat,low_lng,high_lat,high_lng")
    parser.add_argument("--type", dest="business_type", required=True, help="Business type to search")
    parser.add_argument(
        "--results",
        dest="results",
        default="10",
        help="Number of results or 'all'; both are capped at MAX_RESULTS_ALL",
    )
    parser.add_argument("--no-research", dest="research", action="store_false", help="Skip the research pass")
    parser.add_argument(
        "--output",
        dest="output",
        default=get_settings().default_output or "business_leads.csv",
        help="CSV file to write",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        query = DiscoveryQuery(
            business_type=args.business_type,
            location=args.location,
            area=args.area,
            results=args.results,
        )
    except ValueError as exc:
        parser.error(str(exc))

    try:
        engine = build_engine()
        candidates = asyncio.run(run_search_job(engine, query, research=args.research))
    except ConfigMissing as exc:
        logger.error("Configuration error: %s", exc)
        raise SystemExit(2) from exc
    except DiscoveryFailed as exc:
        logger.error("An error occurred during discovery: %s", exc)
        raise SystemExit(2 if isinstance(exc.__cause__, ConfigMissing) else 1) from exc

    if not candidates:
        logger.warning("No businesses found for %s in %s.", query.business_type, query.area_label)
        return
    write_csv(candidates, args.output)


if __name__ == "__main__":
    main()
