"""
Run one ingestion job from the command line.

Usage:
    python scripts/run_ingestion.py energy_sieves --department 75 --since 2024-01-01
    python scripts/run_ingestion.py death_registry --since 2024-01-01 --max-files 2
    python scripts/run_ingestion.py death_registry --since 2024-01-01 --since-month 2024-01
"""

import argparse
import asyncio
import json
import signal
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from pydantic import ValidationError

from core.exceptions import FatalSourceFailure
from core.logging import setup_logging
from ingestion.context import RunContext
from ingestion.loaders.artifact_store import LocalArtifactStore
from ingestion.loaders.postgres_store import PostgresOpportunityStore
from ingestion.runner import IngestionRunner
from models.base import SourceKind
from schemas.request import IngestionRequest, SourceParams
import logging

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_PARTIAL = 1
EXIT_FATAL = 2


def parse_args(argv):
    parser = argparse.ArgumentParser(description="Run one ingestion job")
    parser.add_argument("source", choices=[kind.value for kind in SourceKind])
    parser.add_argument("--department", default=None)
    parser.add_argument("--since", required=True, help="YYYY-MM-DD")
    parser.add_argument("--until", default=None, help="YYYY-MM-DD")
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument("--energy-classes", default=None, help="Comma-separated, e.g. F,G")
    parser.add_argument("--max-files", type=int, default=None)
    parser.add_argument("--since-month", default=None, help="YYYY-MM, death registry only")
    parser.add_argument("--until-month", default=None, help="YYYY-MM, death registry only")
    return parser.parse_args(argv)


def build_request(args) -> IngestionRequest:
    filters = {}
    if args.energy_classes:
        filters["energy_classes"] = [c.strip().upper() for c in args.energy_classes.split(",") if c.strip()]
    if args.max_files:
        filters["max_files"] = args.max_files
    if args.since_month:
        filters["since_month"] = args.since_month
    if args.until_month:
        filters["until_month"] = args.until_month

    return IngestionRequest(
        source=SourceKind(args.source),
        source_params=SourceParams(
            department_or_region=args.department,
            since_date=args.since,
            until_date=args.until,
            source_specific_filters=filters,
        ),
        batch_size=args.batch_size,
    )


async def run(args) -> int:
    try:
        request = build_request(args)
    except ValidationError as e:
        logger.error(f"Invalid arguments: {e}")
        return EXIT_FATAL

    context = RunContext.create(request.source.value)
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, context.cancel)
        loop.add_signal_handler(signal.SIGTERM, context.cancel)
    except NotImplementedError:
        # Signal handlers are unavailable on some platforms
        pass

    runner = IngestionRunner(PostgresOpportunityStore(), LocalArtifactStore())
    try:
        summary = await runner.run(request, context)
    except FatalSourceFailure as e:
        logger.error(f"Ingestion failed: {e}")
        print(json.dumps({"status": "failed", "error": e.to_dict()}, indent=2, default=str))
        return EXIT_FATAL

    print(json.dumps(summary.to_dict(), indent=2))
    return EXIT_SUCCESS if summary.status == "success" else EXIT_PARTIAL


if __name__ == "__main__":
    setup_logging()
    sys.exit(asyncio.run(run(parse_args(sys.argv[1:]))))
