#!/usr/bin/env python3
"""CLI script to score clients and run alert sweeps outside the API.

Usage:
    uv run python scripts/recompute_health.py score 7d1c...-uuid
    uv run python scripts/recompute_health.py recompute --no-narrative
    uv run python scripts/recompute_health.py sweep --market SG --as-of 2026-03-15T00:00:00Z
    uv run python scripts/recompute_health.py recompute --dry-run

Connects directly to the database using DATABASE_URL from environment or .env file.
With --dry-run, scores are computed against an in-memory cache and nothing is
written back.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from datetime import datetime

# Ensure project root is on sys.path so we can import src.app
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


def _parse_as_of(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an ISO-8601 timestamp: {value}")


async def run(args: argparse.Namespace) -> int:
    """Build the services the way the API does and run one command."""
    from src.app.api.middleware.logging import configure_structlog
    from src.app.config import get_settings
    from src.app.core.database import close_db, get_session, init_db
    from src.app.health.alerts import AlertRuleEngine
    from src.app.health.cache import InMemoryScoreCache, SqlScoreCache
    from src.app.health.exceptions import HealthEngineError
    from src.app.health.narrative import NarrativeRequester
    from src.app.health.repository import OperationsRepository
    from src.app.health.schemas import Market
    from src.app.health.service import AlertService, HealthScoreService
    from src.app.services.llm import get_llm_service

    settings = get_settings()
    configure_structlog()

    repository = OperationsRepository(session_factory=get_session)
    llm_service = get_llm_service()
    narrative = NarrativeRequester(
        llm_service if llm_service.configured else None,
        narrative_max_tokens=settings.NARRATIVE_MAX_TOKENS,
        suggestions_max_tokens=settings.SUGGESTIONS_MAX_TOKENS,
    )

    try:
        if args.command == "sweep":
            service = AlertService(
                repository,
                AlertRuleEngine(
                    aggregate_overdue_deliverables=settings.ALERT_AGGREGATE_OVERDUE,
                    billing_owner=settings.ALERT_BILLING_OWNER or None,
                ),
                narrative=narrative,
            )
            market = Market(args.market) if args.market else None
            sweep = await service.sweep(market=market, as_of=args.as_of)
            print(sweep.model_dump_json(by_alias=True, indent=2))
            return 0

        if args.dry_run:
            cache = InMemoryScoreCache()
        else:
            await init_db()
            cache = SqlScoreCache(session_factory=get_session)

        health_service = HealthScoreService(
            repository,
            cache,
            narrative=narrative,
            concurrency=settings.HEALTH_RECOMPUTE_CONCURRENCY,
        )

        if args.command == "score":
            try:
                result = await health_service.compute_client_health(
                    args.client_id,
                    as_of=args.as_of,
                    include_narrative=not args.no_narrative,
                )
            except HealthEngineError as exc:
                print(f"Error: {exc}", file=sys.stderr)
                return 1
            print(result.model_dump_json(by_alias=True, indent=2))
            return 0

        summary = await health_service.compute_all(
            as_of=args.as_of,
            include_narrative=not args.no_narrative,
        )
        print(summary.model_dump_json(by_alias=True, indent=2))
        return 1 if summary.failed else 0
    finally:
        await close_db()


def main() -> None:
    parser = argparse.ArgumentParser(description="Score client health and run alert sweeps")
    parser.add_argument(
        "--as-of",
        type=_parse_as_of,
        default=None,
        help="Evaluate as of this ISO-8601 instant (default: now, UTC)",
    )
    parser.add_argument(
        "--no-narrative",
        action="store_true",
        help="Skip narrative generation",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Use an in-memory score cache instead of the database",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    score = subparsers.add_parser("score", help="Score one client")
    score.add_argument("client_id", help="Client id (UUID)")

    subparsers.add_parser("recompute", help="Recompute every Active client")

    sweep = subparsers.add_parser("sweep", help="Run the alert rules")
    sweep.add_argument("--market", choices=["SG", "ID", "US"], default=None)

    args = parser.parse_args()
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
