"""
Trust Radar — Operator Recompute Script

Recomputes the risk and/or trust record of one subject immediately, for
support cases where waiting for the next sweep is not acceptable. Can also
run one scheduled job by name.

Usage:
    python scripts/recompute_subject.py --subject-id user-123
    python scripts/recompute_subject.py --subject-id user-123 --kind trust
    python scripts/recompute_subject.py --job ranking_generation
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Resolve project root so this script can be run from any working directory
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src"))

from trust_radar.components import build_components
from trust_radar.config import settings
from trust_radar.sources.http import BusinessViewsClient

VALID_KINDS = ("risk", "trust", "both")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Recompute Trust Radar scores for one subject, or run one job.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/recompute_subject.py --subject-id user-123
  python scripts/recompute_subject.py --subject-id user-123 --kind risk
  python scripts/recompute_subject.py --job trust_sweep
""",
    )
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument(
        "--subject-id",
        type=str,
        help="Subject whose score records should be recomputed.",
    )
    target.add_argument(
        "--job",
        type=str,
        help="Run one registered job now (risk_sweep, trust_sweep, ranking_generation, ...).",
    )
    parser.add_argument(
        "--kind",
        type=str,
        default="both",
        choices=VALID_KINDS,
        help="Which record to recompute: risk | trust | both (default: both).",
    )
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    engine = create_async_engine(settings.DATABASE_URL, echo=False)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    try:
        async with BusinessViewsClient() as views:
            components = build_components(session_factory, views, views)

            if args.job:
                report = await components.registry.run(args.job)
                print(f"Job {args.job}: status={report.status.value} processed={report.processed} failed={report.failed}")
                return 0 if report.status.value != "failed" else 1

            if args.kind in ("risk", "both"):
                risk = await components.risk.recompute(args.subject_id)
                print(f"  risk.score         = {risk.score}")
                print(f"  risk.level         = {risk.level}")
            if args.kind in ("trust", "both"):
                trust = await components.trust.recompute(args.subject_id)
                if trust is None:
                    print("  trust              = no KPI data for this subject")
                else:
                    print(f"  trust.score        = {trust.score}")
                    print(f"  trust.tier         = {trust.tier}")
                    print(f"  trust.subscores    = {trust.subscores}")
            await components.emitter.drain()
    finally:
        await engine.dispose()
    return 0


async def main() -> None:
    args = parse_args()
    if args.subject_id:
        print(f"Recomputing {args.kind} for subject {args.subject_id}")

    try:
        code = await run(args)
    except KeyError as e:
        print(f"Unknown job: {e}", file=sys.stderr)
        sys.exit(2)
    except Exception as e:
        print(f"Recompute failed: {e}", file=sys.stderr)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    asyncio.run(main())
