#!/usr/bin/env python3
"""
Entitlement Maintenance Script

Expires lapsed credit packages and subscriptions and resets subscription
frequency counters whose reset date has passed. Every step is idempotent;
run it as a cron job (hourly is plenty) or manually.

Usage:
    python -m scripts.run_maintenance                    # Run every sweep
    python -m scripts.run_maintenance --task credits     # Credit expiry only
"""

import asyncio
import argparse
import logging

# Add parent directory to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.config.settings import settings
from app.domain.schemas import MaintenanceReport
from app.infrastructure.db.database import close_db, init_db
from app.services.engine import EntitlementEngine, get_entitlement_engine

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def run_task(engine: EntitlementEngine, task: str) -> MaintenanceReport:
    """Run one sweep, or all of them when task is 'all'."""
    if task == "all":
        return await engine.run_maintenance()

    report = MaintenanceReport()
    if task == "credits":
        report.balances_cleaned, report.credits_expired = await engine.credits.cleanup_all_expired()
    elif task == "subscriptions":
        report.subscriptions_expired = await engine.subscriptions.expire_ended_subscriptions()
        report.frequencies_reset = await engine.subscriptions.reset_due_frequencies()
    return report


async def main():
    parser = argparse.ArgumentParser(description="Run entitlement maintenance sweeps")
    parser.add_argument(
        "--task",
        choices=["all", "credits", "subscriptions"],
        default="all",
        help="Which sweep to run (default: all)"
    )
    args = parser.parse_args()

    if not settings.database_url:
        logger.error("DATABASE_URL is required; the in-memory store has nothing to maintain")
        sys.exit(1)

    await init_db()
    try:
        report = await run_task(get_entitlement_engine(), args.task)
    finally:
        await close_db()

    print("\n=== Maintenance Complete ===")
    print(f"Balances cleaned: {report.balances_cleaned}")
    print(f"Credits expired: {report.credits_expired}")
    print(f"Subscriptions expired: {report.subscriptions_expired}")
    print(f"Frequencies reset: {report.frequencies_reset}")


if __name__ == "__main__":
    asyncio.run(main())
