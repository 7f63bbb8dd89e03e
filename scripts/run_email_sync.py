#!/usr/bin/env python3
"""
Run one email sync pass now, outside the schedule.

Usage:
    python scripts/run_email_sync.py
"""
import asyncio

from agencyops.core.logging_config import get_logger
from agencyops.services.email_sync import trigger_manual_sync
from agencyops.wiring import build_services

logger = get_logger("run_email_sync")


async def main():
    services = build_services()
    try:
        summary = await trigger_manual_sync(services.storage, services.graph)
    finally:
        await services.aclose()

    for result in summary.results:
        if not result.success:
            logger.warning("User not synced", user_id=result.user_id, reason=result.reason)
    logger.info(
        "Done",
        users_synced=f"{summary.users_succeeded}/{summary.users_attempted}",
        new_emails=summary.new_emails,
    )


if __name__ == "__main__":
    asyncio.run(main())
