#!/usr/bin/env python3
"""
Dedicated scheduler worker.

Runs the email sync and visit SLA jobs outside the API process. Deploy the
API with RUN_SCHEDULER=false when this worker is running, otherwise every
job fires twice.
"""
import asyncio

from agencyops.core.logging_config import get_logger
from agencyops.wiring import build_services

logger = get_logger("scheduler_worker")


async def main():
    logger.info("Starting dedicated scheduler worker...")
    services = build_services()
    services.scheduler.start()
    try:
        while True:
            await asyncio.sleep(3600)
    except asyncio.CancelledError:
        logger.info("Scheduler worker shutting down.")
    finally:
        await services.aclose()


if __name__ == "__main__":
    asyncio.run(main())
