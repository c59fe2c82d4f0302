"""
Entry point: run the editorial background scheduler.

Publishes due drafts, assigns site slots and shares published articles to
the social channel until interrupted.

Usage::

    python run.py
"""

import asyncio
import logging
import sys

from dotenv import load_dotenv

load_dotenv()

from src.config import get_settings, validate_env  # noqa: E402
from src.exceptions import ConfigurationError  # noqa: E402

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)-8s %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("run")


async def main() -> None:
    from src.pipeline.factory import create_pipeline

    pipeline = await create_pipeline(settings)
    logger.info(
        "Scheduler starting: site=%s social=%s tz=%s",
        settings.site_schedule.enabled,
        settings.social_schedule.enabled,
        settings.timezone,
    )
    try:
        await pipeline.loop.start()
    finally:
        await pipeline.shutdown()


if __name__ == "__main__":
    try:
        validate_env(strict=True)
    except ConfigurationError as e:
        logger.error("%s", e)
        sys.exit(1)
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
