"""
Background loop that drives the site and social schedulers.

``PublishingScheduler`` runs as an asyncio background task.  Each cycle it:

1. Recalculates site slots for newly approved drafts.
2. Publishes drafts whose ``scheduled_at`` has arrived.
3. Runs the social auto-scheduler.
4. Every ``recovery_interval_cycles`` cycles, recovers social shares stuck
   in ``sharing`` after a crash.

Each step is isolated: a failure in one is logged and does not skip the
others.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from src.exceptions import OperationInProgressError
from src.scheduling.site_scheduler import SiteAutoScheduler
from src.scheduling.social_scheduler import SocialAutoScheduler
from src.utils import utc_now

logger = logging.getLogger(__name__)


class PublishingScheduler:
    """Periodic driver for :class:`SiteAutoScheduler` and
    :class:`SocialAutoScheduler`.

    Args:
        site: Site auto-scheduler (slot assignment and due publishing).
        social: Social auto-scheduler.
        check_interval_seconds: Seconds between cycles.
        recovery_interval_cycles: Run stuck-share recovery every N cycles.
    """

    def __init__(
        self,
        site: SiteAutoScheduler,
        social: SocialAutoScheduler,
        check_interval_seconds: int = 60,
        recovery_interval_cycles: int = 10,
    ) -> None:
        self.site = site
        self.social = social
        self.check_interval_seconds = check_interval_seconds
        self.recovery_interval_cycles = recovery_interval_cycles
        self._running: bool = False
        self._cycle_count: int = 0

    @property
    def cycle_count(self) -> int:
        return self._cycle_count

    @property
    def running(self) -> bool:
        return self._running

    # ================================================================
    # LIFECYCLE
    # ================================================================

    async def start(self) -> None:
        """Run cycles until :meth:`stop` is called or the task is cancelled."""
        self._running = True
        self._cycle_count = 0
        logger.info(
            "[SCHEDULER] Publishing scheduler started (interval=%ds)",
            self.check_interval_seconds,
        )

        while self._running:
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                logger.info("[SCHEDULER] Publishing scheduler cancelled")
                break

            try:
                await asyncio.sleep(self.check_interval_seconds)
            except asyncio.CancelledError:
                logger.info("[SCHEDULER] Publishing scheduler sleep cancelled")
                break

        logger.info("[SCHEDULER] Publishing scheduler stopped")

    async def stop(self) -> None:
        """Ask the loop to exit after the current cycle."""
        self._running = False
        logger.info("[SCHEDULER] Publishing scheduler stop requested")

    # ================================================================
    # CYCLE
    # ================================================================

    async def run_cycle(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Run one scheduling cycle and return each step's result.

        A step that raised is reported as ``None``.
        """
        now = now or utc_now()
        self._cycle_count += 1
        results: Dict[str, Any] = {
            "recalculate": await self._step("recalculate", self.site.recalculate, now),
            "publish_due": await self._step("publish_due", self.site.publish_due, now),
            "social": await self._step("social", self.social.execute, now),
        }
        if self._cycle_count % self.recovery_interval_cycles == 0:
            logger.debug("[SCHEDULER] Running stuck-share recovery check")
            results["recovered"] = await self._step(
                "recover_stuck", self.social.recover_stuck, now
            )
        return results

    async def _step(
        self, name: str, func: Callable[[datetime], Awaitable[Any]], now: datetime
    ) -> Any:
        try:
            return await func(now)
        except OperationInProgressError as e:
            logger.info("[SCHEDULER] Skipping %s: %s", name, e)
        except Exception:
            logger.exception("[SCHEDULER] Unexpected error in %s step", name)
        return None


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "PublishingScheduler",
]
