"""
Site auto-scheduler: stamps approved drafts with publication slots and
publishes drafts whose slot has arrived.

``recalculate()`` fills ``scheduled_at`` on every approved, unscheduled
draft using the shared slot allocator.  ``publish_due()`` publishes the
drafts whose ``scheduled_at`` is in the past through the review state
machine, so the approval check and article creation are the same as for a
manual publish.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from typing import Any, Dict, List, Optional

from src.config import SiteScheduleConfig
from src.exceptions import EditorialError
from src.logging import ComponentLogger, LogComponent
from src.models import (
    SITE_SCHEDULE_ELIGIBLE,
    SITE_SCHEDULED,
    DraftFilter,
    DraftStatus,
    due_for_publish,
)
from src.pipeline.locks import DUE_PUBLISH, SITE_SCHEDULE, KeyedLock
from src.pipeline.review import ReviewStateMachine
from src.scheduling.slot_allocator import ScheduleSlot, allocate
from src.utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)


@dataclass
class SiteScheduleRun:
    """Result of :meth:`SiteAutoScheduler.recalculate`."""

    reason: str
    slots: List[ScheduleSlot] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def scheduled(self) -> int:
        return len(self.slots)


@dataclass
class DuePublishRun:
    """Result of :meth:`SiteAutoScheduler.publish_due`."""

    published: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    deferred: List[str] = field(default_factory=list)


class SiteAutoScheduler:
    """Assigns publication slots to approved drafts.

    Args:
        db: Content store with the ``SupabaseDB`` draft API.
        review: Review state machine (used for publishing and its mutex).
        locks: Shared single-flight lock service.
        config: Site schedule settings.
        tz: Timezone the publishing window is expressed in.
    """

    MAX_BATCH = 50
    MAX_DUE_PER_RUN = 10
    MAX_OCCUPIED = 500

    def __init__(
        self,
        db: Any,
        review: ReviewStateMachine,
        locks: KeyedLock,
        config: SiteScheduleConfig,
        tz: tzinfo,
    ) -> None:
        self.db = db
        self.review = review
        self.locks = locks
        self.config = config
        self.tz = tz
        self.log = ComponentLogger(LogComponent.SITE_SCHEDULER)

    # ================================================================
    # SLOT ASSIGNMENT
    # ================================================================

    async def recalculate(self, now: Optional[datetime] = None) -> SiteScheduleRun:
        """Stamp every eligible draft with its next slot.

        Raises:
            OperationInProgressError: If another recalculation is running.
        """
        if not self.config.enabled:
            return SiteScheduleRun(reason="disabled")
        now = now or utc_now()

        async with self.locks.guard(SITE_SCHEDULE, "site_scheduler"):
            drafts = await self.db.list_drafts(
                SITE_SCHEDULE_ELIGIBLE,
                order_by="created_at",
                desc=False,
                limit=self.MAX_BATCH,
            )
            # Failed publishes wait for an edit or re-approval.
            blocked = [d.id for d in drafts if d.publish_error]
            drafts = [d for d in drafts if not d.publish_error]
            if not drafts:
                return SiteScheduleRun(reason="no_candidates", skipped=blocked)

            assignments = allocate(
                [d.id for d in drafts],
                now,
                self.config.interval_minutes,
                self.config.start_hour,
                self.config.end_hour,
                self.config.max_per_day,
                self.tz,
                occupied=await self._occupied_slots(now),
            )

            run = SiteScheduleRun(reason="scheduled", skipped=blocked)
            for draft_id, slot_time in assignments.items():
                async with self.review.mutex.hold(draft_id):
                    draft = await self.db.get_draft(draft_id)
                    # Re-check: a human may have scheduled or rejected it meanwhile.
                    if (
                        draft is None
                        or not SITE_SCHEDULE_ELIGIBLE.matches(draft)
                        or draft.publish_error
                    ):
                        run.skipped.append(draft_id)
                        continue
                    draft.scheduled_at = slot_time
                    await self.db.update_draft(draft)
                run.slots.append(ScheduleSlot(draft_id, slot_time))

        logger.info(
            "[SCHEDULER] Site schedule recalculated: %d scheduled, %d skipped",
            run.scheduled,
            len(run.skipped),
        )
        await self.log.info(
            "Site schedule recalculated",
            data={"scheduled": run.scheduled, "skipped": len(run.skipped)},
        )
        return run

    async def _occupied_slots(self, now: datetime) -> List[datetime]:
        """Slots from today on that earlier runs or publishes already used."""
        local = ensure_utc(now).astimezone(self.tz)
        day_start = local.replace(hour=0, minute=0, second=0, microsecond=0)
        scheduled = await self.db.list_drafts(
            SITE_SCHEDULED,
            order_by="scheduled_at",
            desc=False,
            limit=self.MAX_OCCUPIED,
        )
        published = await self.db.list_drafts(
            DraftFilter(statuses=(DraftStatus.PUBLISHED,), published_after=day_start),
            order_by="published_at",
            desc=True,
            limit=self.MAX_OCCUPIED,
        )
        taken = [d.scheduled_at for d in scheduled if d.scheduled_at >= day_start]
        taken.extend(d.published_at for d in published)
        return taken

    # ================================================================
    # DUE PUBLISHING
    # ================================================================

    async def publish_due(self, now: Optional[datetime] = None) -> DuePublishRun:
        """Publish drafts whose ``scheduled_at`` has arrived.

        A domain error (e.g. title too short) is recorded on the draft and
        its schedule cleared so it is not retried every cycle.  Unexpected
        errors leave the draft scheduled for the next cycle.
        """
        now = now or utc_now()
        run = DuePublishRun()

        async with self.locks.guard(DUE_PUBLISH, "due_publisher"):
            due = await self.db.list_drafts(
                due_for_publish(now),
                order_by="scheduled_at",
                desc=False,
                limit=self.MAX_DUE_PER_RUN,
            )
            for draft in due:
                try:
                    await self.review.publish(draft.id, now=now)
                    run.published.append(draft.id)
                except EditorialError as e:
                    run.failed[draft.id] = str(e)
                    await self._record_failure(draft.id, str(e))
                except Exception:
                    logger.exception(
                        "[SCHEDULER] Unexpected error publishing %s, will retry", draft.id
                    )
                    run.deferred.append(draft.id)

        if due:
            logger.info(
                "[SCHEDULER] Due publish: %d published, %d failed, %d deferred",
                len(run.published), len(run.failed), len(run.deferred),
            )
        return run

    async def _record_failure(self, draft_id: str, error: str) -> None:
        async with self.review.mutex.hold(draft_id):
            draft = await self.db.get_draft(draft_id)
            if draft is None:
                return
            draft.publish_error = error
            draft.scheduled_at = None
            await self.db.update_draft(draft)
        await self.log.error(
            "Scheduled publish failed", draft_id=draft_id, data={"error": error}
        )


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "SiteScheduleRun",
    "DuePublishRun",
    "SiteAutoScheduler",
]
