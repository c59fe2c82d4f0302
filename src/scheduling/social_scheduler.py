"""
Social auto-scheduler: redistributes published articles to the social
channel on its own cadence.

Eligibility is defined once, by :func:`src.models.social_share_eligible`,
and reused by the planner, the manual ``share_now`` path and the pending
counts.  Every share first claims the draft with a conditional update
(``none|error -> sharing``) so two runs can never post the same article.

Each ``execute()`` run shares the items whose planned slot has arrived;
with a fixed interval between shares this is at most one item per run.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, tzinfo
from typing import Any, Dict, List, Optional

from src.config import SocialScheduleConfig
from src.exceptions import (
    AlreadySharedError,
    ConfigurationError,
    DraftNotFoundError,
    NotPublishedError,
    ShareInProgressError,
    SocialPublishError,
)
from src.logging import ComponentLogger, LogComponent
from src.models import (
    Draft,
    DraftFilter,
    DraftStatus,
    SocialStatus,
    social_share_eligible,
    stuck_social_shares,
)
from src.pipeline.locks import SOCIAL_SCHEDULE, DraftMutex, KeyedLock
from src.scheduling.slot_allocator import ScheduleSlot, allocate, as_slots
from src.utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)

# Run reasons
DISABLED = "disabled"
NO_CANDIDATES = "no_candidates"
OUTSIDE_TIME_WINDOW = "outside_time_window"
DAILY_LIMIT_REACHED = "daily_limit_reached"
INTERVAL_NOT_REACHED = "interval_not_reached"
SHARED = "shared"

INTERRUPTED_MESSAGE = "Share interrupted before completion"


@dataclass
class SocialPlan:
    slots: List[ScheduleSlot] = field(default_factory=list)
    shared_today: int = 0
    last_shared_at: Optional[datetime] = None

    @property
    def next_slot(self) -> Optional[datetime]:
        return self.slots[0].assigned_at if self.slots else None


@dataclass
class ShareOutcome:
    draft_id: str
    status: SocialStatus
    post_id: Optional[str] = None
    permalink: Optional[str] = None
    error: Optional[str] = None


@dataclass
class SocialRun:
    """Result of :meth:`SocialAutoScheduler.execute`."""

    reason: str
    outcomes: List[ShareOutcome] = field(default_factory=list)
    next_slot: Optional[datetime] = None

    @property
    def shared(self) -> List[str]:
        return [o.draft_id for o in self.outcomes if o.status is SocialStatus.PUBLISHED]


class SocialAutoScheduler:
    """Shares published drafts to the social channel.

    Args:
        db: Content store with the ``SupabaseDB`` draft API.
        publisher: Object exposing ``async post(message, link) -> dict``
            with ``post_id`` and ``permalink`` keys.
        locks: Shared single-flight lock service.
        mutex: Shared per-draft mutex.
        config: Social schedule settings.
        tz: Timezone the sharing window is expressed in.
        site_base_url: Base URL used to build article links.
        stuck_timeout_minutes: Age after which a ``sharing`` record is
            considered interrupted.
    """

    MAX_BATCH = 50

    def __init__(
        self,
        db: Any,
        publisher: Any,
        locks: KeyedLock,
        mutex: DraftMutex,
        config: SocialScheduleConfig,
        tz: tzinfo,
        site_base_url: str,
        stuck_timeout_minutes: int = 10,
    ) -> None:
        self.db = db
        self.publisher = publisher
        self.locks = locks
        self.mutex = mutex
        self.config = config
        self.tz = tz
        self.site_base_url = site_base_url.rstrip("/")
        self.stuck_timeout_minutes = stuck_timeout_minutes
        self.log = ComponentLogger(LogComponent.SOCIAL_SCHEDULER)

    # ================================================================
    # ELIGIBILITY / PLANNING
    # ================================================================

    def eligibility(self, now: datetime) -> DraftFilter:
        return social_share_eligible(
            now, self.config.cooldown_minutes, self.config.max_age_days
        )

    def _local_day_start(self, now: datetime) -> datetime:
        local = ensure_utc(now).astimezone(self.tz)
        return local.replace(hour=0, minute=0, second=0, microsecond=0)

    def in_window(self, now: datetime) -> bool:
        hour = ensure_utc(now).astimezone(self.tz).hour
        return self.config.start_hour <= hour < self.config.end_hour

    async def plan(self, now: Optional[datetime] = None) -> SocialPlan:
        """Allocate share slots to every eligible draft, oldest first."""
        now = now or utc_now()
        candidates = await self.db.list_drafts(
            self.eligibility(now),
            order_by="published_at",
            desc=False,
            limit=self.MAX_BATCH,
        )
        day_start = self._local_day_start(now)
        shared_today = await self.db.count_social_shares_since(day_start)
        last_shared_at = await self.db.get_last_social_share_at()

        plan = SocialPlan(shared_today=shared_today, last_shared_at=last_shared_at)
        if not candidates:
            return plan

        start = now
        if last_shared_at is not None:
            start = max(now, last_shared_at + timedelta(minutes=self.config.interval_minutes))

        assignments = allocate(
            [d.id for d in candidates],
            start,
            self.config.interval_minutes,
            self.config.start_hour,
            self.config.end_hour,
            self.config.max_per_day,
            self.tz,
            day_counts={day_start.date(): shared_today},
        )
        plan.slots = as_slots(assignments)
        return plan

    # ================================================================
    # EXECUTION
    # ================================================================

    async def execute(self, now: Optional[datetime] = None) -> SocialRun:
        """Share every planned draft whose slot has arrived.

        Raises:
            OperationInProgressError: If another social run is active.
        """
        if not self.config.enabled:
            return SocialRun(reason=DISABLED)
        now = now or utc_now()

        async with self.locks.guard(SOCIAL_SCHEDULE, "social_scheduler"):
            plan = await self.plan(now)
            if not plan.slots:
                return SocialRun(reason=NO_CANDIDATES)
            if not self.in_window(now):
                return SocialRun(reason=OUTSIDE_TIME_WINDOW, next_slot=plan.next_slot)
            if self.config.max_per_day and plan.shared_today >= self.config.max_per_day:
                return SocialRun(reason=DAILY_LIMIT_REACHED, next_slot=plan.next_slot)

            due = [s for s in plan.slots if s.assigned_at <= now]
            if not due:
                return SocialRun(reason=INTERVAL_NOT_REACHED, next_slot=plan.next_slot)

            run = SocialRun(reason=SHARED)
            for slot in due:
                draft = await self.db.get_draft(slot.item_id)
                if draft is None:
                    continue
                outcome = await self._share(draft, now)
                if outcome is None:
                    logger.info("[SOCIAL] %s claimed elsewhere, skipping", slot.item_id)
                    continue
                run.outcomes.append(outcome)

            remaining = [s for s in plan.slots if s.assigned_at > now]
            run.next_slot = remaining[0].assigned_at if remaining else None

        logger.info(
            "[SOCIAL] Run finished: %d shared, %d failed",
            len(run.shared), len(run.outcomes) - len(run.shared),
        )
        return run

    async def share_now(self, draft_id: str, now: Optional[datetime] = None) -> ShareOutcome:
        """Share one draft immediately, bypassing the slot plan.

        Raises:
            DraftNotFoundError: If the draft does not exist.
            NotPublishedError: If the draft is not published on the site.
            AlreadySharedError: If it is already on the social channel.
            ShareInProgressError: If another share of it is running.
        """
        if self.publisher is None:
            raise ConfigurationError("No social publisher configured")
        now = now or utc_now()
        draft = await self.db.get_draft(draft_id)
        if draft is None:
            raise DraftNotFoundError(draft_id)
        if draft.status is not DraftStatus.PUBLISHED:
            raise NotPublishedError(f"Draft {draft_id} is not published")
        if draft.social.status is SocialStatus.PUBLISHED:
            raise AlreadySharedError(f"Draft {draft_id} was already shared")
        if draft.social.status is SocialStatus.SHARING:
            raise ShareInProgressError(f"Draft {draft_id} is being shared")

        outcome = await self._share(draft, now)
        if outcome is None:
            raise ShareInProgressError(f"Draft {draft_id} is being shared")
        return outcome

    def article_link(self, draft: Draft) -> str:
        return f"{self.site_base_url}/articles/{draft.published_as or draft.id}"

    @staticmethod
    def build_message(draft: Draft) -> str:
        if draft.summary:
            return f"{draft.title}\n\n{draft.summary}"
        return draft.title

    async def _share(self, draft: Draft, now: datetime) -> Optional[ShareOutcome]:
        """Claim, post and record one share.  ``None`` if the claim lost."""
        claimed = await self.db.claim_social_share(
            draft.id, draft.social.attempts + 1, now
        )
        if not claimed:
            return None

        outcome = ShareOutcome(draft_id=draft.id, status=SocialStatus.PUBLISHED)
        try:
            result = await self.publisher.post(self.build_message(draft), self.article_link(draft))
            outcome.post_id = result.get("post_id")
            outcome.permalink = result.get("permalink")
        except SocialPublishError as e:
            if e.kind == SocialPublishError.ALREADY_PUBLISHED:
                logger.info("[SOCIAL] %s already on the channel, marking published", draft.id)
            else:
                outcome.status = SocialStatus.ERROR
                outcome.error = f"{e.kind}: {e}"
        except Exception as e:
            logger.exception("[SOCIAL] Unexpected error sharing %s", draft.id)
            outcome.status = SocialStatus.ERROR
            outcome.error = str(e) or type(e).__name__

        await self._record(outcome, now)
        return outcome

    async def _record(self, outcome: ShareOutcome, now: datetime) -> None:
        async with self.mutex.hold(outcome.draft_id):
            draft = await self.db.get_draft(outcome.draft_id)
            if draft is None:
                return
            social = draft.social
            social.status = outcome.status
            social.sharing_since = None
            if outcome.status is SocialStatus.PUBLISHED:
                social.post_id = outcome.post_id
                social.permalink = outcome.permalink
                social.shared_at = now
                social.last_error = None
            else:
                social.last_error = outcome.error
            await self.db.update_draft(draft)

        if outcome.status is SocialStatus.PUBLISHED:
            await self.log.info(
                "Shared to social channel",
                draft_id=outcome.draft_id,
                data={"post_id": outcome.post_id},
            )
        else:
            await self.log.error(
                "Social share failed",
                draft_id=outcome.draft_id,
                data={"error": outcome.error},
            )

    # ================================================================
    # RECOVERY / SUMMARY
    # ================================================================

    async def recover_stuck(self, now: Optional[datetime] = None) -> List[str]:
        """Move ``sharing`` records older than the timeout to ``error``."""
        now = now or utc_now()
        cutoff = now - timedelta(minutes=self.stuck_timeout_minutes)
        stuck_filter = stuck_social_shares(cutoff)
        stuck = await self.db.list_drafts(
            stuck_filter, order_by="social_sharing_since", desc=False, limit=self.MAX_BATCH
        )
        recovered: List[str] = []
        for candidate in stuck:
            async with self.mutex.hold(candidate.id):
                draft = await self.db.get_draft(candidate.id)
                if draft is None or not stuck_filter.matches(draft):
                    continue
                draft.social.status = SocialStatus.ERROR
                draft.social.last_error = INTERRUPTED_MESSAGE
                draft.social.sharing_since = None
                await self.db.update_draft(draft)
            recovered.append(candidate.id)
            logger.warning("[SOCIAL] Recovered stuck share for %s", candidate.id)
        return recovered

    async def summary(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Snapshot of the social schedule for dashboards."""
        now = now or utc_now()
        plan = await self.plan(now)
        candidates = await self.db.count_drafts(self.eligibility(now))
        return {
            "enabled": self.config.enabled,
            "interval_minutes": self.config.interval_minutes,
            "start_hour": self.config.start_hour,
            "end_hour": self.config.end_hour,
            "max_per_day": self.config.max_per_day,
            "candidates": candidates,
            "shared_today": plan.shared_today,
            "last_shared_at": plan.last_shared_at,
            "next_slot": plan.next_slot,
            "in_window": self.in_window(now),
        }


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "DISABLED",
    "NO_CANDIDATES",
    "OUTSIDE_TIME_WINDOW",
    "DAILY_LIMIT_REACHED",
    "INTERVAL_NOT_REACHED",
    "SHARED",
    "SocialPlan",
    "ShareOutcome",
    "SocialRun",
    "SocialAutoScheduler",
]
