"""
Read-side queries for the editor dashboard: paginated draft listing and
pending-work counters.

Every counter is built from the same ``DraftFilter`` the corresponding
scheduler uses, so "approved, not scheduled" on the dashboard is exactly
the set the site scheduler will pick up.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from src.config import SocialScheduleConfig
from src.exceptions import ValidationError
from src.models import (
    SITE_SCHEDULE_ELIGIBLE,
    SITE_SCHEDULED,
    Draft,
    DraftFilter,
    DraftStatus,
    ReviewStatus,
    SocialStatus,
    social_share_eligible,
)
from src.utils import utc_now

MAX_PAGE_SIZE = 50

OPEN_STATUSES = (DraftStatus.DRAFT, DraftStatus.REVIEWED)


def _review_bucket(status: ReviewStatus) -> DraftFilter:
    return DraftFilter(statuses=OPEN_STATUSES, review_statuses=(status,))


SCHEDULED = SITE_SCHEDULED

SOCIAL_ERRORS = DraftFilter(
    statuses=(DraftStatus.PUBLISHED,),
    social_statuses=(SocialStatus.ERROR,),
)


@dataclass
class DraftPage:
    items: List[Draft] = field(default_factory=list)
    page: int = 1
    limit: int = 20
    total: int = 0

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


class DraftQueries:
    """Listing and counting over the draft store.

    Args:
        db: Content store with ``list_drafts`` and ``count_drafts``.
        social_config: Social schedule settings, for the social buckets.
    """

    def __init__(self, db: Any, social_config: Optional[SocialScheduleConfig] = None) -> None:
        self.db = db
        self.social_config = social_config or SocialScheduleConfig()

    async def list_drafts(
        self,
        filters: Optional[DraftFilter] = None,
        page: int = 1,
        limit: int = 20,
    ) -> DraftPage:
        """One page of drafts, most recently updated first.

        ``limit`` is capped at 50.
        """
        if page < 1:
            raise ValidationError(f"page must be >= 1, got {page}")
        if limit < 1:
            raise ValidationError(f"limit must be >= 1, got {limit}")
        limit = min(limit, MAX_PAGE_SIZE)

        items = await self.db.list_drafts(
            filters, order_by="updated_at", desc=True, limit=limit, offset=(page - 1) * limit
        )
        total = await self.db.count_drafts(filters)
        return DraftPage(items=items, page=page, limit=limit, total=total)

    def buckets(self, now: datetime) -> Dict[str, DraftFilter]:
        """The filters behind :meth:`pending_counts`."""
        return {
            "review_pending": _review_bucket(ReviewStatus.PENDING),
            "changes_requested": _review_bucket(ReviewStatus.CHANGES_REQUESTED),
            "changes_in_progress": _review_bucket(ReviewStatus.CHANGES_IN_PROGRESS),
            "changes_completed": _review_bucket(ReviewStatus.CHANGES_COMPLETED),
            "approved_unscheduled": SITE_SCHEDULE_ELIGIBLE,
            "scheduled": SCHEDULED,
            "social_pending": social_share_eligible(
                now,
                self.social_config.cooldown_minutes,
                self.social_config.max_age_days,
            ),
            "social_errors": SOCIAL_ERRORS,
        }

    async def pending_counts(self, now: Optional[datetime] = None) -> Dict[str, int]:
        now = now or utc_now()
        return {
            name: await self.db.count_drafts(draft_filter)
            for name, draft_filter in self.buckets(now).items()
        }


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "MAX_PAGE_SIZE",
    "SCHEDULED",
    "SOCIAL_ERRORS",
    "DraftPage",
    "DraftQueries",
]
