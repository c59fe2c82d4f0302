"""
Centralized shared data types for the editorial pipeline.

This module is THE single source of truth for the Draft entity, its
status enums, and the declarative filters that decide which drafts each
scheduler may touch.

Hierarchy of types
------------------
- **Enums**: ``DraftStatus``, ``ReviewStatus``, ``Mode``, ``PublishStatus``,
  ``RevisionStatus``, ``SocialStatus``, ``GenerationType``
- **Content**: ``ContentSnapshot``
- **Draft sub-records**: ``RevisionJob``, ``RevisionHistoryEntry``,
  ``SocialShare``
- **Entities**: ``Draft``, ``Topic``
- **Filters**: ``DraftFilter`` plus the eligibility rules
  ``SITE_SCHEDULE_ELIGIBLE``, ``due_for_publish()``,
  ``social_share_eligible()``, ``stuck_social_shares()``

Rows are flattened for Supabase: the social share sub-record is stored in
``social_*`` columns so that eligibility can be filtered server-side, while
``review`` and ``revision_history`` are ``jsonb``.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from src.utils import parse_timestamp, to_iso, utc_now


# =============================================================================
# ENUMS
# =============================================================================


class DraftStatus(Enum):
    """Publication axis of a draft.

    Transitions:
        DRAFT | REVIEWED -> PUBLISHED   (requires ReviewStatus.APPROVED)
        DRAFT | REVIEWED -> REJECTED
    """

    DRAFT = "draft"
    REVIEWED = "reviewed"
    PUBLISHED = "published"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        """Check if status is terminal (no further transitions allowed)."""
        return self in {DraftStatus.PUBLISHED, DraftStatus.REJECTED}


class ReviewStatus(Enum):
    """Human/AI review axis of a draft, independent from ``DraftStatus``."""

    PENDING = "pending"
    APPROVED = "approved"
    CHANGES_REQUESTED = "changes_requested"
    CHANGES_IN_PROGRESS = "changes_in_progress"
    CHANGES_COMPLETED = "changes_completed"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self is ReviewStatus.REJECTED


class Mode(Enum):
    """Editorial register chosen at creation time (immutable)."""

    FACTUAL = "factual"
    OPINION = "opinion"


class PublishStatus(Enum):
    """Derived convenience flag mirroring ``scheduled_at`` and ``status``."""

    PENDING = "pendiente"
    SCHEDULED = "programado"
    PUBLISHED = "publicado"


class RevisionStatus(Enum):
    """Status of an outstanding AI revision job."""

    PENDING = "pending"
    READY = "ready"
    ERROR = "error"


class SocialStatus(Enum):
    """Social channel share state for a published draft."""

    NONE = "none"
    SHARING = "sharing"
    PUBLISHED = "published"
    ERROR = "error"


class GenerationType(Enum):
    MANUAL = "manual"
    AUTO = "auto"


# =============================================================================
# CONTENT
# =============================================================================


@dataclass(frozen=True)
class ContentSnapshot:
    """The revisable text of a draft: title, summary and HTML body."""

    title: str
    summary: str
    body_html: str

    def as_text(self) -> str:
        """Render as plain text for line diffs (CRLF normalised)."""
        text = f"{self.title}\n\n{self.summary}\n\n{self.body_html}"
        return text.replace("\r\n", "\n")

    def to_dict(self) -> Dict[str, str]:
        return {"title": self.title, "summary": self.summary, "body_html": self.body_html}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContentSnapshot":
        return cls(
            title=data.get("title") or "",
            summary=data.get("summary") or "",
            body_html=data.get("body_html") or "",
        )


# =============================================================================
# DRAFT SUB-RECORDS
# =============================================================================


@dataclass
class RevisionJob:
    """An AI revision job attached to a draft.

    Present only while a job is outstanding or has just completed; cleared
    by apply or discard.

    Attributes:
        id: Job identifier, used to drop results of superseded jobs.
        status: ``pending`` until the AI call returns, then ``ready``/``error``.
        requested_notes: Human instructions the job was started with.
        requested_at: When the job was accepted.
        proposed: Proposed content (``ready`` only).
        diff: Unified diff of current vs. proposed (``ready`` only).
        has_changes: ``False`` when the AI returned identical content.
        model: Model identifier reported by the reviser.
        generation_ms: Wall time of the AI call.
        finished_at: When the job reached ``ready`` or ``error``.
        error_msg: Failure reason (``error`` only).
    """

    id: str
    status: RevisionStatus
    requested_notes: str
    requested_at: datetime
    proposed: Optional[ContentSnapshot] = None
    diff: str = ""
    has_changes: bool = False
    model: Optional[str] = None
    generation_ms: Optional[int] = None
    finished_at: Optional[datetime] = None
    error_msg: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "requested_notes": self.requested_notes,
            "requested_at": to_iso(self.requested_at),
            "proposed": self.proposed.to_dict() if self.proposed else None,
            "diff": self.diff,
            "has_changes": self.has_changes,
            "model": self.model,
            "generation_ms": self.generation_ms,
            "finished_at": to_iso(self.finished_at),
            "error_msg": self.error_msg,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RevisionJob":
        proposed = data.get("proposed")
        return cls(
            id=data["id"],
            status=RevisionStatus(data["status"]),
            requested_notes=data.get("requested_notes") or "",
            requested_at=parse_timestamp(data.get("requested_at")) or utc_now(),
            proposed=ContentSnapshot.from_dict(proposed) if proposed else None,
            diff=data.get("diff") or "",
            has_changes=bool(data.get("has_changes")),
            model=data.get("model"),
            generation_ms=data.get("generation_ms"),
            finished_at=parse_timestamp(data.get("finished_at")),
            error_msg=data.get("error_msg"),
        )


@dataclass
class RevisionHistoryEntry:
    """An applied revision, kept so editors can see what the AI replaced."""

    notes: str
    applied_at: datetime
    previous: ContentSnapshot
    model: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "notes": self.notes,
            "applied_at": to_iso(self.applied_at),
            "previous": self.previous.to_dict(),
            "model": self.model,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RevisionHistoryEntry":
        return cls(
            notes=data.get("notes") or "",
            applied_at=parse_timestamp(data.get("applied_at")) or utc_now(),
            previous=ContentSnapshot.from_dict(data.get("previous") or {}),
            model=data.get("model"),
        )


@dataclass
class SocialShare:
    """Social channel share state of a published draft."""

    status: SocialStatus = SocialStatus.NONE
    post_id: Optional[str] = None
    permalink: Optional[str] = None
    last_error: Optional[str] = None
    attempts: int = 0
    sharing_since: Optional[datetime] = None
    shared_at: Optional[datetime] = None


# =============================================================================
# DRAFT
# =============================================================================


@dataclass
class Draft:
    """An editorial unit moving through review before becoming an article.

    Attributes:
        id: Unique identifier (UUID).
        mode: ``factual`` or ``opinion``; fixed at creation.
        title: Headline.
        summary: Standfirst shown under the headline.
        body_html: Article body.
        status: Publication axis (``DraftStatus``).
        review_status: Review axis (``ReviewStatus``).
        review_notes: Last human revision instruction (replaced, never merged).
        review: Outstanding or just-finished revision job.
        revision_history: Applied revisions, oldest first.
        last_approved_content: Body text at the last approval (diff baseline).
        previous_content: Body text before the last edit or applied revision.
        scheduled_at: When the due-draft publisher should publish.
        published_as: Article id created on publish (idempotency key).
        publish_error: Last failure of the due-draft publisher.
        social: Social channel share state.
    """

    # Required fields
    id: str
    mode: Mode
    title: str

    # Content
    summary: str = ""
    body_html: str = ""
    category: str = "General"
    tags: List[str] = field(default_factory=list)
    cover_image_url: Optional[str] = None

    # Lifecycle
    status: DraftStatus = DraftStatus.DRAFT
    review_status: ReviewStatus = ReviewStatus.PENDING
    review_notes: Optional[str] = None
    review: Optional[RevisionJob] = None
    revision_history: List[RevisionHistoryEntry] = field(default_factory=list)
    last_approved_content: Optional[str] = None
    previous_content: Optional[str] = None

    # Scheduling / publishing
    scheduled_at: Optional[datetime] = None
    published_at: Optional[datetime] = None
    published_as: Optional[str] = None
    publish_error: Optional[str] = None

    # Social distribution
    social: SocialShare = field(default_factory=SocialShare)

    # Provenance
    topic_id: Optional[str] = None
    generation_type: GenerationType = GenerationType.AUTO

    # Timestamps
    approved_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def publish_status(self) -> PublishStatus:
        """Derived on read from ``status`` and ``scheduled_at``."""
        if self.status is DraftStatus.PUBLISHED:
            return PublishStatus.PUBLISHED
        if self.scheduled_at is not None:
            return PublishStatus.SCHEDULED
        return PublishStatus.PENDING

    @property
    def content(self) -> ContentSnapshot:
        return ContentSnapshot(self.title, self.summary, self.body_html)

    def apply_content(self, snapshot: ContentSnapshot) -> None:
        """Replace the revisable fields, keeping the old body as a baseline."""
        self.previous_content = self.body_html
        self.title = snapshot.title
        self.summary = snapshot.summary
        self.body_html = snapshot.body_html

    def copy(self) -> "Draft":
        """Shallow copy with independent sub-records (used by in-memory stores)."""
        return replace(
            self,
            tags=list(self.tags),
            revision_history=list(self.revision_history),
            social=replace(self.social),
            review=replace(self.review) if self.review else None,
        )

    # -----------------------------------------------------------------
    # Row mapping
    # -----------------------------------------------------------------

    def to_row(self) -> Dict[str, Any]:
        """Serialise to a flat ``drafts`` table row."""
        return {
            "id": self.id,
            "mode": self.mode.value,
            "title": self.title,
            "summary": self.summary,
            "body_html": self.body_html,
            "category": self.category,
            "tags": list(self.tags),
            "cover_image_url": self.cover_image_url,
            "status": self.status.value,
            "review_status": self.review_status.value,
            "review_notes": self.review_notes,
            "review": self.review.to_dict() if self.review else None,
            "revision_history": [h.to_dict() for h in self.revision_history],
            "last_approved_content": self.last_approved_content,
            "previous_content": self.previous_content,
            "scheduled_at": to_iso(self.scheduled_at),
            "published_at": to_iso(self.published_at),
            "published_as": self.published_as,
            "publish_error": self.publish_error,
            "social_status": self.social.status.value,
            "social_post_id": self.social.post_id,
            "social_permalink": self.social.permalink,
            "social_last_error": self.social.last_error,
            "social_attempts": self.social.attempts,
            "social_sharing_since": to_iso(self.social.sharing_since),
            "social_shared_at": to_iso(self.social.shared_at),
            "topic_id": self.topic_id,
            "generation_type": self.generation_type.value,
            "approved_at": to_iso(self.approved_at),
            "reviewed_at": to_iso(self.reviewed_at),
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Draft":
        """Build a ``Draft`` from a ``drafts`` table row."""
        review = row.get("review")
        return cls(
            id=row["id"],
            mode=Mode(row.get("mode") or Mode.FACTUAL.value),
            title=row.get("title") or "",
            summary=row.get("summary") or "",
            body_html=row.get("body_html") or "",
            category=row.get("category") or "General",
            tags=list(row.get("tags") or []),
            cover_image_url=row.get("cover_image_url"),
            status=DraftStatus(row.get("status") or DraftStatus.DRAFT.value),
            review_status=ReviewStatus(
                row.get("review_status") or ReviewStatus.PENDING.value
            ),
            review_notes=row.get("review_notes"),
            review=RevisionJob.from_dict(review) if review else None,
            revision_history=[
                RevisionHistoryEntry.from_dict(h)
                for h in row.get("revision_history") or []
            ],
            last_approved_content=row.get("last_approved_content"),
            previous_content=row.get("previous_content"),
            scheduled_at=parse_timestamp(row.get("scheduled_at")),
            published_at=parse_timestamp(row.get("published_at")),
            published_as=row.get("published_as"),
            publish_error=row.get("publish_error"),
            social=SocialShare(
                status=SocialStatus(row.get("social_status") or SocialStatus.NONE.value),
                post_id=row.get("social_post_id"),
                permalink=row.get("social_permalink"),
                last_error=row.get("social_last_error"),
                attempts=row.get("social_attempts") or 0,
                sharing_since=parse_timestamp(row.get("social_sharing_since")),
                shared_at=parse_timestamp(row.get("social_shared_at")),
            ),
            topic_id=row.get("topic_id"),
            generation_type=GenerationType(
                row.get("generation_type") or GenerationType.AUTO.value
            ),
            approved_at=parse_timestamp(row.get("approved_at")),
            reviewed_at=parse_timestamp(row.get("reviewed_at")),
            created_at=parse_timestamp(row.get("created_at")) or utc_now(),
            updated_at=parse_timestamp(row.get("updated_at")) or utc_now(),
        )

    def __repr__(self) -> str:
        return (
            f"Draft(id='{self.id}', title='{self.title[:40]}', "
            f"status={self.status.value}, review={self.review_status.value})"
        )


# =============================================================================
# TOPIC
# =============================================================================


@dataclass
class Topic:
    """A detected story candidate produced by the external scanner."""

    id: str
    title: str
    category: str = "General"
    confidence: float = 0.0
    impact: float = 0.0
    sources: List[str] = field(default_factory=list)
    summary: str = ""
    detected_at: datetime = field(default_factory=utc_now)
    archived: bool = False

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Topic":
        return cls(
            id=row["id"],
            title=row.get("title") or "",
            category=row.get("category") or "General",
            confidence=float(row.get("confidence") or 0.0),
            impact=float(row.get("impact") or 0.0),
            sources=list(row.get("sources") or []),
            summary=row.get("summary") or "",
            detected_at=parse_timestamp(row.get("detected_at")) or utc_now(),
            archived=bool(row.get("archived")),
        )


# =============================================================================
# DRAFT FILTERS
# =============================================================================


@dataclass(frozen=True)
class DraftFilter:
    """Declarative draft filter.

    The same object is evaluated in Python by :meth:`matches` and
    translated into a Supabase query by ``SupabaseDB``, so a scheduler's
    candidate query and the counts shown to editors cannot drift apart.
    Empty tuples and ``None`` mean "no constraint".
    """

    statuses: Tuple[DraftStatus, ...] = ()
    review_statuses: Tuple[ReviewStatus, ...] = ()
    social_statuses: Tuple[SocialStatus, ...] = ()
    modes: Tuple[Mode, ...] = ()
    category: Optional[str] = None
    scheduled: Optional[bool] = None
    scheduled_before: Optional[datetime] = None
    published_before: Optional[datetime] = None
    published_after: Optional[datetime] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    sharing_since_before: Optional[datetime] = None

    def matches(self, draft: Draft) -> bool:
        if self.statuses and draft.status not in self.statuses:
            return False
        if self.review_statuses and draft.review_status not in self.review_statuses:
            return False
        if self.social_statuses and draft.social.status not in self.social_statuses:
            return False
        if self.modes and draft.mode not in self.modes:
            return False
        if self.category is not None and draft.category != self.category:
            return False
        if self.scheduled is not None and (draft.scheduled_at is not None) != self.scheduled:
            return False
        if self.scheduled_before is not None:
            if draft.scheduled_at is None or draft.scheduled_at > self.scheduled_before:
                return False
        if self.published_before is not None:
            if draft.published_at is None or draft.published_at > self.published_before:
                return False
        if self.published_after is not None:
            if draft.published_at is None or draft.published_at < self.published_after:
                return False
        if self.created_from is not None and draft.created_at < self.created_from:
            return False
        if self.created_to is not None and draft.created_at > self.created_to:
            return False
        if self.sharing_since_before is not None:
            since = draft.social.sharing_since
            if since is None or since > self.sharing_since_before:
                return False
        return True


# Approved drafts the site scheduler may stamp with a slot.
SITE_SCHEDULE_ELIGIBLE = DraftFilter(
    statuses=(DraftStatus.DRAFT,),
    review_statuses=(ReviewStatus.APPROVED,),
    scheduled=False,
)

# Approved drafts already holding a slot.
SITE_SCHEDULED = DraftFilter(
    statuses=(DraftStatus.DRAFT,),
    review_statuses=(ReviewStatus.APPROVED,),
    scheduled=True,
)


def due_for_publish(now: datetime) -> DraftFilter:
    """Scheduled drafts whose slot has arrived."""
    return DraftFilter(
        statuses=(DraftStatus.DRAFT,),
        review_statuses=(ReviewStatus.APPROVED,),
        scheduled=True,
        scheduled_before=now,
    )


def social_share_eligible(
    now: Optional[datetime] = None,
    cooldown_minutes: int = 0,
    max_age_days: int = 0,
) -> DraftFilter:
    """Published content not yet on the social channel.

    ``error`` items are retry candidates; ``sharing`` items are excluded to
    avoid double-posting.  This is the only definition of social
    eligibility: the scheduler, ``share_now`` and the pending counts all
    call it.
    """
    published_before = None
    published_after = None
    if now is not None and cooldown_minutes > 0:
        published_before = now - timedelta(minutes=cooldown_minutes)
    if now is not None and max_age_days > 0:
        published_after = now - timedelta(days=max_age_days)
    return DraftFilter(
        statuses=(DraftStatus.PUBLISHED,),
        social_statuses=(SocialStatus.NONE, SocialStatus.ERROR),
        published_before=published_before,
        published_after=published_after,
    )


def stuck_social_shares(cutoff: datetime) -> DraftFilter:
    """Shares left in ``sharing`` since before *cutoff*."""
    return DraftFilter(
        statuses=(DraftStatus.PUBLISHED,),
        social_statuses=(SocialStatus.SHARING,),
        sharing_since_before=cutoff,
    )


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    # Enums
    "DraftStatus",
    "ReviewStatus",
    "Mode",
    "PublishStatus",
    "RevisionStatus",
    "SocialStatus",
    "GenerationType",
    # Content and sub-records
    "ContentSnapshot",
    "RevisionJob",
    "RevisionHistoryEntry",
    "SocialShare",
    # Entities
    "Draft",
    "Topic",
    # Filters
    "DraftFilter",
    "SITE_SCHEDULE_ELIGIBLE",
    "SITE_SCHEDULED",
    "due_for_publish",
    "social_share_eligible",
    "stuck_social_shares",
]
