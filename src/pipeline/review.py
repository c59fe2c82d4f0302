"""
Review state machine for drafts.

A draft carries two independent state variables:

- ``status`` (publication axis): ``draft | reviewed -> published | rejected``
- ``review_status`` (review axis), moving only along ``REVIEW_TRANSITIONS``

Every change goes through :meth:`ReviewStateMachine.check_review_transition`
so that an unknown move raises ``InvalidTransitionError`` and a move to the
current value raises ``NoOpTransitionError``.  Side effects (approval
snapshot, article creation, ``stats.refresh`` notifications) are bound to
the transition that triggers them.

All read-modify-write sequences on a draft hold its ``DraftMutex`` entry.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from src.exceptions import (
    DraftNotFoundError,
    EmptyNotesError,
    InvalidTransitionError,
    NoOpTransitionError,
    PublishNotApprovedError,
    ValidationError,
)
from src.logging import ComponentLogger, LogComponent
from src.models import (
    Draft,
    DraftStatus,
    GenerationType,
    Mode,
    ReviewStatus,
)
from src.pipeline.locks import DraftMutex
from src.utils import ensure_utc, generate_id, utc_now

logger = logging.getLogger(__name__)

HUMAN = "human"
SYSTEM = "system"

Listener = Callable[[str, Dict[str, Any]], Awaitable[None]]

STATS_REFRESH = "stats.refresh"


# =============================================================================
# TRANSITION TABLE
# =============================================================================

# (from, to) -> actor allowed to perform it.  Moves to PENDING and REJECTED
# are allowed from any non-terminal state by a human and are not listed.
REVIEW_TRANSITIONS: Dict[Tuple[ReviewStatus, ReviewStatus], str] = {
    (ReviewStatus.PENDING, ReviewStatus.APPROVED): HUMAN,
    (ReviewStatus.CHANGES_COMPLETED, ReviewStatus.APPROVED): HUMAN,
    (ReviewStatus.PENDING, ReviewStatus.CHANGES_REQUESTED): HUMAN,
    (ReviewStatus.CHANGES_COMPLETED, ReviewStatus.CHANGES_REQUESTED): HUMAN,
    (ReviewStatus.CHANGES_REQUESTED, ReviewStatus.CHANGES_IN_PROGRESS): SYSTEM,
    (ReviewStatus.CHANGES_IN_PROGRESS, ReviewStatus.CHANGES_COMPLETED): SYSTEM,
    (ReviewStatus.CHANGES_IN_PROGRESS, ReviewStatus.CHANGES_REQUESTED): SYSTEM,
}

# Content fields a human PATCH may touch.
EDITABLE_FIELDS = frozenset(
    {"title", "summary", "category", "tags", "body_html", "cover_image_url"}
)


@dataclass
class PublishResult:
    """Outcome of :meth:`ReviewStateMachine.publish`."""

    draft: Draft
    article_id: str
    already_published: bool = False


class ReviewStateMachine:
    """Owns every ``status`` and ``review_status`` change of a draft.

    Args:
        db: Content store with the ``SupabaseDB`` draft API.
        mutex: Per-draft mutex shared with the other services.
        listener: Optional async callback receiving ``(event, payload)``.
        min_title_chars: Minimum title length required to publish.
    """

    def __init__(
        self,
        db: Any,
        mutex: Optional[DraftMutex] = None,
        listener: Optional[Listener] = None,
        min_title_chars: int = 10,
    ) -> None:
        self.db = db
        self.mutex = mutex if mutex is not None else DraftMutex()
        self.listener = listener
        self.min_title_chars = min_title_chars
        self.log = ComponentLogger(LogComponent.REVIEW)

    # ================================================================
    # TRANSITION RULES
    # ================================================================

    @staticmethod
    def check_review_transition(
        current: ReviewStatus, target: ReviewStatus, actor: str = HUMAN
    ) -> None:
        """Validate a ``review_status`` move.

        Raises:
            NoOpTransitionError: If *target* equals *current*.
            InvalidTransitionError: If the move is not in the table, or the
                actor may not perform it.
        """
        if current is target:
            raise NoOpTransitionError("review_status", current.value)
        if current.is_terminal:
            raise InvalidTransitionError(
                "review_status", current.value, target.value, "review is closed"
            )
        if target in (ReviewStatus.PENDING, ReviewStatus.REJECTED):
            allowed = HUMAN
        else:
            allowed = REVIEW_TRANSITIONS.get((current, target))
        if allowed is None:
            raise InvalidTransitionError("review_status", current.value, target.value)
        if allowed != actor:
            raise InvalidTransitionError(
                "review_status",
                current.value,
                target.value,
                f"only the {allowed} may perform this transition",
            )

    @staticmethod
    def allowed_targets(current: ReviewStatus, actor: str = HUMAN) -> List[ReviewStatus]:
        """All review statuses *actor* may move a draft to from *current*."""
        targets = []
        for target in ReviewStatus:
            try:
                ReviewStateMachine.check_review_transition(current, target, actor)
            except InvalidTransitionError:
                continue
            targets.append(target)
        return targets

    def apply_review_transition(
        self,
        draft: Draft,
        target: ReviewStatus,
        actor: str = HUMAN,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[str]:
        """Move *draft* to *target* in memory, applying entry side effects.

        The caller persists the draft and then passes the returned reason
        (if any) to :meth:`notify`.

        Returns:
            Notification reason (``"approved"``, ``"rejected"``) or ``None``.
        """
        if draft.status.is_terminal:
            raise InvalidTransitionError(
                "review_status",
                draft.review_status.value,
                target.value,
                f"draft is {draft.status.value}",
            )
        self.check_review_transition(draft.review_status, target, actor)
        now = now or utc_now()

        if target is ReviewStatus.CHANGES_REQUESTED and actor == HUMAN:
            if notes is None or not notes.strip():
                raise EmptyNotesError("Revision notes must not be empty")
            draft.review_notes = notes.strip()

        previous = draft.review_status
        draft.review_status = target
        logger.info(
            "[REVIEW] %s review_status %s -> %s (%s)",
            draft.id, previous.value, target.value, actor,
        )

        if previous is ReviewStatus.APPROVED:
            draft.scheduled_at = None

        if target is ReviewStatus.APPROVED:
            draft.approved_at = now
            draft.reviewed_at = now
            draft.last_approved_content = draft.body_html
            draft.publish_error = None
            return "approved"
        if target is ReviewStatus.PENDING:
            draft.review = None
        if target is ReviewStatus.REJECTED:
            draft.status = DraftStatus.REJECTED
            draft.scheduled_at = None
            draft.review = None
            draft.reviewed_at = now
            return "rejected"
        return None

    async def notify(self, reason: Optional[str], draft: Draft) -> None:
        """Emit ``stats.refresh`` for a committed transition."""
        if reason is None:
            return
        payload = {"reason": reason, "draft_id": draft.id}
        await self.log.info(f"Draft {reason}", draft_id=draft.id, data=payload)
        if self.listener is None:
            return
        try:
            await self.listener(STATS_REFRESH, payload)
        except Exception:
            # Transition already committed.
            logger.exception("[REVIEW] stats listener failed for %s", draft.id)

    # ================================================================
    # DRAFT CREATION / LOOKUP
    # ================================================================

    async def create_draft(
        self,
        title: str,
        mode: Mode,
        summary: str = "",
        body_html: str = "",
        category: str = "General",
        tags: Optional[Iterable[str]] = None,
        cover_image_url: Optional[str] = None,
        topic_id: Optional[str] = None,
        generation_type: GenerationType = GenerationType.AUTO,
    ) -> Draft:
        """Create a draft in ``draft`` / ``pending``."""
        if not title or not title.strip():
            raise ValidationError("title must not be empty")
        draft = Draft(
            id=generate_id(),
            mode=mode,
            title=title.strip(),
            summary=summary,
            body_html=body_html,
            category=category,
            tags=list(tags or []),
            cover_image_url=cover_image_url,
            topic_id=topic_id,
            generation_type=generation_type,
        )
        created = await self.db.create_draft(draft)
        await self.log.info("Draft created", draft_id=created.id, data={"mode": mode.value})
        return created

    async def get(self, draft_id: str) -> Draft:
        """Load a draft or raise ``DraftNotFoundError``."""
        draft = await self.db.get_draft(draft_id)
        if draft is None:
            raise DraftNotFoundError(draft_id)
        return draft

    # ================================================================
    # REVIEW OPERATIONS
    # ================================================================

    async def set_review_status(
        self,
        draft_id: str,
        target: ReviewStatus,
        actor: str = HUMAN,
        notes: Optional[str] = None,
    ) -> Draft:
        """Generic review move used by the editor UI."""
        async with self.mutex.hold(draft_id):
            draft = await self.get(draft_id)
            reason = self.apply_review_transition(draft, target, actor, notes)
            draft = await self.db.update_draft(draft)
        await self.notify(reason, draft)
        return draft

    async def approve(self, draft_id: str) -> Draft:
        return await self.set_review_status(draft_id, ReviewStatus.APPROVED)

    async def reset_to_pending(self, draft_id: str) -> Draft:
        return await self.set_review_status(draft_id, ReviewStatus.PENDING)

    async def reject(self, draft_id: str) -> Draft:
        """Reject a draft.  Also moves ``status`` to ``rejected``."""
        return await self.set_review_status(draft_id, ReviewStatus.REJECTED)

    # ================================================================
    # PUBLISHING
    # ================================================================

    async def publish(self, draft_id: str, now: Optional[datetime] = None) -> PublishResult:
        """Publish an approved draft as a site article.

        Idempotent: a draft that is already published with an article id
        returns ``already_published=True`` without touching the store.

        Raises:
            PublishNotApprovedError: If ``review_status`` is not approved.
            InvalidTransitionError: If the draft was rejected.
            ValidationError: If the title is too short.
        """
        now = now or utc_now()
        async with self.mutex.hold(draft_id):
            draft = await self.get(draft_id)
            if draft.status is DraftStatus.PUBLISHED and draft.published_as:
                return PublishResult(draft, draft.published_as, already_published=True)
            if draft.status.is_terminal:
                raise InvalidTransitionError(
                    "status", draft.status.value, DraftStatus.PUBLISHED.value
                )
            if draft.review_status is not ReviewStatus.APPROVED:
                raise PublishNotApprovedError(
                    f"Draft {draft_id} is {draft.review_status.value}, not approved"
                )
            if len(draft.title.strip()) < self.min_title_chars:
                raise ValidationError(
                    f"title must have at least {self.min_title_chars} characters"
                )

            article_id = await self.db.create_article(draft)
            draft.published_as = article_id
            draft.status = DraftStatus.PUBLISHED
            draft.published_at = now
            draft.scheduled_at = None
            draft.publish_error = None
            draft = await self.db.update_draft(draft)

        await self.notify("published", draft)
        return PublishResult(draft, article_id)

    async def schedule(
        self, draft_id: str, when: datetime, now: Optional[datetime] = None
    ) -> Draft:
        """Manually schedule an approved draft for *when*."""
        when = ensure_utc(when)
        now = now or utc_now()
        if when <= now:
            raise ValidationError("scheduled time must be in the future")
        async with self.mutex.hold(draft_id):
            draft = await self.get(draft_id)
            if draft.status.is_terminal:
                raise InvalidTransitionError(
                    "status", draft.status.value, "scheduled", "draft is closed"
                )
            if draft.review_status is not ReviewStatus.APPROVED:
                raise PublishNotApprovedError(
                    f"Draft {draft_id} must be approved before scheduling"
                )
            draft.scheduled_at = when
            draft.publish_error = None
            draft = await self.db.update_draft(draft)
        await self.log.info(
            "Draft scheduled", draft_id=draft_id, data={"scheduled_at": when.isoformat()}
        )
        return draft

    async def unschedule(self, draft_id: str) -> Draft:
        async with self.mutex.hold(draft_id):
            draft = await self.get(draft_id)
            if draft.scheduled_at is None:
                return draft
            draft.scheduled_at = None
            draft = await self.db.update_draft(draft)
        await self.log.info("Draft unscheduled", draft_id=draft_id)
        return draft

    # ================================================================
    # CONTENT EDITS
    # ================================================================

    async def update_content(self, draft_id: str, changes: Dict[str, Any]) -> Draft:
        """Apply a human PATCH to the editable content fields.

        Raises:
            ValidationError: On an empty patch, an unknown field, an attempt
                to change ``mode``, or an empty title.
            InvalidTransitionError: If the draft is published or rejected.
        """
        if not changes:
            raise ValidationError("no changes given")
        changes = dict(changes)
        mode = changes.pop("mode", None)
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"fields not editable: {sorted(unknown)}")
        if "title" in changes and not str(changes["title"] or "").strip():
            raise ValidationError("title must not be empty")

        async with self.mutex.hold(draft_id):
            draft = await self.get(draft_id)
            if mode is not None and mode not in (draft.mode, draft.mode.value):
                raise ValidationError("mode is immutable after creation")
            if draft.status.is_terminal:
                raise InvalidTransitionError(
                    "status", draft.status.value, draft.status.value,
                    "closed drafts cannot be edited",
                )
            if "body_html" in changes and changes["body_html"] != draft.body_html:
                draft.previous_content = draft.body_html
            draft.publish_error = None
            for name, value in changes.items():
                if name == "tags":
                    value = list(value or [])
                setattr(draft, name, value)
            draft = await self.db.update_draft(draft)

        logger.info("[REVIEW] %s content updated: %s", draft_id, sorted(changes))
        return draft


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "HUMAN",
    "SYSTEM",
    "STATS_REFRESH",
    "REVIEW_TRANSITIONS",
    "EDITABLE_FIELDS",
    "PublishResult",
    "ReviewStateMachine",
]
