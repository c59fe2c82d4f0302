"""
Asynchronous AI revision jobs and review diffs.

Flow::

    request_changes(draft_id, notes)
        -> review_status: changes_requested -> changes_in_progress
        -> review = RevisionJob(status=pending)
        -> background task: reviser.revise_draft(content, notes)
              ok    -> review.status = ready, review_status = changes_completed
              fail  -> review.status = error, review_status = changes_requested
    poll(draft_id)      -> RevisionPoll
    apply(draft_id)     -> copy proposal onto the draft, clear review
    discard(draft_id)   -> clear review (abandons an in-flight job)

A job result is written only if the draft still points at that job and is
still ``changes_in_progress``; otherwise it is dropped.  Running jobs are
never cancelled.
"""

import asyncio
import difflib
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional, Set

from src.config import RevisionConfig
from src.exceptions import (
    EmptyNotesError,
    InvalidTransitionError,
    NoPendingRevisionError,
    RevisionGenerationError,
    RevisionInProgressError,
    ValidationError,
)
from src.logging import ComponentLogger, LogComponent
from src.models import (
    ContentSnapshot,
    Draft,
    ReviewStatus,
    RevisionHistoryEntry,
    RevisionJob,
    RevisionStatus,
)
from src.pipeline.review import HUMAN, SYSTEM, ReviewStateMachine
from src.utils import generate_id, utc_now

logger = logging.getLogger(__name__)


# =============================================================================
# DIFFS
# =============================================================================

BASELINE_APPROVED = "approved"
BASELINE_PREVIOUS = "previous"
BASELINE_CURRENT = "current"
BASELINE_NONE = "none"


@dataclass(frozen=True)
class ContentDiff:
    """Result of comparing two versions of a draft's text.

    ``has_baseline=False`` means there was nothing to compare against,
    which is not the same as "no changes".
    """

    has_baseline: bool
    has_changes: bool
    patch: str
    baseline_used: str


def compute_diff(
    before: str,
    after: str,
    context: int = 3,
    before_label: str = "before",
    after_label: str = "after",
) -> str:
    """Deterministic unified line diff; CRLF is normalised to LF."""
    a = before.replace("\r\n", "\n").splitlines(keepends=True)
    b = after.replace("\r\n", "\n").splitlines(keepends=True)
    lines = difflib.unified_diff(
        a, b, fromfile=before_label, tofile=after_label, n=context
    )
    return "".join(line if line.endswith("\n") else line + "\n" for line in lines)


def diff_against_baseline(draft: Draft, baseline: str, context: int = 3) -> ContentDiff:
    """Diff the draft against one of its stored baselines.

    Args:
        draft: Draft to inspect.
        baseline: ``approved`` (last approved body vs. current body),
            ``previous`` (body before the last edit vs. current body) or
            ``current`` (current content vs. the ready revision proposal).
    """
    if baseline == BASELINE_APPROVED:
        before, after = draft.last_approved_content, draft.body_html
    elif baseline == BASELINE_PREVIOUS:
        before, after = draft.previous_content, draft.body_html
    elif baseline == BASELINE_CURRENT:
        proposal = draft.review.proposed if draft.review else None
        before = draft.content.as_text()
        after = proposal.as_text() if proposal else None
        if after is None:
            before = None
    else:
        raise ValidationError(f"unknown diff baseline: {baseline}")

    if before is None or after is None:
        return ContentDiff(False, False, "", BASELINE_NONE)
    patch = compute_diff(before, after, context, baseline, "current")
    return ContentDiff(True, bool(patch), patch, baseline)


# =============================================================================
# RESULT TYPES
# =============================================================================


@dataclass(frozen=True)
class RevisionTicket:
    accepted: bool
    job_id: str


@dataclass(frozen=True)
class RevisionPoll:
    """Snapshot of a draft's revision job for the editor UI.

    ``status`` is ``none`` when the draft has no job.
    """

    status: str
    review_status: ReviewStatus
    job_id: Optional[str] = None
    proposed: Optional[ContentSnapshot] = None
    diff: str = ""
    has_changes: bool = False
    error: Optional[str] = None
    model: Optional[str] = None


# =============================================================================
# RUNNER
# =============================================================================


class RevisionRunner:
    """Runs AI revision jobs in background tasks.

    Args:
        db: Content store with the ``SupabaseDB`` draft API.
        review: Review state machine (shares its ``DraftMutex``).
        reviser: Object exposing
            ``async revise_draft(content, notes) -> (ContentSnapshot, model)``.
        config: Revision settings.
    """

    def __init__(
        self,
        db: Any,
        review: ReviewStateMachine,
        reviser: Any,
        config: Optional[RevisionConfig] = None,
    ) -> None:
        self.db = db
        self.review = review
        self.reviser = reviser
        self.config = config or RevisionConfig()
        self.mutex = review.mutex
        self.log = ComponentLogger(LogComponent.REVISION)
        self._tasks: Set["asyncio.Task[None]"] = set()

    @property
    def active_jobs(self) -> int:
        return len(self._tasks)

    # ================================================================
    # REQUEST
    # ================================================================

    async def request_changes(self, draft_id: str, notes: str) -> RevisionTicket:
        """Accept a revision request and start the AI job in the background.

        Raises:
            EmptyNotesError: If *notes* is blank (nothing is loaded).
            DraftNotFoundError: If the draft does not exist.
            RevisionInProgressError: If a job is already outstanding.
            InvalidTransitionError: If the draft is closed or approved.
        """
        if notes is None or not notes.strip():
            raise EmptyNotesError("Revision notes must not be empty")
        notes = notes.strip()

        async with self.mutex.hold(draft_id):
            draft = await self.review.get(draft_id)
            if draft.status.is_terminal:
                raise InvalidTransitionError(
                    "review_status",
                    draft.review_status.value,
                    ReviewStatus.CHANGES_REQUESTED.value,
                    f"draft is {draft.status.value}",
                )
            if (
                draft.review_status is ReviewStatus.CHANGES_IN_PROGRESS
                or (draft.review and draft.review.status is RevisionStatus.PENDING)
            ):
                raise RevisionInProgressError(
                    f"Draft {draft_id} already has a revision in progress"
                )

            if draft.review_status is not ReviewStatus.CHANGES_REQUESTED:
                self.review.apply_review_transition(
                    draft, ReviewStatus.CHANGES_REQUESTED, HUMAN, notes
                )
            else:
                draft.review_notes = notes
            self.review.apply_review_transition(
                draft, ReviewStatus.CHANGES_IN_PROGRESS, SYSTEM
            )

            job = RevisionJob(
                id=generate_id(),
                status=RevisionStatus.PENDING,
                requested_notes=notes,
                requested_at=utc_now(),
            )
            draft.review = job
            draft = await self.db.update_draft(draft)

        task = asyncio.create_task(self._run_job(draft_id, job.id, draft.content, notes))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        await self.log.info(
            "Revision requested", draft_id=draft_id, data={"job_id": job.id}
        )
        return RevisionTicket(accepted=True, job_id=job.id)

    # ================================================================
    # BACKGROUND JOB
    # ================================================================

    async def _run_job(
        self, draft_id: str, job_id: str, content: ContentSnapshot, notes: str
    ) -> None:
        started = time.monotonic()
        proposal: Optional[ContentSnapshot] = None
        model: Optional[str] = None
        error: Optional[str] = None
        try:
            proposal, model = await self.reviser.revise_draft(content, notes)
            if len(proposal.body_html.strip()) < self.config.min_body_chars:
                raise RevisionGenerationError(
                    f"revised body shorter than {self.config.min_body_chars} characters"
                )
        except Exception as e:
            # External failure is recorded on the draft, not raised.
            error = str(e) or type(e).__name__
            logger.warning("[REVISION] job %s for %s failed: %s", job_id, draft_id, error)
        generation_ms = int((time.monotonic() - started) * 1000)

        try:
            job = await self._save_result(
                draft_id, job_id, content, proposal, model, error, generation_ms
            )
        except Exception as e:
            logger.exception(
                "[REVISION] could not save result of job %s for %s", job_id, draft_id
            )
            await self.log.error(
                "Revision result could not be saved",
                error=e,
                draft_id=draft_id,
                data={"job_id": job_id},
            )
            return
        if job is None:
            return

        if error is not None:
            await self.log.error(
                "Revision failed", draft_id=draft_id, data={"job_id": job_id, "error": error}
            )
        else:
            await self.log.info(
                "Revision ready",
                draft_id=draft_id,
                duration_ms=generation_ms,
                data={"job_id": job_id, "has_changes": job.has_changes, "model": model},
            )

    async def _save_result(
        self,
        draft_id: str,
        job_id: str,
        content: ContentSnapshot,
        proposal: Optional[ContentSnapshot],
        model: Optional[str],
        error: Optional[str],
        generation_ms: int,
    ) -> Optional[RevisionJob]:
        """Write the job outcome back to the draft, or drop it if stale."""
        async with self.mutex.hold(draft_id):
            draft = await self.db.get_draft(draft_id)
            if draft is None or not self._still_current(draft, job_id):
                if draft is not None and draft.review and draft.review.id == job_id:
                    draft.review = None
                    await self.db.update_draft(draft)
                await self.log.warning(
                    "Discarded stale revision result",
                    draft_id=draft_id,
                    data={"job_id": job_id},
                )
                return None

            job = draft.review
            job.finished_at = utc_now()
            job.generation_ms = generation_ms
            job.model = model
            if error is not None:
                job.status = RevisionStatus.ERROR
                job.error_msg = error
                self.review.apply_review_transition(
                    draft, ReviewStatus.CHANGES_REQUESTED, SYSTEM
                )
            else:
                job.status = RevisionStatus.READY
                job.proposed = proposal
                job.diff = compute_diff(
                    content.as_text(),
                    proposal.as_text(),
                    self.config.diff_context,
                    "current",
                    "proposed",
                )
                job.has_changes = bool(job.diff)
                self.review.apply_review_transition(
                    draft, ReviewStatus.CHANGES_COMPLETED, SYSTEM
                )
            await self.db.update_draft(draft)
        return job

    @staticmethod
    def _still_current(draft: Draft, job_id: str) -> bool:
        return (
            not draft.status.is_terminal
            and draft.review_status is ReviewStatus.CHANGES_IN_PROGRESS
            and draft.review is not None
            and draft.review.id == job_id
        )

    async def drain(self) -> None:
        """Wait for every outstanding job task."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ================================================================
    # POLL / APPLY / DISCARD
    # ================================================================

    async def poll(self, draft_id: str) -> RevisionPoll:
        draft = await self.review.get(draft_id)
        job = draft.review
        if job is None:
            return RevisionPoll(status="none", review_status=draft.review_status)
        return RevisionPoll(
            status=job.status.value,
            review_status=draft.review_status,
            job_id=job.id,
            proposed=job.proposed,
            diff=job.diff,
            has_changes=job.has_changes,
            error=job.error_msg,
            model=job.model,
        )

    async def apply(self, draft_id: str) -> Draft:
        """Copy a ready proposal onto the draft.

        Raises:
            NoPendingRevisionError: If there is no ready revision.
        """
        async with self.mutex.hold(draft_id):
            draft = await self.review.get(draft_id)
            job = draft.review
            if job is None or job.status is not RevisionStatus.READY or job.proposed is None:
                raise NoPendingRevisionError(f"Draft {draft_id} has no ready revision")
            draft.revision_history.append(
                RevisionHistoryEntry(
                    notes=job.requested_notes,
                    applied_at=utc_now(),
                    previous=draft.content,
                    model=job.model,
                )
            )
            draft.apply_content(job.proposed)
            draft.review = None
            draft = await self.db.update_draft(draft)

        await self.log.info("Revision applied", draft_id=draft_id, data={"job_id": job.id})
        return draft

    async def discard(self, draft_id: str) -> Draft:
        """Drop the draft's revision job.

        A ready or failed result is simply cleared.  An in-flight job is
        abandoned: the draft returns to ``changes_requested`` and the job's
        eventual result is dropped when it arrives.
        """
        async with self.mutex.hold(draft_id):
            draft = await self.review.get(draft_id)
            job = draft.review
            if job is None:
                raise NoPendingRevisionError(f"Draft {draft_id} has no revision to discard")
            draft.review = None
            if (
                job.status is RevisionStatus.PENDING
                and draft.review_status is ReviewStatus.CHANGES_IN_PROGRESS
            ):
                self.review.apply_review_transition(
                    draft, ReviewStatus.CHANGES_REQUESTED, SYSTEM
                )
            draft = await self.db.update_draft(draft)

        await self.log.info(
            "Revision discarded",
            draft_id=draft_id,
            data={"job_id": job.id, "status": job.status.value},
        )
        return draft

    async def diff(self, draft_id: str, baseline: str = BASELINE_APPROVED) -> ContentDiff:
        draft = await self.review.get(draft_id)
        return diff_against_baseline(draft, baseline, self.config.diff_context)


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "ContentDiff",
    "compute_diff",
    "diff_against_baseline",
    "BASELINE_APPROVED",
    "BASELINE_PREVIOUS",
    "BASELINE_CURRENT",
    "BASELINE_NONE",
    "RevisionTicket",
    "RevisionPoll",
    "RevisionRunner",
]
