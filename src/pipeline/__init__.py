"""Editorial workflow services: review, revision, intake, queries and locks."""

from src.pipeline.intake import GenerationBatch, IntakeService
from src.pipeline.locks import DraftMutex, KeyedLock
from src.pipeline.queries import DraftPage, DraftQueries
from src.pipeline.review import PublishResult, ReviewStateMachine
from src.pipeline.revision import (
    ContentDiff,
    RevisionPoll,
    RevisionRunner,
    RevisionTicket,
    compute_diff,
    diff_against_baseline,
)

__all__ = [
    "KeyedLock",
    "DraftMutex",
    "ReviewStateMachine",
    "PublishResult",
    "RevisionRunner",
    "RevisionTicket",
    "RevisionPoll",
    "ContentDiff",
    "compute_diff",
    "diff_against_baseline",
    "IntakeService",
    "GenerationBatch",
    "DraftQueries",
    "DraftPage",
]
