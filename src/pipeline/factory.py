"""
Wiring for the editorial pipeline.

``build_pipeline()`` assembles every service around one content store, one
``KeyedLock`` and one ``DraftMutex`` so that locks are shared between the
review machine, the revision runner and both schedulers.
``create_pipeline()`` does the same with the real Supabase, Claude,
Facebook and image clients built from the environment.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from src.config import Settings, get_settings
from src.exceptions import ConfigurationError
from src.logging import init_logger
from src.pipeline.intake import IntakeService, Scanner
from src.pipeline.locks import DraftMutex, KeyedLock
from src.pipeline.queries import DraftQueries
from src.pipeline.review import Listener, ReviewStateMachine
from src.pipeline.revision import RevisionRunner
from src.scheduling.publishing_scheduler import PublishingScheduler
from src.scheduling.site_scheduler import SiteAutoScheduler
from src.scheduling.social_scheduler import SocialAutoScheduler

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    """All editorial services, sharing one store and one set of locks."""

    settings: Settings
    db: Any
    locks: KeyedLock
    mutex: DraftMutex
    review: ReviewStateMachine
    revision: RevisionRunner
    site: SiteAutoScheduler
    social: SocialAutoScheduler
    intake: IntakeService
    queries: DraftQueries
    loop: PublishingScheduler

    async def shutdown(self) -> None:
        """Stop the loop and wait for revision jobs."""
        await self.loop.stop()
        await self.revision.drain()


def build_pipeline(
    settings: Settings,
    db: Any,
    editor: Any,
    publisher: Any = None,
    image_client: Any = None,
    scanner: Optional[Scanner] = None,
    listener: Optional[Listener] = None,
) -> Pipeline:
    """Assemble the services from explicit collaborators.

    Args:
        settings: Loaded settings.
        db: Content store with the ``SupabaseDB`` API.
        editor: AI writer/reviser (``generate_draft`` and ``revise_draft``).
        publisher: Social publisher; required when the social schedule is on.
        image_client: Optional cover generator.
        scanner: Optional topic scanner.
        listener: Optional ``stats.refresh`` listener.

    Raises:
        ConfigurationError: If the social schedule is enabled without a
            publisher.
    """
    if settings.social_schedule.enabled and publisher is None:
        raise ConfigurationError("Social schedule enabled but no publisher configured")

    locks = KeyedLock()
    mutex = DraftMutex()
    tz = settings.tzinfo

    review = ReviewStateMachine(db, mutex, listener, settings.min_title_chars)
    revision = RevisionRunner(db, review, editor, settings.revision)
    site = SiteAutoScheduler(db, review, locks, settings.site_schedule, tz)
    social = SocialAutoScheduler(
        db,
        publisher,
        locks,
        mutex,
        settings.social_schedule,
        tz,
        settings.site_base_url,
        settings.loop.stuck_share_timeout_minutes,
    )
    intake = IntakeService(db, review, editor, locks, scanner, image_client)
    queries = DraftQueries(db, settings.social_schedule)
    loop = PublishingScheduler(
        site,
        social,
        settings.loop.check_interval_seconds,
        settings.loop.recovery_interval_cycles,
    )
    return Pipeline(
        settings=settings,
        db=db,
        locks=locks,
        mutex=mutex,
        review=review,
        revision=revision,
        site=site,
        social=social,
        intake=intake,
        queries=queries,
        loop=loop,
    )


async def create_pipeline(
    settings: Optional[Settings] = None,
    scanner: Optional[Scanner] = None,
    listener: Optional[Listener] = None,
) -> Pipeline:
    """Build the pipeline with production clients from the environment."""
    from src.database import get_db
    from src.tools.claude_client import ClaudeClient, ClaudeEditor
    from src.tools.facebook_client import FacebookPublisher
    from src.tools.image_client import CoverImageClient

    settings = settings or get_settings()
    db = await get_db()
    init_logger(log_dir=settings.log_dir, db=db)

    editor = ClaudeEditor(
        ClaudeClient(model=settings.revision.model),
        temperature=settings.revision.temperature,
    )
    publisher = None
    if settings.social_schedule.enabled:
        publisher = FacebookPublisher()
    else:
        logger.info("[STARTUP] Social schedule disabled, no publisher created")

    return build_pipeline(
        settings,
        db,
        editor,
        publisher=publisher,
        image_client=CoverImageClient(),
        scanner=scanner,
        listener=listener,
    )


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "Pipeline",
    "build_pipeline",
    "create_pipeline",
]
