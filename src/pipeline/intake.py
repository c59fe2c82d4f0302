"""
Topic intake: external scans and batch draft generation.

Both operations are single-flight.  A second scan while one is running is
rejected with ``SCAN_IN_PROGRESS``; a second generation batch with
``GENERATION_IN_PROGRESS``.  Per-topic failures are collected in the
batch result instead of aborting the whole batch.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from src.exceptions import (
    ConfigurationError,
    ImageGenerationError,
    RetryExhaustedError,
    ValidationError,
)
from src.logging import ComponentLogger, LogComponent
from src.models import Draft, GenerationType, Mode, Topic
from src.pipeline.locks import GENERATION, SCAN, KeyedLock
from src.pipeline.review import ReviewStateMachine

logger = logging.getLogger(__name__)

Scanner = Callable[[], Awaitable[int]]


@dataclass
class GenerationBatch:
    """Result of :meth:`IntakeService.generate`."""

    created: List[Draft] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)


class IntakeService:
    """Turns detected topics into drafts.

    Args:
        db: Content store (``get_topics``, ``archive_topics``,
            ``list_pending_topics``).
        review: Review state machine, used to create drafts.
        writer: Object exposing ``async generate_draft(topic, mode) -> dict``.
        locks: Shared single-flight lock service.
        scanner: Optional coroutine function running an external scan and
            returning the number of topics found.
        image_client: Optional cover generator exposing
            ``async generate_cover(title, content) -> dict``.
    """

    MAX_BATCH = 10

    def __init__(
        self,
        db: Any,
        review: ReviewStateMachine,
        writer: Any,
        locks: KeyedLock,
        scanner: Optional[Scanner] = None,
        image_client: Any = None,
    ) -> None:
        self.db = db
        self.review = review
        self.writer = writer
        self.locks = locks
        self.scanner = scanner
        self.image_client = image_client
        self.log = ComponentLogger(LogComponent.INTAKE)

    async def pending_topics(self, limit: int = 20) -> List[Topic]:
        return await self.db.list_pending_topics(limit)

    async def scan(self) -> int:
        """Run the external topic scanner.

        Raises:
            ConfigurationError: If no scanner is configured.
            OperationInProgressError: If a scan is already running.
        """
        if self.scanner is None:
            raise ConfigurationError("No topic scanner configured")
        async with self.locks.guard(SCAN, "intake"):
            async with self.log.timed("Topic scan"):
                found = await self.scanner()
        logger.info("[INTAKE] Scan finished: %d topics", found)
        return found

    async def generate(
        self,
        topic_ids: Sequence[str],
        mode: Mode = Mode.FACTUAL,
        with_cover: bool = False,
        generation_type: GenerationType = GenerationType.MANUAL,
    ) -> GenerationBatch:
        """Generate one draft per topic.

        Archived or unknown topics are skipped.  Topics that produced a draft
        are archived afterwards.

        Raises:
            ValidationError: If *topic_ids* is empty or too large.
            OperationInProgressError: If a batch is already running.
        """
        ids = list(dict.fromkeys(topic_ids))
        if not ids:
            raise ValidationError("topic_ids must not be empty")
        if len(ids) > self.MAX_BATCH:
            raise ValidationError(f"at most {self.MAX_BATCH} topics per batch")

        batch = GenerationBatch()
        async with self.locks.guard(GENERATION, "intake"):
            topics = {t.id: t for t in await self.db.get_topics(ids)}
            for topic_id in ids:
                topic = topics.get(topic_id)
                if topic is None or topic.archived:
                    batch.skipped.append(topic_id)
                    continue
                try:
                    batch.created.append(
                        await self._generate_one(topic, mode, with_cover, generation_type)
                    )
                except Exception as e:
                    logger.warning(
                        "[INTAKE] Generation failed for topic %s", topic_id, exc_info=True
                    )
                    batch.failed[topic_id] = str(e) or type(e).__name__

            consumed = [d.topic_id for d in batch.created if d.topic_id]
            await self.db.archive_topics(consumed)

        await self.log.info(
            "Generation batch finished",
            data={
                "created": len(batch.created),
                "skipped": len(batch.skipped),
                "failed": len(batch.failed),
                "mode": mode.value,
            },
        )
        return batch

    async def _generate_one(
        self, topic: Topic, mode: Mode, with_cover: bool, generation_type: GenerationType
    ) -> Draft:
        content = await self.writer.generate_draft(topic, mode)
        cover_url = None
        if with_cover and self.image_client is not None:
            try:
                cover = await self.image_client.generate_cover(
                    content["title"], content["body_html"]
                )
                cover_url = cover["url"]
            except (ImageGenerationError, RetryExhaustedError) as e:
                logger.warning("[INTAKE] Cover generation failed for %s: %s", topic.id, e)
        return await self.review.create_draft(
            title=content["title"],
            mode=mode,
            summary=content.get("summary", ""),
            body_html=content["body_html"],
            category=content.get("category") or topic.category,
            tags=content.get("tags") or [],
            cover_image_url=cover_url,
            topic_id=topic.id,
            generation_type=generation_type,
        )


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "GenerationBatch",
    "IntakeService",
]
