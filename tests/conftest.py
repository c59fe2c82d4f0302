"""Shared fixtures for the editorial pipeline test suite."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.config import Settings, SiteScheduleConfig, SocialScheduleConfig
from src.exceptions import DatabaseError, RevisionGenerationError, SocialPublishError
from src.logging import init_logger
from src.models import (
    ContentSnapshot,
    Draft,
    DraftFilter,
    DraftStatus,
    Mode,
    ReviewStatus,
    SocialStatus,
    Topic,
)
from src.pipeline.factory import build_pipeline
from src.utils import generate_id, utc_now


LONG_BODY = "<p>" + "The council approved the budget after a long session. " * 4 + "</p>"


# ---------------------------------------------------------------------------
# Ensure we don't hit real APIs during tests
# ---------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _block_env_keys(monkeypatch):
    """Clear API keys and config overrides so tests never hit real services."""
    keys = [
        "SUPABASE_URL",
        "SUPABASE_SERVICE_KEY",
        "ANTHROPIC_API_KEY",
        "FACEBOOK_PAGE_ID",
        "FACEBOOK_PAGE_TOKEN",
        "FACEBOOK_GRAPH_VERSION",
        "COVER_IMAGE_API_KEY",
        "COVER_IMAGE_API_URL",
        "COVER_IMAGE_MODEL",
        "SITE_SCHEDULE_ENABLED",
        "SITE_SCHEDULE_INTERVAL",
        "SITE_SCHEDULE_START_HOUR",
        "SITE_SCHEDULE_END_HOUR",
        "SITE_SCHEDULE_MAX_PER_DAY",
        "SOCIAL_SCHEDULE_ENABLED",
        "SOCIAL_SCHEDULE_INTERVAL",
        "SOCIAL_SCHEDULE_START_HOUR",
        "SOCIAL_SCHEDULE_END_HOUR",
        "SOCIAL_SCHEDULE_MAX_PER_DAY",
        "REVISION_MODEL",
        "REVISION_MIN_BODY_CHARS",
        "SCHEDULER_CHECK_INTERVAL",
        "EDITORIAL_TIMEZONE",
        "SITE_BASE_URL",
        "LOG_LEVEL",
        "LOG_DIR",
    ]
    for key in keys:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def event_log(tmp_path):
    """Route the global EventLog to a temporary directory."""
    return init_logger(log_dir=str(tmp_path / "logs"))


# ---------------------------------------------------------------------------
# Common datetime fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def sample_utc_now():
    """A fixed UTC datetime for deterministic tests (a Sunday, noon)."""
    return datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Mock Supabase client
# ---------------------------------------------------------------------------
@pytest.fixture
def mock_supabase_client():
    """A mock Supabase async client.

    Every query builder method returns the same ``table_mock`` so chains
    of any length work.  Set ``table_mock.result`` to change what
    ``execute()`` returns.
    """
    client = AsyncMock()
    table_mock = MagicMock()
    for name in (
        "select", "insert", "update", "upsert", "delete", "eq", "in_", "is_",
        "gte", "lte", "order", "limit", "range", "single",
    ):
        getattr(table_mock, name).return_value = table_mock
    table_mock.not_ = table_mock
    table_mock.result = MagicMock(data=[], count=0)

    async def mock_execute():
        return table_mock.result

    table_mock.execute = mock_execute
    client.table = MagicMock(return_value=table_mock)
    return client


# ---------------------------------------------------------------------------
# In-memory doubles
# ---------------------------------------------------------------------------
def _sort_key(order_by: str):
    def key(draft: Draft):
        if order_by == "social_sharing_since":
            return draft.social.sharing_since
        return getattr(draft, order_by)
    return key


class FakeDraftDB:
    """In-memory stand-in for ``SupabaseDB``.

    Stores copies so that services only see changes they persisted, the
    same as with a real database.
    """

    def __init__(self) -> None:
        self.drafts: Dict[str, Draft] = {}
        self.topics: Dict[str, Topic] = {}
        self.articles: Dict[str, str] = {}
        self.event_logs: List[Dict[str, Any]] = []
        self.claims: List[str] = []
        self.update_calls = 0

    def add(self, draft: Draft) -> Draft:
        self.drafts[draft.id] = draft.copy()
        return draft

    # Drafts -----------------------------------------------------------

    async def create_draft(self, draft: Draft) -> Draft:
        self.drafts[draft.id] = draft.copy()
        return draft.copy()

    async def get_draft(self, draft_id: str) -> Optional[Draft]:
        draft = self.drafts.get(draft_id)
        return draft.copy() if draft else None

    async def update_draft(self, draft: Draft) -> Draft:
        if draft.id not in self.drafts:
            raise DatabaseError(f"Draft {draft.id} vanished during update")
        self.update_calls += 1
        draft.updated_at = utc_now()
        self.drafts[draft.id] = draft.copy()
        return draft.copy()

    async def list_drafts(
        self,
        draft_filter: Optional[DraftFilter] = None,
        order_by: str = "updated_at",
        desc: bool = True,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Draft]:
        rows = [
            d for d in self.drafts.values()
            if draft_filter is None or draft_filter.matches(d)
        ]
        key = _sort_key(order_by)
        present = sorted((d for d in rows if key(d) is not None), key=key, reverse=desc)
        missing = [d for d in rows if key(d) is None]
        ordered = present + missing
        return [d.copy() for d in ordered[offset:offset + limit]]

    async def count_drafts(self, draft_filter: Optional[DraftFilter] = None) -> int:
        return sum(
            1 for d in self.drafts.values()
            if draft_filter is None or draft_filter.matches(d)
        )

    async def claim_social_share(
        self, draft_id: str, attempts: int, now: Optional[datetime] = None
    ) -> bool:
        draft = self.drafts.get(draft_id)
        if (
            draft is None
            or draft.status is not DraftStatus.PUBLISHED
            or draft.social.status not in (SocialStatus.NONE, SocialStatus.ERROR)
        ):
            return False
        draft.social.status = SocialStatus.SHARING
        draft.social.sharing_since = now or utc_now()
        draft.social.attempts = attempts
        self.claims.append(draft_id)
        return True

    async def count_social_shares_since(self, since: datetime) -> int:
        return sum(
            1 for d in self.drafts.values()
            if d.social.status is SocialStatus.PUBLISHED
            and d.social.shared_at is not None
            and d.social.shared_at >= since
        )

    async def get_last_social_share_at(self) -> Optional[datetime]:
        stamps = [
            d.social.shared_at for d in self.drafts.values()
            if d.social.status is SocialStatus.PUBLISHED and d.social.shared_at
        ]
        return max(stamps) if stamps else None

    # Articles ---------------------------------------------------------

    async def create_article(self, draft: Draft) -> str:
        if draft.id not in self.articles:
            self.articles[draft.id] = draft.published_as or generate_id()
        return self.articles[draft.id]

    # Topics -----------------------------------------------------------

    async def list_pending_topics(self, limit: int = 20) -> List[Topic]:
        pending = [t for t in self.topics.values() if not t.archived]
        return sorted(pending, key=lambda t: t.impact, reverse=True)[:limit]

    async def get_topics(self, topic_ids: Sequence[str]) -> List[Topic]:
        return [self.topics[t] for t in topic_ids if t in self.topics]

    async def archive_topics(self, topic_ids: Sequence[str]) -> int:
        archived = 0
        for topic_id in topic_ids:
            if topic_id in self.topics:
                self.topics[topic_id].archived = True
                archived += 1
        return archived

    # Event logs -------------------------------------------------------

    async def save_event_log(self, log_entry: Dict[str, Any]) -> str:
        self.event_logs.append(log_entry)
        return generate_id()


class FakeReviser:
    """Reviser double.  Set ``gate`` to hold jobs until the test releases them."""

    def __init__(self, body: str = LONG_BODY, error: Optional[Exception] = None) -> None:
        self.body = body
        self.error = error
        self.gate: Optional[asyncio.Event] = None
        self.calls: List[str] = []

    async def revise_draft(self, content: ContentSnapshot, notes: str):
        self.calls.append(notes)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return ContentSnapshot(content.title, content.summary, self.body), "fake-model"

    async def generate_draft(self, topic: Topic, mode: Mode) -> Dict[str, Any]:
        return {
            "title": f"Report: {topic.title}",
            "summary": topic.summary,
            "body_html": LONG_BODY,
            "tags": ["news"],
        }


class FakeWriter:
    """Writer double failing for the topic ids in ``fail``."""

    def __init__(self, fail: Sequence[str] = ()) -> None:
        self.fail = set(fail)
        self.calls: List[str] = []

    async def generate_draft(self, topic: Topic, mode: Mode) -> Dict[str, Any]:
        self.calls.append(topic.id)
        if topic.id in self.fail:
            raise RevisionGenerationError("writer returned no title or body")
        return {
            "title": f"Report: {topic.title}",
            "summary": topic.summary,
            "body_html": LONG_BODY,
            "tags": ["news"],
        }


class FakePublisher:
    """Social publisher double counting posts."""

    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error
        self.posts: List[Dict[str, str]] = []

    async def post(self, message: str, link: str) -> Dict[str, Any]:
        self.posts.append({"message": message, "link": link})
        if self.error is not None:
            raise self.error
        n = len(self.posts)
        return {"post_id": f"page_{n}", "permalink": f"https://www.facebook.com/page_{n}"}


def make_draft(**overrides: Any) -> Draft:
    """Build a draft with sensible defaults."""
    fields: Dict[str, Any] = {
        "id": generate_id(),
        "mode": Mode.FACTUAL,
        "title": "City council approves new budget",
        "summary": "The plan passed by a wide margin.",
        "body_html": LONG_BODY,
    }
    fields.update(overrides)
    return Draft(**fields)


def make_published(published_at: datetime, **overrides: Any) -> Draft:
    return make_draft(
        status=DraftStatus.PUBLISHED,
        review_status=ReviewStatus.APPROVED,
        published_at=published_at,
        published_as=generate_id(),
        **overrides,
    )


# ---------------------------------------------------------------------------
# Pipeline fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def fake_db():
    return FakeDraftDB()


@pytest.fixture
def reviser():
    return FakeReviser()


@pytest.fixture
def publisher():
    return FakePublisher()


@pytest.fixture
def settings(tmp_path):
    """UTC settings with both schedulers enabled and a full-day window."""
    return Settings(
        timezone="UTC",
        site_base_url="https://news.example.com",
        log_dir=str(tmp_path / "logs"),
        site_schedule=SiteScheduleConfig(
            enabled=True, interval_minutes=10, start_hour=0, end_hour=24
        ),
        social_schedule=SocialScheduleConfig(
            enabled=True, interval_minutes=30, start_hour=0, end_hour=24
        ),
    )


@pytest.fixture
def pipeline(settings, fake_db, reviser, publisher):
    return build_pipeline(settings, fake_db, reviser, publisher=publisher)


@pytest.fixture
def hours_ago(sample_utc_now):
    def _at(hours: float) -> datetime:
        return sample_utc_now - timedelta(hours=hours)
    return _at
