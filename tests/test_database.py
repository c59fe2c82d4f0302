"""Tests for the src.database module.

Covers:
- SupabaseConfig environment loading.
- DraftFilter -> PostgREST translation in SupabaseDB._apply_filter.
- Draft CRUD, conditional social claim and article upsert against a mocked
  Supabase client.
- validate_not_empty and validate_positive helpers.
"""

from datetime import timedelta
from unittest.mock import MagicMock, call

import pytest

from src.database import SupabaseConfig, SupabaseDB, validate_not_empty, validate_positive
from src.exceptions import DatabaseError, ValidationError
from src.models import (
    SITE_SCHEDULE_ELIGIBLE,
    DraftFilter,
    Mode,
    due_for_publish,
    social_share_eligible,
)

from conftest import make_draft


# =============================================================================
# SupabaseConfig
# =============================================================================


class TestSupabaseConfig:

    def test_from_env_raises_when_vars_missing(self):
        with pytest.raises(ValueError, match="SUPABASE_URL and SUPABASE_SERVICE_KEY"):
            SupabaseConfig.from_env()

    def test_from_env_raises_when_key_missing(self, monkeypatch):
        monkeypatch.setenv("SUPABASE_URL", "https://example.supabase.co")
        with pytest.raises(ValueError):
            SupabaseConfig.from_env()

    def test_from_env_succeeds(self, monkeypatch):
        monkeypatch.setenv("SUPABASE_URL", "https://newsroom.supabase.co")
        monkeypatch.setenv("SUPABASE_SERVICE_KEY", "service-key")
        config = SupabaseConfig.from_env()
        assert config.url == "https://newsroom.supabase.co"
        assert config.key == "service-key"


# =============================================================================
# Filter translation
# =============================================================================


class TestApplyFilter:
    """_apply_filter must express the same conditions as DraftFilter.matches."""

    @staticmethod
    def _query():
        query = MagicMock()
        for name in ("in_", "eq", "is_", "lte", "gte"):
            getattr(query, name).return_value = query
        query.not_ = query
        return query

    def test_empty_filter_adds_nothing(self):
        query = self._query()
        SupabaseDB._apply_filter(query, DraftFilter())
        query.in_.assert_not_called()
        query.eq.assert_not_called()

    def test_site_schedule_eligible(self):
        query = self._query()
        SupabaseDB._apply_filter(query, SITE_SCHEDULE_ELIGIBLE)
        query.in_.assert_has_calls(
            [call("status", ["draft"]), call("review_status", ["approved"])]
        )
        query.is_.assert_called_once_with("scheduled_at", "null")

    def test_due_for_publish(self, sample_utc_now):
        query = self._query()
        SupabaseDB._apply_filter(query, due_for_publish(sample_utc_now))
        query.is_.assert_called_once_with("scheduled_at", "null")  # via not_
        query.lte.assert_called_once_with("scheduled_at", sample_utc_now.isoformat())

    def test_social_eligibility_bounds(self, sample_utc_now):
        query = self._query()
        SupabaseDB._apply_filter(
            query, social_share_eligible(sample_utc_now, cooldown_minutes=5, max_age_days=2)
        )
        query.in_.assert_any_call("social_status", ["none", "error"])
        query.lte.assert_called_once_with(
            "published_at", (sample_utc_now - timedelta(minutes=5)).isoformat()
        )
        query.gte.assert_called_once_with(
            "published_at", (sample_utc_now - timedelta(days=2)).isoformat()
        )

    def test_mode_and_category(self):
        query = self._query()
        SupabaseDB._apply_filter(query, DraftFilter(modes=(Mode.OPINION,), category="Sports"))
        query.in_.assert_called_once_with("mode", ["opinion"])
        query.eq.assert_called_once_with("category", "Sports")


# =============================================================================
# SupabaseDB operations (mocked client)
# =============================================================================


class TestSupabaseDBOperations:

    @pytest.fixture
    def db(self, mock_supabase_client):
        return SupabaseDB(mock_supabase_client)

    @pytest.fixture
    def table(self, mock_supabase_client):
        return mock_supabase_client.table.return_value

    @pytest.mark.asyncio
    async def test_get_draft_not_found(self, db):
        assert await db.get_draft("missing") is None

    @pytest.mark.asyncio
    async def test_get_draft_maps_row(self, db, table):
        row = make_draft(title="Storm hits the coast").to_row()
        table.result = MagicMock(data=[row])
        draft = await db.get_draft(row["id"])
        assert draft.title == "Storm hits the coast"
        table.eq.assert_called_with("id", row["id"])

    @pytest.mark.asyncio
    async def test_create_draft_requires_data(self, db):
        with pytest.raises(DatabaseError):
            await db.create_draft(make_draft())

    @pytest.mark.asyncio
    async def test_update_draft_bumps_updated_at(self, db, table):
        draft = make_draft()
        before = draft.updated_at
        table.result = MagicMock(data=[draft.to_row()])
        await db.update_draft(draft)
        assert draft.updated_at >= before
        table.update.assert_called_once()

    @pytest.mark.asyncio
    async def test_update_vanished_draft(self, db):
        with pytest.raises(DatabaseError, match="vanished"):
            await db.update_draft(make_draft())

    @pytest.mark.asyncio
    async def test_list_drafts_pagination(self, db, table):
        await db.list_drafts(SITE_SCHEDULE_ELIGIBLE, order_by="created_at", desc=False,
                             limit=20, offset=40)
        table.order.assert_called_once_with("created_at", desc=False)
        table.range.assert_called_once_with(40, 59)

    @pytest.mark.asyncio
    async def test_list_drafts_rejects_bad_limit(self, db):
        with pytest.raises(ValidationError):
            await db.list_drafts(limit=0)

    @pytest.mark.asyncio
    async def test_count_drafts(self, db, table):
        table.result = MagicMock(data=[], count=7)
        assert await db.count_drafts(SITE_SCHEDULE_ELIGIBLE) == 7
        table.select.assert_called_with("id", count="exact")

    @pytest.mark.asyncio
    async def test_claim_social_share_success(self, db, table, sample_utc_now):
        table.result = MagicMock(data=[{"id": "d1"}])
        assert await db.claim_social_share("d1", 1, sample_utc_now) is True
        payload = table.update.call_args.args[0]
        assert payload["social_status"] == "sharing"
        assert payload["social_attempts"] == 1
        table.in_.assert_called_with("social_status", ["none", "error"])
        table.eq.assert_any_call("status", "published")

    @pytest.mark.asyncio
    async def test_claim_social_share_lost(self, db):
        assert await db.claim_social_share("d1", 1) is False

    @pytest.mark.asyncio
    async def test_create_article_upserts_on_draft_id(self, db, table):
        table.result = MagicMock(data=[{"id": "article-1"}])
        draft = make_draft()
        assert await db.create_article(draft) == "article-1"
        args, kwargs = table.upsert.call_args
        assert args[0]["draft_id"] == draft.id
        assert kwargs == {"on_conflict": "draft_id"}

    @pytest.mark.asyncio
    async def test_get_last_social_share_at(self, db, table, sample_utc_now):
        table.result = MagicMock(data=[{"social_shared_at": "2025-06-15T12:00:00Z"}])
        assert await db.get_last_social_share_at() == sample_utc_now

    @pytest.mark.asyncio
    async def test_archive_topics_empty_is_noop(self, db, mock_supabase_client):
        assert await db.archive_topics([]) == 0
        mock_supabase_client.table.assert_not_called()

    @pytest.mark.asyncio
    async def test_save_event_log_requires_level(self, db):
        with pytest.raises(ValidationError):
            await db.save_event_log({"timestamp": "2025-06-15T12:00:00Z"})


# =============================================================================
# Validation helpers
# =============================================================================


class TestValidationHelpers:

    @pytest.mark.parametrize("value", [None, "", "   "], ids=["none", "empty", "blank"])
    def test_validate_not_empty_rejects(self, value):
        with pytest.raises(ValidationError):
            validate_not_empty(value, "draft_id")

    def test_validate_not_empty_accepts(self):
        validate_not_empty("d1", "draft_id")
        validate_not_empty(0, "count")

    @pytest.mark.parametrize("value", [None, 0, -1, -0.5])
    def test_validate_positive_rejects(self, value):
        with pytest.raises(ValidationError):
            validate_positive(value, "limit")

    def test_validate_positive_accepts(self):
        validate_positive(1, "limit")
        validate_positive(0.1, "delay")
