"""
Unified async database client for all editorial operations.

ALL database operations go through the SupabaseDB class defined here.
No direct Supabase calls should appear anywhere else in the codebase.

Usage::

    from src.database import SupabaseDB, get_db

    # In async context:
    db = await get_db()
    draft = await db.get_draft(draft_id)

Tables:
    drafts      one row per Draft (see ``Draft.to_row``)
    articles    published articles, keyed by ``draft_id``
    topics      detected story candidates
    event_logs  structured EventLog entries
"""

import asyncio
import logging
import os
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Union

from supabase import AsyncClient, create_async_client

from src.exceptions import DatabaseError, ValidationError
from src.models import (
    Draft,
    DraftFilter,
    DraftStatus,
    SocialStatus,
    Topic,
)
from src.utils import generate_id, parse_timestamp, to_iso, utc_now

logger = logging.getLogger(__name__)


# =============================================================================
# VALIDATION HELPERS
# =============================================================================


def validate_not_empty(value: Any, name: str) -> None:
    """Validate that *value* is not ``None`` or an empty string.

    Raises:
        ValidationError: If *value* is ``None`` or a blank string.
    """
    if value is None:
        raise ValidationError(f"{name} cannot be None")
    if isinstance(value, str) and not value.strip():
        raise ValidationError(f"{name} cannot be empty string")


def validate_positive(value: Union[int, float], name: str) -> None:
    """Validate that *value* is strictly positive (> 0)."""
    if value is None:
        raise ValidationError(f"{name} cannot be None")
    if value <= 0:
        raise ValidationError(f"{name} must be positive, got {value}")


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass
class SupabaseConfig:
    """Supabase configuration loaded from environment variables.

    Attributes:
        url: The Supabase project URL (``SUPABASE_URL``).
        key: The service-role key (``SUPABASE_SERVICE_KEY``).
    """

    url: str
    key: str

    @classmethod
    def from_env(cls) -> "SupabaseConfig":
        """Create a config instance from environment variables.

        Raises:
            ValueError: If either variable is missing or empty.
        """
        url = os.environ.get("SUPABASE_URL")
        key = os.environ.get("SUPABASE_SERVICE_KEY")

        if not url or not key:
            raise ValueError(
                "SUPABASE_URL and SUPABASE_SERVICE_KEY must be set"
            )

        return cls(url=url, key=key)


# =============================================================================
# SUPABASE DATABASE CLIENT
# =============================================================================


class SupabaseDB:
    """Unified **async** database client for all editorial operations.

    **Important:** Use the :meth:`create` factory method instead of
    ``__init__`` directly -- the underlying async client requires an
    ``await`` during initialisation.
    """

    def __init__(self, client: AsyncClient) -> None:
        """Private constructor.  Use :meth:`create` factory method."""
        self.client = client

    @classmethod
    async def create(
        cls, config: Optional[SupabaseConfig] = None
    ) -> "SupabaseDB":
        """Factory method to create an async :class:`SupabaseDB` instance."""
        config = config or SupabaseConfig.from_env()
        client = await create_async_client(config.url, config.key)
        return cls(client)

    # -----------------------------------------------------------------
    # FILTER TRANSLATION
    # -----------------------------------------------------------------

    @staticmethod
    def _apply_filter(query: Any, draft_filter: DraftFilter) -> Any:
        """Translate a :class:`DraftFilter` into PostgREST conditions.

        Must stay equivalent to ``DraftFilter.matches``.
        """
        f = draft_filter
        if f.statuses:
            query = query.in_("status", [s.value for s in f.statuses])
        if f.review_statuses:
            query = query.in_(
                "review_status", [s.value for s in f.review_statuses]
            )
        if f.social_statuses:
            query = query.in_(
                "social_status", [s.value for s in f.social_statuses]
            )
        if f.modes:
            query = query.in_("mode", [m.value for m in f.modes])
        if f.category is not None:
            query = query.eq("category", f.category)
        if f.scheduled is True:
            query = query.not_.is_("scheduled_at", "null")
        elif f.scheduled is False:
            query = query.is_("scheduled_at", "null")
        if f.scheduled_before is not None:
            query = query.lte("scheduled_at", to_iso(f.scheduled_before))
        if f.published_before is not None:
            query = query.lte("published_at", to_iso(f.published_before))
        if f.published_after is not None:
            query = query.gte("published_at", to_iso(f.published_after))
        if f.created_from is not None:
            query = query.gte("created_at", to_iso(f.created_from))
        if f.created_to is not None:
            query = query.lte("created_at", to_iso(f.created_to))
        if f.sharing_since_before is not None:
            query = query.lte(
                "social_sharing_since", to_iso(f.sharing_since_before)
            )
        return query

    # -----------------------------------------------------------------
    # DRAFTS
    # -----------------------------------------------------------------

    async def create_draft(self, draft: Draft) -> Draft:
        """Insert a new draft row.

        Raises:
            ValidationError: If the draft has no title.
            DatabaseError: When the insert returns no data.
        """
        validate_not_empty(draft.title, "draft.title")

        result = await (
            self.client.table("drafts").insert(draft.to_row()).execute()
        )
        if not result.data:
            raise DatabaseError("Insert succeeded but returned no data")
        return Draft.from_row(result.data[0])

    async def get_draft(self, draft_id: str) -> Optional[Draft]:
        """Get draft by ID, or ``None`` if not found."""
        validate_not_empty(draft_id, "draft_id")

        result = await (
            self.client.table("drafts")
            .select("*")
            .eq("id", draft_id)
            .execute()
        )
        return Draft.from_row(result.data[0]) if result.data else None

    async def update_draft(self, draft: Draft) -> Draft:
        """Write back the full draft row and bump ``updated_at``.

        Raises:
            DatabaseError: When the row no longer exists.
        """
        validate_not_empty(draft.id, "draft.id")
        draft.updated_at = utc_now()

        result = await (
            self.client.table("drafts")
            .update(draft.to_row())
            .eq("id", draft.id)
            .execute()
        )
        if not result.data:
            raise DatabaseError(f"Draft {draft.id} vanished during update")
        return Draft.from_row(result.data[0])

    async def list_drafts(
        self,
        draft_filter: Optional[DraftFilter] = None,
        order_by: str = "updated_at",
        desc: bool = True,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Draft]:
        """List drafts matching *draft_filter*.

        Args:
            draft_filter: Filter to apply (``None`` lists everything).
            order_by: Column to sort on.
            desc: Sort descending when ``True``.
            limit: Page size.
            offset: Number of rows to skip.
        """
        validate_positive(limit, "limit")
        if offset < 0:
            raise ValidationError(f"offset must be >= 0, got {offset}")

        query = self.client.table("drafts").select("*")
        if draft_filter is not None:
            query = self._apply_filter(query, draft_filter)
        result = await (
            query.order(order_by, desc=desc)
            .range(offset, offset + limit - 1)
            .execute()
        )
        return [Draft.from_row(row) for row in result.data or []]

    async def count_drafts(
        self, draft_filter: Optional[DraftFilter] = None
    ) -> int:
        """Count drafts matching *draft_filter* without fetching rows."""
        query = self.client.table("drafts").select("id", count="exact")
        if draft_filter is not None:
            query = self._apply_filter(query, draft_filter)
        result = await query.execute()
        return result.count or 0

    async def claim_social_share(
        self, draft_id: str, attempts: int, now: Optional[datetime] = None
    ) -> bool:
        """Atomically move a draft's social status to ``sharing``.

        Only succeeds if the draft is published and its social status is
        ``none`` or ``error``, preventing double-posting.

        Returns:
            ``True`` if the claim succeeded, ``False`` otherwise.
        """
        validate_not_empty(draft_id, "draft_id")
        now = now or utc_now()

        result = await (
            self.client.table("drafts")
            .update({
                "social_status": SocialStatus.SHARING.value,
                "social_sharing_since": to_iso(now),
                "social_attempts": attempts,
                "updated_at": to_iso(now),
            })
            .eq("id", draft_id)
            .eq("status", DraftStatus.PUBLISHED.value)
            .in_(
                "social_status",
                [SocialStatus.NONE.value, SocialStatus.ERROR.value],
            )
            .execute()
        )
        # If data is returned, the update matched and the claim succeeded
        return bool(result.data)

    # -----------------------------------------------------------------
    # SOCIAL SHARE STATISTICS
    # -----------------------------------------------------------------

    async def count_social_shares_since(self, since: datetime) -> int:
        """Count drafts successfully shared at or after *since*."""
        result = await (
            self.client.table("drafts")
            .select("id", count="exact")
            .eq("social_status", SocialStatus.PUBLISHED.value)
            .gte("social_shared_at", to_iso(since))
            .execute()
        )
        return result.count or 0

    async def get_last_social_share_at(self) -> Optional[datetime]:
        """Timestamp of the most recent successful social share."""
        result = await (
            self.client.table("drafts")
            .select("social_shared_at")
            .eq("social_status", SocialStatus.PUBLISHED.value)
            .not_.is_("social_shared_at", "null")
            .order("social_shared_at", desc=True)
            .limit(1)
            .execute()
        )
        if not result.data:
            return None
        return parse_timestamp(result.data[0]["social_shared_at"])

    # -----------------------------------------------------------------
    # ARTICLES
    # -----------------------------------------------------------------

    async def create_article(self, draft: Draft) -> str:
        """Create (or return) the site article for *draft*.

        Upserts on ``draft_id`` so a publish retried after a crash between
        the article insert and the draft update reuses the same article.

        Returns:
            The article id.
        """
        validate_not_empty(draft.id, "draft.id")
        article = {
            "id": draft.published_as or generate_id(),
            "draft_id": draft.id,
            "title": draft.title,
            "summary": draft.summary,
            "body_html": draft.body_html,
            "category": draft.category,
            "tags": list(draft.tags),
            "cover_image_url": draft.cover_image_url,
            "mode": draft.mode.value,
            "published_at": to_iso(utc_now()),
        }
        result = await (
            self.client.table("articles")
            .upsert(article, on_conflict="draft_id")
            .execute()
        )
        if not result.data:
            raise DatabaseError("Upsert succeeded but returned no data")
        return result.data[0]["id"]

    # -----------------------------------------------------------------
    # TOPICS
    # -----------------------------------------------------------------

    async def list_pending_topics(self, limit: int = 20) -> List[Topic]:
        """Non-archived topics, most impactful first."""
        validate_positive(limit, "limit")
        result = await (
            self.client.table("topics")
            .select("*")
            .eq("archived", False)
            .order("impact", desc=True)
            .limit(limit)
            .execute()
        )
        return [Topic.from_row(row) for row in result.data or []]

    async def get_topics(self, topic_ids: Sequence[str]) -> List[Topic]:
        """Fetch topics by id (archived ones included)."""
        if not topic_ids:
            return []
        result = await (
            self.client.table("topics")
            .select("*")
            .in_("id", list(topic_ids))
            .execute()
        )
        return [Topic.from_row(row) for row in result.data or []]

    async def archive_topics(self, topic_ids: Sequence[str]) -> int:
        """Mark topics as consumed so they are not offered again.

        Returns:
            Number of topics archived.
        """
        if not topic_ids:
            return 0
        result = await (
            self.client.table("topics")
            .update({"archived": True})
            .in_("id", list(topic_ids))
            .execute()
        )
        return len(result.data or [])

    # -----------------------------------------------------------------
    # EVENT LOGS
    # -----------------------------------------------------------------

    async def save_event_log(self, log_entry: Dict[str, Any]) -> str:
        """Save a structured event log entry.

        Raises:
            ValidationError: If ``timestamp`` or ``level`` is missing.
            DatabaseError: When the insert returns no data.
        """
        if not log_entry:
            raise ValidationError("log_entry cannot be None or empty")
        if "timestamp" not in log_entry or "level" not in log_entry:
            raise ValidationError(
                "log_entry must have 'timestamp' and 'level'"
            )

        result = await (
            self.client.table("event_logs").insert(log_entry).execute()
        )
        if not result.data:
            raise DatabaseError("Insert succeeded but returned no data")
        return result.data[0]["id"]


# =============================================================================
# GLOBAL DATABASE INSTANCE (Singleton)
# =============================================================================

_db_instance: Optional[SupabaseDB] = None
_db_lock: Optional[asyncio.Lock] = None

# Thread lock for safe initialisation of the async lock itself.
_init_lock = threading.Lock()


async def get_db() -> SupabaseDB:
    """Get the global async database instance.

    The first call creates the :class:`SupabaseDB` singleton; subsequent
    calls return the same instance.
    """
    global _db_instance, _db_lock

    if _db_lock is None:
        with _init_lock:
            if _db_lock is None:
                _db_lock = asyncio.Lock()

    if _db_instance is None:
        async with _db_lock:
            if _db_instance is None:
                _db_instance = await SupabaseDB.create()

    return _db_instance


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "SupabaseConfig",
    "SupabaseDB",
    "get_db",
    "validate_not_empty",
    "validate_positive",
]
