"""Tests for src.scheduling.publishing_scheduler -- the background loop."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.exceptions import OperationInProgressError
from src.models import DraftStatus, ReviewStatus, SocialStatus
from src.scheduling.publishing_scheduler import PublishingScheduler

from conftest import make_draft


def _loop(recovery_every=3):
    site = MagicMock()
    site.recalculate = AsyncMock(return_value="recalculated")
    site.publish_due = AsyncMock(return_value="published")
    social = MagicMock()
    social.execute = AsyncMock(return_value="shared")
    social.recover_stuck = AsyncMock(return_value=[])
    return PublishingScheduler(site, social, check_interval_seconds=1,
                               recovery_interval_cycles=recovery_every)


class TestRunCycle:

    @pytest.mark.asyncio
    async def test_runs_every_step(self, sample_utc_now):
        loop = _loop()
        results = await loop.run_cycle(sample_utc_now)
        assert results == {
            "recalculate": "recalculated",
            "publish_due": "published",
            "social": "shared",
        }
        loop.site.recalculate.assert_awaited_once_with(sample_utc_now)

    @pytest.mark.asyncio
    async def test_recovery_every_n_cycles(self, sample_utc_now):
        loop = _loop(recovery_every=2)
        first = await loop.run_cycle(sample_utc_now)
        second = await loop.run_cycle(sample_utc_now)
        assert "recovered" not in first
        assert second["recovered"] == []
        assert loop.cycle_count == 2

    @pytest.mark.asyncio
    async def test_failing_step_does_not_skip_others(self, sample_utc_now):
        loop = _loop()
        loop.site.recalculate.side_effect = RuntimeError("boom")
        loop.site.publish_due.side_effect = OperationInProgressError("due_publish")
        results = await loop.run_cycle(sample_utc_now)
        assert results["recalculate"] is None
        assert results["publish_due"] is None
        assert results["social"] == "shared"


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_stop_ends_loop(self):
        loop = _loop()
        task = asyncio.create_task(loop.start())
        await asyncio.sleep(0.05)
        await loop.stop()
        await asyncio.wait_for(task, timeout=2)
        assert loop.cycle_count >= 1

    @pytest.mark.asyncio
    async def test_cancel_ends_loop(self):
        loop = _loop()
        task = asyncio.create_task(loop.start())
        await asyncio.sleep(0.05)
        task.cancel()
        await asyncio.wait_for(task, timeout=2)
        assert task.done()


class TestEndToEnd:

    @pytest.mark.asyncio
    async def test_approved_draft_reaches_site_and_social(
        self, pipeline, fake_db, publisher, sample_utc_now
    ):
        draft = fake_db.add(make_draft(review_status=ReviewStatus.APPROVED))

        await pipeline.loop.run_cycle(sample_utc_now)
        stored = fake_db.drafts[draft.id]
        assert stored.status is DraftStatus.PUBLISHED
        assert stored.social.status is SocialStatus.PUBLISHED
        assert len(publisher.posts) == 1

        await pipeline.loop.run_cycle(sample_utc_now + timedelta(minutes=1))
        assert len(publisher.posts) == 1
