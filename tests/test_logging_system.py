"""
Tests for src.logging -- EventLog outputs, the global singleton,
ComponentLogger and TimedOperation.
"""

import json

import pytest

import src.logging.event_log as event_log_module
from src.logging import (
    ComponentLogger,
    EventLog,
    LogComponent,
    LogLevel,
    get_logger,
)

from conftest import FakeDraftDB


# ===========================================================================
# 1. EventLog
# ===========================================================================


class TestEventLog:

    @pytest.mark.asyncio
    async def test_writes_json_lines(self, tmp_path):
        log = EventLog(log_dir=str(tmp_path))
        await log.info(LogComponent.REVIEW, "Draft approved", draft_id="d1", data={"by": "ana"})

        lines = (tmp_path / "events.log").read_text(encoding="utf-8").splitlines()
        record = json.loads(lines[0])
        assert record["message"] == "Draft approved"
        assert record["component"] == "review"
        assert record["draft_id"] == "d1"
        assert record["data"] == {"by": "ana"}
        assert not (tmp_path / "errors.log").exists()

    @pytest.mark.asyncio
    async def test_errors_go_to_error_file(self, tmp_path):
        log = EventLog(log_dir=str(tmp_path))
        try:
            raise ValueError("bad slot")
        except ValueError as e:
            entry = await log.error(LogComponent.SITE_SCHEDULER, "Slot failed", error=e)

        assert entry.error_type == "ValueError"
        assert "bad slot" in entry.error_traceback
        assert (tmp_path / "errors.log").read_text(encoding="utf-8").count("\n") == 1

    @pytest.mark.asyncio
    async def test_get_recent_filters(self, tmp_path):
        log = EventLog(log_dir=str(tmp_path))
        await log.info(LogComponent.REVIEW, "one", draft_id="a")
        await log.warning(LogComponent.REVISION, "two", draft_id="b")
        await log.info(LogComponent.REVIEW, "three", draft_id="b")

        assert [e.message for e in log.get_recent()] == ["one", "two", "three"]
        assert [e.message for e in log.get_recent(limit=1)] == ["three"]
        assert [e.message for e in log.get_recent(level=LogLevel.WARNING)] == ["two"]
        assert [e.message for e in log.get_recent(component=LogComponent.REVIEW)] == [
            "one", "three"
        ]
        assert [e.message for e in log.get_recent(draft_id="b")] == ["two", "three"]

    @pytest.mark.asyncio
    async def test_run_id_tagging(self, tmp_path):
        log = EventLog(log_dir=str(tmp_path))
        log.set_run("cycle-7")
        entry = await log.info(LogComponent.SCHEDULER, "tick")
        assert entry.run_id == "cycle-7"

    @pytest.mark.asyncio
    async def test_supabase_respects_min_level(self, tmp_path):
        db = FakeDraftDB()
        log = EventLog(log_dir=str(tmp_path), db=db, min_level=LogLevel.WARNING)
        await log.info(LogComponent.REVIEW, "quiet")
        await log.warning(LogComponent.REVIEW, "loud")
        await log.flush()
        assert [row["message"] for row in db.event_logs] == ["loud"]

    @pytest.mark.asyncio
    async def test_supabase_failure_is_logged(self, tmp_path, caplog):
        class BrokenDB:
            async def save_event_log(self, entry):
                raise ConnectionError("offline")

        log = EventLog(log_dir=str(tmp_path), db=BrokenDB())
        await log.info(LogComponent.REVIEW, "still written to file")
        await log.flush()
        assert "Failed to write entry to Supabase" in caplog.text
        assert (tmp_path / "events.log").exists()

    @pytest.mark.asyncio
    async def test_handlers_called_and_isolated(self, tmp_path):
        seen = []

        def broken(entry):
            raise RuntimeError("handler bug")

        log = EventLog(log_dir=str(tmp_path))
        log.add_handler(broken)
        log.add_handler(seen.append)
        await log.info(LogComponent.REVIEW, "hello")
        assert [e.message for e in seen] == ["hello"]


# ===========================================================================
# 2. Singleton
# ===========================================================================


def test_get_logger_before_init(monkeypatch):
    monkeypatch.setattr(event_log_module, "_logger", None)
    with pytest.raises(RuntimeError, match="init_logger"):
        get_logger()


def test_get_logger_returns_initialised(event_log):
    assert get_logger() is event_log


# ===========================================================================
# 3. ComponentLogger / TimedOperation
# ===========================================================================


class TestComponentLogger:

    @pytest.mark.asyncio
    async def test_binds_component(self, event_log):
        log = ComponentLogger(LogComponent.INTAKE)
        await log.info("Batch done", draft_id="d9")
        entry = event_log.get_recent(limit=1)[0]
        assert entry.component is LogComponent.INTAKE
        assert entry.draft_id == "d9"

    @pytest.mark.asyncio
    async def test_mirrors_to_stdlib(self, caplog):
        caplog.set_level("INFO", logger="editorial.review")
        await ComponentLogger(LogComponent.REVIEW).info("Approved", draft_id="d1")
        assert "Approved (draft d1)" in caplog.text

    @pytest.mark.asyncio
    async def test_timed_success(self, event_log):
        log = ComponentLogger(LogComponent.SITE_SCHEDULER)
        async with log.timed("Recalculate") as op:
            pass
        assert op.duration_ms is not None
        messages = [e.message for e in event_log.get_recent()]
        assert messages[-2:] == ["Starting: Recalculate", "Completed: Recalculate"]

    @pytest.mark.asyncio
    async def test_timed_failure_propagates(self, event_log):
        log = ComponentLogger(LogComponent.SITE_SCHEDULER)
        with pytest.raises(KeyError):
            async with log.timed("Recalculate"):
                raise KeyError("slot")
        last = event_log.get_recent(limit=1)[0]
        assert last.level is LogLevel.ERROR
        assert last.message == "Failed: Recalculate"
        assert last.error_type == "KeyError"
