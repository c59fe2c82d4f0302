"""
Tests for src.config module.

Covers:
    - SiteScheduleConfig / SocialScheduleConfig defaults, bounds and env overrides
    - RevisionConfig and LoopConfig validation
    - Settings defaults, timezone resolution and from_yaml
    - Singleton get_settings / reset_settings behaviour
    - validate_env
"""

from zoneinfo import ZoneInfo

import pytest

from src.config import (
    LoopConfig,
    RevisionConfig,
    Settings,
    SiteScheduleConfig,
    SocialScheduleConfig,
    get_settings,
    reset_settings,
    validate_env,
)
from src.exceptions import ConfigurationError


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_singleton():
    """Ensure the Settings singleton is cleared before and after each test."""
    reset_settings()
    yield
    reset_settings()


# ===========================================================================
# 1. Site schedule
# ===========================================================================


class TestSiteScheduleConfig:

    def test_defaults(self):
        cfg = SiteScheduleConfig()
        assert cfg.enabled is False
        assert cfg.interval_minutes == 10
        assert (cfg.start_hour, cfg.end_hour) == (7, 23)
        assert cfg.max_per_day == 0

    @pytest.mark.parametrize("interval", [4, 121], ids=["too-small", "too-large"])
    def test_interval_bounds(self, interval):
        with pytest.raises(ConfigurationError, match="interval_minutes"):
            SiteScheduleConfig(interval_minutes=interval)

    @pytest.mark.parametrize(
        "start,end",
        [(23, 7), (9, 9), (-1, 10), (0, 25)],
        ids=["overnight", "empty", "negative", "past-midnight"],
    )
    def test_window_must_be_ordered_within_a_day(self, start, end):
        with pytest.raises(ConfigurationError, match="window"):
            SiteScheduleConfig(start_hour=start, end_hour=end)

    def test_full_day_window_allowed(self):
        cfg = SiteScheduleConfig(start_hour=0, end_hour=24)
        assert cfg.end_hour == 24

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("SITE_SCHEDULE_ENABLED", "true")
        monkeypatch.setenv("SITE_SCHEDULE_INTERVAL", "15")
        monkeypatch.setenv("SITE_SCHEDULE_MAX_PER_DAY", "8")
        cfg = SiteScheduleConfig()
        assert cfg.enabled is True
        assert cfg.interval_minutes == 15
        assert cfg.max_per_day == 8

    def test_invalid_env_value(self, monkeypatch):
        monkeypatch.setenv("SITE_SCHEDULE_ENABLED", "maybe")
        with pytest.raises(ConfigurationError, match="SITE_SCHEDULE_ENABLED"):
            SiteScheduleConfig()


# ===========================================================================
# 2. Social schedule
# ===========================================================================


class TestSocialScheduleConfig:

    def test_defaults(self):
        cfg = SocialScheduleConfig()
        assert cfg.interval_minutes == 30
        assert (cfg.start_hour, cfg.end_hour) == (9, 23)
        assert cfg.cooldown_minutes == 0
        assert cfg.max_age_days == 0

    def test_interval_lower_bound_is_ten(self):
        with pytest.raises(ConfigurationError):
            SocialScheduleConfig(interval_minutes=5)

    def test_daily_cap_limit(self):
        SocialScheduleConfig(max_per_day=50)
        with pytest.raises(ConfigurationError, match="max_per_day"):
            SocialScheduleConfig(max_per_day=51)

    def test_negative_freshness_rejected(self):
        with pytest.raises(ConfigurationError):
            SocialScheduleConfig(cooldown_minutes=-1)

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("SOCIAL_SCHEDULE_START_HOUR", "8")
        monkeypatch.setenv("SOCIAL_SCHEDULE_END_HOUR", "20")
        cfg = SocialScheduleConfig()
        assert (cfg.start_hour, cfg.end_hour) == (8, 20)


# ===========================================================================
# 3. Revision and loop
# ===========================================================================


class TestRevisionAndLoopConfig:

    def test_revision_defaults(self):
        cfg = RevisionConfig()
        assert cfg.min_body_chars == 100
        assert cfg.diff_context == 3

    def test_revision_model_env(self, monkeypatch):
        monkeypatch.setenv("REVISION_MODEL", "claude-opus-4-1")
        assert RevisionConfig().model == "claude-opus-4-1"

    def test_revision_negative_min_body(self):
        with pytest.raises(ConfigurationError):
            RevisionConfig(min_body_chars=-5)

    def test_loop_interval_must_be_positive(self):
        with pytest.raises(ConfigurationError):
            LoopConfig(check_interval_seconds=0)

    def test_loop_env(self, monkeypatch):
        monkeypatch.setenv("SCHEDULER_CHECK_INTERVAL", "15")
        assert LoopConfig().check_interval_seconds == 15


# ===========================================================================
# 4. Settings
# ===========================================================================


class TestSettings:

    def test_defaults(self):
        s = Settings()
        assert s.timezone == "UTC"
        assert s.min_title_chars == 10
        assert isinstance(s.site_schedule, SiteScheduleConfig)

    def test_tzinfo(self):
        assert Settings(timezone="America/Havana").tzinfo == ZoneInfo("America/Havana")

    def test_unknown_timezone_fails_fast(self):
        with pytest.raises(ConfigurationError, match="Mars/Olympus"):
            Settings(timezone="Mars/Olympus")

    def test_env_timezone(self, monkeypatch):
        monkeypatch.setenv("EDITORIAL_TIMEZONE", "Europe/Madrid")
        assert Settings().timezone == "Europe/Madrid"

    def test_from_yaml_missing_file(self, tmp_path):
        s = Settings.from_yaml(tmp_path / "missing.yaml")
        assert s.timezone == "UTC"

    def test_from_yaml_sections(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text(
            "timezone: America/Havana\n"
            "site_base_url: https://news.example.com\n"
            "site_schedule:\n"
            "  enabled: true\n"
            "  interval_minutes: 20\n"
            "  unknown_key: 1\n"
            "social_schedule:\n"
            "  cooldown_minutes: 5\n"
            "loop:\n"
            "  recovery_interval_cycles: 3\n",
            encoding="utf-8",
        )
        s = Settings.from_yaml(path)
        assert s.timezone == "America/Havana"
        assert s.site_schedule.enabled is True
        assert s.site_schedule.interval_minutes == 20
        assert s.social_schedule.cooldown_minutes == 5
        assert s.loop.recovery_interval_cycles == 3

    def test_from_yaml_env_beats_file(self, tmp_path, monkeypatch):
        path = tmp_path / "settings.yaml"
        path.write_text("site_schedule:\n  interval_minutes: 20\n", encoding="utf-8")
        monkeypatch.setenv("SITE_SCHEDULE_INTERVAL", "30")
        assert Settings.from_yaml(path).site_schedule.interval_minutes == 30

    def test_from_yaml_invalid_section_values(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("social_schedule:\n  start_hour: 22\n  end_hour: 6\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            Settings.from_yaml(path)

    def test_from_yaml_not_a_mapping(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="mapping"):
            Settings.from_yaml(path)

    def test_from_yaml_parse_error(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("site_schedule: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="parse"):
            Settings.from_yaml(path)


# ===========================================================================
# 5. Singleton and env validation
# ===========================================================================


class TestSingleton:

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()

    def test_reset_settings(self):
        first = get_settings()
        reset_settings()
        assert get_settings() is not first


class TestValidateEnv:

    def test_strict_raises_with_missing_vars(self):
        with pytest.raises(ConfigurationError, match="SUPABASE_URL"):
            validate_env(strict=True)

    def test_non_strict_reports_status(self, monkeypatch):
        monkeypatch.setenv("SUPABASE_URL", "https://x.supabase.co")
        status = validate_env(strict=False)
        assert status["SUPABASE_URL"] is True
        assert status["ANTHROPIC_API_KEY"] is False
        assert status["FACEBOOK_PAGE_ID"] is False

    def test_all_present(self, monkeypatch):
        for var in ("SUPABASE_URL", "SUPABASE_SERVICE_KEY", "ANTHROPIC_API_KEY"):
            monkeypatch.setenv(var, "x")
        assert validate_env(strict=True)["ANTHROPIC_API_KEY"] is True
