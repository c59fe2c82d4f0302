"""
Centralized configuration loader for the editorial pipeline.

Loads settings from ``config/settings.yaml`` and environment variables,
providing sensible defaults when the file is absent.

Provides:
    - SiteScheduleConfig: Auto-publish slot window for the site
    - SocialScheduleConfig: Auto-share slot window for the social channel
    - RevisionConfig: AI revision job parameters
    - LoopConfig: Background scheduler cadence
    - Settings: Global application settings loaded from YAML + env vars
    - get_settings(): Singleton accessor for Settings
    - validate_env(): Startup validation of required environment variables
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from dotenv import load_dotenv

from src.exceptions import ConfigurationError

# ---------------------------------------------------------------------------
# Load .env file (no-op if file does not exist)
# ---------------------------------------------------------------------------
load_dotenv()

# ---------------------------------------------------------------------------
# Project root directory (parent of src/)
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent

logger = logging.getLogger(__name__)


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _apply_env_overrides(
    target: Any, overrides: Dict[str, Tuple[str, Callable[[str], Any]]]
) -> None:
    """Override dataclass attributes from environment variables.

    Raises:
        ConfigurationError: If an env var is set but cannot be cast.
    """
    for env_key, (attr_name, cast_fn) in overrides.items():
        env_val = os.environ.get(env_key)
        if env_val is None:
            continue
        try:
            setattr(target, attr_name, cast_fn(env_val))
        except (ValueError, TypeError) as exc:
            raise ConfigurationError(
                f"Invalid value for env var {env_key}='{env_val}': {exc}"
            ) from exc


def _check_window(
    section: str,
    interval_minutes: int,
    interval_range: Tuple[int, int],
    start_hour: int,
    end_hour: int,
    max_per_day: int,
    max_per_day_limit: int,
) -> None:
    low, high = interval_range
    if not low <= interval_minutes <= high:
        raise ConfigurationError(
            f"{section}.interval_minutes must be between {low} and {high}, "
            f"got {interval_minutes}"
        )
    if not (0 <= start_hour < end_hour <= 24):
        raise ConfigurationError(
            f"{section} window must satisfy 0 <= start_hour < end_hour <= 24, "
            f"got {start_hour}-{end_hour}"
        )
    if not 0 <= max_per_day <= max_per_day_limit:
        raise ConfigurationError(
            f"{section}.max_per_day must be between 0 and {max_per_day_limit}, "
            f"got {max_per_day}"
        )


# ===========================================================================
# SCHEDULER WINDOWS
# ===========================================================================


@dataclass
class SiteScheduleConfig:
    """
    Site auto-publish window.

    Drafts that are approved but have no ``scheduled_at`` are spread over
    ``[start_hour, end_hour)`` every ``interval_minutes``.  ``max_per_day``
    of ``0`` means unlimited.
    """

    enabled: bool = False
    interval_minutes: int = 10
    start_hour: int = 7
    end_hour: int = 23
    max_per_day: int = 0

    INTERVAL_RANGE = (5, 120)
    MAX_PER_DAY_LIMIT = 200

    def __post_init__(self) -> None:
        _apply_env_overrides(self, {
            "SITE_SCHEDULE_ENABLED": ("enabled", _parse_bool),
            "SITE_SCHEDULE_INTERVAL": ("interval_minutes", int),
            "SITE_SCHEDULE_START_HOUR": ("start_hour", int),
            "SITE_SCHEDULE_END_HOUR": ("end_hour", int),
            "SITE_SCHEDULE_MAX_PER_DAY": ("max_per_day", int),
        })
        _check_window(
            "site_schedule",
            self.interval_minutes,
            self.INTERVAL_RANGE,
            self.start_hour,
            self.end_hour,
            self.max_per_day,
            self.MAX_PER_DAY_LIMIT,
        )


@dataclass
class SocialScheduleConfig:
    """
    Social auto-share window.

    Besides the slot window, two optional freshness rules narrow the
    candidate set.  Both feed the single eligibility filter shared by the
    scheduler and the pending-count badge:

    - ``cooldown_minutes``: skip content published less than N minutes ago.
    - ``max_age_days``: skip content published more than N days ago
      (``0`` disables the limit).
    """

    enabled: bool = False
    interval_minutes: int = 30
    start_hour: int = 9
    end_hour: int = 23
    max_per_day: int = 0
    cooldown_minutes: int = 0
    max_age_days: int = 0

    INTERVAL_RANGE = (10, 120)
    MAX_PER_DAY_LIMIT = 50

    def __post_init__(self) -> None:
        _apply_env_overrides(self, {
            "SOCIAL_SCHEDULE_ENABLED": ("enabled", _parse_bool),
            "SOCIAL_SCHEDULE_INTERVAL": ("interval_minutes", int),
            "SOCIAL_SCHEDULE_START_HOUR": ("start_hour", int),
            "SOCIAL_SCHEDULE_END_HOUR": ("end_hour", int),
            "SOCIAL_SCHEDULE_MAX_PER_DAY": ("max_per_day", int),
        })
        _check_window(
            "social_schedule",
            self.interval_minutes,
            self.INTERVAL_RANGE,
            self.start_hour,
            self.end_hour,
            self.max_per_day,
            self.MAX_PER_DAY_LIMIT,
        )
        if self.cooldown_minutes < 0 or self.max_age_days < 0:
            raise ConfigurationError(
                "social_schedule.cooldown_minutes and max_age_days must be >= 0"
            )


@dataclass
class RevisionConfig:
    """AI revision job parameters."""

    model: str = "claude-sonnet-4-5"
    min_body_chars: int = 100  # shorter bodies are treated as a failed revision
    diff_context: int = 3
    temperature: float = 0.3

    def __post_init__(self) -> None:
        _apply_env_overrides(self, {
            "REVISION_MODEL": ("model", str),
            "REVISION_MIN_BODY_CHARS": ("min_body_chars", int),
        })
        if self.min_body_chars < 0:
            raise ConfigurationError("revision.min_body_chars must be >= 0")
        if self.diff_context < 0:
            raise ConfigurationError("revision.diff_context must be >= 0")


@dataclass
class LoopConfig:
    """Background scheduler cadence (seconds / cycles)."""

    check_interval_seconds: int = 60
    recovery_interval_cycles: int = 10
    stuck_share_timeout_minutes: int = 10

    def __post_init__(self) -> None:
        _apply_env_overrides(self, {
            "SCHEDULER_CHECK_INTERVAL": ("check_interval_seconds", int),
        })
        if self.check_interval_seconds <= 0:
            raise ConfigurationError("loop.check_interval_seconds must be positive")
        if self.recovery_interval_cycles <= 0:
            raise ConfigurationError("loop.recovery_interval_cycles must be positive")


# ===========================================================================
# GLOBAL SETTINGS
# ===========================================================================


def _section(cls: type, data: Optional[Dict[str, Any]]) -> Any:
    """Build a config dataclass from a YAML mapping, ignoring unknown keys."""
    data = data or {}
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        logger.warning(
            "Ignoring unknown keys in %s section: %s", cls.__name__, sorted(unknown)
        )
    return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class Settings:
    """
    Global application settings.

    Loaded from ``config/settings.yaml`` when available, falling back to
    defaults.  Environment variables override YAML values.
    """

    # Local wall-clock zone for business-hour windows
    timezone: str = "UTC"

    # Public site root, used for links shared to the social channel
    site_base_url: str = "https://example.com"

    # Logging
    log_level: str = "INFO"
    log_dir: str = "logs"

    # Content limits
    min_title_chars: int = 10

    site_schedule: SiteScheduleConfig = field(default_factory=SiteScheduleConfig)
    social_schedule: SocialScheduleConfig = field(default_factory=SocialScheduleConfig)
    revision: RevisionConfig = field(default_factory=RevisionConfig)
    loop: LoopConfig = field(default_factory=LoopConfig)

    def __post_init__(self) -> None:
        _apply_env_overrides(self, {
            "EDITORIAL_TIMEZONE": ("timezone", str),
            "SITE_BASE_URL": ("site_base_url", str),
            "LOG_LEVEL": ("log_level", str),
            "LOG_DIR": ("log_dir", str),
        })
        # Fail fast on unknown zones instead of at the first scheduler run
        _ = self.tzinfo

    @property
    def tzinfo(self) -> ZoneInfo:
        """The configured zone as a ``ZoneInfo``."""
        try:
            return ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ConfigurationError(f"Unknown timezone '{self.timezone}'") from exc

    @classmethod
    def from_yaml(cls, path: Optional[Path] = None) -> "Settings":
        """
        Load settings from a YAML file.

        If the file does not exist, returns an instance with all defaults.
        Environment variables override YAML values for specific keys.

        Args:
            path: Path to the YAML file. Defaults to
                ``<PROJECT_ROOT>/config/settings.yaml``.

        Returns:
            Populated Settings instance.

        Raises:
            ConfigurationError: If the YAML file exists but cannot be parsed,
                or any section holds invalid values.
        """
        path = path or PROJECT_ROOT / "config" / "settings.yaml"

        data: Dict[str, Any] = {}
        if path.exists():
            try:
                with open(path, "r", encoding="utf-8") as fh:
                    data = yaml.safe_load(fh) or {}
            except yaml.YAMLError as exc:
                raise ConfigurationError(
                    f"Failed to parse settings YAML at {path}: {exc}"
                ) from exc
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Settings YAML at {path} must be a mapping, got {type(data).__name__}"
            )

        try:
            return cls(
                timezone=data.get("timezone", "UTC"),
                site_base_url=data.get("site_base_url", "https://example.com"),
                log_level=data.get("log_level", "INFO"),
                log_dir=data.get("log_dir", "logs"),
                min_title_chars=data.get("min_title_chars", 10),
                site_schedule=_section(SiteScheduleConfig, data.get("site_schedule")),
                social_schedule=_section(SocialScheduleConfig, data.get("social_schedule")),
                revision=_section(RevisionConfig, data.get("revision")),
                loop=_section(LoopConfig, data.get("loop")),
            )
        except TypeError as exc:
            raise ConfigurationError(f"Invalid settings in {path}: {exc}") from exc


# ===========================================================================
# SINGLETON SETTINGS ACCESSOR
# ===========================================================================

_settings_instance: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the global Settings singleton.

    On first call, loads from ``config/settings.yaml`` (or defaults).
    Subsequent calls return the cached instance.
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings.from_yaml()
    return _settings_instance


def reset_settings() -> None:
    """Reset the cached Settings singleton (tests, config reloads)."""
    global _settings_instance
    _settings_instance = None


# ===========================================================================
# ENVIRONMENT VARIABLE VALIDATION
# ===========================================================================

# Required environment variables for the system to function
REQUIRED_ENV_VARS: List[str] = [
    "SUPABASE_URL",
    "SUPABASE_SERVICE_KEY",
    "ANTHROPIC_API_KEY",
]

# Optional: social sharing and cover generation
OPTIONAL_ENV_VARS: List[str] = [
    "FACEBOOK_PAGE_ID",
    "FACEBOOK_PAGE_TOKEN",
    "FACEBOOK_GRAPH_VERSION",
    "COVER_IMAGE_API_KEY",
]


def validate_env(strict: bool = True) -> Dict[str, bool]:
    """
    Validate that required environment variables are set.

    Args:
        strict: If ``True``, raise ``ConfigurationError`` when any required
            variable is missing. If ``False``, return the status dict
            without raising.

    Returns:
        Dict mapping variable name to presence status (``True`` if set).

    Raises:
        ConfigurationError: If ``strict=True`` and required vars are missing.
    """
    status: Dict[str, bool] = {}
    missing: List[str] = []

    for var in REQUIRED_ENV_VARS:
        present = bool(os.environ.get(var))
        status[var] = present
        if not present:
            missing.append(var)

    for var in OPTIONAL_ENV_VARS:
        status[var] = bool(os.environ.get(var))

    if strict and missing:
        raise ConfigurationError(
            f"Missing required environment variables: {missing}. "
            f"Copy .env.example to .env and fill in the values."
        )

    return status
