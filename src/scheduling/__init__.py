"""Scheduling subsystem: slot allocation, site and social auto-scheduling, background loop."""

from src.scheduling.publishing_scheduler import PublishingScheduler
from src.scheduling.site_scheduler import DuePublishRun, SiteAutoScheduler, SiteScheduleRun
from src.scheduling.slot_allocator import ScheduleSlot, allocate
from src.scheduling.social_scheduler import SocialAutoScheduler, SocialPlan, SocialRun

__all__ = [
    "ScheduleSlot",
    "allocate",
    "SiteAutoScheduler",
    "SiteScheduleRun",
    "DuePublishRun",
    "SocialAutoScheduler",
    "SocialPlan",
    "SocialRun",
    "PublishingScheduler",
]
