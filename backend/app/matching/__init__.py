"""Eligibility filtering, caching, and notification dispatch."""

from .cache import EligibilityCache, InMemoryEligibilityCache, RedisEligibilityCache, cache_key
from .channels import (
    InAppNotificationChannel,
    LoggingNotificationChannel,
    LoggingRealtimeEmitter,
    NotificationChannel,
    RealtimeEmitter,
    RedisRealtimeEmitter,
)
from .dispatcher import QUOTA_EXHAUSTED, NotificationDispatcher
from .models import (
    EligibilityResult,
    EligibleProvider,
    NotificationMode,
    NotificationOutcome,
    NotificationSummary,
    ProfileSummary,
)
from .service import EligibilityService

__all__ = [
    "EligibilityCache",
    "InMemoryEligibilityCache",
    "RedisEligibilityCache",
    "cache_key",
    "InAppNotificationChannel",
    "LoggingNotificationChannel",
    "LoggingRealtimeEmitter",
    "NotificationChannel",
    "RealtimeEmitter",
    "RedisRealtimeEmitter",
    "QUOTA_EXHAUSTED",
    "NotificationDispatcher",
    "EligibilityResult",
    "EligibleProvider",
    "NotificationMode",
    "NotificationOutcome",
    "NotificationSummary",
    "ProfileSummary",
    "EligibilityService",
]
