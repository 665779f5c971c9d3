"""Eligibility and notification result types."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Iterable, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..marketplace.models import PlanName, Provider, RatingSummary
from ..scoring.models import ProviderScore

NEW_REQUEST_NOTIFICATION = "NEW_REQUEST"
HIGH_PRIORITY = "high"


class NotificationMode(str, Enum):
    AUTO = "auto"
    DIRECTED = "directed"


class ProfileSummary(BaseModel):
    business_name: Optional[str] = None
    rating: RatingSummary = Field(default_factory=RatingSummary)
    categories: Tuple[str, ...] = ()
    subscription_plan: Optional[PlanName] = None

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_provider(cls, provider: Provider) -> "ProfileSummary":
        return cls(
            business_name=provider.business_name,
            rating=provider.rating,
            categories=provider.categories,
            subscription_plan=provider.subscription.plan,
        )


class EligibleProvider(BaseModel):
    """A ranked candidate for a service request."""

    provider_id: str
    score: float = 0.0
    details: Optional[ProviderScore] = None
    profile: ProfileSummary = Field(default_factory=ProfileSummary)

    model_config = ConfigDict(frozen=True)


class EligibilityResult(BaseModel):
    service_request_id: str
    eligible_providers: Tuple[EligibleProvider, ...] = ()
    total_count: int = 0
    calculated_at: datetime

    model_config = ConfigDict(frozen=True)


class NotificationOutcome(BaseModel):
    provider_id: str
    notified: bool
    score: Optional[float] = None
    error: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class NotificationSummary(BaseModel):
    """Aggregate of a notification batch; partial failure is a normal result."""

    total_notified: int = 0
    total_failed: int = 0
    results: Tuple[NotificationOutcome, ...] = ()

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_outcomes(cls, outcomes: Iterable[NotificationOutcome]) -> "NotificationSummary":
        results = tuple(outcomes)
        notified = sum(1 for outcome in results if outcome.notified)
        return cls(total_notified=notified, total_failed=len(results) - notified, results=results)


__all__ = [
    "EligibilityResult",
    "EligibleProvider",
    "HIGH_PRIORITY",
    "NEW_REQUEST_NOTIFICATION",
    "NotificationMode",
    "NotificationOutcome",
    "NotificationSummary",
    "ProfileSummary",
]
