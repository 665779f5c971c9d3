"""Domain models shared by the matching, scoring, and subscription packages."""
from __future__ import annotations

import math
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

EARTH_RADIUS_KM = 6371.0088

WEEKDAYS: Tuple[str, ...] = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


class PlanName(str, Enum):
    """Canonical identifiers for provider subscription plans."""

    FREE = "free"
    BASIC = "basic"
    PRO = "pro"


class SubscriptionStatus(str, Enum):
    """Lifecycle state of a provider subscription."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    CANCELED = "canceled"
    PAST_DUE = "past_due"


class Urgency(str, Enum):
    IMMEDIATE = "immediate"
    SCHEDULED = "scheduled"


class RequestVisibility(str, Enum):
    AUTO = "auto"
    DIRECTED = "directed"


class BookingStatus(str, Enum):
    CONFIRMED = "confirmed"
    PROVIDER_EN_ROUTE = "provider_en_route"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"


class PlanBenefit(str, Enum):
    PRIORITY_SUPPORT = "priority_support"
    ADVANCED_ANALYTICS = "advanced_analytics"
    CUSTOM_PROFILE = "custom_profile"
    FEATURED_LISTING = "featured_listing"
    WHATSAPP_INTEGRATION = "whatsapp_integration"
    MULTIPLE_CATEGORIES = "multiple_categories"


class PlanDefinition(BaseModel):
    """Immutable reference data describing a subscription plan."""

    name: PlanName
    display_name: str
    monthly_price: float = Field(ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    lead_limit: int = Field(ge=-1, description="-1 means unlimited leads")
    visibility_multiplier: float = Field(ge=1.0)
    commission_rate: float = Field(ge=0, le=100)
    benefits: Tuple[PlanBenefit, ...] = ()
    is_active: bool = True
    order: int = 0

    model_config = ConfigDict(frozen=True)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()

    @property
    def unlimited_leads(self) -> bool:
        return self.lead_limit < 0

    def allows_another_lead(self, leads_used: int) -> bool:
        return self.unlimited_leads or leads_used < self.lead_limit


class GeoPoint(BaseModel):
    """WGS84 coordinate pair."""

    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)

    model_config = ConfigDict(frozen=True)

    def distance_km(self, other: "GeoPoint") -> float:
        """Great-circle distance using the haversine formula."""

        lat1, lng1, lat2, lng2 = map(math.radians, (self.lat, self.lng, other.lat, other.lng))
        dlat = lat2 - lat1
        dlng = lng2 - lng1
        a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
        return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


class DayAvailability(BaseModel):
    available: bool = False
    start: str = "09:00"
    end: str = "18:00"

    model_config = ConfigDict(frozen=True)

    def covers(self, time_of_day: Optional[str]) -> bool:
        if not self.available:
            return False
        if not time_of_day:
            return True
        # Zero-padded "HH:MM" strings compare lexicographically.
        return self.start <= time_of_day <= self.end


class WorkingHours(BaseModel):
    """Weekly availability of a provider."""

    monday: DayAvailability = Field(default_factory=DayAvailability)
    tuesday: DayAvailability = Field(default_factory=DayAvailability)
    wednesday: DayAvailability = Field(default_factory=DayAvailability)
    thursday: DayAvailability = Field(default_factory=DayAvailability)
    friday: DayAvailability = Field(default_factory=DayAvailability)
    saturday: DayAvailability = Field(default_factory=DayAvailability)
    sunday: DayAvailability = Field(default_factory=DayAvailability)

    model_config = ConfigDict(frozen=True)

    def for_weekday(self, weekday: str) -> DayAvailability:
        if weekday not in WEEKDAYS:
            raise ValueError(f"Unknown weekday: {weekday}")
        return getattr(self, weekday)


class ProviderSubscription(BaseModel):
    """Subscription and lead-quota state for a single provider."""

    plan: PlanName = PlanName.FREE
    status: SubscriptionStatus = SubscriptionStatus.INACTIVE
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    leads_used: int = Field(default=0, ge=0)
    last_lead_at: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE

    def period_expired(self, now: datetime) -> bool:
        """A missing period end counts as expired."""

        return self.current_period_end is None or self.current_period_end < now

    def rolled_over(self, now: datetime, period_days: int) -> "ProviderSubscription":
        """Return a copy starting a fresh billing period at ``now``."""

        return self.model_copy(
            update={
                "current_period_start": now,
                "current_period_end": now + timedelta(days=period_days),
                "leads_used": 0,
            }
        )


class ProviderBilling(BaseModel):
    commission_rate: Optional[float] = None

    model_config = ConfigDict(frozen=True)


class ProviderReferral(BaseModel):
    code: Optional[str] = None
    referred_by: Optional[str] = None
    referrals_count: int = Field(default=0, ge=0)
    discount_months: int = Field(default=0, ge=0, le=3)

    model_config = ConfigDict(frozen=True)


class RatingSummary(BaseModel):
    average: float = Field(default=0.0, ge=0)
    count: int = Field(default=0, ge=0)

    model_config = ConfigDict(frozen=True)


class ProviderStats(BaseModel):
    completed_jobs: int = Field(default=0, ge=0)
    response_rate: float = Field(default=0.0, ge=0)

    model_config = ConfigDict(frozen=True)


class ScoreBreakdown(BaseModel):
    """Per-factor contribution to a provider ranking score."""

    rating_volume: float = 0.0
    consistency_points: float = 0.0
    plan_multiplier: float = 1.0

    model_config = ConfigDict(frozen=True)


class ProviderScoreSnapshot(BaseModel):
    """Score last persisted on the provider record."""

    total: float = Field(default=0.0, ge=0)
    last_calculated: Optional[datetime] = None
    factors: Optional[ScoreBreakdown] = None

    model_config = ConfigDict(frozen=True)


class Provider(BaseModel):
    """Read model of a service provider as seen by the matching core."""

    id: str
    business_name: Optional[str] = None
    is_active: bool = True
    categories: Tuple[str, ...] = ()
    service_location: Optional[GeoPoint] = None
    working_hours: WorkingHours = Field(default_factory=WorkingHours)
    rating: RatingSummary = Field(default_factory=RatingSummary)
    stats: ProviderStats = Field(default_factory=ProviderStats)
    subscription: ProviderSubscription = Field(default_factory=ProviderSubscription)
    billing: ProviderBilling = Field(default_factory=ProviderBilling)
    referral: ProviderReferral = Field(default_factory=ProviderReferral)
    score: ProviderScoreSnapshot = Field(default_factory=ProviderScoreSnapshot)

    model_config = ConfigDict(frozen=True)

    def offers(self, category: str) -> bool:
        return category in self.categories


# Either an identifier or an already resolved provider snapshot.
ProviderRef = Union[str, Provider]


class Scheduling(BaseModel):
    preferred_date: Optional[date] = None
    preferred_time: Optional[str] = None
    flexibility: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @field_validator("preferred_time")
    @classmethod
    def _validate_time(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        parts = value.split(":")
        if len(parts) != 2 or not all(part.isdigit() for part in parts):
            raise ValueError("preferred_time must be formatted as HH:MM")
        hours, minutes = int(parts[0]), int(parts[1])
        if hours > 23 or minutes > 59:
            raise ValueError("preferred_time must be formatted as HH:MM")
        return f"{hours:02d}:{minutes:02d}"

    @property
    def weekday(self) -> Optional[str]:
        if self.preferred_date is None:
            return None
        return WEEKDAYS[self.preferred_date.weekday()]


class NotifiedProvider(BaseModel):
    """Entry of ``ServiceRequest.eligible_providers``."""

    provider_id: str
    score: float = 0.0
    notified: bool = False
    notified_at: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)


class ServiceRequest(BaseModel):
    """Read model of a client service request."""

    id: str
    category: str
    urgency: Urgency
    location: Optional[GeoPoint] = None
    scheduling: Scheduling = Field(default_factory=Scheduling)
    visibility: RequestVisibility = RequestVisibility.AUTO
    selected_providers: Tuple[str, ...] = ()
    eligible_providers: Tuple[NotifiedProvider, ...] = ()

    model_config = ConfigDict(frozen=True)


class BookingRecord(BaseModel):
    status: BookingStatus
    created_at: datetime
    scheduled_at: Optional[datetime] = None
    started_at: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)


class ReviewRecord(BaseModel):
    overall_rating: float = Field(ge=0, le=5)
    created_at: datetime

    model_config = ConfigDict(frozen=True)


class ProposalRecord(BaseModel):
    created_at: datetime
    response_time_minutes: Optional[float] = None

    model_config = ConfigDict(frozen=True)


class EngagementHistory(BaseModel):
    """Bookings, reviews, and proposals of a provider inside a trailing window."""

    bookings: Tuple[BookingRecord, ...] = ()
    reviews: Tuple[ReviewRecord, ...] = ()
    proposals: Tuple[ProposalRecord, ...] = ()

    model_config = ConfigDict(frozen=True)


@dataclass(frozen=True)
class CandidateQuery:
    """Filter used to select candidate providers for a request."""

    category: str
    origin: Optional[GeoPoint] = None
    radius_km: Optional[float] = None
    weekday: Optional[str] = None
    preferred_time: Optional[str] = None

    @property
    def uses_geo(self) -> bool:
        return self.origin is not None and self.radius_km is not None

    def without_geo(self) -> "CandidateQuery":
        return replace(self, origin=None, radius_km=None)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


__all__ = [
    "BookingRecord",
    "BookingStatus",
    "CandidateQuery",
    "DayAvailability",
    "EngagementHistory",
    "GeoPoint",
    "NotifiedProvider",
    "PlanBenefit",
    "PlanDefinition",
    "PlanName",
    "ProposalRecord",
    "Provider",
    "ProviderBilling",
    "ProviderRef",
    "ProviderReferral",
    "ProviderScoreSnapshot",
    "ProviderStats",
    "ProviderSubscription",
    "RatingSummary",
    "RequestVisibility",
    "ReviewRecord",
    "ScoreBreakdown",
    "Scheduling",
    "ServiceRequest",
    "SubscriptionStatus",
    "Urgency",
    "WEEKDAYS",
    "WorkingHours",
    "utcnow",
]
