"""Shared marketplace models, errors, and persistence interfaces."""

from .exceptions import (
    CacheUnavailable,
    GeoQueryUnavailable,
    NotFoundError,
    NotificationDispatchFailed,
    ProviderNotFound,
    ServiceRequestNotFound,
)
from .memory import InMemoryMarketplaceStore
from .models import (
    BookingRecord,
    BookingStatus,
    CandidateQuery,
    DayAvailability,
    EngagementHistory,
    GeoPoint,
    NotifiedProvider,
    PlanBenefit,
    PlanDefinition,
    PlanName,
    ProposalRecord,
    Provider,
    ProviderBilling,
    ProviderRef,
    ProviderReferral,
    ProviderScoreSnapshot,
    ProviderStats,
    ProviderSubscription,
    RatingSummary,
    RequestVisibility,
    ReviewRecord,
    ScoreBreakdown,
    Scheduling,
    ServiceRequest,
    SubscriptionStatus,
    Urgency,
    WorkingHours,
    utcnow,
)
from .repository import (
    EngagementRepository,
    PlanRepository,
    ProviderRepository,
    ServiceRequestRepository,
    resolve_provider,
)

__all__ = [
    "CacheUnavailable",
    "GeoQueryUnavailable",
    "NotFoundError",
    "NotificationDispatchFailed",
    "ProviderNotFound",
    "ServiceRequestNotFound",
    "InMemoryMarketplaceStore",
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
    "WorkingHours",
    "utcnow",
    "EngagementRepository",
    "PlanRepository",
    "ProviderRepository",
    "ServiceRequestRepository",
    "resolve_provider",
]
