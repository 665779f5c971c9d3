"""API schemas for the matching administration endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..marketplace.models import PlanDefinition, PlanName, RatingSummary
from ..matching import (
    EligibilityResult,
    EligibleProvider,
    NotificationMode,
    NotificationOutcome,
    NotificationSummary,
)
from ..scoring import ProviderScore
from ..subscriptions import MonthlyCharge


class ProfileSummaryResponse(BaseModel):
    business_name: Optional[str] = Field(default=None, alias="businessName")
    rating: RatingSummary
    categories: List[str] = Field(default_factory=list)
    subscription_plan: Optional[PlanName] = Field(default=None, alias="subscriptionPlan")

    model_config = ConfigDict(populate_by_name=True)


class ScoreBreakdownResponse(BaseModel):
    rating_volume: float = Field(alias="ratingVolume")
    consistency_points: float = Field(alias="consistencyPoints")
    plan_multiplier: float = Field(alias="planMultiplier")

    model_config = ConfigDict(populate_by_name=True)


class ScoreDetailsResponse(BaseModel):
    average_rating: float = Field(alias="averageRating")
    completed_jobs: int = Field(alias="completedJobs")
    response_rate: float = Field(alias="responseRate")
    subscription_plan: Optional[PlanName] = Field(default=None, alias="subscriptionPlan")

    model_config = ConfigDict(populate_by_name=True)


class ProviderScoreResponse(BaseModel):
    total: float
    breakdown: Optional[ScoreBreakdownResponse] = None
    details: Optional[ScoreDetailsResponse] = None

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_score(cls, score: ProviderScore) -> "ProviderScoreResponse":
        breakdown = None
        if score.breakdown is not None:
            breakdown = ScoreBreakdownResponse(
                rating_volume=score.breakdown.rating_volume,
                consistency_points=score.breakdown.consistency_points,
                plan_multiplier=score.breakdown.plan_multiplier,
            )
        details = None
        if score.details is not None:
            details = ScoreDetailsResponse(
                average_rating=score.details.average_rating,
                completed_jobs=score.details.completed_jobs,
                response_rate=score.details.response_rate,
                subscription_plan=score.details.subscription_plan,
            )
        return cls(total=score.total, breakdown=breakdown, details=details)


class EligibleProviderResponse(BaseModel):
    provider_id: str = Field(alias="providerId")
    score: float
    profile: ProfileSummaryResponse

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_entry(cls, entry: EligibleProvider) -> "EligibleProviderResponse":
        return cls(
            provider_id=entry.provider_id,
            score=entry.score,
            profile=ProfileSummaryResponse(
                business_name=entry.profile.business_name,
                rating=entry.profile.rating,
                categories=list(entry.profile.categories),
                subscription_plan=entry.profile.subscription_plan,
            ),
        )


class EligibilityResponse(BaseModel):
    service_request_id: str = Field(alias="serviceRequestId")
    eligible_providers: List[EligibleProviderResponse] = Field(alias="eligibleProviders")
    total_count: int = Field(alias="totalCount")
    calculated_at: datetime = Field(alias="calculatedAt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_result(cls, result: EligibilityResult) -> "EligibilityResponse":
        return cls(
            service_request_id=result.service_request_id,
            eligible_providers=[EligibleProviderResponse.from_entry(entry) for entry in result.eligible_providers],
            total_count=result.total_count,
            calculated_at=result.calculated_at,
        )


class NotifyProvidersRequest(BaseModel):
    mode: Optional[NotificationMode] = None
    selected_provider_ids: Optional[List[str]] = Field(default=None, alias="selectedProviderIds")

    model_config = ConfigDict(populate_by_name=True)


class NotificationResultResponse(BaseModel):
    provider_id: str = Field(alias="providerId")
    notified: bool
    score: Optional[float] = None
    error: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_outcome(cls, outcome: NotificationOutcome) -> "NotificationResultResponse":
        return cls(
            provider_id=outcome.provider_id,
            notified=outcome.notified,
            score=outcome.score,
            error=outcome.error,
        )


class NotifyProvidersResponse(BaseModel):
    total_notified: int = Field(alias="totalNotified")
    total_failed: int = Field(alias="totalFailed")
    results: List[NotificationResultResponse]

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_summary(cls, summary: NotificationSummary) -> "NotifyProvidersResponse":
        return cls(
            total_notified=summary.total_notified,
            total_failed=summary.total_failed,
            results=[NotificationResultResponse.from_outcome(outcome) for outcome in summary.results],
        )


class LeadCapacityResponse(BaseModel):
    provider_id: str = Field(alias="providerId")
    can_receive_lead: bool = Field(alias="canReceiveLead")

    model_config = ConfigDict(populate_by_name=True)


class MonthlyChargeResponse(BaseModel):
    plan: PlanName
    currency: str
    base: float
    discount: float
    total: float

    @classmethod
    def from_charge(cls, charge: MonthlyCharge) -> "MonthlyChargeResponse":
        return cls(
            plan=charge.plan,
            currency=charge.currency,
            base=charge.base,
            discount=charge.discount,
            total=charge.total,
        )


class PlanChangeRequest(BaseModel):
    plan: str


class PlanChangeResponse(BaseModel):
    provider_id: str = Field(alias="providerId")
    plan: PlanName
    lead_limit: int = Field(alias="leadLimit")
    visibility_multiplier: float = Field(alias="visibilityMultiplier")
    commission_rate: float = Field(alias="commissionRate")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_plan(cls, provider_id: str, plan: PlanDefinition) -> "PlanChangeResponse":
        return cls(
            provider_id=provider_id,
            plan=plan.name,
            lead_limit=plan.lead_limit,
            visibility_multiplier=plan.visibility_multiplier,
            commission_rate=plan.commission_rate,
        )


class ReferralResponse(BaseModel):
    code: str
    applied: bool
    referrer_id: Optional[str] = Field(default=None, alias="referrerId")

    model_config = ConfigDict(populate_by_name=True)


__all__ = [
    "EligibilityResponse",
    "EligibleProviderResponse",
    "LeadCapacityResponse",
    "MonthlyChargeResponse",
    "NotificationResultResponse",
    "NotifyProvidersRequest",
    "NotifyProvidersResponse",
    "PlanChangeRequest",
    "PlanChangeResponse",
    "ProfileSummaryResponse",
    "ProviderScoreResponse",
    "ReferralResponse",
    "ScoreBreakdownResponse",
    "ScoreDetailsResponse",
]
