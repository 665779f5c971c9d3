"""Pure provider ranking functions.

The total score is ``(rating_volume + consistency_points) * plan_multiplier``
where

* ``rating_volume`` is the average rating scaled by a logarithmic job volume
  factor capped at ``ln(n + 1) == 3`` and mapped onto 0-5;
* ``consistency_points`` is a 0-5 composite of completion rate, punctuality,
  rating stability, and response speed over the trailing window;
* ``plan_multiplier`` is the visibility multiplier of the provider's plan.

Nothing in this module performs I/O.
"""
from __future__ import annotations

import math
from datetime import timedelta
from typing import Iterable, Optional, Sequence

from ..marketplace.models import (
    BookingRecord,
    BookingStatus,
    EngagementHistory,
    PlanDefinition,
    ProposalRecord,
    Provider,
    ReviewRecord,
    ScoreBreakdown,
)
from .models import ProviderScore, ScoreDetails

CONSISTENCY_WINDOW_DAYS = 90
NEUTRAL_CONSISTENCY = 2.5
MAX_POINTS = 5.0
VOLUME_FACTOR_CAP = 3.0
PUNCTUALITY_TOLERANCE = timedelta(minutes=30)
QUICK_RESPONSE_MINUTES = 120.0

COMPLETION_WEIGHT = 0.30
PUNCTUALITY_WEIGHT = 0.25
QUALITY_WEIGHT = 0.25
RESPONSE_WEIGHT = 0.20

# Bookings that count towards the completion-rate denominator.
COMMITTED_STATUSES = frozenset(
    {
        BookingStatus.CONFIRMED,
        BookingStatus.IN_PROGRESS,
        BookingStatus.COMPLETED,
        BookingStatus.CANCELLED,
    }
)


def rating_volume_score(average_rating: float, completed_jobs: int) -> float:
    volume_factor = math.log(max(0, completed_jobs) + 1)
    normalized = min(volume_factor, VOLUME_FACTOR_CAP) / VOLUME_FACTOR_CAP * MAX_POINTS
    return max(0.0, average_rating) * normalized


def completion_rate(bookings: Iterable[BookingRecord]) -> float:
    committed = [booking for booking in bookings if booking.status in COMMITTED_STATUSES]
    if not committed:
        return 1.0
    completed = sum(1 for booking in committed if booking.status == BookingStatus.COMPLETED)
    return completed / len(committed)


def punctuality_score(bookings: Iterable[BookingRecord]) -> float:
    scheduled = [
        booking
        for booking in bookings
        if booking.status == BookingStatus.COMPLETED and booking.scheduled_at is not None
    ]
    if not scheduled:
        return 1.0
    on_time = sum(
        1
        for booking in scheduled
        if booking.started_at is not None
        and abs(booking.started_at - booking.scheduled_at) <= PUNCTUALITY_TOLERANCE
    )
    return on_time / len(scheduled)


def quality_consistency(reviews: Sequence[ReviewRecord]) -> float:
    if not reviews:
        return 1.0
    ratings = [review.overall_rating for review in reviews]
    mean = sum(ratings) / len(ratings)
    variance = sum((rating - mean) ** 2 for rating in ratings) / len(ratings)
    return 1.0 - min(1.0, math.sqrt(variance) / 2)


def response_rate(proposals: Sequence[ProposalRecord]) -> float:
    if not proposals:
        return 1.0
    quick = sum(
        1
        for proposal in proposals
        if proposal.response_time_minutes is not None
        and proposal.response_time_minutes <= QUICK_RESPONSE_MINUTES
    )
    return quick / len(proposals)


def consistency_points(history: Optional[EngagementHistory]) -> float:
    """Composite 0-5 reward; ``None`` or no completed bookings is neutral."""

    if history is None:
        return NEUTRAL_CONSISTENCY
    if not any(booking.status == BookingStatus.COMPLETED for booking in history.bookings):
        return NEUTRAL_CONSISTENCY

    points = (
        completion_rate(history.bookings) * COMPLETION_WEIGHT
        + punctuality_score(history.bookings) * PUNCTUALITY_WEIGHT
        + quality_consistency(history.reviews) * QUALITY_WEIGHT
        + response_rate(history.proposals) * RESPONSE_WEIGHT
    ) * MAX_POINTS
    return min(points, MAX_POINTS)


def compute_score(
    provider: Provider,
    plan: PlanDefinition,
    history: Optional[EngagementHistory],
) -> ProviderScore:
    rating_volume = rating_volume_score(provider.rating.average, provider.stats.completed_jobs)
    consistency = consistency_points(history)
    multiplier = plan.visibility_multiplier
    total = (rating_volume + consistency) * multiplier

    return ProviderScore(
        total=round(total, 2),
        breakdown=ScoreBreakdown(
            rating_volume=round(rating_volume, 2),
            consistency_points=round(consistency, 2),
            plan_multiplier=multiplier,
        ),
        details=ScoreDetails(
            average_rating=provider.rating.average,
            completed_jobs=provider.stats.completed_jobs,
            response_rate=provider.stats.response_rate,
            subscription_plan=provider.subscription.plan,
        ),
    )


__all__ = [
    "CONSISTENCY_WINDOW_DAYS",
    "NEUTRAL_CONSISTENCY",
    "completion_rate",
    "compute_score",
    "consistency_points",
    "punctuality_score",
    "quality_consistency",
    "rating_volume_score",
    "response_rate",
]
