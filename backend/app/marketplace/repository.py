"""Persistence interfaces consumed by the matching core."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Protocol, Sequence

from .models import (
    CandidateQuery,
    EngagementHistory,
    NotifiedProvider,
    PlanDefinition,
    PlanName,
    Provider,
    ProviderRef,
    ProviderScoreSnapshot,
    ProviderSubscription,
    ServiceRequest,
    SubscriptionStatus,
)


class ProviderRepository(Protocol):
    """Provider reads and the narrow field updates the core is allowed to make."""

    async def get_provider(self, provider_id: str) -> Optional[Provider]:
        ...

    async def get_providers(self, provider_ids: Sequence[str]) -> List[Provider]:
        ...

    async def find_candidates(self, query: CandidateQuery) -> List[Provider]:
        """Return active providers matching the query.

        Raises :class:`~.exceptions.GeoQueryUnavailable` when the query carries a
        distance constraint that cannot be evaluated.
        """

    async def find_by_referral_code(self, code: str) -> Optional[Provider]:
        ...

    async def start_billing_period(self, provider_id: str, *, start: datetime, end: datetime) -> None:
        """Unconditionally start a new period; used by monthly renewal."""

    async def reset_expired_period(
        self,
        provider_id: str,
        *,
        now: datetime,
        period_days: int,
    ) -> Optional[ProviderSubscription]:
        """Start a new period only if the stored one has lapsed at ``now``.

        The expiry check and the reset are one atomic operation. Returns the
        stored subscription afterwards, or ``None`` for an unknown provider.
        """

    async def increment_lead_usage(
        self,
        provider_id: str,
        *,
        now: datetime,
        period_days: int,
    ) -> Optional[int]:
        """Atomically roll an expired period over and count one lead.

        Returns the new ``leads_used`` value or ``None`` for an unknown provider.
        """

    async def reserve_lead(
        self,
        provider_id: str,
        *,
        lead_limit: int,
        now: datetime,
        period_days: int,
    ) -> bool:
        """Count one lead only while capacity remains, as a single atomic update."""

    async def save_score(self, provider_id: str, snapshot: ProviderScoreSnapshot) -> None:
        ...

    async def update_plan(
        self,
        provider_id: str,
        *,
        plan: PlanName,
        status: SubscriptionStatus,
        commission_rate: float,
    ) -> bool:
        ...

    async def record_referral(self, provider_id: str, *, max_discount_months: int) -> None:
        ...

    async def consume_discount_month(self, provider_id: str) -> None:
        ...


class PlanRepository(Protocol):
    """Read access to seeded subscription plan reference data."""

    async def get_plan(self, name: PlanName) -> Optional[PlanDefinition]:
        """Return the stored plan when it exists and is active."""

    async def list_plans(self) -> List[PlanDefinition]:
        ...

    async def insert_plans(self, plans: Sequence[PlanDefinition]) -> int:
        ...


class ServiceRequestRepository(Protocol):
    async def get_request(self, request_id: str) -> Optional[ServiceRequest]:
        ...

    async def upsert_notified_provider(self, request_id: str, entry: NotifiedProvider) -> None:
        """Insert or replace the entry for ``entry.provider_id``."""


class EngagementRepository(Protocol):
    """Historical aggregates used by the scoring engine."""

    async def get_engagement_history(self, provider_id: str, since: datetime) -> EngagementHistory:
        ...


async def resolve_provider(repository: ProviderRepository, ref: ProviderRef) -> Optional[Provider]:
    """Turn a :data:`ProviderRef` into a provider snapshot."""

    if isinstance(ref, Provider):
        return ref
    if not ref:
        return None
    return await repository.get_provider(str(ref))


__all__ = [
    "EngagementRepository",
    "PlanRepository",
    "ProviderRepository",
    "ServiceRequestRepository",
    "resolve_provider",
]
