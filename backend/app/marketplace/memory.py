"""In-memory marketplace store suitable for tests and local development."""
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional, Sequence

from .exceptions import GeoQueryUnavailable
from .models import (
    BookingRecord,
    CandidateQuery,
    EngagementHistory,
    NotifiedProvider,
    PlanDefinition,
    PlanName,
    ProposalRecord,
    Provider,
    ProviderScoreSnapshot,
    ProviderSubscription,
    ReviewRecord,
    ServiceRequest,
    SubscriptionStatus,
)


class InMemoryMarketplaceStore:
    """Implements every marketplace repository protocol on plain dictionaries.

    Each mutating coroutine completes without awaiting, so under asyncio every
    update is atomic with respect to other tasks.
    """

    def __init__(self, *, geo_enabled: bool = True) -> None:
        self.geo_enabled = geo_enabled
        self.providers: Dict[str, Provider] = {}
        self.requests: Dict[str, ServiceRequest] = {}
        self.plans: Dict[PlanName, PlanDefinition] = {}
        self._bookings: Dict[str, List[BookingRecord]] = {}
        self._reviews: Dict[str, List[ReviewRecord]] = {}
        self._proposals: Dict[str, List[ProposalRecord]] = {}

    # -- fixtures -----------------------------------------------------------

    def add_provider(self, provider: Provider) -> Provider:
        self.providers[provider.id] = provider
        return provider

    def add_request(self, request: ServiceRequest) -> ServiceRequest:
        self.requests[request.id] = request
        return request

    def add_plan(self, plan: PlanDefinition) -> PlanDefinition:
        self.plans[plan.name] = plan
        return plan

    def add_booking(self, provider_id: str, booking: BookingRecord) -> None:
        self._bookings.setdefault(provider_id, []).append(booking)

    def add_review(self, provider_id: str, review: ReviewRecord) -> None:
        self._reviews.setdefault(provider_id, []).append(review)

    def add_proposal(self, provider_id: str, proposal: ProposalRecord) -> None:
        self._proposals.setdefault(provider_id, []).append(proposal)

    # -- providers ----------------------------------------------------------

    async def get_provider(self, provider_id: str) -> Optional[Provider]:
        return self.providers.get(provider_id)

    async def get_providers(self, provider_ids: Sequence[str]) -> List[Provider]:
        return [self.providers[pid] for pid in provider_ids if pid in self.providers]

    async def find_candidates(self, query: CandidateQuery) -> List[Provider]:
        if query.uses_geo and not self.geo_enabled:
            raise GeoQueryUnavailable("geo index is not available")

        matches: List[Provider] = []
        for provider in self.providers.values():
            if not provider.is_active or not provider.subscription.is_active:
                continue
            if not provider.offers(query.category):
                continue
            if query.uses_geo:
                if provider.service_location is None:
                    continue
                if provider.service_location.distance_km(query.origin) > query.radius_km:
                    continue
            if query.weekday:
                day = provider.working_hours.for_weekday(query.weekday)
                if not day.covers(query.preferred_time):
                    continue
            matches.append(provider)
        return matches

    async def find_by_referral_code(self, code: str) -> Optional[Provider]:
        for provider in self.providers.values():
            if provider.referral.code == code:
                return provider
        return None

    async def start_billing_period(self, provider_id: str, *, start: datetime, end: datetime) -> None:
        provider = self.providers.get(provider_id)
        if provider is None:
            return
        subscription = provider.subscription.model_copy(
            update={"current_period_start": start, "current_period_end": end, "leads_used": 0}
        )
        self.providers[provider_id] = provider.model_copy(update={"subscription": subscription})

    async def reset_expired_period(
        self,
        provider_id: str,
        *,
        now: datetime,
        period_days: int,
    ) -> Optional[ProviderSubscription]:
        provider = self.providers.get(provider_id)
        if provider is None:
            return None
        subscription = provider.subscription
        if subscription.period_expired(now):
            subscription = subscription.rolled_over(now, period_days)
            self.providers[provider_id] = provider.model_copy(update={"subscription": subscription})
        return subscription

    async def increment_lead_usage(
        self,
        provider_id: str,
        *,
        now: datetime,
        period_days: int,
    ) -> Optional[int]:
        provider = self.providers.get(provider_id)
        if provider is None:
            return None
        subscription = provider.subscription
        if subscription.period_expired(now):
            subscription = subscription.rolled_over(now, period_days)
        subscription = subscription.model_copy(
            update={"leads_used": subscription.leads_used + 1, "last_lead_at": now}
        )
        self.providers[provider_id] = provider.model_copy(update={"subscription": subscription})
        return subscription.leads_used

    async def reserve_lead(
        self,
        provider_id: str,
        *,
        lead_limit: int,
        now: datetime,
        period_days: int,
    ) -> bool:
        provider = self.providers.get(provider_id)
        if provider is None:
            return False
        subscription = provider.subscription
        if subscription.period_expired(now):
            subscription = subscription.rolled_over(now, period_days)
        if lead_limit >= 0 and subscription.leads_used >= lead_limit:
            return False
        subscription = subscription.model_copy(
            update={"leads_used": subscription.leads_used + 1, "last_lead_at": now}
        )
        self.providers[provider_id] = provider.model_copy(update={"subscription": subscription})
        return True

    async def save_score(self, provider_id: str, snapshot: ProviderScoreSnapshot) -> None:
        provider = self.providers.get(provider_id)
        if provider is not None:
            self.providers[provider_id] = provider.model_copy(update={"score": snapshot})

    async def update_plan(
        self,
        provider_id: str,
        *,
        plan: PlanName,
        status: SubscriptionStatus,
        commission_rate: float,
    ) -> bool:
        provider = self.providers.get(provider_id)
        if provider is None:
            return False
        subscription = provider.subscription.model_copy(update={"plan": plan, "status": status})
        billing = provider.billing.model_copy(update={"commission_rate": commission_rate})
        self.providers[provider_id] = provider.model_copy(
            update={"subscription": subscription, "billing": billing}
        )
        return True

    async def record_referral(self, provider_id: str, *, max_discount_months: int) -> None:
        provider = self.providers.get(provider_id)
        if provider is None:
            return
        referral = provider.referral.model_copy(
            update={
                "referrals_count": provider.referral.referrals_count + 1,
                "discount_months": min(provider.referral.discount_months + 1, max_discount_months),
            }
        )
        self.providers[provider_id] = provider.model_copy(update={"referral": referral})

    async def consume_discount_month(self, provider_id: str) -> None:
        provider = self.providers.get(provider_id)
        if provider is None or provider.referral.discount_months <= 0:
            return
        referral = provider.referral.model_copy(
            update={"discount_months": provider.referral.discount_months - 1}
        )
        self.providers[provider_id] = provider.model_copy(update={"referral": referral})

    # -- plans --------------------------------------------------------------

    async def get_plan(self, name: PlanName) -> Optional[PlanDefinition]:
        plan = self.plans.get(name)
        if plan is None or not plan.is_active:
            return None
        return plan

    async def list_plans(self) -> List[PlanDefinition]:
        return sorted(self.plans.values(), key=lambda plan: plan.order)

    async def insert_plans(self, plans: Sequence[PlanDefinition]) -> int:
        inserted = 0
        for plan in plans:
            if plan.name in self.plans:
                continue
            self.plans[plan.name] = plan
            inserted += 1
        return inserted

    # -- service requests ---------------------------------------------------

    async def get_request(self, request_id: str) -> Optional[ServiceRequest]:
        return self.requests.get(request_id)

    async def upsert_notified_provider(self, request_id: str, entry: NotifiedProvider) -> None:
        request = self.requests.get(request_id)
        if request is None:
            raise LookupError(f"Service request not found: {request_id}")
        entries = [item for item in request.eligible_providers if item.provider_id != entry.provider_id]
        entries.append(entry)
        self.requests[request_id] = request.model_copy(update={"eligible_providers": tuple(entries)})

    # -- engagement history -------------------------------------------------

    async def get_engagement_history(self, provider_id: str, since: datetime) -> EngagementHistory:
        return EngagementHistory(
            bookings=tuple(b for b in self._bookings.get(provider_id, []) if b.created_at >= since),
            reviews=tuple(r for r in self._reviews.get(provider_id, []) if r.created_at >= since),
            proposals=tuple(p for p in self._proposals.get(provider_id, []) if p.created_at >= since),
        )


__all__ = ["InMemoryMarketplaceStore"]
