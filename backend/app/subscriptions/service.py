"""Subscription plans, lead quotas, billing periods, and referral discounts."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Union

from ..marketplace.exceptions import ProviderNotFound
from ..marketplace.models import (
    PlanDefinition,
    PlanName,
    Provider,
    ProviderRef,
    SubscriptionStatus,
    utcnow,
)
from ..marketplace.repository import PlanRepository, ProviderRepository, resolve_provider
from .catalog import DEFAULT_PLANS, get_default_plan, parse_plan_name
from .models import MonthlyCharge

logger = logging.getLogger(__name__)


class SubscriptionService:
    """Answers quota questions and applies the narrow subscription updates.

    Plan lookups never raise: when the plan store is empty, unreachable, or the
    plan is inactive the built-in definition of the same name is used.
    """

    def __init__(
        self,
        providers: ProviderRepository,
        plans: PlanRepository,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        period_days: int = 30,
        max_discount_months: int = 3,
        discount_rate: float = 0.5,
    ) -> None:
        self._providers = providers
        self._plans = plans
        self._clock = clock or utcnow
        self._period_days = period_days
        self._max_discount_months = max_discount_months
        self._discount_rate = discount_rate

    async def get_plan(self, name: Union[str, PlanName, None]) -> PlanDefinition:
        plan_name = parse_plan_name(name)
        if plan_name is None:
            return get_default_plan(None)
        try:
            stored = await self._plans.get_plan(plan_name)
        except Exception:
            logger.warning(
                "Plan lookup failed, using built-in definition",
                extra={"plan": plan_name.value},
                exc_info=True,
            )
            stored = None
        return stored or get_default_plan(plan_name)

    async def list_plans(self) -> List[PlanDefinition]:
        stored = {plan.name: plan for plan in await self._plans.list_plans() if plan.is_active}
        merged = [stored.get(name, default) for name, default in DEFAULT_PLANS.items()]
        return sorted(merged, key=lambda plan: plan.order)

    async def ensure_plans_seeded(self) -> int:
        inserted = await self._plans.insert_plans(list(DEFAULT_PLANS.values()))
        if inserted:
            logger.info("Seeded subscription plans", extra={"inserted": inserted})
        return inserted

    async def ensure_active_period(self, provider: Provider) -> Provider:
        """Start a new billing period when the current one has lapsed.

        ``provider`` may be stale, so the reset is conditional on the stored
        period and the returned snapshot carries the stored subscription.
        """

        now = self._clock()
        if not provider.subscription.period_expired(now):
            return provider

        stored = await self._providers.reset_expired_period(
            provider.id,
            now=now,
            period_days=self._period_days,
        )
        if stored is None:
            return provider.model_copy(
                update={"subscription": provider.subscription.rolled_over(now, self._period_days)}
            )
        if stored.current_period_start == now:
            logger.debug("Started billing period", extra={"provider_id": provider.id})
        return provider.model_copy(update={"subscription": stored})

    async def can_receive_lead(self, ref: ProviderRef) -> bool:
        provider = await resolve_provider(self._providers, ref)
        if provider is None or not provider.subscription.is_active:
            return False

        try:
            provider = await self.ensure_active_period(provider)
        except Exception:
            # The lapsed period still counts as reset for this decision.
            logger.warning(
                "Could not persist billing period reset",
                extra={"provider_id": provider.id},
                exc_info=True,
            )
            provider = provider.model_copy(
                update={"subscription": provider.subscription.rolled_over(self._clock(), self._period_days)}
            )

        plan = await self.get_plan(provider.subscription.plan)
        return plan.allows_another_lead(provider.subscription.leads_used)

    async def increment_lead_usage(self, provider_id: str) -> Optional[int]:
        """Count one lead, resetting an expired period in the same update."""

        leads_used = await self._providers.increment_lead_usage(
            provider_id,
            now=self._clock(),
            period_days=self._period_days,
        )
        if leads_used is None:
            logger.warning("Lead usage not recorded for unknown provider", extra={"provider_id": provider_id})
        return leads_used

    async def reserve_lead(self, ref: ProviderRef) -> bool:
        """Consume one lead only if the provider still has capacity."""

        provider = await resolve_provider(self._providers, ref)
        if provider is None or not provider.subscription.is_active:
            return False
        plan = await self.get_plan(provider.subscription.plan)
        return await self._providers.reserve_lead(
            provider.id,
            lead_limit=plan.lead_limit,
            now=self._clock(),
            period_days=self._period_days,
        )

    async def compute_monthly_charge(self, ref: ProviderRef) -> MonthlyCharge:
        provider = await resolve_provider(self._providers, ref)
        if provider is None:
            raise ProviderNotFound(str(ref))

        plan = await self.get_plan(provider.subscription.plan)
        base = plan.monthly_price
        discount = 0.0
        if base > 0 and provider.referral.discount_months > 0:
            discount = round(base * self._discount_rate, 2)
        total = round(max(0.0, base - discount), 2)
        return MonthlyCharge(
            plan=plan.name,
            currency=plan.currency,
            base=base,
            discount=discount,
            total=total,
        )

    async def apply_monthly_renewal(self, provider_id: str) -> MonthlyCharge:
        provider = await self._providers.get_provider(provider_id)
        if provider is None:
            raise ProviderNotFound(provider_id)

        charge = await self.compute_monthly_charge(provider)
        if charge.discounted:
            await self._providers.consume_discount_month(provider_id)

        now = self._clock()
        await self._providers.start_billing_period(
            provider_id,
            start=now,
            end=now + timedelta(days=self._period_days),
        )
        logger.info(
            "Applied monthly renewal",
            extra={"provider_id": provider_id, "total": charge.total, "discount": charge.discount},
        )
        return charge

    async def change_plan(self, provider_id: str, plan_name: Union[str, PlanName]) -> PlanDefinition:
        parsed = parse_plan_name(plan_name)
        if parsed is None:
            raise ValueError(f"Invalid plan: {plan_name!r}")

        plan = await self.get_plan(parsed)
        updated = await self._providers.update_plan(
            provider_id,
            plan=plan.name,
            status=SubscriptionStatus.ACTIVE,
            commission_rate=plan.commission_rate,
        )
        if not updated:
            raise ProviderNotFound(provider_id)
        logger.info("Changed provider plan", extra={"provider_id": provider_id, "plan": plan.name.value})
        return plan

    async def apply_referral_code(self, code: Optional[str]) -> Optional[str]:
        """Credit the owner of ``code`` with a referral and return their id."""

        if not code or not code.strip():
            return None
        referrer = await self._providers.find_by_referral_code(code.strip())
        if referrer is None:
            return None

        await self._providers.record_referral(
            referrer.id,
            max_discount_months=self._max_discount_months,
        )
        logger.info("Applied referral code", extra={"provider_id": referrer.id})
        return referrer.id


__all__ = ["SubscriptionService"]
