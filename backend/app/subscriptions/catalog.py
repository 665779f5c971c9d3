"""Built-in subscription plan definitions."""
from __future__ import annotations

from typing import Dict, Optional, Union

from ..marketplace.models import PlanBenefit, PlanDefinition, PlanName

DEFAULT_PLANS: Dict[PlanName, PlanDefinition] = {
    PlanName.FREE: PlanDefinition(
        name=PlanName.FREE,
        display_name="Gratis",
        monthly_price=0,
        lead_limit=1,
        visibility_multiplier=1.0,
        commission_rate=15,
        benefits=(PlanBenefit.MULTIPLE_CATEGORIES,),
        order=1,
    ),
    PlanName.BASIC: PlanDefinition(
        name=PlanName.BASIC,
        display_name="Básico",
        monthly_price=10,
        lead_limit=5,
        visibility_multiplier=1.2,
        commission_rate=12,
        benefits=(PlanBenefit.PRIORITY_SUPPORT, PlanBenefit.ADVANCED_ANALYTICS),
        order=2,
    ),
    PlanName.PRO: PlanDefinition(
        name=PlanName.PRO,
        display_name="Pro",
        monthly_price=19,
        lead_limit=-1,
        visibility_multiplier=1.5,
        commission_rate=8,
        benefits=(
            PlanBenefit.PRIORITY_SUPPORT,
            PlanBenefit.ADVANCED_ANALYTICS,
            PlanBenefit.FEATURED_LISTING,
            PlanBenefit.CUSTOM_PROFILE,
        ),
        order=3,
    ),
}


def parse_plan_name(value: Union[str, PlanName, None]) -> Optional[PlanName]:
    """Return the matching :class:`PlanName` or ``None`` for unknown values."""

    if isinstance(value, PlanName):
        return value
    if not value:
        return None
    try:
        return PlanName(str(value).strip().lower())
    except ValueError:
        return None


def get_default_plan(name: Union[str, PlanName, None]) -> PlanDefinition:
    plan_name = parse_plan_name(name)
    if plan_name is None:
        return DEFAULT_PLANS[PlanName.FREE]
    return DEFAULT_PLANS[plan_name]


__all__ = ["DEFAULT_PLANS", "get_default_plan", "parse_plan_name"]
