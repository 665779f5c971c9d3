"""Subscription plans and lead quota management."""

from .catalog import DEFAULT_PLANS, get_default_plan, parse_plan_name
from .models import MonthlyCharge
from .service import SubscriptionService

__all__ = [
    "DEFAULT_PLANS",
    "get_default_plan",
    "parse_plan_name",
    "MonthlyCharge",
    "SubscriptionService",
]
