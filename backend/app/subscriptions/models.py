"""Value objects produced by the subscription service."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from ..marketplace.models import PlanName


class MonthlyCharge(BaseModel):
    """Subscription charge for one billing period after referral discounts."""

    plan: PlanName
    currency: str = "USD"
    base: float = Field(ge=0)
    discount: float = Field(default=0.0, ge=0)
    total: float = Field(ge=0)

    model_config = ConfigDict(frozen=True)

    @property
    def discounted(self) -> bool:
        return self.discount > 0


__all__ = ["MonthlyCharge"]
