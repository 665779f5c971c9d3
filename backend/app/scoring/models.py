"""Result types returned by the scoring engine."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..marketplace.models import PlanName, ProviderScoreSnapshot, ScoreBreakdown


class ScoreDetails(BaseModel):
    """Raw provider aggregates the score was derived from."""

    average_rating: float = 0.0
    completed_jobs: int = 0
    response_rate: float = 0.0
    subscription_plan: Optional[PlanName] = None

    model_config = ConfigDict(frozen=True)


class ProviderScore(BaseModel):
    total: float = Field(default=0.0, ge=0)
    breakdown: Optional[ScoreBreakdown] = None
    details: Optional[ScoreDetails] = None

    model_config = ConfigDict(frozen=True)

    @classmethod
    def zero(cls) -> "ProviderScore":
        """Score reported for providers that cannot be resolved."""

        return cls()

    def snapshot(self, calculated_at: datetime) -> ProviderScoreSnapshot:
        return ProviderScoreSnapshot(
            total=self.total,
            last_calculated=calculated_at,
            factors=self.breakdown,
        )


__all__ = ["ProviderScore", "ScoreDetails"]
