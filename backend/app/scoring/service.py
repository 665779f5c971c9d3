"""Resolves providers, loads engagement history, and persists scores."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from ..marketplace.models import EngagementHistory, Provider, ProviderRef, utcnow
from ..marketplace.repository import EngagementRepository, ProviderRepository, resolve_provider
from ..subscriptions.service import SubscriptionService
from .engine import CONSISTENCY_WINDOW_DAYS, compute_score
from .models import ProviderScore

logger = logging.getLogger(__name__)


class ScoringService:
    """Computes provider ranking scores from persisted aggregates."""

    def __init__(
        self,
        providers: ProviderRepository,
        engagement: EngagementRepository,
        subscriptions: SubscriptionService,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        window_days: int = CONSISTENCY_WINDOW_DAYS,
    ) -> None:
        self._providers = providers
        self._engagement = engagement
        self._subscriptions = subscriptions
        self._clock = clock or utcnow
        self._window_days = window_days

    async def calculate_provider_score(self, ref: ProviderRef, *, persist: bool = True) -> ProviderScore:
        """Score ``ref``; unknown providers score zero and nothing is stored."""

        provider = await resolve_provider(self._providers, ref)
        if provider is None:
            logger.warning("Scoring skipped for unknown provider", extra={"provider_id": str(ref)})
            return ProviderScore.zero()

        score = await self.score(provider)
        if persist:
            try:
                await self.persist_score(provider.id, score)
            except Exception:
                logger.warning(
                    "Score persistence failed, returning computed score",
                    extra={"provider_id": provider.id},
                    exc_info=True,
                )
        return score

    async def score(self, provider: Provider) -> ProviderScore:
        plan = await self._subscriptions.get_plan(provider.subscription.plan)
        history = await self._load_history(provider.id)
        return compute_score(provider, plan, history)

    async def persist_score(self, provider_id: str, score: ProviderScore) -> None:
        await self._providers.save_score(provider_id, score.snapshot(self._clock()))

    async def _load_history(self, provider_id: str) -> Optional[EngagementHistory]:
        since = self._clock() - timedelta(days=self._window_days)
        try:
            return await self._engagement.get_engagement_history(provider_id, since)
        except Exception:
            logger.warning(
                "Engagement history unavailable, using neutral consistency",
                extra={"provider_id": provider_id},
                exc_info=True,
            )
            return None


__all__ = ["ScoringService"]
