"""Eligibility filtering and ranking of providers for a service request."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional

from ..marketplace.exceptions import GeoQueryUnavailable, ServiceRequestNotFound
from ..marketplace.models import CandidateQuery, Provider, ServiceRequest, Urgency, utcnow
from ..marketplace.repository import ProviderRepository, ServiceRequestRepository
from ..scoring.service import ScoringService
from ..subscriptions.service import SubscriptionService
from .cache import EligibilityCache
from .models import EligibilityResult, EligibleProvider, ProfileSummary

logger = logging.getLogger(__name__)


class EligibilityService:
    """Builds the ranked list of providers able to take a request.

    Results are memoized per request for ``ttl_seconds``. Provider or request
    changes do not invalidate the cache; ``force_refresh`` bypasses it.
    """

    def __init__(
        self,
        requests: ServiceRequestRepository,
        providers: ProviderRepository,
        subscriptions: SubscriptionService,
        scoring: ScoringService,
        cache: EligibilityCache,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        ttl_seconds: int = 300,
        radius_immediate_km: float = 15.0,
        radius_scheduled_km: float = 50.0,
        persist_scores: bool = True,
    ) -> None:
        self._requests = requests
        self._providers = providers
        self._subscriptions = subscriptions
        self._scoring = scoring
        self._cache = cache
        self._clock = clock or utcnow
        self._ttl_seconds = ttl_seconds
        self._radius_immediate_km = radius_immediate_km
        self._radius_scheduled_km = radius_scheduled_km
        self._persist_scores = persist_scores

    async def find_eligible_providers(
        self,
        service_request_id: str,
        *,
        force_refresh: bool = False,
    ) -> EligibilityResult:
        if not force_refresh:
            cached = await self._read_cache(service_request_id)
            if cached is not None:
                return cached

        request = await self._requests.get_request(service_request_id)
        if request is None:
            raise ServiceRequestNotFound(service_request_id)

        candidates = await self._load_candidates(request)
        capacity = await asyncio.gather(
            *(self._subscriptions.can_receive_lead(provider) for provider in candidates)
        )
        with_capacity = [provider for provider, ok in zip(candidates, capacity) if ok]

        scores = await asyncio.gather(
            *(
                self._scoring.calculate_provider_score(provider, persist=self._persist_scores)
                for provider in with_capacity
            )
        )
        ranked = sorted(
            (
                EligibleProvider(
                    provider_id=provider.id,
                    score=score.total,
                    details=score,
                    profile=ProfileSummary.from_provider(provider),
                )
                for provider, score in zip(with_capacity, scores)
            ),
            key=lambda entry: entry.score,
            reverse=True,
        )

        result = EligibilityResult(
            service_request_id=service_request_id,
            eligible_providers=tuple(ranked),
            total_count=len(ranked),
            calculated_at=self._clock(),
        )
        logger.info(
            "Computed eligible providers",
            extra={
                "service_request_id": service_request_id,
                "candidates": len(candidates),
                "eligible": result.total_count,
            },
        )
        await self._write_cache(service_request_id, result)
        return result

    def build_query(self, request: ServiceRequest) -> CandidateQuery:
        radius = (
            self._radius_immediate_km
            if request.urgency == Urgency.IMMEDIATE
            else self._radius_scheduled_km
        )
        return CandidateQuery(
            category=request.category,
            origin=request.location,
            radius_km=radius if request.location is not None else None,
            weekday=request.scheduling.weekday,
            preferred_time=request.scheduling.preferred_time if request.scheduling.weekday else None,
        )

    async def _load_candidates(self, request: ServiceRequest) -> List[Provider]:
        query = self.build_query(request)
        try:
            return await self._providers.find_candidates(query)
        except GeoQueryUnavailable:
            if not query.uses_geo:
                raise
            logger.warning(
                "Geo query unavailable, falling back to category filter",
                extra={"service_request_id": request.id},
                exc_info=True,
            )
            return await self._providers.find_candidates(query.without_geo())

    async def _read_cache(self, service_request_id: str) -> Optional[EligibilityResult]:
        try:
            cached = await self._cache.get(service_request_id)
        except Exception:
            logger.warning(
                "Eligibility cache read failed",
                extra={"service_request_id": service_request_id},
                exc_info=True,
            )
            return None
        logger.debug(
            "Eligibility cache %s",
            "hit" if cached is not None else "miss",
            extra={"service_request_id": service_request_id},
        )
        return cached

    async def _write_cache(self, service_request_id: str, result: EligibilityResult) -> None:
        try:
            await self._cache.set(service_request_id, result, self._ttl_seconds)
        except Exception:
            logger.warning(
                "Eligibility cache write failed",
                extra={"service_request_id": service_request_id},
                exc_info=True,
            )


__all__ = ["EligibilityService"]
