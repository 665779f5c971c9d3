"""Bounded fan-out of new request notifications to providers."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Sequence, Union

from ..marketplace.exceptions import ServiceRequestNotFound
from ..marketplace.models import NotifiedProvider, utcnow
from ..marketplace.repository import ProviderRepository, ServiceRequestRepository
from ..subscriptions.service import SubscriptionService
from .channels import NotificationChannel, RealtimeEmitter
from .models import (
    HIGH_PRIORITY,
    NEW_REQUEST_NOTIFICATION,
    EligibleProvider,
    NotificationMode,
    NotificationOutcome,
    NotificationSummary,
    ProfileSummary,
)
from .service import EligibilityService

logger = logging.getLogger(__name__)

QUOTA_EXHAUSTED = "lead quota exhausted"


def _dedupe(ids: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(str(item) for item in ids if item))


class NotificationDispatcher:
    """Notifies the best candidates for a request, isolating each recipient.

    ``auto`` mode only notifies providers whose lead can still be reserved;
    ``directed`` mode skips eligibility and always consumes a lead.
    """

    def __init__(
        self,
        requests: ServiceRequestRepository,
        providers: ProviderRepository,
        subscriptions: SubscriptionService,
        eligibility: EligibilityService,
        channel: NotificationChannel,
        emitter: RealtimeEmitter,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        max_notified: int = 15,
    ) -> None:
        self._requests = requests
        self._providers = providers
        self._subscriptions = subscriptions
        self._eligibility = eligibility
        self._channel = channel
        self._emitter = emitter
        self._clock = clock or utcnow
        self._max_notified = max_notified

    async def notify_providers(
        self,
        service_request_id: str,
        mode: Union[str, NotificationMode, None] = None,
        selected_provider_ids: Optional[Sequence[str]] = None,
    ) -> NotificationSummary:
        """Notify the top candidates for a request.

        ``mode`` and ``selected_provider_ids`` default to the request's own
        visibility and selected providers.
        """

        if mode is not None:
            mode = NotificationMode(mode)
        request = await self._requests.get_request(service_request_id)
        if request is None:
            raise ServiceRequestNotFound(service_request_id)
        if mode is None:
            mode = NotificationMode(request.visibility.value)
        if selected_provider_ids is None:
            selected_provider_ids = request.selected_providers

        selected = _dedupe(selected_provider_ids)
        if mode == NotificationMode.DIRECTED and selected:
            candidates = await self._directed_candidates(selected)
            reserve = False
        else:
            if mode == NotificationMode.DIRECTED:
                logger.info(
                    "Directed request without selection, using eligible providers",
                    extra={"service_request_id": service_request_id},
                )
            eligibility = await self._eligibility.find_eligible_providers(service_request_id)
            candidates = list(eligibility.eligible_providers)
            reserve = True

        top = candidates[: self._max_notified]
        settled = await asyncio.gather(
            *(self._notify_one(request.id, candidate, reserve=reserve) for candidate in top),
            return_exceptions=True,
        )

        outcomes: List[NotificationOutcome] = []
        for candidate, outcome in zip(top, settled):
            if isinstance(outcome, NotificationOutcome):
                outcomes.append(outcome)
            else:
                outcomes.append(
                    NotificationOutcome(provider_id=candidate.provider_id, notified=False, error=str(outcome))
                )

        summary = NotificationSummary.from_outcomes(outcomes)
        logger.info(
            "Dispatched request notifications",
            extra={
                "service_request_id": service_request_id,
                "mode": mode.value,
                "notified": summary.total_notified,
                "failed": summary.total_failed,
            },
        )
        return summary

    async def _directed_candidates(self, provider_ids: Sequence[str]) -> List[EligibleProvider]:
        providers = {provider.id: provider for provider in await self._providers.get_providers(provider_ids)}
        missing = [pid for pid in provider_ids if pid not in providers]
        if missing:
            logger.warning("Ignoring unknown directed providers", extra={"provider_ids": missing})
        return [
            EligibleProvider(
                provider_id=pid,
                score=0.0,
                profile=ProfileSummary.from_provider(providers[pid]),
            )
            for pid in provider_ids
            if pid in providers
        ]

    async def _notify_one(
        self,
        service_request_id: str,
        candidate: EligibleProvider,
        *,
        reserve: bool,
    ) -> NotificationOutcome:
        provider_id = candidate.provider_id

        if reserve:
            if not await self._reserve_lead(provider_id):
                return NotificationOutcome(provider_id=provider_id, notified=False, error=QUOTA_EXHAUSTED)
        else:
            try:
                await self._subscriptions.increment_lead_usage(provider_id)
            except Exception:
                logger.warning("Lead usage increment failed", extra={"provider_id": provider_id}, exc_info=True)

        try:
            await self._requests.upsert_notified_provider(
                service_request_id,
                NotifiedProvider(
                    provider_id=provider_id,
                    score=candidate.score,
                    notified=True,
                    notified_at=self._clock(),
                ),
            )
            await self._channel.send_provider_notification(
                provider_id=provider_id,
                service_request_id=service_request_id,
                notification_type=NEW_REQUEST_NOTIFICATION,
                priority=HIGH_PRIORITY,
            )
        except Exception as exc:
            logger.exception(
                "Failed to notify provider",
                extra={"provider_id": provider_id, "service_request_id": service_request_id},
            )
            return NotificationOutcome(provider_id=provider_id, notified=False, error=str(exc))

        try:
            await self._emitter.emit_counters_update(provider_id, {"reason": "new_request"})
        except Exception:
            logger.warning("Counters update failed", extra={"provider_id": provider_id}, exc_info=True)

        return NotificationOutcome(provider_id=provider_id, notified=True, score=candidate.score)

    async def _reserve_lead(self, provider_id: str) -> bool:
        try:
            return await self._subscriptions.reserve_lead(provider_id)
        except Exception:
            # An unreachable counter does not block delivery.
            logger.warning("Lead reservation failed", extra={"provider_id": provider_id}, exc_info=True)
            return True


__all__ = ["NotificationDispatcher", "QUOTA_EXHAUSTED"]
