"""Application wiring for the matching services."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import asyncpg
from fastapi import Request
from redis.asyncio import Redis

from ..config import DatabaseConfig, MatchingConfig, load_database_config, load_matching_config
from ..marketplace.postgres import PostgresMarketplaceRepository, create_marketplace_pool
from ..matching import (
    EligibilityCache,
    EligibilityService,
    InAppNotificationChannel,
    InMemoryEligibilityCache,
    LoggingNotificationChannel,
    LoggingRealtimeEmitter,
    NotificationChannel,
    NotificationDispatcher,
    RealtimeEmitter,
    RedisEligibilityCache,
    RedisRealtimeEmitter,
)
from ..scoring import ScoringService
from ..subscriptions import SubscriptionService

logger = logging.getLogger("matching")


@dataclass(frozen=True)
class MatchingServices:
    subscriptions: SubscriptionService
    scoring: ScoringService
    eligibility: EligibilityService
    dispatcher: NotificationDispatcher


@dataclass
class MatchingResources:
    """External handles owned by the running application."""

    services: MatchingServices
    pool: Optional[asyncpg.Pool] = None
    redis: Optional[Redis] = None

    async def close(self) -> None:
        if self.redis is not None:
            await self.redis.aclose()
        if self.pool is not None:
            await self.pool.close()


def build_matching_services(
    store,
    *,
    config: MatchingConfig,
    cache: Optional[EligibilityCache] = None,
    channel: Optional[NotificationChannel] = None,
    emitter: Optional[RealtimeEmitter] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> MatchingServices:
    """Assemble the services over ``store``, which implements every repository protocol."""

    subscriptions = SubscriptionService(
        store,
        store,
        clock=clock,
        period_days=config.billing_period_days,
        max_discount_months=config.referral_max_discount_months,
        discount_rate=config.referral_discount_rate,
    )
    scoring = ScoringService(store, store, subscriptions, clock=clock)
    eligibility = EligibilityService(
        store,
        store,
        subscriptions,
        scoring,
        cache or InMemoryEligibilityCache(clock=clock),
        clock=clock,
        ttl_seconds=config.cache_ttl_seconds,
        radius_immediate_km=config.radius_immediate_km,
        radius_scheduled_km=config.radius_scheduled_km,
        persist_scores=config.persist_scores,
    )
    dispatcher = NotificationDispatcher(
        store,
        store,
        subscriptions,
        eligibility,
        channel or LoggingNotificationChannel(),
        emitter or LoggingRealtimeEmitter(),
        clock=clock,
        max_notified=config.max_notified,
    )
    return MatchingServices(
        subscriptions=subscriptions,
        scoring=scoring,
        eligibility=eligibility,
        dispatcher=dispatcher,
    )


async def create_matching_resources(
    config: Optional[MatchingConfig] = None,
    db_config: Optional[DatabaseConfig] = None,
) -> MatchingResources:
    config = config or load_matching_config()
    db_config = db_config or load_database_config()

    pool = await create_marketplace_pool(db_config)
    redis: Optional[Redis] = None
    cache: EligibilityCache
    emitter: RealtimeEmitter
    if config.cache_backend == "redis":
        redis = Redis.from_url(config.redis_url)
        cache = RedisEligibilityCache(redis)
        emitter = RedisRealtimeEmitter(redis, config.realtime_channel)
    else:
        cache = InMemoryEligibilityCache()
        emitter = LoggingRealtimeEmitter()

    services = build_matching_services(
        PostgresMarketplaceRepository(pool),
        config=config,
        cache=cache,
        channel=InAppNotificationChannel(pool),
        emitter=emitter,
    )
    seeded = await services.subscriptions.ensure_plans_seeded()
    logger.info(
        "Matching services ready cache=%s seeded_plans=%s",
        config.cache_backend,
        seeded,
    )
    return MatchingResources(services=services, pool=pool, redis=redis)


def get_matching_services(request: Request) -> MatchingServices:
    resources: Optional[MatchingResources] = getattr(request.app.state, "matching", None)
    if resources is None:
        raise RuntimeError("Matching services are not initialised")
    return resources.services


__all__ = [
    "MatchingResources",
    "MatchingServices",
    "build_matching_services",
    "create_matching_resources",
    "get_matching_services",
]
