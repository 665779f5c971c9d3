"""Short-lived storage for computed eligibility results."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Protocol

from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from ..marketplace.exceptions import CacheUnavailable
from ..marketplace.models import utcnow
from .models import EligibilityResult

logger = logging.getLogger(__name__)

KEY_PREFIX = "eligible_providers:"


def cache_key(service_request_id: str) -> str:
    return f"{KEY_PREFIX}{service_request_id}"


class EligibilityCache(Protocol):
    """Cache operations used by the eligibility service.

    Implementations raise :class:`CacheUnavailable` when the backend cannot be
    reached; a missing or expired key is ``None``.
    """

    async def get(self, service_request_id: str) -> Optional[EligibilityResult]:
        ...

    async def set(self, service_request_id: str, value: EligibilityResult, ttl_seconds: int) -> None:
        ...


@dataclass
class _CacheEntry:
    value: EligibilityResult
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class InMemoryEligibilityCache:
    """Process local cache suitable for tests and local development."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._clock = clock or utcnow
        self._entries: Dict[str, _CacheEntry] = {}

    async def get(self, service_request_id: str) -> Optional[EligibilityResult]:
        key = cache_key(service_request_id)
        entry = self._entries.get(key)
        if not entry:
            return None
        if entry.is_expired(self._clock()):
            self._entries.pop(key, None)
            return None
        return entry.value

    async def set(self, service_request_id: str, value: EligibilityResult, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        expires_at = self._clock() + timedelta(seconds=ttl_seconds)
        self._entries[cache_key(service_request_id)] = _CacheEntry(value=value, expires_at=expires_at)

    def clear(self) -> None:
        self._entries.clear()


class RedisEligibilityCache:
    """Stores eligibility results as JSON with a Redis-side expiry."""

    def __init__(self, client: Redis) -> None:
        self._client = client

    async def get(self, service_request_id: str) -> Optional[EligibilityResult]:
        try:
            raw = await self._client.get(cache_key(service_request_id))
        except RedisError as exc:
            raise CacheUnavailable(str(exc)) from exc
        if raw is None:
            return None
        try:
            return EligibilityResult.model_validate_json(raw)
        except ValidationError:
            logger.warning(
                "Discarding unreadable eligibility cache entry",
                extra={"service_request_id": service_request_id},
            )
            return None

    async def set(self, service_request_id: str, value: EligibilityResult, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        try:
            await self._client.set(cache_key(service_request_id), value.model_dump_json(), ex=ttl_seconds)
        except RedisError as exc:
            raise CacheUnavailable(str(exc)) from exc


__all__ = [
    "EligibilityCache",
    "InMemoryEligibilityCache",
    "KEY_PREFIX",
    "RedisEligibilityCache",
    "cache_key",
]
