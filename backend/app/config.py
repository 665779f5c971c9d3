"""Environment driven configuration for the matching service."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

CACHE_BACKENDS = ("memory", "redis")


@dataclass(frozen=True)
class MatchingConfig:
    """Tunables for eligibility, dispatch, quota, and referral arithmetic."""

    cache_ttl_seconds: int
    max_notified: int
    radius_immediate_km: float
    radius_scheduled_km: float
    persist_scores: bool
    billing_period_days: int
    referral_max_discount_months: int
    referral_discount_rate: float
    cache_backend: str
    redis_url: str
    realtime_channel: str


@dataclass(frozen=True)
class DatabaseConfig:
    host: str
    port: int
    database: str
    user: str
    password: Optional[str]
    connect_timeout: float
    pool_size: int


def _to_bool(value: Optional[str], *, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _to_float(value: Optional[str], *, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected float value, got {value!r}") from exc


def load_matching_config(env: Optional[Mapping[str, str]] = None) -> MatchingConfig:
    """Load :class:`MatchingConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    cache_backend = (env_mapping.get("MATCHING_CACHE_BACKEND") or "memory").strip().lower()
    if cache_backend not in CACHE_BACKENDS:
        raise ValueError(f"Unsupported cache backend {cache_backend!r}")

    return MatchingConfig(
        cache_ttl_seconds=max(1, _to_int(env_mapping.get("MATCHING_CACHE_TTL_SECONDS"), default=300)),
        max_notified=max(1, _to_int(env_mapping.get("MATCHING_MAX_NOTIFIED"), default=15)),
        radius_immediate_km=_to_float(env_mapping.get("MATCHING_RADIUS_IMMEDIATE_KM"), default=15.0),
        radius_scheduled_km=_to_float(env_mapping.get("MATCHING_RADIUS_SCHEDULED_KM"), default=50.0),
        persist_scores=_to_bool(env_mapping.get("MATCHING_PERSIST_SCORES"), default=True),
        billing_period_days=max(1, _to_int(env_mapping.get("BILLING_PERIOD_DAYS"), default=30)),
        referral_max_discount_months=max(
            0, _to_int(env_mapping.get("REFERRAL_MAX_DISCOUNT_MONTHS"), default=3)
        ),
        referral_discount_rate=min(
            1.0, max(0.0, _to_float(env_mapping.get("REFERRAL_DISCOUNT_RATE"), default=0.5))
        ),
        cache_backend=cache_backend,
        redis_url=env_mapping.get("REDIS_URL", "redis://localhost:6379/0"),
        realtime_channel=env_mapping.get("REALTIME_CHANNEL", "counters:update"),
    )


def load_database_config(env: Optional[Mapping[str, str]] = None) -> DatabaseConfig:
    """Load :class:`DatabaseConfig` from the ``DB_*`` environment variables."""

    env_mapping = os.environ if env is None else env
    return DatabaseConfig(
        host=env_mapping.get("DB_HOST", "localhost"),
        port=_to_int(env_mapping.get("DB_PORT"), default=5432),
        database=env_mapping.get("DB_NAME", "marketplace"),
        user=env_mapping.get("DB_USER", "marketplace"),
        password=env_mapping.get("DB_PASSWORD") or None,
        connect_timeout=max(0.1, _to_float(env_mapping.get("DB_CONNECT_TIMEOUT"), default=5.0)),
        pool_size=max(1, _to_int(env_mapping.get("DB_POOL_SIZE"), default=10)),
    )


__all__ = [
    "CACHE_BACKENDS",
    "DatabaseConfig",
    "MatchingConfig",
    "load_database_config",
    "load_matching_config",
]
