"""Tests for the asyncpg and Redis adapters using hand-written fakes."""
from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import asyncpg
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from backend.app.marketplace import (
    CacheUnavailable,
    CandidateQuery,
    GeoPoint,
    GeoQueryUnavailable,
    NotificationDispatchFailed,
    NotifiedProvider,
    PlanName,
    SubscriptionStatus,
    Urgency,
)
from backend.app.marketplace.postgres import SCHEMA_STATEMENTS, PostgresMarketplaceRepository
from backend.app.matching import (
    EligibilityResult,
    EligibleProvider,
    InAppNotificationChannel,
    RedisEligibilityCache,
    RedisRealtimeEmitter,
)
from backend.app.subscriptions import DEFAULT_PLANS

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class FakeConnection:
    def __init__(
        self,
        *,
        rows: Optional[List[Dict[str, Any]]] = None,
        value: Any = None,
        status: str = "UPDATE 1",
        error: Optional[BaseException] = None,
    ) -> None:
        self.rows = rows or []
        self.value = value
        self.status = status
        self.error = error
        self.calls: List[Tuple[str, str, Tuple[Any, ...]]] = []

    def _record(self, kind: str, sql: str, args: Tuple[Any, ...]) -> None:
        self.calls.append((kind, sql, args))
        if self.error is not None:
            raise self.error

    async def fetch(self, sql: str, *args: Any) -> List[Dict[str, Any]]:
        self._record("fetch", sql, args)
        return self.rows

    async def fetchrow(self, sql: str, *args: Any) -> Optional[Dict[str, Any]]:
        self._record("fetchrow", sql, args)
        return self.rows[0] if self.rows else None

    async def fetchval(self, sql: str, *args: Any) -> Any:
        self._record("fetchval", sql, args)
        return self.value

    async def execute(self, sql: str, *args: Any) -> str:
        self._record("execute", sql, args)
        return self.status

    @asynccontextmanager
    async def transaction(self):
        yield self


class FakePool:
    def __init__(self, connection: FakeConnection) -> None:
        self.connection = connection

    @asynccontextmanager
    async def acquire(self):
        yield self.connection


class FakeRedis:
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error
        self.values: Dict[str, Any] = {}
        self.expiry: Dict[str, int] = {}
        self.published: List[Tuple[str, str]] = []

    async def get(self, key: str) -> Any:
        if self.error:
            raise self.error
        return self.values.get(key)

    async def set(self, key: str, value: str, ex: Optional[int] = None) -> bool:
        if self.error:
            raise self.error
        self.values[key] = value
        self.expiry[key] = ex
        return True

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        return 1


def provider_row(**overrides: Any) -> Dict[str, Any]:
    row = {
        "id": "prov-1",
        "business_name": "Pipes & Co",
        "is_active": True,
        "categories": ["Plumbing"],
        "service_lat": 10.0,
        "service_lng": 20.0,
        "working_hours": json.dumps({"monday": {"available": True, "start": "08:00", "end": "16:00"}}),
        "rating_average": 4.4,
        "rating_count": 9,
        "completed_jobs": 30,
        "response_rate": 0.8,
        "plan": "basic",
        "subscription_status": "active",
        "current_period_start": NOW - timedelta(days=2),
        "current_period_end": NOW + timedelta(days=28),
        "leads_used": 3,
        "last_lead_at": None,
        "commission_rate": 12.0,
        "referral_code": "PIPES",
        "referred_by": None,
        "referrals_count": 1,
        "discount_months": 1,
        "score_total": 21.5,
        "score_last_calculated": NOW,
        "score_factors": {"rating_volume": 14.0, "consistency_points": 3.9, "plan_multiplier": 1.2},
    }
    row.update(overrides)
    return row


def test_find_candidates_uses_postgis_distance_in_meters() -> None:
    connection = FakeConnection(rows=[provider_row()])
    repository = PostgresMarketplaceRepository(FakePool(connection))
    query = CandidateQuery(
        category="Plumbing",
        origin=GeoPoint(lat=10.0, lng=20.0),
        radius_km=15.0,
        weekday="monday",
        preferred_time="09:30",
    )

    providers = asyncio.run(repository.find_candidates(query))

    kind, sql, args = connection.calls[0]
    assert "ST_DWithin" in sql
    assert args[:4] == ("Plumbing", 20.0, 10.0, 15000.0)
    assert args[4:] == ("monday", "09:30")
    provider = providers[0]
    assert provider.subscription.plan == PlanName.BASIC
    assert provider.working_hours.monday.available is True
    assert provider.service_location == GeoPoint(lat=10.0, lng=20.0)
    assert provider.score.factors.plan_multiplier == pytest.approx(1.2)


def test_find_candidates_maps_missing_postgis_to_geo_error() -> None:
    connection = FakeConnection(error=asyncpg.exceptions.UndefinedFunctionError("function st_dwithin does not exist"))
    repository = PostgresMarketplaceRepository(FakePool(connection))
    query = CandidateQuery(category="Plumbing", origin=GeoPoint(lat=1, lng=1), radius_km=50)

    with pytest.raises(GeoQueryUnavailable):
        asyncio.run(repository.find_candidates(query))

    with pytest.raises(asyncpg.PostgresError):
        asyncio.run(repository.find_candidates(query.without_geo()))


def test_reserve_lead_is_a_single_conditional_update() -> None:
    granted = FakeConnection(value=4)
    denied = FakeConnection(value=None)

    assert asyncio.run(
        PostgresMarketplaceRepository(FakePool(granted)).reserve_lead("prov-1", lead_limit=5, now=NOW, period_days=30)
    ) is True
    assert asyncio.run(
        PostgresMarketplaceRepository(FakePool(denied)).reserve_lead("prov-1", lead_limit=5, now=NOW, period_days=30)
    ) is False

    kind, sql, args = granted.calls[0]
    assert kind == "fetchval"
    assert "leads_used < $4" in sql
    assert args == ("prov-1", NOW, 30, 5)
    assert len(granted.calls) == 1


def test_update_plan_reports_missing_provider() -> None:
    connection = FakeConnection(status="UPDATE 0")
    repository = PostgresMarketplaceRepository(FakePool(connection))

    updated = asyncio.run(
        repository.update_plan(
            "ghost",
            plan=PlanName.PRO,
            status=SubscriptionStatus.ACTIVE,
            commission_rate=8,
        )
    )

    assert updated is False
    assert connection.calls[0][2] == ("ghost", "pro", "active", 8)


def test_insert_plans_counts_new_rows() -> None:
    connection = FakeConnection(status="INSERT 0 1")
    repository = PostgresMarketplaceRepository(FakePool(connection))

    inserted = asyncio.run(repository.insert_plans(list(DEFAULT_PLANS.values())))

    assert inserted == 3
    assert all("ON CONFLICT (name) DO NOTHING" in sql for _, sql, _ in connection.calls)


def test_get_request_includes_notified_providers() -> None:
    request_row = {
        "id": "req-9",
        "category": "Plumbing",
        "urgency": "scheduled",
        "lat": None,
        "lng": None,
        "preferred_date": None,
        "preferred_time": "9:05",
        "flexibility": None,
        "visibility": "auto",
        "selected_providers": [],
        "provider_id": "prov-1",
        "score": 12.5,
        "notified": True,
        "notified_at": NOW,
    }
    connection = FakeConnection(rows=[request_row])
    repository = PostgresMarketplaceRepository(FakePool(connection))

    request = asyncio.run(repository.get_request("req-9"))

    assert request.urgency == Urgency.SCHEDULED
    assert request.location is None
    assert request.scheduling.preferred_time == "09:05"
    assert request.eligible_providers == (
        NotifiedProvider(provider_id="prov-1", score=12.5, notified=True, notified_at=NOW),
    )


def test_redis_cache_stores_json_with_expiry() -> None:
    client = FakeRedis()
    cache = RedisEligibilityCache(client)
    result = EligibilityResult(
        service_request_id="req-1",
        eligible_providers=(EligibleProvider(provider_id="prov-1", score=9.5),),
        total_count=1,
        calculated_at=NOW,
    )

    asyncio.run(cache.set("req-1", result, 300))
    loaded = asyncio.run(cache.get("req-1"))

    assert client.expiry["eligible_providers:req-1"] == 300
    assert loaded == result
    assert asyncio.run(cache.get("req-2")) is None


def test_redis_cache_discards_unreadable_entries() -> None:
    client = FakeRedis()
    client.values["eligible_providers:req-1"] = "{not json"

    assert asyncio.run(RedisEligibilityCache(client).get("req-1")) is None


def test_redis_cache_errors_become_cache_unavailable() -> None:
    cache = RedisEligibilityCache(FakeRedis(error=RedisConnectionError("connection refused")))

    with pytest.raises(CacheUnavailable):
        asyncio.run(cache.get("req-1"))


def test_redis_emitter_publishes_counters_event_per_user() -> None:
    client = FakeRedis()
    emitter = RedisRealtimeEmitter(client, "counters:update")

    asyncio.run(emitter.emit_counters_update(["a", "b", "a"], {"reason": "new_request"}))

    assert [channel for channel, _ in client.published] == ["counters:update", "counters:update"]
    first = json.loads(client.published[0][1])
    assert first["userId"] == "a"
    assert first["event"] == "counters:update"
    assert first["payload"]["reason"] == "new_request"
    assert "ts" in first["payload"]


def test_in_app_channel_inserts_notification() -> None:
    connection = FakeConnection(status="INSERT 0 1")
    channel = InAppNotificationChannel(FakePool(connection))

    asyncio.run(
        channel.send_provider_notification(
            provider_id="prov-1",
            service_request_id="req-1",
            notification_type="NEW_REQUEST",
            priority="high",
        )
    )

    kind, sql, args = connection.calls[0]
    assert "INSERT INTO notifications" in sql
    assert args[:4] == ("prov-1", "NEW_REQUEST", "high", "req-1")
    assert args[-1] == "/provider/requests/req-1"


def test_in_app_channel_wraps_database_errors() -> None:
    connection = FakeConnection(error=asyncpg.PostgresError("relation notifications does not exist"))
    channel = InAppNotificationChannel(FakePool(connection))

    with pytest.raises(NotificationDispatchFailed) as excinfo:
        asyncio.run(
            channel.send_provider_notification(
                provider_id="prov-1",
                service_request_id="req-1",
                notification_type="NEW_REQUEST",
                priority="high",
            )
        )

    assert excinfo.value.provider_id == "prov-1"


def test_reset_expired_period_is_conditional_on_stored_period() -> None:
    row = {
        "plan": "basic",
        "subscription_status": "active",
        "current_period_start": NOW - timedelta(days=3),
        "current_period_end": NOW + timedelta(days=27),
        "leads_used": 5,
        "last_lead_at": NOW,
    }
    connection = FakeConnection(rows=[row])
    repository = PostgresMarketplaceRepository(FakePool(connection))

    subscription = asyncio.run(repository.reset_expired_period("prov-1", now=NOW, period_days=30))

    kind, sql, args = connection.calls[0]
    assert len(connection.calls) == 1
    assert "WHERE id = $1 AND (current_period_end IS NULL OR current_period_end < $2)" in sql
    assert "NOT EXISTS (SELECT 1 FROM reset)" in sql
    assert args == ("prov-1", NOW, 30)
    assert subscription.leads_used == 5
    assert subscription.plan == PlanName.BASIC


def test_reset_expired_period_unknown_provider() -> None:
    repository = PostgresMarketplaceRepository(FakePool(FakeConnection()))

    assert asyncio.run(repository.reset_expired_period("ghost", now=NOW, period_days=30)) is None


def test_service_location_is_derived_from_coordinates() -> None:
    providers_ddl = next(statement for statement in SCHEMA_STATEMENTS if "CREATE TABLE IF NOT EXISTS providers" in statement)

    assert "GENERATED ALWAYS AS" in providers_ddl
    assert "ST_MakePoint(service_lng, service_lat)" in providers_ddl
