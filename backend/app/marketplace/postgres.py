"""PostgreSQL persistence for the matching core built on asyncpg."""
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

import asyncpg

from ..config import DatabaseConfig
from .exceptions import GeoQueryUnavailable
from .models import (
    BookingRecord,
    BookingStatus,
    CandidateQuery,
    EngagementHistory,
    GeoPoint,
    NotifiedProvider,
    PlanBenefit,
    PlanDefinition,
    PlanName,
    ProposalRecord,
    Provider,
    ProviderBilling,
    ProviderReferral,
    ProviderScoreSnapshot,
    ProviderStats,
    ProviderSubscription,
    RatingSummary,
    RequestVisibility,
    ReviewRecord,
    ScoreBreakdown,
    Scheduling,
    ServiceRequest,
    SubscriptionStatus,
    Urgency,
    WorkingHours,
)

logger = logging.getLogger(__name__)


SCHEMA_STATEMENTS = (
    "CREATE EXTENSION IF NOT EXISTS postgis",
    """
    CREATE TABLE IF NOT EXISTS subscription_plans (
        name TEXT PRIMARY KEY,
        display_name TEXT NOT NULL,
        monthly_price NUMERIC(10, 2) NOT NULL,
        currency CHAR(3) NOT NULL DEFAULT 'USD',
        lead_limit INTEGER NOT NULL,
        visibility_multiplier DOUBLE PRECISION NOT NULL CHECK (visibility_multiplier >= 1.0),
        commission_rate DOUBLE PRECISION NOT NULL,
        benefits TEXT[] NOT NULL DEFAULT '{}',
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        sort_order INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS providers (
        id TEXT PRIMARY KEY,
        business_name TEXT,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        categories TEXT[] NOT NULL DEFAULT '{}',
        service_lat DOUBLE PRECISION,
        service_lng DOUBLE PRECISION,
        service_location GEOGRAPHY(Point, 4326) GENERATED ALWAYS AS (
            ST_SetSRID(ST_MakePoint(service_lng, service_lat), 4326)::geography
        ) STORED,
        working_hours JSONB NOT NULL DEFAULT '{}'::jsonb,
        rating_average DOUBLE PRECISION NOT NULL DEFAULT 0,
        rating_count INTEGER NOT NULL DEFAULT 0,
        completed_jobs INTEGER NOT NULL DEFAULT 0,
        response_rate DOUBLE PRECISION NOT NULL DEFAULT 0,
        plan TEXT NOT NULL DEFAULT 'free',
        subscription_status TEXT NOT NULL DEFAULT 'inactive',
        current_period_start TIMESTAMPTZ,
        current_period_end TIMESTAMPTZ,
        leads_used INTEGER NOT NULL DEFAULT 0,
        last_lead_at TIMESTAMPTZ,
        commission_rate DOUBLE PRECISION,
        referral_code TEXT,
        referred_by TEXT,
        referrals_count INTEGER NOT NULL DEFAULT 0,
        discount_months INTEGER NOT NULL DEFAULT 0 CHECK (discount_months BETWEEN 0 AND 3),
        score_total DOUBLE PRECISION NOT NULL DEFAULT 0 CHECK (score_total >= 0),
        score_last_calculated TIMESTAMPTZ,
        score_factors JSONB
    )
    """,
    "CREATE INDEX IF NOT EXISTS providers_categories_idx ON providers USING GIN (categories)",
    "CREATE INDEX IF NOT EXISTS providers_location_idx ON providers USING GIST (service_location)",
    "CREATE INDEX IF NOT EXISTS providers_referral_code_idx ON providers (referral_code)",
    """
    CREATE TABLE IF NOT EXISTS service_requests (
        id TEXT PRIMARY KEY,
        category TEXT NOT NULL,
        urgency TEXT NOT NULL,
        lat DOUBLE PRECISION,
        lng DOUBLE PRECISION,
        preferred_date DATE,
        preferred_time TEXT,
        flexibility TEXT,
        visibility TEXT NOT NULL DEFAULT 'auto',
        selected_providers TEXT[] NOT NULL DEFAULT '{}'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS service_request_eligible_providers (
        request_id TEXT NOT NULL REFERENCES service_requests (id) ON DELETE CASCADE,
        provider_id TEXT NOT NULL,
        score DOUBLE PRECISION NOT NULL DEFAULT 0,
        notified BOOLEAN NOT NULL DEFAULT FALSE,
        notified_at TIMESTAMPTZ,
        PRIMARY KEY (request_id, provider_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS notifications (
        id BIGSERIAL PRIMARY KEY,
        user_id TEXT NOT NULL,
        type TEXT NOT NULL,
        priority TEXT NOT NULL DEFAULT 'medium',
        service_request_id TEXT,
        title TEXT NOT NULL,
        body TEXT,
        action_url TEXT,
        is_read BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS bookings (
        id BIGSERIAL PRIMARY KEY,
        provider_id TEXT NOT NULL,
        status TEXT NOT NULL,
        scheduled_at TIMESTAMPTZ,
        started_at TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS reviews (
        id BIGSERIAL PRIMARY KEY,
        provider_id TEXT NOT NULL,
        overall_rating DOUBLE PRECISION NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS proposals (
        id BIGSERIAL PRIMARY KEY,
        provider_id TEXT NOT NULL,
        response_time_minutes DOUBLE PRECISION,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
)

_PROVIDER_COLUMNS = """
    p.id,
    p.business_name,
    p.is_active,
    p.categories,
    p.service_lat,
    p.service_lng,
    p.working_hours,
    p.rating_average,
    p.rating_count,
    p.completed_jobs,
    p.response_rate,
    p.plan,
    p.subscription_status,
    p.current_period_start,
    p.current_period_end,
    p.leads_used,
    p.last_lead_at,
    p.commission_rate,
    p.referral_code,
    p.referred_by,
    p.referrals_count,
    p.discount_months,
    p.score_total,
    p.score_last_calculated,
    p.score_factors
"""

_SUBSCRIPTION_COLUMNS = (
    "plan, subscription_status, current_period_start, current_period_end, leads_used, last_lead_at"
)

# Expression shared by the lead counters: the billing period has lapsed.
_PERIOD_EXPIRED = "(current_period_end IS NULL OR current_period_end < $2)"


async def create_marketplace_pool(config: DatabaseConfig) -> asyncpg.Pool:
    return await asyncpg.create_pool(
        min_size=1,
        max_size=config.pool_size,
        command_timeout=10,
        timeout=config.connect_timeout,
        host=config.host,
        port=config.port,
        database=config.database,
        user=config.user,
        password=config.password,
    )


async def create_schema(pool: asyncpg.Pool) -> None:
    async with pool.acquire() as connection:
        async with connection.transaction():
            for statement in SCHEMA_STATEMENTS:
                await connection.execute(statement)


def _load_json(value: Any) -> Optional[Dict[str, Any]]:
    if value is None:
        return None
    if isinstance(value, (bytes, str)):
        return json.loads(value)
    return dict(value)


def _row_to_subscription(row: Mapping[str, Any]) -> ProviderSubscription:
    return ProviderSubscription(
        plan=PlanName(row["plan"]),
        status=SubscriptionStatus(row["subscription_status"]),
        current_period_start=row["current_period_start"],
        current_period_end=row["current_period_end"],
        leads_used=row["leads_used"],
        last_lead_at=row["last_lead_at"],
    )


def _row_to_provider(row: Mapping[str, Any]) -> Provider:
    location = None
    if row["service_lat"] is not None and row["service_lng"] is not None:
        location = GeoPoint(lat=row["service_lat"], lng=row["service_lng"])

    factors = _load_json(row["score_factors"])
    return Provider(
        id=row["id"],
        business_name=row["business_name"],
        is_active=row["is_active"],
        categories=tuple(row["categories"] or ()),
        service_location=location,
        working_hours=WorkingHours.model_validate(_load_json(row["working_hours"]) or {}),
        rating=RatingSummary(average=row["rating_average"], count=row["rating_count"]),
        stats=ProviderStats(completed_jobs=row["completed_jobs"], response_rate=row["response_rate"]),
        subscription=_row_to_subscription(row),
        billing=ProviderBilling(commission_rate=row["commission_rate"]),
        referral=ProviderReferral(
            code=row["referral_code"],
            referred_by=row["referred_by"],
            referrals_count=row["referrals_count"],
            discount_months=row["discount_months"],
        ),
        score=ProviderScoreSnapshot(
            total=row["score_total"],
            last_calculated=row["score_last_calculated"],
            factors=ScoreBreakdown.model_validate(factors) if factors else None,
        ),
    )


def _row_to_plan(row: Mapping[str, Any]) -> PlanDefinition:
    return PlanDefinition(
        name=PlanName(row["name"]),
        display_name=row["display_name"],
        monthly_price=float(row["monthly_price"]),
        currency=row["currency"],
        lead_limit=row["lead_limit"],
        visibility_multiplier=row["visibility_multiplier"],
        commission_rate=row["commission_rate"],
        benefits=tuple(PlanBenefit(benefit) for benefit in row["benefits"] or ()),
        is_active=row["is_active"],
        order=row["sort_order"],
    )


def _row_to_request(row: Mapping[str, Any], entries: Sequence[Mapping[str, Any]]) -> ServiceRequest:
    location = None
    if row["lat"] is not None and row["lng"] is not None:
        location = GeoPoint(lat=row["lat"], lng=row["lng"])
    return ServiceRequest(
        id=row["id"],
        category=row["category"],
        urgency=Urgency(row["urgency"]),
        location=location,
        scheduling=Scheduling(
            preferred_date=row["preferred_date"],
            preferred_time=row["preferred_time"],
            flexibility=row["flexibility"],
        ),
        visibility=RequestVisibility(row["visibility"]),
        selected_providers=tuple(row["selected_providers"] or ()),
        eligible_providers=tuple(
            NotifiedProvider(
                provider_id=entry["provider_id"],
                score=entry["score"],
                notified=entry["notified"],
                notified_at=entry["notified_at"],
            )
            for entry in entries
        ),
    )


class PostgresMarketplaceRepository:
    """Concrete repository persisting marketplace data in PostgreSQL/PostGIS."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def get_provider(self, provider_id: str) -> Optional[Provider]:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(
                f"SELECT {_PROVIDER_COLUMNS} FROM providers p WHERE p.id = $1",
                provider_id,
            )
        return _row_to_provider(row) if row else None

    async def get_providers(self, provider_ids: Sequence[str]) -> List[Provider]:
        if not provider_ids:
            return []
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(
                f"SELECT {_PROVIDER_COLUMNS} FROM providers p WHERE p.id = ANY($1::text[])",
                list(provider_ids),
            )
        by_id = {row["id"]: _row_to_provider(row) for row in rows}
        return [by_id[pid] for pid in provider_ids if pid in by_id]

    async def find_candidates(self, query: CandidateQuery) -> List[Provider]:
        params: List[Any] = [query.category]
        conditions = [
            "p.is_active",
            "p.subscription_status = 'active'",
            "$1 = ANY(p.categories)",
        ]

        if query.uses_geo:
            params.extend([query.origin.lng, query.origin.lat, query.radius_km * 1000.0])
            base = len(params) - 2
            conditions.append(
                "ST_DWithin(p.service_location, "
                f"ST_SetSRID(ST_MakePoint(${base}, ${base + 1}), 4326)::geography, ${base + 2})"
            )

        if query.weekday:
            params.append(query.weekday)
            day = f"p.working_hours -> ${len(params)}"
            conditions.append(f"COALESCE(({day} ->> 'available')::boolean, FALSE)")
            if query.preferred_time:
                params.append(query.preferred_time)
                conditions.append(f"COALESCE({day} ->> 'start', '09:00') <= ${len(params)}")
                conditions.append(f"COALESCE({day} ->> 'end', '18:00') >= ${len(params)}")

        sql = f"SELECT {_PROVIDER_COLUMNS} FROM providers p WHERE {' AND '.join(conditions)}"
        try:
            async with self._pool.acquire() as connection:
                rows = await connection.fetch(sql, *params)
        except asyncpg.PostgresError as exc:
            if query.uses_geo:
                raise GeoQueryUnavailable(str(exc)) from exc
            raise
        return [_row_to_provider(row) for row in rows]

    async def find_by_referral_code(self, code: str) -> Optional[Provider]:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(
                f"SELECT {_PROVIDER_COLUMNS} FROM providers p WHERE p.referral_code = $1 LIMIT 1",
                code,
            )
        return _row_to_provider(row) if row else None

    async def start_billing_period(self, provider_id: str, *, start: datetime, end: datetime) -> None:
        async with self._pool.acquire() as connection:
            await connection.execute(
                """
                UPDATE providers
                SET current_period_start = $2,
                    current_period_end = $3,
                    leads_used = 0
                WHERE id = $1
                """,
                provider_id,
                start,
                end,
            )

    async def reset_expired_period(
        self,
        provider_id: str,
        *,
        now: datetime,
        period_days: int,
    ) -> Optional[ProviderSubscription]:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(
                f"""
                WITH reset AS (
                    UPDATE providers
                    SET current_period_start = $2,
                        current_period_end = $2 + make_interval(days => $3),
                        leads_used = 0
                    WHERE id = $1 AND {_PERIOD_EXPIRED}
                    RETURNING {_SUBSCRIPTION_COLUMNS}
                )
                SELECT {_SUBSCRIPTION_COLUMNS} FROM reset
                UNION ALL
                SELECT {_SUBSCRIPTION_COLUMNS} FROM providers
                WHERE id = $1 AND NOT EXISTS (SELECT 1 FROM reset)
                """,
                provider_id,
                now,
                period_days,
            )
        return _row_to_subscription(row) if row else None

    async def increment_lead_usage(
        self,
        provider_id: str,
        *,
        now: datetime,
        period_days: int,
    ) -> Optional[int]:
        async with self._pool.acquire() as connection:
            return await connection.fetchval(
                f"""
                UPDATE providers
                SET current_period_start = CASE WHEN {_PERIOD_EXPIRED} THEN $2 ELSE current_period_start END,
                    current_period_end = CASE WHEN {_PERIOD_EXPIRED}
                        THEN $2 + make_interval(days => $3) ELSE current_period_end END,
                    leads_used = CASE WHEN {_PERIOD_EXPIRED} THEN 1 ELSE leads_used + 1 END,
                    last_lead_at = $2
                WHERE id = $1
                RETURNING leads_used
                """,
                provider_id,
                now,
                period_days,
            )

    async def reserve_lead(
        self,
        provider_id: str,
        *,
        lead_limit: int,
        now: datetime,
        period_days: int,
    ) -> bool:
        async with self._pool.acquire() as connection:
            leads_used = await connection.fetchval(
                f"""
                UPDATE providers
                SET current_period_start = CASE WHEN {_PERIOD_EXPIRED} THEN $2 ELSE current_period_start END,
                    current_period_end = CASE WHEN {_PERIOD_EXPIRED}
                        THEN $2 + make_interval(days => $3) ELSE current_period_end END,
                    leads_used = CASE WHEN {_PERIOD_EXPIRED} THEN 1 ELSE leads_used + 1 END,
                    last_lead_at = $2
                WHERE id = $1
                  AND ($4 < 0 OR {_PERIOD_EXPIRED} OR leads_used < $4)
                RETURNING leads_used
                """,
                provider_id,
                now,
                period_days,
                lead_limit,
            )
        return leads_used is not None

    async def save_score(self, provider_id: str, snapshot: ProviderScoreSnapshot) -> None:
        factors = snapshot.factors.model_dump() if snapshot.factors else None
        async with self._pool.acquire() as connection:
            await connection.execute(
                """
                UPDATE providers
                SET score_total = $2,
                    score_last_calculated = $3,
                    score_factors = $4::jsonb
                WHERE id = $1
                """,
                provider_id,
                snapshot.total,
                snapshot.last_calculated,
                json.dumps(factors) if factors is not None else None,
            )

    async def update_plan(
        self,
        provider_id: str,
        *,
        plan: PlanName,
        status: SubscriptionStatus,
        commission_rate: float,
    ) -> bool:
        async with self._pool.acquire() as connection:
            result = await connection.execute(
                """
                UPDATE providers
                SET plan = $2,
                    subscription_status = $3,
                    commission_rate = $4
                WHERE id = $1
                """,
                provider_id,
                plan.value,
                status.value,
                commission_rate,
            )
        return result.endswith(" 1")

    async def record_referral(self, provider_id: str, *, max_discount_months: int) -> None:
        async with self._pool.acquire() as connection:
            await connection.execute(
                """
                UPDATE providers
                SET referrals_count = referrals_count + 1,
                    discount_months = LEAST(discount_months + 1, $2)
                WHERE id = $1
                """,
                provider_id,
                max_discount_months,
            )

    async def consume_discount_month(self, provider_id: str) -> None:
        async with self._pool.acquire() as connection:
            await connection.execute(
                """
                UPDATE providers
                SET discount_months = discount_months - 1
                WHERE id = $1 AND discount_months > 0
                """,
                provider_id,
            )

    async def get_plan(self, name: PlanName) -> Optional[PlanDefinition]:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(
                "SELECT * FROM subscription_plans WHERE name = $1 AND is_active",
                name.value,
            )
        return _row_to_plan(row) if row else None

    async def list_plans(self) -> List[PlanDefinition]:
        async with self._pool.acquire() as connection:
            rows = await connection.fetch("SELECT * FROM subscription_plans ORDER BY sort_order")
        return [_row_to_plan(row) for row in rows]

    async def insert_plans(self, plans: Sequence[PlanDefinition]) -> int:
        inserted = 0
        async with self._pool.acquire() as connection:
            async with connection.transaction():
                for plan in plans:
                    result = await connection.execute(
                        """
                        INSERT INTO subscription_plans (
                            name,
                            display_name,
                            monthly_price,
                            currency,
                            lead_limit,
                            visibility_multiplier,
                            commission_rate,
                            benefits,
                            is_active,
                            sort_order
                        )
                        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                        ON CONFLICT (name) DO NOTHING
                        """,
                        plan.name.value,
                        plan.display_name,
                        plan.monthly_price,
                        plan.currency,
                        plan.lead_limit,
                        plan.visibility_multiplier,
                        plan.commission_rate,
                        [benefit.value for benefit in plan.benefits],
                        plan.is_active,
                        plan.order,
                    )
                    if result.endswith(" 1"):
                        inserted += 1
        return inserted

    async def get_request(self, request_id: str) -> Optional[ServiceRequest]:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow("SELECT * FROM service_requests WHERE id = $1", request_id)
            if row is None:
                return None
            entries = await connection.fetch(
                """
                SELECT provider_id, score, notified, notified_at
                FROM service_request_eligible_providers
                WHERE request_id = $1
                ORDER BY notified_at NULLS LAST, provider_id
                """,
                request_id,
            )
        return _row_to_request(row, entries)

    async def upsert_notified_provider(self, request_id: str, entry: NotifiedProvider) -> None:
        async with self._pool.acquire() as connection:
            await connection.execute(
                """
                INSERT INTO service_request_eligible_providers (
                    request_id,
                    provider_id,
                    score,
                    notified,
                    notified_at
                )
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (request_id, provider_id) DO UPDATE
                SET score = EXCLUDED.score,
                    notified = EXCLUDED.notified,
                    notified_at = EXCLUDED.notified_at
                """,
                request_id,
                entry.provider_id,
                entry.score,
                entry.notified,
                entry.notified_at,
            )

    async def get_engagement_history(self, provider_id: str, since: datetime) -> EngagementHistory:
        async with self._pool.acquire() as connection:
            bookings = await connection.fetch(
                """
                SELECT status, scheduled_at, started_at, created_at
                FROM bookings
                WHERE provider_id = $1 AND created_at >= $2
                """,
                provider_id,
                since,
            )
            reviews = await connection.fetch(
                "SELECT overall_rating, created_at FROM reviews WHERE provider_id = $1 AND created_at >= $2",
                provider_id,
                since,
            )
            proposals = await connection.fetch(
                """
                SELECT response_time_minutes, created_at
                FROM proposals
                WHERE provider_id = $1 AND created_at >= $2
                """,
                provider_id,
                since,
            )
        return EngagementHistory(
            bookings=tuple(
                BookingRecord(
                    status=BookingStatus(row["status"]),
                    scheduled_at=row["scheduled_at"],
                    started_at=row["started_at"],
                    created_at=row["created_at"],
                )
                for row in bookings
            ),
            reviews=tuple(
                ReviewRecord(overall_rating=row["overall_rating"], created_at=row["created_at"])
                for row in reviews
            ),
            proposals=tuple(
                ProposalRecord(
                    response_time_minutes=row["response_time_minutes"],
                    created_at=row["created_at"],
                )
                for row in proposals
            ),
        )


__all__ = [
    "PostgresMarketplaceRepository",
    "SCHEMA_STATEMENTS",
    "create_marketplace_pool",
    "create_schema",
]
