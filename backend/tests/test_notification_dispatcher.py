"""Tests for bounded notification fan-out."""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Sequence, Set, Union

import pytest

from backend.app.config import load_matching_config
from backend.app.marketplace import (
    GeoPoint,
    InMemoryMarketplaceStore,
    NotificationDispatchFailed,
    PlanName,
    Provider,
    ProviderStats,
    ProviderSubscription,
    RatingSummary,
    RequestVisibility,
    ServiceRequest,
    ServiceRequestNotFound,
    SubscriptionStatus,
    Urgency,
)
from backend.app.matching import QUOTA_EXHAUSTED, NotificationMode
from backend.app.services.matching import MatchingServices, build_matching_services

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
ORIGIN = GeoPoint(lat=19.4326, lng=-99.1332)


class RecordingChannel:
    def __init__(self, failing: Set[str] = frozenset()) -> None:
        self.failing = set(failing)
        self.sent: List[Dict[str, str]] = []

    async def send_provider_notification(
        self,
        *,
        provider_id: str,
        service_request_id: str,
        notification_type: str,
        priority: str,
    ) -> None:
        if provider_id in self.failing:
            raise NotificationDispatchFailed(provider_id, "mailbox unavailable")
        self.sent.append(
            {
                "provider_id": provider_id,
                "service_request_id": service_request_id,
                "type": notification_type,
                "priority": priority,
            }
        )


class RecordingEmitter:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.events: List[Any] = []

    async def emit_counters_update(self, user_ids: Union[str, Sequence[str]], payload: Mapping[str, Any]) -> None:
        if self.fail:
            raise ConnectionError("socket layer down")
        self.events.append((user_ids, dict(payload)))


class UnreliableCounterStore(InMemoryMarketplaceStore):
    async def reserve_lead(self, provider_id: str, **kwargs) -> bool:
        raise ConnectionError("counter update timed out")

    async def increment_lead_usage(self, provider_id: str, **kwargs):
        raise ConnectionError("counter update timed out")


class ScoreWriteFailsStore(InMemoryMarketplaceStore):
    async def save_score(self, provider_id: str, snapshot) -> None:
        raise ConnectionError("score write timed out")


def make_provider(
    provider_id: str,
    *,
    plan: PlanName = PlanName.PRO,
    leads_used: int = 0,
    average: float = 4.0,
    category: str = "Plumbing",
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    location: GeoPoint = ORIGIN,
) -> Provider:
    return Provider(
        id=provider_id,
        business_name=f"{provider_id} & Sons",
        categories=(category,),
        service_location=location,
        rating=RatingSummary(average=average, count=12),
        stats=ProviderStats(completed_jobs=12),
        subscription=ProviderSubscription(
            plan=plan,
            status=status,
            current_period_start=NOW - timedelta(days=3),
            current_period_end=NOW + timedelta(days=27),
            leads_used=leads_used,
        ),
    )


def build(store: InMemoryMarketplaceStore, channel=None, emitter=None) -> MatchingServices:
    return build_matching_services(
        store,
        config=load_matching_config({}),
        channel=channel or RecordingChannel(),
        emitter=emitter or RecordingEmitter(),
        clock=lambda: NOW,
    )


@pytest.fixture()
def store() -> InMemoryMarketplaceStore:
    store = InMemoryMarketplaceStore()
    store.add_request(
        ServiceRequest(id="req-1", category="Plumbing", urgency=Urgency.IMMEDIATE, location=ORIGIN)
    )
    return store


def test_auto_mode_notifies_ranked_providers(store: InMemoryMarketplaceStore) -> None:
    store.add_provider(make_provider("basic", plan=PlanName.BASIC, leads_used=1, average=4.5))
    store.add_provider(make_provider("pro", plan=PlanName.PRO, average=4.5))
    channel = RecordingChannel()
    emitter = RecordingEmitter()
    services = build(store, channel, emitter)

    summary = asyncio.run(services.dispatcher.notify_providers("req-1", NotificationMode.AUTO))

    assert summary.total_notified == 2
    assert summary.total_failed == 0
    assert [outcome.provider_id for outcome in summary.results] == ["pro", "basic"]
    assert all(outcome.score > 0 for outcome in summary.results)

    assert {item["provider_id"] for item in channel.sent} == {"pro", "basic"}
    assert all(item["type"] == "NEW_REQUEST" and item["priority"] == "high" for item in channel.sent)
    assert sorted(user for user, _ in emitter.events) == ["basic", "pro"]
    assert all(payload == {"reason": "new_request"} for _, payload in emitter.events)

    entries = {entry.provider_id: entry for entry in store.requests["req-1"].eligible_providers}
    assert set(entries) == {"pro", "basic"}
    assert all(entry.notified and entry.notified_at == NOW for entry in entries.values())
    assert store.providers["basic"].subscription.leads_used == 2
    assert store.providers["basic"].subscription.last_lead_at == NOW


def test_fan_out_is_capped_at_fifteen(store: InMemoryMarketplaceStore) -> None:
    for index in range(20):
        store.add_provider(make_provider(f"p-{index:02d}", average=1.0 + index * 0.2))
    services = build(store)

    summary = asyncio.run(services.dispatcher.notify_providers("req-1"))

    assert len(summary.results) == 15
    assert summary.total_notified == 15
    notified = {outcome.provider_id for outcome in summary.results}
    assert notified == {f"p-{index:02d}" for index in range(5, 20)}
    assert len(store.requests["req-1"].eligible_providers) == 15


def test_exhausted_basic_provider_only_reached_when_directed(store: InMemoryMarketplaceStore) -> None:
    store.add_provider(make_provider("basic", plan=PlanName.BASIC, leads_used=5))
    services = build(store)

    auto = asyncio.run(services.dispatcher.notify_providers("req-1", "auto"))
    assert auto.results == ()
    assert store.providers["basic"].subscription.leads_used == 5

    directed = asyncio.run(services.dispatcher.notify_providers("req-1", "directed", ["basic"]))
    assert directed.total_notified == 1
    assert directed.results[0].score == 0
    assert store.providers["basic"].subscription.leads_used == 6


def test_directed_mode_bypasses_eligibility(store: InMemoryMarketplaceStore) -> None:
    far_away = GeoPoint(lat=ORIGIN.lat + 5, lng=ORIGIN.lng)
    store.add_provider(make_provider("painter", category="Painting", location=far_away))
    store.add_provider(make_provider("inactive", status=SubscriptionStatus.INACTIVE))
    channel = RecordingChannel()
    services = build(store, channel)

    summary = asyncio.run(
        services.dispatcher.notify_providers("req-1", NotificationMode.DIRECTED, ["painter", "inactive"])
    )

    assert summary.total_notified == 2
    assert [item["provider_id"] for item in channel.sent] == ["painter", "inactive"]


def test_directed_selection_is_deduplicated_in_order(store: InMemoryMarketplaceStore) -> None:
    for provider_id in ("a", "b", "c"):
        store.add_provider(make_provider(provider_id))
    services = build(store)

    summary = asyncio.run(
        services.dispatcher.notify_providers("req-1", "directed", ["c", "a", "c", "ghost", "b", "a"])
    )

    assert [outcome.provider_id for outcome in summary.results] == ["c", "a", "b"]


def test_directed_without_selection_falls_back_to_auto(store: InMemoryMarketplaceStore) -> None:
    store.add_request(
        ServiceRequest(
            id="req-2",
            category="Plumbing",
            urgency=Urgency.SCHEDULED,
            location=ORIGIN,
            visibility=RequestVisibility.DIRECTED,
        )
    )
    store.add_provider(make_provider("pro"))
    services = build(store)

    summary = asyncio.run(services.dispatcher.notify_providers("req-2", "directed", []))

    assert [outcome.provider_id for outcome in summary.results] == ["pro"]
    assert summary.results[0].score > 0


def test_failures_are_isolated_per_provider(store: InMemoryMarketplaceStore) -> None:
    for provider_id in ("a", "b", "c"):
        store.add_provider(make_provider(provider_id))
    channel = RecordingChannel(failing={"b"})
    services = build(store, channel)

    summary = asyncio.run(services.dispatcher.notify_providers("req-1", "directed", ["a", "b", "c"]))

    assert summary.total_notified == 2
    assert summary.total_failed == 1
    failed = [outcome for outcome in summary.results if not outcome.notified]
    assert failed[0].provider_id == "b"
    assert "mailbox unavailable" in failed[0].error
    assert {item["provider_id"] for item in channel.sent} == {"a", "c"}


def test_every_dispatch_failing_still_returns_summary(store: InMemoryMarketplaceStore) -> None:
    for provider_id in ("a", "b"):
        store.add_provider(make_provider(provider_id))
    services = build(store, RecordingChannel(failing={"a", "b"}))

    summary = asyncio.run(services.dispatcher.notify_providers("req-1"))

    assert summary.total_notified == 0
    assert summary.total_failed == 2


def test_realtime_failure_does_not_fail_notification(store: InMemoryMarketplaceStore) -> None:
    store.add_provider(make_provider("a"))
    services = build(store, emitter=RecordingEmitter(fail=True))

    summary = asyncio.run(services.dispatcher.notify_providers("req-1"))

    assert summary.total_notified == 1


def test_notified_entries_are_upserted(store: InMemoryMarketplaceStore) -> None:
    store.add_provider(make_provider("a"))
    services = build(store)

    asyncio.run(services.dispatcher.notify_providers("req-1"))
    asyncio.run(services.dispatcher.notify_providers("req-1"))

    entries = store.requests["req-1"].eligible_providers
    assert [entry.provider_id for entry in entries] == ["a"]
    assert store.providers["a"].subscription.leads_used == 2


def test_capacity_lost_after_eligibility_is_not_notified(store: InMemoryMarketplaceStore) -> None:
    store.add_provider(make_provider("free", plan=PlanName.FREE))
    channel = RecordingChannel()
    services = build(store, channel)

    asyncio.run(services.eligibility.find_eligible_providers("req-1"))
    asyncio.run(store.increment_lead_usage("free", now=NOW, period_days=30))
    summary = asyncio.run(services.dispatcher.notify_providers("req-1"))

    assert summary.total_failed == 1
    assert summary.results[0].error == QUOTA_EXHAUSTED
    assert channel.sent == []
    assert store.providers["free"].subscription.leads_used == 1


def test_counter_failures_do_not_block_delivery() -> None:
    store = UnreliableCounterStore()
    store.add_request(ServiceRequest(id="req-1", category="Plumbing", urgency=Urgency.IMMEDIATE, location=ORIGIN))
    store.add_provider(make_provider("a"))
    services = build(store)

    auto = asyncio.run(services.dispatcher.notify_providers("req-1"))
    directed = asyncio.run(services.dispatcher.notify_providers("req-1", "directed", ["a"]))

    assert auto.total_notified == 1
    assert directed.total_notified == 1


def test_score_write_failures_still_return_summary() -> None:
    store = ScoreWriteFailsStore()
    store.add_request(ServiceRequest(id="req-1", category="Plumbing", urgency=Urgency.IMMEDIATE, location=ORIGIN))
    store.add_provider(make_provider("a"))
    store.add_provider(make_provider("b", average=4.8))
    services = build(store)

    summary = asyncio.run(services.dispatcher.notify_providers("req-1"))

    assert summary.total_notified == 2
    assert [outcome.provider_id for outcome in summary.results] == ["b", "a"]


def test_request_visibility_and_selection_are_the_defaults(store: InMemoryMarketplaceStore) -> None:
    store.add_request(
        ServiceRequest(
            id="req-2",
            category="Plumbing",
            urgency=Urgency.SCHEDULED,
            location=ORIGIN,
            visibility=RequestVisibility.DIRECTED,
            selected_providers=("b",),
        )
    )
    store.add_provider(make_provider("a", average=4.9))
    store.add_provider(make_provider("b", plan=PlanName.BASIC, leads_used=5))
    channel = RecordingChannel()
    services = build(store, channel)

    summary = asyncio.run(services.dispatcher.notify_providers("req-2"))
    explicit = asyncio.run(services.dispatcher.notify_providers("req-2", NotificationMode.AUTO, []))

    assert [outcome.provider_id for outcome in summary.results] == ["b"]
    assert summary.results[0].score == 0
    assert store.providers["b"].subscription.leads_used == 6
    assert [outcome.provider_id for outcome in explicit.results] == ["a"]


@pytest.mark.parametrize("mode", ["auto", "directed"])
def test_unknown_request_raises_not_found(store: InMemoryMarketplaceStore, mode: str) -> None:
    store.add_provider(make_provider("a"))
    services = build(store)

    with pytest.raises(ServiceRequestNotFound):
        asyncio.run(services.dispatcher.notify_providers("missing", mode, ["a"]))


def test_invalid_mode_is_rejected(store: InMemoryMarketplaceStore) -> None:
    services = build(store)

    with pytest.raises(ValueError):
        asyncio.run(services.dispatcher.notify_providers("req-1", "broadcast"))
