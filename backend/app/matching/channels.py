"""Outbound notification and real-time channels used by the dispatcher."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Protocol, Sequence, Union

import asyncpg
from redis.asyncio import Redis

from ..marketplace.exceptions import NotificationDispatchFailed
from ..marketplace.models import utcnow
from .models import NEW_REQUEST_NOTIFICATION

logger = logging.getLogger(__name__)

COUNTERS_UPDATE_EVENT = "counters:update"


class NotificationChannel(Protocol):
    async def send_provider_notification(
        self,
        *,
        provider_id: str,
        service_request_id: str,
        notification_type: str,
        priority: str,
    ) -> None:
        """Deliver one notification or raise :class:`NotificationDispatchFailed`."""


class RealtimeEmitter(Protocol):
    async def emit_counters_update(
        self,
        user_ids: Union[str, Sequence[str]],
        payload: Mapping[str, Any],
    ) -> None:
        ...


@dataclass(frozen=True)
class NotificationTemplate:
    title: str
    body: str
    action_path: Optional[str] = None

    def action_url(self, service_request_id: str) -> Optional[str]:
        if not self.action_path:
            return None
        return self.action_path.format(service_request_id=service_request_id)


TEMPLATES: Dict[str, NotificationTemplate] = {
    NEW_REQUEST_NOTIFICATION: NotificationTemplate(
        title="New service request available",
        body="A client near you is looking for one of your services.",
        action_path="/provider/requests/{service_request_id}",
    ),
}

_FALLBACK_TEMPLATE = NotificationTemplate(title="Marketplace update", body="You have a new update.")


def _normalize_user_ids(user_ids: Union[str, Sequence[str]]) -> Sequence[str]:
    if isinstance(user_ids, str):
        return (user_ids,)
    return tuple(dict.fromkeys(str(user_id) for user_id in user_ids))


def counters_payload(payload: Mapping[str, Any]) -> Dict[str, Any]:
    return {"ts": utcnow().isoformat(), **payload}


class LoggingNotificationChannel:
    """Development channel that records notifications to the logger."""

    async def send_provider_notification(
        self,
        *,
        provider_id: str,
        service_request_id: str,
        notification_type: str,
        priority: str,
    ) -> None:
        logger.info(
            "Notify provider %s about request %s type=%s priority=%s",
            provider_id,
            service_request_id,
            notification_type,
            priority,
        )


class InAppNotificationChannel:
    """Stores notifications in the ``notifications`` table for the provider inbox."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def send_provider_notification(
        self,
        *,
        provider_id: str,
        service_request_id: str,
        notification_type: str,
        priority: str,
    ) -> None:
        template = TEMPLATES.get(notification_type, _FALLBACK_TEMPLATE)
        try:
            async with self._pool.acquire() as connection:
                await connection.execute(
                    """
                    INSERT INTO notifications (
                        user_id,
                        type,
                        priority,
                        service_request_id,
                        title,
                        body,
                        action_url
                    )
                    VALUES ($1, $2, $3, $4, $5, $6, $7)
                    """,
                    provider_id,
                    notification_type,
                    priority,
                    service_request_id,
                    template.title,
                    template.body,
                    template.action_url(service_request_id),
                )
        except (asyncpg.PostgresError, OSError) as exc:
            raise NotificationDispatchFailed(provider_id, str(exc)) from exc


class LoggingRealtimeEmitter:
    async def emit_counters_update(
        self,
        user_ids: Union[str, Sequence[str]],
        payload: Mapping[str, Any],
    ) -> None:
        for user_id in _normalize_user_ids(user_ids):
            logger.debug("Counters update for %s payload=%s", user_id, counters_payload(payload))


class RedisRealtimeEmitter:
    """Publishes counters events for the socket layer to fan out."""

    def __init__(self, client: Redis, channel: str = COUNTERS_UPDATE_EVENT) -> None:
        self._client = client
        self._channel = channel

    async def emit_counters_update(
        self,
        user_ids: Union[str, Sequence[str]],
        payload: Mapping[str, Any],
    ) -> None:
        body = counters_payload(payload)
        for user_id in _normalize_user_ids(user_ids):
            message = {"userId": user_id, "event": COUNTERS_UPDATE_EVENT, "payload": body}
            await self._client.publish(self._channel, json.dumps(message, default=str))


__all__ = [
    "COUNTERS_UPDATE_EVENT",
    "InAppNotificationChannel",
    "LoggingNotificationChannel",
    "LoggingRealtimeEmitter",
    "NotificationChannel",
    "NotificationTemplate",
    "RealtimeEmitter",
    "RedisRealtimeEmitter",
    "TEMPLATES",
    "counters_payload",
]
