"""Error taxonomy for the matching core."""
from __future__ import annotations

from typing import Any, Dict, Mapping

from fastapi import HTTPException, status


class NotFoundError(LookupError):
    """A request or provider required by an operation does not exist."""

    entity = "resource"
    code = "not_found"

    def __init__(self, identifier: str) -> None:
        self.identifier = identifier
        super().__init__(f"{self.entity.capitalize()} not found: {identifier}")

    @property
    def payload(self) -> Mapping[str, Any]:
        detail: Dict[str, Any] = {
            "error": self.code,
            "message": str(self),
            f"{self.entity.replace(' ', '_')}_id": self.identifier,
        }
        return detail

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=dict(self.payload))


class ServiceRequestNotFound(NotFoundError):
    entity = "service request"
    code = "service_request_not_found"


class ProviderNotFound(NotFoundError):
    entity = "provider"
    code = "provider_not_found"


class GeoQueryUnavailable(RuntimeError):
    """The persistence layer cannot evaluate a distance constraint."""


class CacheUnavailable(RuntimeError):
    """The eligibility cache backend could not be reached."""


class NotificationDispatchFailed(RuntimeError):
    """Delivering a notification to a single recipient failed."""

    def __init__(self, provider_id: str, reason: str) -> None:
        self.provider_id = provider_id
        self.reason = reason
        super().__init__(f"Failed to notify provider {provider_id}: {reason}")


__all__ = [
    "CacheUnavailable",
    "GeoQueryUnavailable",
    "NotFoundError",
    "NotificationDispatchFailed",
    "ProviderNotFound",
    "ServiceRequestNotFound",
]
