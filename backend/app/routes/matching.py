"""API routes exposing provider matching and subscription operations."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..marketplace.exceptions import NotFoundError
from ..schemas.matching import (
    EligibilityResponse,
    LeadCapacityResponse,
    MonthlyChargeResponse,
    NotifyProvidersRequest,
    NotifyProvidersResponse,
    PlanChangeRequest,
    PlanChangeResponse,
    ProviderScoreResponse,
    ReferralResponse,
)
from ..services.matching import MatchingServices, get_matching_services

router = APIRouter(prefix="/api/matching", tags=["matching"])


def _unprocessable(exc: ValueError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))


@router.get("/requests/{request_id}/eligible-providers", response_model=EligibilityResponse)
async def get_eligible_providers(
    request_id: str,
    force_refresh: bool = Query(False, alias="forceRefresh"),
    *,
    services: MatchingServices = Depends(get_matching_services),
) -> EligibilityResponse:
    try:
        result = await services.eligibility.find_eligible_providers(request_id, force_refresh=force_refresh)
    except NotFoundError as exc:
        raise exc.to_http_exception() from exc
    return EligibilityResponse.from_result(result)


@router.post("/requests/{request_id}/notify", response_model=NotifyProvidersResponse)
async def notify_providers(
    request_id: str,
    payload: NotifyProvidersRequest,
    *,
    services: MatchingServices = Depends(get_matching_services),
) -> NotifyProvidersResponse:
    try:
        summary = await services.dispatcher.notify_providers(
            request_id,
            payload.mode,
            payload.selected_provider_ids,
        )
    except NotFoundError as exc:
        raise exc.to_http_exception() from exc
    return NotifyProvidersResponse.from_summary(summary)


@router.get("/providers/{provider_id}/score", response_model=ProviderScoreResponse)
async def get_provider_score(
    provider_id: str,
    persist: bool = Query(True),
    *,
    services: MatchingServices = Depends(get_matching_services),
) -> ProviderScoreResponse:
    score = await services.scoring.calculate_provider_score(provider_id, persist=persist)
    return ProviderScoreResponse.from_score(score)


@router.get("/providers/{provider_id}/lead-capacity", response_model=LeadCapacityResponse)
async def get_lead_capacity(
    provider_id: str,
    *,
    services: MatchingServices = Depends(get_matching_services),
) -> LeadCapacityResponse:
    allowed = await services.subscriptions.can_receive_lead(provider_id)
    return LeadCapacityResponse(provider_id=provider_id, can_receive_lead=allowed)


@router.get("/providers/{provider_id}/monthly-charge", response_model=MonthlyChargeResponse)
async def get_monthly_charge(
    provider_id: str,
    *,
    services: MatchingServices = Depends(get_matching_services),
) -> MonthlyChargeResponse:
    try:
        charge = await services.subscriptions.compute_monthly_charge(provider_id)
    except NotFoundError as exc:
        raise exc.to_http_exception() from exc
    return MonthlyChargeResponse.from_charge(charge)


@router.post("/providers/{provider_id}/renewal", response_model=MonthlyChargeResponse)
async def apply_monthly_renewal(
    provider_id: str,
    *,
    services: MatchingServices = Depends(get_matching_services),
) -> MonthlyChargeResponse:
    try:
        charge = await services.subscriptions.apply_monthly_renewal(provider_id)
    except NotFoundError as exc:
        raise exc.to_http_exception() from exc
    return MonthlyChargeResponse.from_charge(charge)


@router.post("/providers/{provider_id}/plan", response_model=PlanChangeResponse)
async def change_plan(
    provider_id: str,
    payload: PlanChangeRequest,
    *,
    services: MatchingServices = Depends(get_matching_services),
) -> PlanChangeResponse:
    try:
        plan = await services.subscriptions.change_plan(provider_id, payload.plan)
    except NotFoundError as exc:
        raise exc.to_http_exception() from exc
    except ValueError as exc:
        raise _unprocessable(exc) from exc
    return PlanChangeResponse.from_plan(provider_id, plan)


@router.post("/referrals/{code}", response_model=ReferralResponse)
async def apply_referral_code(
    code: str,
    *,
    services: MatchingServices = Depends(get_matching_services),
) -> ReferralResponse:
    referrer_id = await services.subscriptions.apply_referral_code(code)
    return ReferralResponse(code=code, applied=referrer_id is not None, referrer_id=referrer_id)


__all__ = ["router"]
