"""FastAPI routes for subscription management."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status

from billing.api.deps import current_user_id
from billing.errors import NotFoundError, ValidationError

from .models import (
    ManageSubscriptionRequest,
    ManageSubscriptionResponse,
    SubscriptionAction,
    SubscriptionResponse,
    SubscriptionStatusResponse,
)
from .service import SubscriptionService

router = APIRouter(prefix="/subscriptions", tags=["subscription"])

_MESSAGES = {
    SubscriptionAction.CANCEL: "Subscription cancelled successfully",
    SubscriptionAction.UPGRADE: "Subscription upgraded successfully",
    SubscriptionAction.DOWNGRADE: "Subscription downgraded successfully",
    SubscriptionAction.RENEW: "Subscription renewed successfully",
}


def _get_service(request: Request) -> SubscriptionService:
    service = getattr(request.app.state, "subscription_service", None)
    if service is None:
        raise RuntimeError("Subscription service is not configured")
    return service


@router.post("/manage", response_model=ManageSubscriptionResponse, response_model_by_alias=True)
async def manage_subscription(
    payload: ManageSubscriptionRequest,
    user_id: str = Depends(current_user_id),
    service: SubscriptionService = Depends(_get_service),
) -> ManageSubscriptionResponse:
    try:
        if payload.action is SubscriptionAction.CANCEL:
            record = await service.cancel(user_id)
        elif payload.action is SubscriptionAction.RENEW:
            record = await service.renew(user_id)
        else:
            if not payload.plan_id:
                raise ValidationError(f"Plan ID is required for {payload.action.value}")
            if payload.action is SubscriptionAction.UPGRADE:
                record = await service.upgrade(user_id, payload.plan_id)
            else:
                record = await service.downgrade(user_id, payload.plan_id)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    return ManageSubscriptionResponse(
        subscription=SubscriptionResponse.from_record(record),
        message=_MESSAGES[payload.action],
    )


@router.get("/status", response_model=SubscriptionStatusResponse, response_model_by_alias=True)
async def subscription_status(
    user_id: str = Depends(current_user_id),
    service: SubscriptionService = Depends(_get_service),
) -> SubscriptionStatusResponse:
    record = service.get(user_id)
    return SubscriptionStatusResponse(
        subscription=SubscriptionResponse.from_record(record) if record else None,
        has_access=service.has_access(user_id),
        features=service.get_features(user_id),
    )
