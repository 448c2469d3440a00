"""FastAPI routes for outbound payment orders."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from billing.api.deps import current_user_id
from billing.errors import GatewayError, NotFoundError, ValidationError

from .models import (
    BillingHistoryItem,
    BillingHistoryResponse,
    BillingSummaryResponse,
    CreateOrderRequest,
    CreateOrderResponse,
    Pagination,
    PaymentRecord,
    PaymentStatus,
    PaymentStatusResponse,
)
from .service import OrderService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


def _get_order_service(request: Request) -> OrderService:
    service = getattr(request.app.state, "order_service", None)
    if service is None:
        raise RuntimeError("Order service is not configured")
    return service


def _status_response(record: PaymentRecord, service: OrderService) -> PaymentStatusResponse:
    return PaymentStatusResponse(
        order_id=record.order_id,
        status=record.status,
        amount=record.amount,
        currency=record.currency,
        plan_id=record.plan_id,
        created_at=record.created_at,
        redirect_url=service.live_redirect_url(record),
    )


@router.post("/order", response_model=CreateOrderResponse, response_model_by_alias=True)
async def create_order(
    payload: CreateOrderRequest,
    user_id: str = Depends(current_user_id),
    service: OrderService = Depends(_get_order_service),
) -> CreateOrderResponse:
    try:
        result = await service.create_order(user_id, payload.plan_id, payload.amount)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"errors": exc.errors}) from exc
    except GatewayError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="payment_gateway_error") from exc
    return CreateOrderResponse.from_result(result)


@router.get("/{order_id}/status", response_model=PaymentStatusResponse, response_model_by_alias=True)
async def payment_status(
    order_id: str,
    user_id: str = Depends(current_user_id),
    service: OrderService = Depends(_get_order_service),
) -> PaymentStatusResponse:
    try:
        record = service.get_status(order_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="payment_not_found") from exc
    if record.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="payment_not_found")
    return _status_response(record, service)


@router.post("/{order_id}/cancel", response_model=PaymentStatusResponse, response_model_by_alias=True)
async def cancel_payment(
    order_id: str,
    user_id: str = Depends(current_user_id),
    service: OrderService = Depends(_get_order_service),
) -> PaymentStatusResponse:
    try:
        record = await service.cancel_order(order_id, user_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="payment_not_found") from exc
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"errors": exc.errors}) from exc
    return _status_response(record, service)


@router.get("/history", response_model=BillingHistoryResponse, response_model_by_alias=True)
async def billing_history(
    page: int = Query(1),
    limit: int = Query(10),
    payment_status: Optional[PaymentStatus] = Query(None, alias="status"),
    user_id: str = Depends(current_user_id),
    service: OrderService = Depends(_get_order_service),
) -> BillingHistoryResponse:
    try:
        history = service.billing_history(user_id, page=page, limit=limit, status=payment_status)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"errors": exc.errors}) from exc
    records = history.pop("records")
    return BillingHistoryResponse(
        records=[BillingHistoryItem.from_record(record) for record in records],
        pagination=Pagination(**history),
    )


@router.get("/history/summary", response_model=BillingSummaryResponse, response_model_by_alias=True)
async def billing_summary(
    user_id: str = Depends(current_user_id),
    service: OrderService = Depends(_get_order_service),
) -> BillingSummaryResponse:
    return BillingSummaryResponse(**service.billing_summary(user_id))
