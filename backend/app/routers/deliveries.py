"""API routes for browsing and editing deliveries."""
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from app.core.auth import ActorContext, get_actor_context
from app.core.logging import logger
from app.models.delivery import (
    BulkDeliveryRequest,
    BulkDeliveryResult,
    DeliveryCreateRequest,
    DeliveryRecord,
    DeliveryUpdateRequest,
    HistoryEntry,
)
from app.services.delivery_engine import delivery_engine

router = APIRouter(prefix="/deliveries", tags=["deliveries"])


@router.get("", response_model=List[DeliveryRecord])
def list_deliveries(
    status: Optional[str] = Query(default=None),
    date: Optional[str] = Query(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$"),
    limit: int = Query(default=100, ge=1, le=1000),
):
    return delivery_engine.store.list_deliveries(status=status, date=date, limit=limit)


@router.post("", response_model=DeliveryRecord, status_code=201)
def create_delivery(
    request: DeliveryCreateRequest,
    context: ActorContext = Depends(get_actor_context),
):
    try:
        return delivery_engine.create_delivery(request, actor=context.actor)
    except ValueError as exc:
        logger.error("Failed to create delivery", phone=request.phone, error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))


@router.post("/bulk", response_model=BulkDeliveryResult, status_code=201)
def bulk_create_deliveries(
    request: BulkDeliveryRequest,
    response: Response,
    context: ActorContext = Depends(get_actor_context),
):
    try:
        result = delivery_engine.bulk_create(request.deliveries, actor=context.actor)
    except ValueError as exc:
        logger.error("Rejected bulk delivery insert", count=len(request.deliveries), error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))
    if not result.success:
        response.status_code = 400
    return result


@router.get("/{delivery_id}", response_model=DeliveryRecord)
def get_delivery(delivery_id: int):
    try:
        return delivery_engine.get_delivery(delivery_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Delivery not found")


@router.put("/{delivery_id}", response_model=DeliveryRecord)
def update_delivery(
    delivery_id: int,
    request: DeliveryUpdateRequest,
    context: ActorContext = Depends(get_actor_context),
):
    try:
        return delivery_engine.update_delivery(delivery_id, request, actor=context.actor)
    except KeyError:
        raise HTTPException(status_code=404, detail="Delivery not found")
    except ValueError as exc:
        logger.error("Failed to update delivery", delivery_id=delivery_id, error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("/{delivery_id}/history", response_model=List[HistoryEntry])
def get_delivery_history(delivery_id: int):
    try:
        return delivery_engine.list_history(delivery_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Delivery not found")
