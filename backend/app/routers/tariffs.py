"""API routes for per-quartier delivery tariffs."""
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query

from app.core.logging import logger
from app.models.delivery import TariffRecord, TariffUpsertRequest
from app.services.delivery_store import delivery_store

router = APIRouter(prefix="/tariffs", tags=["tariffs"])


@router.get("", response_model=List[TariffRecord])
def list_tariffs(agency_id: Optional[int] = Query(default=None)):
    return delivery_store.list_tariffs(agency_id=agency_id)


@router.put("", response_model=TariffRecord)
def upsert_tariff(request: TariffUpsertRequest):
    try:
        return delivery_store.upsert_tariff(request.agency_id, request.quartier, request.tarif_amount)
    except ValueError as exc:
        logger.error("Failed to save tariff", agency_id=request.agency_id, quartier=request.quartier, error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))


@router.delete("/{agency_id}/{quartier}")
def delete_tariff(agency_id: int, quartier: str):
    if not delivery_store.delete_tariff(agency_id, quartier):
        raise HTTPException(status_code=404, detail="Tariff not found")
    return {"deleted": True, "agency_id": agency_id, "quartier": quartier}
