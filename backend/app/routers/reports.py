"""Daily summary report."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Query

from app.models.delivery import DailyReport
from app.services.daily_report import build_daily_report
from app.services.delivery_engine import delivery_engine

router = APIRouter(prefix="/reports", tags=["reports"])


@router.get("/daily", response_model=DailyReport)
def daily_report(date: Optional[str] = Query(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$")):
    return build_daily_report(delivery_engine.store, date)
