"""Free-text lookup across deliveries."""
from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query

from app.models.delivery import SearchResponse
from app.services.delivery_engine import delivery_engine

router = APIRouter(prefix="/search", tags=["search"])


@router.get("", response_model=SearchResponse)
def search_deliveries(
    q: str = Query(default=""),
    limit: int = Query(default=100, ge=1, le=100),
):
    query = q.strip()
    if not query:
        raise HTTPException(status_code=400, detail='Query parameter "q" is required')
    results = delivery_engine.store.search_deliveries(query, limit=limit)
    return SearchResponse(data=results, count=len(results), query=query)
