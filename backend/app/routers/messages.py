"""Ingestion endpoint for raw group-chat messages."""
from __future__ import annotations

from fastapi import APIRouter

from app.models.delivery import IncomingMessage, MessageOutcome
from app.services.delivery_engine import delivery_engine

router = APIRouter(prefix="/messages", tags=["messages"])


@router.post("", response_model=MessageOutcome)
def ingest_message(message: IncomingMessage):
    """Classify one chat message and apply it. Unusable text is reported, never rejected."""
    return delivery_engine.process_message(message)
