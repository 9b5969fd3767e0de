"""Delivery Ledger - group-chat delivery tracking API"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from app.core.config import get_settings
from app.core.logging import configure_logging, logger
from app.routers import deliveries, messages, reports, search, tariffs


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info(
        "Delivery Ledger API starting",
        version="0.1.0",
        db_path=settings.delivery_db_path,
        group_id=settings.group_id,
        confirmations=settings.confirmations_enabled(),
    )
    yield
    # Shutdown
    logger.info("Delivery Ledger API shutting down")


app = FastAPI(
    title="Delivery Ledger API",
    description="Turns delivery group-chat messages into tracked deliveries, fees and payments",
    version="0.1.0",
    lifespan=lifespan
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(messages.router)
app.include_router(deliveries.router)
app.include_router(tariffs.router)
app.include_router(reports.router)
app.include_router(search.router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Delivery Ledger API",
        "version": "0.1.0",
        "endpoints": {
            "messages": "/messages",
            "deliveries": "/deliveries",
            "tariffs": "/tariffs",
            "reports": "/reports/daily",
            "search": "/search",
        }
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
