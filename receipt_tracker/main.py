"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from receipt_tracker.api import receipts
from receipt_tracker.api.error_handlers import register_error_handlers
from receipt_tracker.config import get_settings
from receipt_tracker.database import init_db
from receipt_tracker.logging_config import configure_logging

settings = get_settings()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown events."""
    configure_logging()
    init_db()
    logger.info(f"Receipt Tracker API started ({settings.environment})")
    yield


app = FastAPI(
    title="Receipt Tracker API",
    description="Receipt upload with asynchronous field extraction and review",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

# Register routers
app.include_router(receipts.router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "environment": settings.environment}
