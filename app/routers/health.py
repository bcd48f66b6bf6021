"""Health check router: stato del processo, del database e dei worker attivi."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.routers.extractions import get_extraction_service
from app.services.extraction_service import ExtractionService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
def health(
    db: Session = Depends(get_db),
    service: ExtractionService = Depends(get_extraction_service),
):
    """Health check per load balancer e monitoraggio. Non espone credenziali."""
    try:
        db.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError as e:
        logger.warning("Health check: database non raggiungibile: %s", e)
        database = "unreachable"
    return {
        "status": "healthy" if database == "ok" else "degraded",
        "database": database,
        "active_workers": service.active_worker_count(),
    }
