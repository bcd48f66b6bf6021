"""
Query in sola lettura sui job di estrazione: storico, avanzamento, libri, log.
Chiamate ripetutamente dal client in polling: nessuna scrittura, nessuna cache.
"""

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core import clock
from app.core.exceptions import JobNotFoundError
from app.models import ExtractedBook, ExtractionJob, ExtractionLog
from app.services.progress_estimator import Progress, compute_progress

DEFAULT_LOG_LIMIT = 100


def get_job(db: Session, job_id: str) -> ExtractionJob:
    job = db.get(ExtractionJob, job_id)
    if job is None:
        raise JobNotFoundError(job_id)
    return job


def get_job_history(db: Session, requester_id: str | None = None) -> list[ExtractionJob]:
    """Tutti i job, dal più recente. Filtro opzionale per richiedente."""
    query = select(ExtractionJob).order_by(ExtractionJob.created_at.desc())
    if requester_id:
        query = query.where(ExtractionJob.created_by == requester_id)
    return list(db.scalars(query).all())


def get_job_progress(db: Session, job_id: str, now: datetime | None = None) -> Progress:
    """Ricalcolato ad ogni chiamata: i contatori cambiano tra un poll e l'altro."""
    job = get_job(db, job_id)
    return compute_progress(job, now or clock.utc_now())


def get_extracted_items(db: Session, job_id: str) -> list[ExtractedBook]:
    """Libri del job nell'ordine in cui il worker li ha registrati."""
    get_job(db, job_id)
    rows = db.scalars(
        select(ExtractedBook).where(ExtractedBook.job_id == job_id).order_by(ExtractedBook.id)
    )
    return list(rows.all())


def get_job_logs(db: Session, job_id: str, limit: int = DEFAULT_LOG_LIMIT) -> list[ExtractionLog]:
    """Gli ultimi `limit` log del job, dal più recente."""
    get_job(db, job_id)
    rows = db.scalars(
        select(ExtractionLog)
        .where(ExtractionLog.job_id == job_id)
        .order_by(ExtractionLog.id.desc())
        .limit(limit)
    )
    return list(rows.all())
