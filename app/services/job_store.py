"""
Job Store: unica fonte di verità per stato e contatori dei job di estrazione.

Ogni cambio di stato è un UPDATE condizionato (WHERE status = stato letto):
controller e worker non possono mai sovrascriversi a vicenda. I contatori si
incrementano in SQL, mai con read-modify-write lato Python.
"""

import logging
from collections.abc import Callable, Collection
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session, sessionmaker

from app.core import clock
from app.core.database import SessionLocal
from app.core.exceptions import InvalidStateError, JobNotFoundError
from app.models import ExtractedBook, ExtractionJob, ExtractionLog
from app.models.extraction_job import JOB_PENDING

logger = logging.getLogger(__name__)

# Tentativi di compare-and-set se lo stato cambia tra lettura e scrittura
_CAS_ATTEMPTS = 5


def fold_open_pause(job: ExtractionJob, now) -> dict:
    """Somma la pausa aperta in paused_seconds e chiude paused_at."""
    if job.paused_at is None:
        return {}
    paused_for = max(0.0, (now - clock.as_utc(job.paused_at)).total_seconds())
    return {"paused_seconds": (job.paused_seconds or 0.0) + paused_for, "paused_at": None}


class JobStore:
    def __init__(self, session_factory: sessionmaker | Callable[[], Session] = SessionLocal):
        self._session_factory = session_factory

    def create(
        self,
        source_url: str,
        created_by: str,
        max_time_minutes: int,
        max_books: int,
    ) -> ExtractionJob:
        db = self._session_factory()
        try:
            job = ExtractionJob(
                source_url=source_url,
                created_by=created_by,
                status=JOB_PENDING,
                max_time_minutes=max_time_minutes,
                max_books=max_books,
                books_extracted=0,
                books_queued=0,
                error_count=0,
                paused_seconds=0.0,
                created_at=clock.utc_now(),
            )
            db.add(job)
            db.commit()
            db.refresh(job)
            return job
        finally:
            db.close()

    def get(self, job_id: str) -> ExtractionJob | None:
        db = self._session_factory()
        try:
            return db.get(ExtractionJob, job_id)
        finally:
            db.close()

    def require(self, job_id: str) -> ExtractionJob:
        job = self.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def ids_with_status(self, statuses: Collection[str]) -> list[str]:
        db = self._session_factory()
        try:
            rows = db.scalars(select(ExtractionJob.id).where(ExtractionJob.status.in_(list(statuses))))
            return list(rows.all())
        finally:
            db.close()

    def transition(
        self,
        job_id: str,
        command: str,
        allowed_from: Collection[str],
        target: str,
        changes: Callable[[ExtractionJob], dict[str, Any]] | None = None,
    ) -> ExtractionJob:
        """
        Applica target (più eventuali campi calcolati da changes sullo snapshot)
        solo se lo stato corrente è in allowed_from. Altrimenti InvalidStateError
        e riga invariata.
        """
        for _ in range(_CAS_ATTEMPTS):
            db = self._session_factory()
            try:
                job = db.get(ExtractionJob, job_id)
                if job is None:
                    raise JobNotFoundError(job_id)
                current = job.status
                if current not in allowed_from:
                    raise InvalidStateError(job_id, current, command)
                values = {"status": target}
                if changes is not None:
                    values.update(changes(job))
                result = db.execute(
                    update(ExtractionJob)
                    .where(ExtractionJob.id == job_id, ExtractionJob.status == current)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    db.commit()
                    logger.info("Job %s: %s -> %s (%s)", job_id, current, target, command)
                    return self.require(job_id)
                db.rollback()
                logger.debug("Job %s: stato cambiato durante '%s', nuovo tentativo", job_id, command)
            finally:
                db.close()
        # Dopo i tentativi lo stato letto è sempre stato superato: rifiuta il comando
        latest = self.require(job_id)
        raise InvalidStateError(job_id, latest.status, command)

    def try_transition(
        self,
        job_id: str,
        command: str,
        allowed_from: Collection[str],
        target: str,
        changes: Callable[[ExtractionJob], dict[str, Any]] | None = None,
    ) -> ExtractionJob | None:
        """Come transition, ma ritorna None invece di sollevare (usato dal worker)."""
        try:
            return self.transition(job_id, command, allowed_from, target, changes)
        except (InvalidStateError, JobNotFoundError) as e:
            logger.info("Transizione '%s' ignorata per job %s: %s", command, job_id, e)
            return None

    def increment(self, job_id: str, db: Session | None = None, **deltas: int) -> None:
        """Incremento atomico dei contatori (books_extracted, books_queued, error_count)."""
        values = {name: getattr(ExtractionJob, name) + delta for name, delta in deltas.items() if delta}
        if not values:
            return
        stmt = (
            update(ExtractionJob)
            .where(ExtractionJob.id == job_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if db is not None:
            db.execute(stmt)
            return
        own = self._session_factory()
        try:
            own.execute(stmt)
            own.commit()
        finally:
            own.close()

    def delete(self, job_id: str, allowed_from: Collection[str]) -> None:
        """Cancella job, libri e log in un'unica transazione, solo da stati terminali."""
        db = self._session_factory()
        try:
            job = db.get(ExtractionJob, job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            if job.status not in allowed_from:
                raise InvalidStateError(job_id, job.status, "delete")
            books = db.execute(delete(ExtractedBook).where(ExtractedBook.job_id == job_id)).rowcount
            logs = db.execute(delete(ExtractionLog).where(ExtractionLog.job_id == job_id)).rowcount
            result = db.execute(
                delete(ExtractionJob).where(
                    ExtractionJob.id == job_id,
                    ExtractionJob.status.in_(list(allowed_from)),
                )
            )
            if result.rowcount != 1:
                db.rollback()
                latest = self.require(job_id)
                raise InvalidStateError(job_id, latest.status, "delete")
            db.commit()
            logger.info("Job %s eliminato (%s libri, %s log)", job_id, books, logs)
        finally:
            db.close()
