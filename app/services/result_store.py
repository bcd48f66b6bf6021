"""
Result & Log Store: libri estratti e log dei job, append-only.
Ogni esito di un PDF (successo o errore) scrive riga + log + contatore del job
nella stessa transazione, così i contatori non divergono mai dalle righe.
"""

import logging
from collections.abc import Callable
from typing import Any

from sqlalchemy import update
from sqlalchemy.orm import Session, sessionmaker

from app.core import clock
from app.core.database import SessionLocal
from app.core.exceptions import InvalidStateError, ItemNotFoundError
from app.models import ExtractedBook, ExtractionLog
from app.models.extracted_book import BOOK_COMPLETED, BOOK_PUBLISHED
from app.models.extraction_log import LOG_ERROR, LOG_INFO
from app.services.job_store import JobStore

logger = logging.getLogger(__name__)


class ResultStore:
    def __init__(
        self,
        session_factory: sessionmaker | Callable[[], Session] = SessionLocal,
        job_store: JobStore | None = None,
    ):
        self._session_factory = session_factory
        self._jobs = job_store or JobStore(session_factory)

    def _log_row(self, job_id: str, level: str, message: str, details: dict[str, Any] | None) -> ExtractionLog:
        return ExtractionLog(
            job_id=job_id,
            level=level,
            message=message,
            details=details,
            created_at=clock.utc_now(),
        )

    def append_log(
        self,
        job_id: str,
        level: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> ExtractionLog:
        db = self._session_factory()
        try:
            entry = self._log_row(job_id, level, message, details)
            db.add(entry)
            db.commit()
            db.refresh(entry)
            return entry
        finally:
            db.close()

    def record_book(
        self,
        job_id: str,
        title: str,
        author: str,
        pdf_url: str,
        source_page_url: str | None = None,
        description: str | None = None,
        cover_url: str | None = None,
    ) -> ExtractedBook:
        """Libro estratto + log info + books_extracted += 1, atomico."""
        db = self._session_factory()
        try:
            book = ExtractedBook(
                job_id=job_id,
                title=title,
                author=author,
                description=description,
                cover_url=cover_url,
                pdf_url=pdf_url,
                source_page_url=source_page_url,
                status=BOOK_COMPLETED,
                extracted_at=clock.utc_now(),
            )
            db.add(book)
            db.add(self._log_row(
                job_id, LOG_INFO, f"Libro estratto: {title} ({author})",
                {"pdf_url": pdf_url},
            ))
            self._jobs.increment(job_id, db=db, books_extracted=1)
            db.commit()
            db.refresh(book)
            return book
        finally:
            db.close()

    def record_item_error(
        self,
        job_id: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Log error + error_count += 1, atomico."""
        db = self._session_factory()
        try:
            db.add(self._log_row(job_id, LOG_ERROR, message, details))
            self._jobs.increment(job_id, db=db, error_count=1)
            db.commit()
        finally:
            db.close()

    def publish_book(self, book_id: int) -> ExtractedBook:
        """Unica modifica ammessa su un libro estratto: completed -> published."""
        db = self._session_factory()
        try:
            book = db.get(ExtractedBook, book_id)
            if book is None:
                raise ItemNotFoundError(book_id)
            result = db.execute(
                update(ExtractedBook)
                .where(ExtractedBook.id == book_id, ExtractedBook.status == BOOK_COMPLETED)
                .values(status=BOOK_PUBLISHED, published_at=clock.utc_now())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                raise InvalidStateError(str(book_id), book.status, "publish")
            db.commit()
            logger.info("Libro estratto %s pubblicato (job %s)", book_id, book.job_id)
        finally:
            db.close()
        db = self._session_factory()
        try:
            return db.get(ExtractedBook, book_id)
        finally:
            db.close()

