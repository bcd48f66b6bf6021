"""
Stima di avanzamento per un job di estrazione: tempo trascorso, percentuale, ETA.
Funzioni pure: nessun accesso al DB, nessuna modifica del job. Il job può
essere un ExtractionJob ORM o qualunque oggetto con gli stessi attributi.
"""

from dataclasses import dataclass
from datetime import datetime

from app.core.clock import as_utc
from app.models.extraction_job import JOB_PAUSED, TERMINAL_STATUSES

BUDGET_BOOKS = "max_books_reached"
BUDGET_TIME = "max_time_reached"


@dataclass(frozen=True)
class Progress:
    job_id: str
    status: str
    books_extracted: int
    books_queued: int
    error_count: int
    max_books: int
    max_time_minutes: int
    elapsed_seconds: float
    estimated_remaining_seconds: float
    progress_percentage: float


def elapsed_seconds(job, now: datetime) -> float:
    """
    Secondi di esecuzione effettiva: (fine - started_at) - pause.
    Fine = paused_at se in pausa, completed_at se terminale, altrimenti now.
    In pausa il valore resta fermo; 0 se il job non è mai partito.
    """
    started_at = as_utc(job.started_at)
    if started_at is None:
        return 0.0

    if job.status == JOB_PAUSED and job.paused_at is not None:
        end = as_utc(job.paused_at)
    elif job.status in TERMINAL_STATUSES and job.completed_at is not None:
        end = as_utc(job.completed_at)
    else:
        end = as_utc(now)

    return max(0.0, (end - started_at).total_seconds() - (job.paused_seconds or 0.0))


def extraction_rate(books_extracted: int, elapsed: float) -> float:
    """Libri al secondo; 0 se non è ancora trascorso tempo."""
    if elapsed <= 0:
        return 0.0
    return books_extracted / elapsed


def estimate_remaining_seconds(job, elapsed: float) -> float:
    """
    min(rimanente per conteggio, rimanente per tempo) quando entrambi definiti,
    altrimenti quello disponibile, altrimenti 0.
    """
    if job.status in TERMINAL_STATUSES or job.started_at is None:
        return 0.0

    books = job.books_extracted or 0
    rate = extraction_rate(books, elapsed)
    by_count = (job.max_books - books) / rate if rate > 0 else None
    by_time = max(0.0, job.max_time_minutes * 60 - elapsed)

    if by_count is None:
        return by_time
    return max(0.0, min(by_count, by_time))


def progress_percentage(books_extracted: int, max_books: int) -> float:
    if not max_books:
        return 0.0
    return round(min(100.0, books_extracted / max_books * 100), 2)


def compute_progress(job, now: datetime) -> Progress:
    """Snapshot di avanzamento calcolato da zero ad ogni chiamata."""
    elapsed = elapsed_seconds(job, now)
    books = job.books_extracted or 0
    return Progress(
        job_id=job.id,
        status=job.status,
        books_extracted=books,
        books_queued=job.books_queued or 0,
        error_count=job.error_count or 0,
        max_books=job.max_books,
        max_time_minutes=job.max_time_minutes,
        elapsed_seconds=round(elapsed, 3),
        estimated_remaining_seconds=round(estimate_remaining_seconds(job, elapsed), 3),
        progress_percentage=progress_percentage(books, job.max_books),
    )


def has_reached_book_limit(job) -> bool:
    return (job.books_extracted or 0) >= job.max_books


def has_reached_time_limit(job, now: datetime) -> bool:
    if job.started_at is None:
        return False
    return elapsed_seconds(job, now) >= job.max_time_minutes * 60


def budget_exhausted_reason(job, now: datetime) -> str | None:
    """Il primo budget raggiunto (libri prima del tempo a parità di checkpoint), o None."""
    if has_reached_book_limit(job):
        return BUDGET_BOOKS
    if has_reached_time_limit(job, now):
        return BUDGET_TIME
    return None
