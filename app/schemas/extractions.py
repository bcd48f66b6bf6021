"""Pydantic schemas per API Extractions."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


# --- Richieste ---


class CreateJobRequest(BaseModel):
    source_url: str
    requester_id: str
    # Omessi -> default 60 minuti / 100 libri (risolti nel service)
    max_time_minutes: int | None = Field(default=None, gt=0)
    max_books: int | None = Field(default=None, gt=0)


# --- Risposte ---


class ExtractionJobOut(BaseModel):
    id: str
    source_url: str
    status: str  # pending | running | paused | stopped | completed | failed
    max_time_minutes: int
    max_books: int
    books_extracted: int
    books_queued: int
    error_count: int
    created_by: str
    created_at: datetime | None = None
    started_at: datetime | None = None
    paused_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None

    class Config:
        from_attributes = True


class ExtractionProgressOut(BaseModel):
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

    class Config:
        from_attributes = True


class ExtractedBookOut(BaseModel):
    id: int
    job_id: str
    title: str
    author: str
    description: str | None = None
    cover_url: str | None = None
    pdf_url: str
    source_page_url: str | None = None
    status: str
    extracted_at: datetime | None = None
    published_at: datetime | None = None

    class Config:
        from_attributes = True


class ExtractionLogOut(BaseModel):
    id: int
    job_id: str
    level: str
    message: str
    details: dict[str, Any] | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class DeleteJobResponse(BaseModel):
    job_id: str
    deleted: bool
