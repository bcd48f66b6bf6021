"""Modello per i job di estrazione libri in background."""

import uuid

from sqlalchemy import Column, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.core.database import Base

JOB_PENDING = "pending"
JOB_RUNNING = "running"
JOB_PAUSED = "paused"
JOB_STOPPED = "stopped"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"

TERMINAL_STATUSES = frozenset({JOB_STOPPED, JOB_COMPLETED, JOB_FAILED})


def _new_job_id() -> str:
    return str(uuid.uuid4())


class ExtractionJob(Base):
    __tablename__ = "extraction_jobs"

    id = Column(String(36), primary_key=True, default=_new_job_id)
    source_url = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default=JOB_PENDING, index=True)
    max_time_minutes = Column(Integer, nullable=False, default=60)
    max_books = Column(Integer, nullable=False, default=100)
    books_extracted = Column(Integer, nullable=False, default=0)
    books_queued = Column(Integer, nullable=False, default=0)
    error_count = Column(Integer, nullable=False, default=0)
    created_by = Column(String(64), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    paused_at = Column(DateTime(timezone=True), nullable=True)
    # Somma delle pause già chiuse; la pausa aperta si calcola da paused_at
    paused_seconds = Column(Float, nullable=False, default=0.0)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)

    books = relationship(
        "ExtractedBook",
        back_populates="job",
        cascade="all, delete-orphan",
        order_by="ExtractedBook.id",
    )
    logs = relationship(
        "ExtractionLog",
        back_populates="job",
        cascade="all, delete-orphan",
        order_by="ExtractionLog.id",
    )
