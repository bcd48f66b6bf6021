"""
Libro scoperto da un job di estrazione (staging prima della pubblicazione).
Righe append-only: dopo l'inserimento cambia solo lo status.
"""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.core.database import Base

BOOK_DISCOVERED = "discovered"
BOOK_COMPLETED = "completed"
BOOK_FAILED = "failed"
BOOK_PUBLISHED = "published"


class ExtractedBook(Base):
    __tablename__ = "extracted_books"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(
        String(36), ForeignKey("extraction_jobs.id", ondelete="CASCADE"),
        nullable=False,
    )
    title = Column(Text, nullable=False)
    author = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    cover_url = Column(Text, nullable=True)
    pdf_url = Column(Text, nullable=False)
    source_page_url = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=BOOK_COMPLETED)
    extracted_at = Column(DateTime(timezone=True), server_default=func.now())
    published_at = Column(DateTime(timezone=True), nullable=True)

    # --- Relazioni ---
    job = relationship("ExtractionJob", back_populates="books")

    # --- Indici ---
    __table_args__ = (
        Index("ix_extracted_books_job_id", "job_id"),
        Index("ix_extracted_books_status", "status"),
    )
