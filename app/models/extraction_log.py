"""Log immutabili di un job di estrazione, scritti solo dal worker."""

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.core.database import Base

LOG_INFO = "info"
LOG_WARNING = "warning"
LOG_ERROR = "error"


class ExtractionLog(Base):
    __tablename__ = "extraction_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(
        String(36), ForeignKey("extraction_jobs.id", ondelete="CASCADE"),
        nullable=False,
    )
    level = Column(String(10), nullable=False)
    message = Column(Text, nullable=False)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    job = relationship("ExtractionJob", back_populates="logs")

    __table_args__ = (
        Index("ix_extraction_logs_job_id", "job_id"),
    )
