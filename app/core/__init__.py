from app.core.config import get_database_url
from app.core.database import Base, SessionLocal, engine, get_db, init_db
from app.core.exceptions import (
    ExtractionError,
    FatalJobError,
    InvalidStateError,
    ItemNotFoundError,
    JobNotFoundError,
    TransientItemError,
    ValidationError,
)

__all__ = [
    "get_database_url",
    "Base",
    "SessionLocal",
    "engine",
    "get_db",
    "init_db",
    "ExtractionError",
    "ValidationError",
    "JobNotFoundError",
    "ItemNotFoundError",
    "InvalidStateError",
    "TransientItemError",
    "FatalJobError",
]
