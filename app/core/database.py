"""SQLAlchemy engine, session, dependency e creazione tabelle."""

import logging

from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import get_database_url

logger = logging.getLogger(__name__)


def _engine_kwargs(url: str) -> dict:
    """
    PostgreSQL in produzione; SQLite (anche in memoria) per sviluppo e test.
    Il worker gira sull'event loop e le route nel threadpool: SQLite deve
    accettare connessioni da thread diversi.
    """
    if not url.startswith("sqlite"):
        return {"pool_pre_ping": True}
    kwargs: dict = {"connect_args": {"check_same_thread": False}}
    if url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool
    return kwargs


DATABASE_URL = get_database_url()

engine = create_engine(DATABASE_URL, echo=False, **_engine_kwargs(DATABASE_URL))

if DATABASE_URL.startswith("sqlite"):

    @event.listens_for(engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)
Base = declarative_base()


def get_db():
    """Dependency that yields a DB session. Caller must close."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """
    Crea tutte le tabelle.
    I modelli devono essere importati prima per registrare i metadata.
    """
    from app.models import extracted_book, extraction_job, extraction_log  # noqa: F401

    Base.metadata.create_all(bind=engine)
    logger.info("create_all completato")
