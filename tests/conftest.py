"""Fixture di test e capacità fake per il worker di estrazione.

Questo modulo fornisce:
- un database SQLite su file temporaneo, configurato prima di importare l'app
  (il worker gira sull'event loop e le route nel threadpool del TestClient)
- FakeCrawler / FakeExtractor: implementazioni in memoria dei protocolli
  SourceCrawler e MetadataExtractor, con ritardi ed errori configurabili
- FakeClock: orologio controllato dai test per i calcoli di tempo trascorso
- helper per attendere condizioni sul job mentre il worker lavora
"""

import asyncio
import os
import tempfile
from datetime import datetime, timedelta, timezone

_DB_DIR = tempfile.mkdtemp(prefix="extraction-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'extractions.db')}"

import pytest  # noqa: E402
from sqlalchemy import update  # noqa: E402

from app.core import clock  # noqa: E402
from app.core.database import Base, SessionLocal, engine, init_db  # noqa: E402
from app.core.exceptions import TransientItemError  # noqa: E402
from app.ingestion.capabilities import BookMetadata, PdfCandidate  # noqa: E402
from app.models import ExtractionJob  # noqa: E402
from app.services.extraction_service import ExtractionService  # noqa: E402
from app.services.extraction_worker import WorkerSettings  # noqa: E402
from app.services.job_store import JobStore  # noqa: E402
from app.services.result_store import ResultStore  # noqa: E402

SOURCE_URL = "https://example.com/books"

FAST_SETTINGS = WorkerSettings(
    checkpoint_interval=0.01,
    max_item_retries=2,
    retry_backoff_seconds=0.0,
    max_error_count=50,
)


# --- Capacità fake ---


def pdf_urls(count: int, prefix: str = "book") -> list[str]:
    return [f"{SOURCE_URL}/{prefix}-{i}.pdf" for i in range(1, count + 1)]


class FakeCrawler:
    """Produce gli URL configurati; fail_with viene sollevato prima del primo PDF."""

    def __init__(self, urls=None, fail_with: Exception | None = None, delay: float = 0.0):
        self.urls = list(urls or [])
        self.fail_with = fail_with
        self.delay = delay
        self.yielded: list[str] = []

    async def discover(self, source_url: str):
        if self.fail_with is not None:
            raise self.fail_with
        for url in self.urls:
            if self.delay:
                await asyncio.sleep(self.delay)
            self.yielded.append(url)
            yield PdfCandidate(url=url, filename=url.rsplit("/", 1)[-1], page_source=source_url)


class FakeExtractor:
    """
    Estrattore in memoria.

    failures: url -> eccezione sollevata ad ogni tentativo.
    transient: url -> numero di TransientItemError prima del successo.
    gate: se impostato, ogni estrazione attende l'evento (simula un PDF lento).
    on_extract: callback invocata ad ogni chiamata (es. per avanzare il FakeClock).
    """

    def __init__(self, failures=None, transient=None, delay: float = 0.0, gate=None, on_extract=None):
        self.failures = dict(failures or {})
        self.transient = dict(transient or {})
        self.delay = delay
        self.gate = gate
        self.on_extract = on_extract
        self.calls: list[str] = []
        self.cancelled: list[str] = []

    async def extract(self, candidate: PdfCandidate) -> BookMetadata:
        self.calls.append(candidate.url)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled.append(candidate.url)
            raise
        if self.on_extract is not None:
            self.on_extract(candidate)
        if candidate.url in self.failures:
            raise self.failures[candidate.url]
        remaining = self.transient.get(candidate.url, 0)
        if remaining:
            self.transient[candidate.url] = remaining - 1
            raise TransientItemError(f"timeout su {candidate.url}")
        stem = candidate.filename[:-4]
        return BookMetadata(title=f"Titolo {stem}", author="Autore Test")


class FakeClock:
    """Sostituisce app.core.clock.utc_now; il tempo avanza solo con advance()."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


# --- Helper ---


def job_snapshot(job_store: JobStore, job_id: str) -> dict:
    """Tutte le colonne del job, per confronti 'riga invariata'."""
    job = job_store.require(job_id)
    return {column.name: getattr(job, column.name) for column in ExtractionJob.__table__.columns}


def force_status(job_id: str, status: str, **values) -> None:
    """Porta il job in uno stato arbitrario scrivendo direttamente sul DB."""
    db = SessionLocal()
    try:
        db.execute(update(ExtractionJob).where(ExtractionJob.id == job_id).values(status=status, **values))
        db.commit()
    finally:
        db.close()


async def wait_until(predicate, timeout: float = 5.0, interval: float = 0.01) -> None:
    """Attende che predicate() sia vero mentre il worker gira sullo stesso loop."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condizione non raggiunta entro il timeout")
        await asyncio.sleep(interval)


async def wait_for_status(job_store: JobStore, job_id: str, status: str, timeout: float = 5.0):
    await wait_until(lambda: job_store.require(job_id).status == status, timeout=timeout)
    return job_store.require(job_id)


# --- Fixture ---


@pytest.fixture(autouse=True)
def tables():
    """Tabelle ricreate per ogni test."""
    init_db()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def job_store():
    return JobStore()


@pytest.fixture
def result_store(job_store):
    return ResultStore(job_store=job_store)


@pytest.fixture
def fake_clock(monkeypatch):
    fake = FakeClock(datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc))
    monkeypatch.setattr(clock, "utc_now", fake)
    return fake


@pytest.fixture
def make_service(job_store, result_store):
    """Factory di ExtractionService con capacità fake e checkpoint rapidi."""
    def _make(crawler=None, extractor=None, settings: WorkerSettings = FAST_SETTINGS, stop_grace_seconds: float = 1.0):
        service = ExtractionService(
            crawler=crawler or FakeCrawler(),
            extractor=extractor or FakeExtractor(),
            job_store=job_store,
            result_store=result_store,
            worker_settings=settings,
            stop_grace_seconds=stop_grace_seconds,
        )
        return service

    return _make
