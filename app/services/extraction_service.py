"""
Servizio di estrazione: ciclo di vita dei job e gestione dei worker.

Macchina a stati:
    pending --start--> running
    running --pause--> paused
    paused  --resume-> running
    running/paused --stop--> stopped
    running --budget/sorgente esaurita--> completed   (solo worker)
    running --errore irrecuperabile--> failed         (solo worker)
    stopped/completed/failed --delete--> rimosso

Ogni comando non previsto per lo stato corrente solleva InvalidStateError e
lascia il job invariato. I comandi aggiornano il DB e rispondono subito; il
worker li riceve come messaggi nella propria mailbox.
"""

import asyncio
import logging
from dataclasses import dataclass
from urllib.parse import urlparse

from app.core import clock
from app.core.config import get_stop_grace_seconds
from app.core.exceptions import InvalidStateError, ValidationError
from app.ingestion.capabilities import MetadataExtractor, SourceCrawler
from app.models import ExtractedBook, ExtractionJob
from app.models.extraction_job import (
    JOB_FAILED,
    JOB_PAUSED,
    JOB_PENDING,
    JOB_RUNNING,
    JOB_STOPPED,
    TERMINAL_STATUSES,
)
from app.models.extraction_log import LOG_ERROR
from app.services.extraction_worker import ExtractionWorker, WorkerCommand, WorkerSettings
from app.services.job_store import JobStore, fold_open_pause
from app.services.pdf_source_client import PdfSourceClient
from app.services.result_store import ResultStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_TIME_MINUTES = 60
DEFAULT_MAX_BOOKS = 100


@dataclass(frozen=True)
class Budgets:
    max_time_minutes: int | None = None
    max_books: int | None = None


def _positive_int(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{name} deve essere un intero positivo, ricevuto {value!r}")
    return value


def resolve_budgets(budgets: Budgets | None) -> Budgets:
    """Unico punto in cui si applicano i default (60 minuti / 100 libri)."""
    budgets = budgets or Budgets()
    max_time = DEFAULT_MAX_TIME_MINUTES if budgets.max_time_minutes is None else budgets.max_time_minutes
    max_books = DEFAULT_MAX_BOOKS if budgets.max_books is None else budgets.max_books
    return Budgets(
        max_time_minutes=_positive_int("max_time_minutes", max_time),
        max_books=_positive_int("max_books", max_books),
    )


def validate_source_url(source_url: str | None) -> str:
    url = (source_url or "").strip()
    if not url:
        raise ValidationError("source_url è obbligatorio")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError(f"source_url non valido: {url!r} (atteso URL http/https assoluto)")
    return url


class ExtractionService:
    """Controller dei job di estrazione: un worker asyncio per job in esecuzione."""

    def __init__(
        self,
        crawler: SourceCrawler | None = None,
        extractor: MetadataExtractor | None = None,
        job_store: JobStore | None = None,
        result_store: ResultStore | None = None,
        worker_settings: WorkerSettings | None = None,
        stop_grace_seconds: float | None = None,
    ):
        default_client = PdfSourceClient() if crawler is None or extractor is None else None
        self._crawler = crawler or default_client
        self._extractor = extractor or default_client
        self._jobs = job_store or JobStore()
        self._results = result_store or ResultStore(job_store=self._jobs)
        self._worker_settings = worker_settings
        self._stop_grace = stop_grace_seconds if stop_grace_seconds is not None else get_stop_grace_seconds()
        self._workers: dict[str, tuple[ExtractionWorker, asyncio.Task]] = {}
        self._grace_tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Comandi
    # ------------------------------------------------------------------

    def create_job(self, source_url: str, requester_id: str, budgets: Budgets | None = None) -> ExtractionJob:
        url = validate_source_url(source_url)
        if not (requester_id or "").strip():
            raise ValidationError("requester_id è obbligatorio")
        resolved = resolve_budgets(budgets)
        job = self._jobs.create(
            source_url=url,
            created_by=requester_id.strip(),
            max_time_minutes=resolved.max_time_minutes,
            max_books=resolved.max_books,
        )
        logger.info(
            "Extraction job_id=%s creato: %s (max %s libri, %s minuti)",
            job.id, url, job.max_books, job.max_time_minutes,
        )
        return job

    async def start_job(self, job_id: str) -> ExtractionJob:
        now = clock.utc_now()
        job = self._jobs.transition(
            job_id, "start", {JOB_PENDING}, JOB_RUNNING,
            lambda _job: {"started_at": now},
        )
        worker = ExtractionWorker(
            job_id,
            crawler=self._crawler,
            extractor=self._extractor,
            job_store=self._jobs,
            result_store=self._results,
            settings=self._worker_settings,
        )
        task = asyncio.get_running_loop().create_task(worker.run(), name=f"extraction-{job_id}")
        self._workers[job_id] = (worker, task)
        task.add_done_callback(lambda _t, jid=job_id: self._forget_worker(jid, _t))
        return job

    async def pause_job(self, job_id: str) -> ExtractionJob:
        now = clock.utc_now()
        job = self._jobs.transition(
            job_id, "pause", {JOB_RUNNING}, JOB_PAUSED,
            lambda _job: {"paused_at": now},
        )
        self._send(job_id, WorkerCommand.PAUSE)
        return job

    async def resume_job(self, job_id: str) -> ExtractionJob:
        now = clock.utc_now()
        job = self._jobs.transition(
            job_id, "resume", {JOB_PAUSED}, JOB_RUNNING,
            lambda current: fold_open_pause(current, now),
        )
        self._send(job_id, WorkerCommand.RESUME)
        return job

    async def stop_job(self, job_id: str) -> ExtractionJob:
        """Terminale e irreversibile: il client deve chiedere conferma prima."""
        now = clock.utc_now()
        job = self._jobs.transition(
            job_id, "stop", {JOB_RUNNING, JOB_PAUSED}, JOB_STOPPED,
            lambda current: {"completed_at": now, **fold_open_pause(current, now)},
        )
        self._send(job_id, WorkerCommand.STOP)
        entry = self._workers.get(job_id)
        if entry is not None:
            grace = asyncio.get_running_loop().create_task(self._wait_for_worker(job_id, entry[1]))
            self._grace_tasks.add(grace)
            grace.add_done_callback(self._grace_tasks.discard)
        return job

    async def delete_job(self, job_id: str) -> None:
        """Solo job terminali; attende la fine del worker prima di cancellare."""
        job = self._jobs.require(job_id)
        if job.status not in TERMINAL_STATUSES:
            raise InvalidStateError(job_id, job.status, "delete")
        entry = self._workers.get(job_id)
        if entry is not None:
            await self._wait_for_worker(job_id, entry[1])
        self._jobs.delete(job_id, TERMINAL_STATUSES)

    def publish_extracted_item(self, item_id: int) -> ExtractedBook:
        return self._results.publish_book(item_id)

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def has_worker(self, job_id: str) -> bool:
        return job_id in self._workers

    def active_worker_count(self) -> int:
        return len(self._workers)

    def _send(self, job_id: str, command: WorkerCommand) -> None:
        entry = self._workers.get(job_id)
        if entry is None:
            logger.warning("Job %s: nessun worker attivo per il comando %s", job_id, command.value)
            return
        entry[0].send(command)

    def _forget_worker(self, job_id: str, task: asyncio.Task) -> None:
        entry = self._workers.get(job_id)
        if entry is not None and entry[1] is task:
            del self._workers[job_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error("Worker job_id=%s terminato con errore: %s", job_id, task.exception())

    async def _wait_for_worker(self, job_id: str, task: asyncio.Task) -> None:
        done, _ = await asyncio.wait({task}, timeout=self._stop_grace)
        if done:
            return
        logger.warning("Worker job_id=%s non ha confermato lo stop in %.1fs: cancellazione", job_id, self._stop_grace)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def wait_for_worker(self, job_id: str, timeout: float | None = None) -> bool:
        """Attende la fine del worker del job; True se terminato (o assente)."""
        entry = self._workers.get(job_id)
        if entry is None:
            return True
        done, _ = await asyncio.wait({entry[1]}, timeout=timeout)
        return bool(done)

    def recover_orphaned_jobs(self) -> int:
        """
        All'avvio nessun worker è vivo: i job rimasti running/paused non possono
        riprendere e vengono marcati failed.
        """
        orphans = self._jobs.ids_with_status({JOB_RUNNING, JOB_PAUSED})
        recovered = 0
        for job_id in orphans:
            if self._fail_without_worker(job_id, "Estrazione interrotta dal riavvio del server"):
                recovered += 1
        if recovered:
            logger.warning("Marcati failed %s job orfani all'avvio", recovered)
        return recovered

    def _fail_without_worker(self, job_id: str, message: str) -> bool:
        now = clock.utc_now()
        job = self._jobs.try_transition(
            job_id, "fail", {JOB_RUNNING, JOB_PAUSED}, JOB_FAILED,
            lambda current: {"completed_at": now, "error_message": message, **fold_open_pause(current, now)},
        )
        if job is None:
            return False
        self._results.append_log(job_id, LOG_ERROR, f"Job fallito: {message}")
        return True

    async def shutdown(self) -> None:
        """Arresto applicazione: i job vivi vengono interrotti e marcati failed."""
        for job_id, (_worker, task) in list(self._workers.items()):
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            self._fail_without_worker(job_id, "Estrazione interrotta dall'arresto del server")
        self._workers.clear()
