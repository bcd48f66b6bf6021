"""
Worker di estrazione: un task asyncio per ogni job in esecuzione.

Il controller aggiorna lo stato nel DB e poi invia un comando (PAUSE, RESUME,
STOP) nella mailbox del worker. Il worker consulta la mailbox solo ai
checkpoint: prima di ogni PDF e, con intervallo limitato, mentre attende
crawler o estrattore. In pausa resta fermo tenendo la posizione del crawler;
allo stop abbandona il PDF corrente e termina.

Esiti per PDF: successo -> libro + log + books_extracted; errore -> log error +
error_count. Errori strutturali (sorgente irraggiungibile) -> failed.
Budget (libri o tempo, pause escluse) raggiunto -> completed.
"""

import asyncio
import enum
import logging
from collections.abc import AsyncIterator, Awaitable
from dataclasses import dataclass
from typing import Any, TypeVar

from app.core import clock
from app.core.config import (
    get_checkpoint_interval,
    get_max_error_count,
    get_max_item_retries,
    get_retry_backoff_seconds,
)
from app.core.exceptions import FatalJobError, JobNotFoundError, TransientItemError
from app.ingestion.capabilities import BookMetadata, MetadataExtractor, PdfCandidate, SourceCrawler
from app.models.extraction_job import (
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_PAUSED,
    JOB_RUNNING,
    TERMINAL_STATUSES,
)
from app.models.extraction_log import LOG_ERROR, LOG_INFO, LOG_WARNING
from app.services.job_store import JobStore, fold_open_pause
from app.services.progress_estimator import BUDGET_BOOKS, BUDGET_TIME, budget_exhausted_reason
from app.services.result_store import ResultStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

SOURCE_EXHAUSTED = "source_exhausted"

_COMPLETION_MESSAGES = {
    BUDGET_BOOKS: "Limite libri raggiunto",
    BUDGET_TIME: "Limite di tempo raggiunto",
    SOURCE_EXHAUSTED: "Sorgente esaurita: nessun altro PDF da elaborare",
}


class WorkerCommand(str, enum.Enum):
    PAUSE = "pause"
    RESUME = "resume"
    STOP = "stop"


class JobStopped(Exception):
    """Stop ricevuto: il worker abbandona il lavoro corrente."""


@dataclass(frozen=True)
class WorkerSettings:
    checkpoint_interval: float = 1.0
    max_item_retries: int = 3
    retry_backoff_seconds: float = 1.0
    max_error_count: int = 50

    @classmethod
    def from_env(cls) -> "WorkerSettings":
        return cls(
            checkpoint_interval=get_checkpoint_interval(),
            max_item_retries=get_max_item_retries(),
            retry_backoff_seconds=get_retry_backoff_seconds(),
            max_error_count=get_max_error_count(),
        )


async def _next_candidate(iterator: AsyncIterator[PdfCandidate]) -> PdfCandidate | None:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return None


class ExtractionWorker:
    """Esegue crawl ed estrazione per un singolo job."""

    def __init__(
        self,
        job_id: str,
        crawler: SourceCrawler,
        extractor: MetadataExtractor,
        job_store: JobStore,
        result_store: ResultStore,
        settings: WorkerSettings | None = None,
    ):
        self.job_id = job_id
        self._crawler = crawler
        self._extractor = extractor
        self._jobs = job_store
        self._results = result_store
        self._settings = settings or WorkerSettings.from_env()
        self._commands: asyncio.Queue[WorkerCommand] = asyncio.Queue()
        self._paused = False
        self._stop_requested = False

    # ------------------------------------------------------------------
    # Mailbox
    # ------------------------------------------------------------------

    def send(self, command: WorkerCommand) -> None:
        """Chiamato dal controller sull'event loop; non blocca."""
        self._commands.put_nowait(command)

    def _apply(self, command: WorkerCommand) -> None:
        if command is WorkerCommand.STOP:
            self._stop_requested = True
        elif command is WorkerCommand.PAUSE:
            self._paused = True
        elif command is WorkerCommand.RESUME:
            self._paused = False

    def _drain(self) -> None:
        while True:
            try:
                self._apply(self._commands.get_nowait())
            except asyncio.QueueEmpty:
                return

    def _sync_from_store(self) -> None:
        """Lo stato nel DB è autorevole se un comando non arriva in mailbox."""
        job = self._jobs.get(self.job_id)
        if job is None or job.status in TERMINAL_STATUSES:
            self._stop_requested = True
        elif job.status == JOB_RUNNING:
            self._paused = False

    def _raise_if_stopped(self) -> None:
        self._drain()
        if self._stop_requested:
            raise JobStopped()

    async def _wait_while_paused(self) -> None:
        if not self._paused or self._stop_requested:
            return
        self._log(LOG_INFO, "Estrazione in pausa")
        while self._paused and not self._stop_requested:
            try:
                command = await asyncio.wait_for(
                    self._commands.get(), timeout=self._settings.checkpoint_interval
                )
            except asyncio.TimeoutError:
                self._sync_from_store()
                continue
            self._apply(command)
            self._drain()
        if not self._stop_requested:
            self._log(LOG_INFO, "Estrazione ripresa")

    async def _interruptible(self, awaitable: Awaitable[T]) -> T:
        """
        Attende awaitable controllando la mailbox ogni checkpoint_interval.
        Allo stop cancella l'operazione in corso e solleva JobStopped.
        """
        task = asyncio.ensure_future(awaitable)
        try:
            while True:
                done, _ = await asyncio.wait({task}, timeout=self._settings.checkpoint_interval)
                if done:
                    return task.result()
                self._raise_if_stopped()
        finally:
            if not task.done():
                task.cancel()
                # La cancellazione del worker stesso si propaga comunque
                await asyncio.gather(task, return_exceptions=True)

    async def checkpoint(self) -> str | None:
        """
        Punto di controllo cooperativo: applica i comandi, blocca se in pausa,
        solleva JobStopped allo stop. Ritorna il budget esaurito, se presente.
        """
        self._drain()
        await self._wait_while_paused()
        self._raise_if_stopped()
        job = self._jobs.get(self.job_id)
        if job is None:
            raise JobStopped()
        return budget_exhausted_reason(job, clock.utc_now())

    # ------------------------------------------------------------------
    # Esecuzione
    # ------------------------------------------------------------------

    def _log(self, level: str, message: str, details: dict[str, Any] | None = None) -> None:
        self._results.append_log(self.job_id, level, message, details)

    async def run(self) -> None:
        """Ciclo principale del job; non solleva eccezioni verso chi lo ha avviato."""
        try:
            job = self._jobs.require(self.job_id)
        except JobNotFoundError:
            logger.error("Extraction job_id=%s non trovato, worker non avviato", self.job_id)
            return

        logger.info("Extraction job_id=%s avviato su %s", self.job_id, job.source_url)
        self._log(LOG_INFO, "Estrazione avviata", {
            "source_url": job.source_url,
            "max_books": job.max_books,
            "max_time_minutes": job.max_time_minutes,
        })

        iterator = self._crawler.discover(job.source_url).__aiter__()
        try:
            await self._crawl(iterator)
        except JobStopped:
            self._acknowledge_stop()
        except asyncio.CancelledError:
            self._acknowledge_stop(cancelled=True)
            raise
        except FatalJobError as e:
            logger.error("Extraction job_id=%s errore fatale: %s", self.job_id, e)
            await self._fail(str(e))
        except Exception as e:
            logger.exception("Extraction job_id=%s fallito: %s", self.job_id, e)
            await self._fail(f"{type(e).__name__}: {e}")
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                try:
                    await aclose()
                except Exception as e:
                    logger.debug("Job %s: chiusura crawler: %s", self.job_id, e)

    async def _crawl(self, iterator: AsyncIterator[PdfCandidate]) -> None:
        while True:
            reason = await self.checkpoint()
            if reason:
                await self._complete(reason)
                return

            candidate = await self._discover_next(iterator)
            if candidate is None:
                await self._complete(SOURCE_EXHAUSTED)
                return

            self._jobs.increment(self.job_id, books_queued=1)
            reason = await self.checkpoint()
            if reason:
                await self._complete(reason)
                return

            await self._process(candidate)

            job = self._jobs.require(self.job_id)
            if job.error_count >= self._settings.max_error_count:
                raise FatalJobError(
                    f"Troppi errori di estrazione ({job.error_count} >= {self._settings.max_error_count})"
                )

    async def _discover_next(self, iterator: AsyncIterator[PdfCandidate]) -> PdfCandidate | None:
        try:
            return await self._interruptible(_next_candidate(iterator))
        except (JobStopped, FatalJobError):
            raise
        except Exception as e:
            raise FatalJobError(f"Crawling interrotto: {type(e).__name__}: {e}") from e

    async def _extract_with_retry(self, candidate: PdfCandidate) -> BookMetadata:
        attempt = 0
        while True:
            try:
                return await self._interruptible(self._extractor.extract(candidate))
            except TransientItemError as e:
                if attempt >= self._settings.max_item_retries:
                    raise
                delay = self._settings.retry_backoff_seconds * (2 ** attempt)
                attempt += 1
                logger.warning(
                    "Job %s: errore transitorio su %s (tentativo %s/%s), retry tra %.1fs: %s",
                    self.job_id, candidate.url, attempt, self._settings.max_item_retries, delay, e,
                )
                if delay > 0:
                    await self._interruptible(asyncio.sleep(delay))
                else:
                    self._raise_if_stopped()

    async def _process(self, candidate: PdfCandidate) -> None:
        try:
            metadata = await self._extract_with_retry(candidate)
        except (JobStopped, FatalJobError):
            raise
        except TransientItemError as e:
            self._results.record_item_error(
                self.job_id,
                f"Estrazione fallita per {candidate.filename} dopo "
                f"{self._settings.max_item_retries + 1} tentativi: {e}",
                {"pdf_url": candidate.url, "transient": True},
            )
            return
        except Exception as e:
            self._results.record_item_error(
                self.job_id,
                f"Estrazione fallita per {candidate.filename}: {type(e).__name__}: {e}",
                {"pdf_url": candidate.url},
            )
            return

        # Stop arrivato durante l'estrazione: il PDF non viene registrato
        self._raise_if_stopped()
        self._results.record_book(
            self.job_id,
            title=metadata.title,
            author=metadata.author,
            pdf_url=candidate.url,
            source_page_url=candidate.page_source,
            description=metadata.description,
            cover_url=metadata.cover_url,
        )

    # ------------------------------------------------------------------
    # Transizioni guidate dal worker
    # ------------------------------------------------------------------

    async def _complete(self, reason: str) -> None:
        now = clock.utc_now()
        while True:
            job = self._jobs.try_transition(
                self.job_id, "complete", {JOB_RUNNING}, JOB_COMPLETED,
                lambda _job: {"completed_at": now},
            )
            if job is not None:
                self._log(LOG_INFO, _COMPLETION_MESSAGES.get(reason, "Estrazione completata"), {
                    "reason": reason,
                    "books_extracted": job.books_extracted,
                    "error_count": job.error_count,
                })
                logger.info(
                    "Extraction job_id=%s completato (%s): %s/%s libri",
                    self.job_id, reason, job.books_extracted, job.max_books,
                )
                return
            if not await self._pause_before_retrying():
                return
            now = clock.utc_now()

    async def _fail(self, message: str) -> None:
        now = clock.utc_now()
        job = self._jobs.try_transition(
            self.job_id, "fail", {JOB_RUNNING, JOB_PAUSED}, JOB_FAILED,
            lambda current: {"completed_at": now, "error_message": message, **fold_open_pause(current, now)},
        )
        if job is not None:
            self._log(LOG_ERROR, f"Job fallito: {message}")

    async def _pause_before_retrying(self) -> bool:
        """
        La transizione worker è fallita perché il controller ha cambiato stato:
        in pausa si attende la ripresa e si ritenta; se il job è già terminale
        si tratta come uno stop.
        """
        job = self._jobs.get(self.job_id)
        if job is None or job.status in TERMINAL_STATUSES:
            raise JobStopped()
        if job.status != JOB_PAUSED:
            return False
        self._drain()
        self._paused = True
        await self._wait_while_paused()
        self._raise_if_stopped()
        return True

    def _acknowledge_stop(self, cancelled: bool = False) -> None:
        if self._jobs.get(self.job_id) is None:
            return
        if cancelled:
            message = "Worker cancellato prima di completare lo stop"
            self._log(LOG_WARNING, message)
        else:
            self._log(LOG_INFO, "Stop ricevuto: estrazione interrotta, risultati conservati")
        logger.info("Extraction job_id=%s fermato%s", self.job_id, " (cancellato)" if cancelled else "")
