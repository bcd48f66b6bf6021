"""
Router per i job di estrazione libri: creazione, controllo, osservazione.
La logica è nel service; il worker gira in background sull'event loop e il
client osserva lo stato in polling (progress ogni pochi secondi).
Dopo ogni comando rifiutato il client deve ricaricare lo stato dal server.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.core import (
    InvalidStateError,
    ItemNotFoundError,
    JobNotFoundError,
    ValidationError,
    get_db,
)
from app.schemas.extractions import (
    CreateJobRequest,
    DeleteJobResponse,
    ExtractedBookOut,
    ExtractionJobOut,
    ExtractionLogOut,
    ExtractionProgressOut,
)
from app.services import extraction_queries
from app.services.extraction_service import Budgets, ExtractionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/extractions", tags=["extractions"])

_service: ExtractionService | None = None


def get_extraction_service() -> ExtractionService:
    """Singleton del controller: i worker vivono per tutta la vita del processo."""
    global _service
    if _service is None:
        _service = ExtractionService()
    return _service


def _http_error(e: Exception, action: str) -> HTTPException:
    if isinstance(e, (JobNotFoundError, ItemNotFoundError)):
        logger.warning("%s: %s", action, e)
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, InvalidStateError):
        logger.warning("%s rifiutato: %s", action, e)
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, ValidationError):
        logger.warning("%s input non valido: %s", action, e)
        return HTTPException(status_code=400, detail=str(e))
    logger.exception("%s errore: %s", action, e)
    return HTTPException(status_code=500, detail=f"Errore {action}: {type(e).__name__}")


@router.post("", response_model=ExtractionJobOut, status_code=201)
def create_job(body: CreateJobRequest, service: ExtractionService = Depends(get_extraction_service)):
    """Crea un job in stato pending. Budget omessi -> 60 minuti / 100 libri."""
    try:
        return service.create_job(
            body.source_url,
            body.requester_id,
            Budgets(max_time_minutes=body.max_time_minutes, max_books=body.max_books),
        )
    except ValidationError as e:
        raise _http_error(e, "create_job")


@router.get("", response_model=list[ExtractionJobOut])
def job_history(requester_id: str | None = None, db: Session = Depends(get_db)):
    """Storico dei job, dal più recente."""
    return extraction_queries.get_job_history(db, requester_id=requester_id)


@router.post("/books/{item_id}/publish", response_model=ExtractedBookOut)
def publish_book(item_id: int, service: ExtractionService = Depends(get_extraction_service)):
    """Pubblica un libro estratto (completed -> published)."""
    try:
        return service.publish_extracted_item(item_id)
    except (ItemNotFoundError, InvalidStateError) as e:
        raise _http_error(e, "publish_book")


@router.get("/{job_id}", response_model=ExtractionJobOut)
def get_job(job_id: str, db: Session = Depends(get_db)):
    try:
        return extraction_queries.get_job(db, job_id)
    except JobNotFoundError as e:
        raise _http_error(e, "get_job")


@router.post("/{job_id}/start", response_model=ExtractionJobOut)
async def start_job(job_id: str, service: ExtractionService = Depends(get_extraction_service)):
    """Avvia il job (solo da pending) e il suo worker in background."""
    try:
        return await service.start_job(job_id)
    except (JobNotFoundError, InvalidStateError) as e:
        raise _http_error(e, "start_job")


@router.post("/{job_id}/pause", response_model=ExtractionJobOut)
async def pause_job(job_id: str, service: ExtractionService = Depends(get_extraction_service)):
    try:
        return await service.pause_job(job_id)
    except (JobNotFoundError, InvalidStateError) as e:
        raise _http_error(e, "pause_job")


@router.post("/{job_id}/resume", response_model=ExtractionJobOut)
async def resume_job(job_id: str, service: ExtractionService = Depends(get_extraction_service)):
    try:
        return await service.resume_job(job_id)
    except (JobNotFoundError, InvalidStateError) as e:
        raise _http_error(e, "resume_job")


@router.post("/{job_id}/stop", response_model=ExtractionJobOut)
async def stop_job(job_id: str, service: ExtractionService = Depends(get_extraction_service)):
    """Stop definitivo (running o paused). I libri già estratti restano."""
    try:
        return await service.stop_job(job_id)
    except (JobNotFoundError, InvalidStateError) as e:
        raise _http_error(e, "stop_job")


@router.delete("/{job_id}", response_model=DeleteJobResponse)
async def delete_job(job_id: str, service: ExtractionService = Depends(get_extraction_service)):
    """Elimina job terminati con libri e log associati."""
    try:
        await service.delete_job(job_id)
    except (JobNotFoundError, InvalidStateError) as e:
        raise _http_error(e, "delete_job")
    return DeleteJobResponse(job_id=job_id, deleted=True)


@router.get("/{job_id}/progress", response_model=ExtractionProgressOut)
def job_progress(job_id: str, db: Session = Depends(get_db)):
    """
    Avanzamento ricalcolato ad ogni chiamata: elapsed (pause escluse),
    percentuale sul budget libri, ETA. Sicuro da chiamare in polling.
    """
    try:
        return extraction_queries.get_job_progress(db, job_id)
    except JobNotFoundError as e:
        raise _http_error(e, "job_progress")


@router.get("/{job_id}/books", response_model=list[ExtractedBookOut])
def extracted_books(job_id: str, db: Session = Depends(get_db)):
    try:
        return extraction_queries.get_extracted_items(db, job_id)
    except JobNotFoundError as e:
        raise _http_error(e, "extracted_books")


@router.get("/{job_id}/logs", response_model=list[ExtractionLogOut])
def job_logs(
    job_id: str,
    limit: int = Query(default=extraction_queries.DEFAULT_LOG_LIMIT, gt=0, le=1000),
    db: Session = Depends(get_db),
):
    """Ultimi `limit` log del job, dal più recente."""
    try:
        return extraction_queries.get_job_logs(db, job_id, limit=limit)
    except JobNotFoundError as e:
        raise _http_error(e, "job_logs")
