"""Library Extraction Service: estrazione di libri PDF da siti sorgente, gestita a job."""

import logging

from fastapi import FastAPI

from app.core.database import init_db
from app.routers import extractions_router, health_router
from app.routers.extractions import get_extraction_service

app = FastAPI(
    title="Library Extraction Service",
    description="Job di estrazione PDF con pausa, ripresa, stop e budget di tempo/libri.",
    version="0.1.0",
)

app.include_router(health_router)
app.include_router(extractions_router)


@app.on_event("startup")
def on_startup():
    """Inizializza le tabelle e chiude i job rimasti orfani da un arresto precedente."""
    logging.basicConfig(level=logging.INFO, format="%(levelname)s [%(name)s] %(message)s")
    init_db()
    get_extraction_service().recover_orphaned_jobs()


@app.on_event("shutdown")
async def on_shutdown():
    await get_extraction_service().shutdown()
