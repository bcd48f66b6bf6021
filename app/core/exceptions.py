"""
Eccezioni del dominio estrazione.
I router le traducono in HTTPException; il worker le usa per decidere
se un errore è recuperabile (singolo PDF) o fatale (intero job).
"""


class ExtractionError(Exception):
    """Base per tutti gli errori dell'orchestratore di estrazione."""


class ValidationError(ExtractionError):
    """Input non valido alla creazione del job (URL sorgente, budget, richiedente)."""


class JobNotFoundError(ExtractionError):
    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} non trovato")
        self.job_id = job_id


class ItemNotFoundError(ExtractionError):
    def __init__(self, item_id: int):
        super().__init__(f"Libro estratto {item_id} non trovato")
        self.item_id = item_id


class InvalidStateError(ExtractionError):
    """Comando non ammesso per lo stato corrente. Lo stato del job resta invariato."""

    def __init__(self, job_id: str, status: str, command: str):
        super().__init__(f"Comando '{command}' non ammesso in stato '{status}' (id={job_id})")
        self.job_id = job_id
        self.status = status
        self.command = command


class TransientItemError(ExtractionError):
    """Errore temporaneo su un singolo PDF: il worker riprova con backoff."""


class FatalJobError(ExtractionError):
    """Errore strutturale: il job non può proseguire e passa a failed."""
