"""Application configuration. Load from environment."""

import os

from dotenv import load_dotenv

load_dotenv()

DEFAULT_USER_AGENT = "Library-Extraction-Crawler/1.0"


def get_database_url() -> str:
    """Return DATABASE_URL from environment. Raises if missing."""
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL environment variable is required")
    return url


def _get_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a number, got {raw!r}")


def _get_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}")


def get_checkpoint_interval() -> float:
    """Secondi massimi tra due checkpoint del worker quando è in attesa."""
    return _get_float("EXTRACTION_CHECKPOINT_INTERVAL", 1.0)


def get_max_item_retries() -> int:
    """Tentativi aggiuntivi per un singolo PDF prima di contarlo come errore."""
    return _get_int("EXTRACTION_MAX_ITEM_RETRIES", 3)


def get_retry_backoff_seconds() -> float:
    """Backoff base (esponenziale) tra i tentativi su errori transitori."""
    return _get_float("EXTRACTION_RETRY_BACKOFF_SECONDS", 1.0)


def get_max_error_count() -> int:
    """Oltre questa soglia di errori il job passa a failed."""
    return _get_int("EXTRACTION_MAX_ERROR_COUNT", 50)


def get_stop_grace_seconds() -> float:
    """Tempo concesso al worker per confermare lo stop prima della cancellazione."""
    return _get_float("EXTRACTION_STOP_GRACE_SECONDS", 10.0)


def get_http_timeout() -> float:
    return _get_float("EXTRACTION_HTTP_TIMEOUT", 30.0)


def get_user_agent() -> str:
    return os.environ.get("EXTRACTION_USER_AGENT") or DEFAULT_USER_AGENT
