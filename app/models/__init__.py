from app.models.extracted_book import ExtractedBook
from app.models.extraction_job import ExtractionJob
from app.models.extraction_log import ExtractionLog

__all__ = [
    "ExtractionJob",
    "ExtractedBook",
    "ExtractionLog",
]
