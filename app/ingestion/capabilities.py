"""
Capacità pluggabili usate dal worker di estrazione.
Il worker conosce solo questi protocolli: crawling e lettura metadati
possono essere sostituiti (client HTTP di default, estrattori AI, fake nei test).
"""

from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class PdfCandidate:
    """Documento scaricabile trovato durante il crawling."""
    url: str
    filename: str
    page_source: str


@dataclass(frozen=True)
class BookMetadata:
    title: str
    author: str
    description: str | None = None
    cover_url: str | None = None


class SourceCrawler(Protocol):
    def discover(self, source_url: str) -> AsyncIterator[PdfCandidate]:
        """
        Itera i PDF raggiungibili da source_url.
        Un errore prima del primo elemento significa sorgente irraggiungibile.
        """
        ...


class MetadataExtractor(Protocol):
    async def extract(self, candidate: PdfCandidate) -> BookMetadata:
        """Solleva TransientItemError per errori ritentabili."""
        ...
