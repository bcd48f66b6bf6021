"""
Client HTTP di default per le sorgenti di estrazione.
Scopre i link PDF della pagina radice e ricava titolo/autore dal nome file.
Implementa SourceCrawler e MetadataExtractor; la lettura del contenuto dei PDF
(testo, metadati AI, copertine) resta fuori da questo client.
"""

import logging
import re
from collections.abc import AsyncIterator
from urllib.parse import unquote, urljoin, urlparse

import httpx
from bs4 import BeautifulSoup

from app.core.config import get_http_timeout, get_user_agent
from app.core.exceptions import FatalJobError, TransientItemError
from app.ingestion.capabilities import BookMetadata, PdfCandidate

logger = logging.getLogger(__name__)

_FILENAME_SEPARATORS = re.compile(r"[_\s]+")

UNKNOWN_AUTHOR = "Autore sconosciuto"


def is_pdf_url(url: str, content_type: str | None = None) -> bool:
    """PDF se il content-type lo dichiara o se il path termina in .pdf."""
    if content_type and "application/pdf" in content_type.lower():
        return True
    return urlparse(url).path.lower().endswith(".pdf")


def extract_links(html: str, base_url: str) -> list[str]:
    """Href assoluti di tutti gli <a> della pagina, nell'ordine in cui compaiono."""
    soup = BeautifulSoup(html or "", "lxml")
    links = []
    for a in soup.find_all("a", href=True):
        href = (a.get("href") or "").strip()
        if href:
            links.append(urljoin(base_url, href))
    return links


def extract_filename(url: str) -> str:
    segment = unquote(urlparse(url).path.rsplit("/", 1)[-1])
    if not segment:
        return "document.pdf"
    if not segment.lower().endswith(".pdf"):
        return f"{segment}.pdf"
    return segment


def metadata_from_filename(filename: str) -> BookMetadata:
    """
    Convenzione "Autore - Titolo.pdf"; senza separatore il nome file è il titolo.
    """
    stem = filename[:-4] if filename.lower().endswith(".pdf") else filename
    stem = _FILENAME_SEPARATORS.sub(" ", stem).strip()
    if " - " in stem:
        author, title = (part.strip() for part in stem.split(" - ", 1))
        if author and title:
            return BookMetadata(title=title, author=author)
    return BookMetadata(title=stem or filename, author=UNKNOWN_AUTHOR)


class PdfSourceClient:
    """Client async per sorgenti HTML con link a PDF."""

    def __init__(
        self,
        timeout: float | None = None,
        user_agent: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._timeout = timeout if timeout is not None else get_http_timeout()
        self._user_agent = user_agent or get_user_agent()
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, follow_redirects=True, transport=self._transport)

    def _headers(self) -> dict[str, str]:
        return {
            "User-Agent": self._user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        }

    async def discover(self, source_url: str) -> AsyncIterator[PdfCandidate]:
        """
        Scarica la pagina radice e produce i PDF linkati, senza duplicati.
        Se la radice stessa è un PDF produce solo quella.
        """
        try:
            async with self._client() as client:
                r = await client.get(source_url, headers=self._headers())
                r.raise_for_status()
                content_type = r.headers.get("content-type", "")
                html = "" if is_pdf_url(source_url, content_type) else r.text
        except httpx.HTTPError as e:
            raise FatalJobError(f"Sorgente non raggiungibile {source_url}: {type(e).__name__}: {e}") from e

        if not html:
            yield PdfCandidate(url=source_url, filename=extract_filename(source_url), page_source=source_url)
            return

        seen: set[str] = set()
        links = [link for link in extract_links(html, source_url) if is_pdf_url(link)]
        logger.info("discover %s -> %s link PDF", source_url, len(links))
        for link in links:
            if link in seen:
                continue
            seen.add(link)
            yield PdfCandidate(url=link, filename=extract_filename(link), page_source=source_url)

    async def extract(self, candidate: PdfCandidate) -> BookMetadata:
        """
        Verifica il PDF con una HEAD e ricava i metadati dal nome file.
        5xx, timeout ed errori di rete sono transitori; 4xx o contenuto non PDF no.
        """
        try:
            async with self._client() as client:
                r = await client.head(candidate.url, headers=self._headers())
        except httpx.TransportError as e:
            raise TransientItemError(f"{type(e).__name__}: {e}") from e

        if r.status_code >= 500:
            raise TransientItemError(f"HTTP {r.status_code} per {candidate.url}")
        r.raise_for_status()
        if not is_pdf_url(candidate.url, r.headers.get("content-type")):
            raise ValueError(f"{candidate.url} non è un PDF (content-type={r.headers.get('content-type')})")
        return metadata_from_filename(candidate.filename)
