"""Text extraction from municipal HTML pages and PDF documents."""

import io
import logging
from datetime import date
from typing import Optional, Tuple
from urllib.parse import unquote, urlparse

from bs4 import BeautifulSoup

from .config import RunConfig
from .fetcher import Fetcher, FetchError
from .models import DiscoveredLink, ExtractedDocument
from .utils import normalize_whitespace, url_path_endswith

logger = logging.getLogger(__name__)

# Page chrome removed before looking for the main content
CHROME_SELECTORS = 'nav, header, footer, script, style, .navigation, .nav, .header, .footer, .menu, .sidebar'

MAIN_CONTENT_SELECTORS = [
    'main',
    '[role="main"]',
    '.content',
    '.main-content',
    'article',
    '.article',
    '.post-content',
    '.entry-content',
]

MIN_MAIN_CONTENT_CHARS = 100
LARGE_DOCUMENT_CHARS = 50000
UNTITLED = 'Untitled Document'


class ExtractionError(Exception):
    """A discovered link could not be turned into a document."""

    def __init__(self, url: str, cause):
        self.url = url
        self.cause = cause
        super().__init__(f"Failed to extract {url}: {cause}")


def is_pdf_url(url: str) -> bool:
    return url_path_endswith(url, '.pdf')


def extract_text_from_html(html_content) -> Tuple[str, str]:
    """Extract (title, text) from HTML, skipping navigation and page chrome.

    The first main-content region with more than 100 characters of text is
    used; otherwise the whole body.

    Args:
        html_content: HTML as bytes or str

    Returns:
        Tuple of (title, whitespace-normalized text)
    """
    soup = BeautifulSoup(html_content, 'html.parser')

    for element in soup.select(CHROME_SELECTORS):
        element.decompose()

    content = ''
    for selector in MAIN_CONTENT_SELECTORS:
        elements = soup.select(selector)
        if not elements:
            continue
        text = ' '.join(el.get_text(' ') for el in elements)
        if len(text.strip()) > MIN_MAIN_CONTENT_CHARS:
            content = text
            break

    # Fallback to body if no main content found
    if not content:
        body = soup.body if soup.body is not None else soup
        content = body.get_text(' ')

    title = ''
    if soup.title is not None:
        title = normalize_whitespace(soup.title.get_text())
    if not title:
        h1 = soup.find('h1')
        if h1 is not None:
            title = normalize_whitespace(h1.get_text(' '))

    return title or UNTITLED, normalize_whitespace(content)


def detect_publication_date(html_content, url: str = "") -> Optional[str]:
    """Publication date of an HTML page (ISO format) when trafilatura finds one."""
    try:
        import trafilatura

        metadata = trafilatura.extract_metadata(html_content, default_url=url or None)
        if metadata is not None and metadata.date:
            return str(metadata.date)[:10]
    except Exception as e:
        logger.debug(f"Trafilatura metadata extraction failed for {url}: {e}")
    return None


def extract_text_pymupdf(pdf_content: bytes) -> str:
    """Extract text using PyMuPDF (fitz)."""
    import fitz

    text_parts = []
    with fitz.open(stream=pdf_content, filetype='pdf') as doc:
        for page in doc:
            text_parts.append(page.get_text())

    return "\n\n".join(text_parts)


def extract_text_pdfplumber(pdf_content: bytes) -> str:
    """Extract text using pdfplumber as fallback."""
    import pdfplumber

    text_parts = []
    with pdfplumber.open(io.BytesIO(pdf_content)) as pdf:
        for page in pdf.pages:
            page_text = page.extract_text()
            if page_text:
                text_parts.append(page_text)

    return "\n\n".join(text_parts)


def extract_text_from_pdf(pdf_content: bytes, url: str = "") -> str:
    """Extract text from PDF bytes, PyMuPDF first and pdfplumber as fallback.

    Raises:
        RuntimeError: If neither extractor can read the document
    """
    try:
        text = extract_text_pymupdf(pdf_content)
        if text.strip():
            return text
    except Exception as e:
        logger.debug(f"PyMuPDF failed for {url}: {e}")

    try:
        return extract_text_pdfplumber(pdf_content)
    except Exception as e:
        raise RuntimeError(f"Failed to extract text from PDF: {e}") from e


def title_from_pdf_url(url: str) -> str:
    """Readable title from a PDF's filename.

    >>> title_from_pdf_url('https://city.example/docs/council-minutes_2024.pdf')
    'Council minutes 2024'
    """
    filename = unquote(urlparse(url).path.rstrip('/').split('/')[-1]) or 'document.pdf'
    if filename.lower().endswith('.pdf'):
        filename = filename[:-4]
    title = normalize_whitespace(filename.replace('-', ' ').replace('_', ' '))
    if not title:
        return UNTITLED
    return title[0].upper() + title[1:]


class ContentExtractor:
    """Turn discovered links into extracted documents."""

    def __init__(self, config: RunConfig, fetcher: Fetcher):
        self.config = config
        self.fetcher = fetcher

    def extract(self, link: DiscoveredLink) -> ExtractedDocument:
        """Download and extract one discovered link.

        Args:
            link: Discovered link

        Returns:
            Extracted document (not yet quality-filtered)

        Raises:
            ExtractionError: On fetch or parse failure
        """
        url = link.url
        try:
            if is_pdf_url(url):
                content_type = 'pdf'
                title, text, published = self._extract_pdf(url)
            else:
                content_type = 'html'
                title, text, published = self._extract_html(url)
        except ExtractionError:
            raise
        except FetchError as e:
            raise ExtractionError(url, e.cause) from e
        except Exception as e:
            raise ExtractionError(url, e) from e

        if len(text) > LARGE_DOCUMENT_CHARS:
            logger.info(f"Large document detected: {title} ({len(text)} chars)")

        return ExtractedDocument(
            municipality=link.municipality,
            source_url=url,
            content_type=content_type,
            title=title,
            date_detected=published or date.today().isoformat(),
            raw_text=text,
        )

    def _extract_html(self, url: str) -> Tuple[str, str, Optional[str]]:
        response = self.fetcher.get(url, timeout=self.config.html_timeout)
        title, text = extract_text_from_html(response.content)
        return title, text, detect_publication_date(response.content, url)

    def _extract_pdf(self, url: str) -> Tuple[str, str, Optional[str]]:
        response = self.fetcher.get(url, timeout=self.config.pdf_timeout, stream=True)
        try:
            # Size is checked from the headers before any of the body is read
            content_length = response.headers.get('Content-Length')
            if content_length and content_length.isdigit():
                size_mb = int(content_length) / (1024 * 1024)
                if size_mb > self.config.max_pdf_mb:
                    raise ExtractionError(url, f"PDF too large ({size_mb:.1f} MB)")

            content = response.content
        finally:
            response.close()

        text = extract_text_from_pdf(content, url)
        return title_from_pdf_url(url), text, None
