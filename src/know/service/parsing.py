"""Document parsing: docling-serve client with local fallbacks.

Plain-text formats are read directly. Rich formats are converted to Markdown
by docling; when docling is unavailable, PDFs are still extracted locally
with PyMuPDF and every other rich format fails with ``ParseError``.
"""

import logging
from pathlib import Path

import fitz  # PyMuPDF
import requests

from know.constants import (
    DEFAULT_DOCLING_URL,
    DEFAULT_MAX_RETRIES,
    DEFAULT_PROBE_TIMEOUT,
    DEFAULT_TIMEOUT,
    PLAIN_TEXT_EXTENSIONS,
)
from know.exceptions import ParseError
from know.service.http import build_session, probe_url

logger = logging.getLogger(__name__)


def extract_text_from_pdf(pdf_path: Path) -> str:
    """Extract all text from a PDF file.

    Args:
        pdf_path: Path to the PDF file

    Returns:
        str: Concatenated text from all pages
    """
    doc = fitz.open(pdf_path)
    text = ""

    for page in doc:
        text += page.get_text()

    doc.close()
    return text


def read_plain_text(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="replace")


class DoclingClient:
    """Thin client for the docling-serve conversion API."""

    def __init__(
        self,
        url: str = DEFAULT_DOCLING_URL,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> None:
        self.url = url.rstrip("/")
        self.timeout = timeout
        self.session = build_session(max_retries=max_retries)

    def is_available(self, timeout: float = DEFAULT_PROBE_TIMEOUT) -> bool:
        return probe_url(f"{self.url}/health", timeout) is None

    def convert(self, path: Path) -> str:
        """Convert a document to Markdown.

        Args:
            path: File to convert; its name is sent as the format hint

        Returns:
            str: The Markdown content of the document

        Raises:
            ParseError: On transport failure, non-2xx status or a malformed response
        """
        try:
            with open(path, "rb") as fh:
                response = self.session.post(
                    f"{self.url}/v1/convert/file",
                    files={"files": (path.name, fh)},
                    timeout=self.timeout,
                )
        except requests.RequestException as e:
            # RequestException subclasses OSError, so it must be caught first
            raise ParseError(str(path), f"docling request failed: {e}") from e
        except OSError as e:
            raise ParseError(str(path), f"cannot read file: {e}") from e

        if not response.ok:
            raise ParseError(
                str(path), f"docling returned HTTP {response.status_code}: {response.text[:200]}"
            )
        try:
            return response.json()["document"]["md_content"] or ""
        except (ValueError, KeyError, TypeError) as e:
            raise ParseError(str(path), f"unexpected docling response: {e}") from e


class DocumentParser:
    """Turns files into text, choosing docling or a local reader per format."""

    def __init__(self, docling: DoclingClient | None = None) -> None:
        """Initialize the parser.

        Args:
            docling: Docling client, or None to parse locally only
        """
        self.docling = docling
        self._docling_available: bool | None = None

    @property
    def docling_available(self) -> bool:
        """Whether docling answers its health check (probed once per parser)."""
        if self._docling_available is None:
            self._docling_available = bool(self.docling and self.docling.is_available())
            if self.docling and not self._docling_available:
                logger.warning(
                    f"⚠️ Docling not available at {self.docling.url}, using local parsing fallbacks"
                )
        return self._docling_available

    def parse(self, path: Path) -> str:
        """Convert one file to text.

        Args:
            path: File to parse

        Returns:
            str: Extracted text (may be empty)

        Raises:
            ParseError: If the file cannot be read or converted
        """
        extension = path.suffix.lower().lstrip(".")
        if extension in PLAIN_TEXT_EXTENSIONS:
            try:
                return read_plain_text(path)
            except OSError as e:
                raise ParseError(str(path), f"cannot read file: {e}") from e

        if self.docling_available:
            logger.debug(f"Converting {path.name} with docling")
            return self.docling.convert(path)

        if extension == "pdf":
            try:
                return extract_text_from_pdf(path)
            except Exception as e:
                raise ParseError(str(path), f"PDF extraction failed: {e}") from e

        raise ParseError(str(path), f"'.{extension}' files require the docling service")
