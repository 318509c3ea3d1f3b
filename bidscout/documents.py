"""PDF parsing and per-document signal extraction."""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Set

import pypdfium2 as pdfium
from filetype import guess
from pypdf import PdfReader

from .content import classify, extract_addresses, extract_text_urls, filter_document_links
from .models import DocumentAnalysis

logger = logging.getLogger("bidscout.documents")

DOCUMENT_EXTENSION = ".pdf"
PDF_MARKER = b"%PDF-"
PDF_HEADER_WINDOW = 1024


@dataclass
class ParsedDocument:
    """Raw parser output: visible text plus links from the object model."""

    text: str = ""
    structural_links: Set[str] = field(default_factory=set)


Parser = Callable[[bytes], ParsedDocument]


def detect_document_kind(data: bytes) -> Optional[str]:
    """Detect the file type by signature; returns a lowercase extension.

    PDF readers accept junk before the header, so a ``%PDF-`` marker anywhere
    in the first KiB counts as a PDF.
    """
    if PDF_MARKER in data[:PDF_HEADER_WINDOW]:
        return "pdf"
    kind = guess(data)
    if kind is None:
        return None
    return kind.extension.lower()


def _extract_text(data: bytes) -> str:
    document = pdfium.PdfDocument(data)
    parts: List[str] = []
    try:
        for page in document:
            textpage = page.get_textpage()
            try:
                parts.append(textpage.get_text_range() or "")
            finally:
                textpage.close()
                page.close()
    finally:
        document.close()
    return "\n".join(parts)


def _extract_link_annotations(data: bytes) -> Set[str]:
    """Collect URI targets of link annotations, including ones not rendered as text."""
    links: Set[str] = set()
    reader = PdfReader(io.BytesIO(data))
    for page in reader.pages:
        annots = page.get("/Annots")
        if annots is None:
            continue
        for ref in annots.get_object():
            annot = ref.get_object()
            if annot.get("/Subtype") != "/Link":
                continue
            action = annot.get("/A")
            if action is None:
                continue
            uri = action.get_object().get("/URI")
            if uri:
                links.add(str(uri))
    return links


def parse_pdf(data: bytes) -> ParsedDocument:
    """Parse PDF bytes; any failure degrades to an empty result."""
    parsed = ParsedDocument()
    try:
        parsed.text = _extract_text(data)
    except Exception as exc:  # noqa: BLE001
        logger.warning("PDF text extraction failed: %s", exc)
    try:
        parsed.structural_links = _extract_link_annotations(data)
    except Exception as exc:  # noqa: BLE001
        logger.warning("PDF link annotation extraction failed: %s", exc)
    return parsed


class DocumentAnalyzer:
    """Turn raw document bytes into text, links, addresses and relevance."""

    def __init__(
        self,
        relevance_terms: Iterable[str],
        parser: Parser = parse_pdf,
        link_extension: str = DOCUMENT_EXTENSION,
        expected_kind: Optional[str] = "pdf",
    ) -> None:
        self.relevance_terms = [t for t in relevance_terms if t and t.strip()]
        self.parser = parser
        self.link_extension = link_extension
        self.expected_kind = expected_kind

    def parse(self, data: bytes) -> ParsedDocument:
        if self.expected_kind:
            kind = detect_document_kind(data)
            if kind != self.expected_kind:
                logger.warning(
                    "Unsupported document content (detected %s, expected %s)",
                    kind or "unknown",
                    self.expected_kind,
                )
                return ParsedDocument()
        try:
            return self.parser(data)
        except Exception:  # pylint: disable=broad-except
            logger.exception("Document parser raised; treating as empty")
            return ParsedDocument()

    def analyze(self, data: bytes) -> DocumentAnalysis:
        parsed = self.parse(data)
        text = parsed.text or ""
        links = filter_document_links(
            extract_text_urls(text) | set(parsed.structural_links),
            self.link_extension,
        )
        matched, evidence = classify(text, self.relevance_terms)
        return DocumentAnalysis(
            text=text,
            links=links,
            addresses=extract_addresses(text),
            matched_keywords=matched,
            evidence=evidence,
        )

    def analyze_path(self, path: Path) -> DocumentAnalysis:
        return self.analyze(Path(path).read_bytes())
