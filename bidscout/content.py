"""Plain-text extraction: contact addresses, document links and evidence."""

from __future__ import annotations

import re
from typing import Iterable, List, Set, Tuple
from urllib.parse import urlparse

from .keywords import find_all, matches

ADDRESS_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
URL_PATTERN = re.compile(r"https?://[^\s<>\"'()\[\]{}]+", re.IGNORECASE)
SENTENCE_BREAK = re.compile(r"(?<=[.!?\n])\s+")
_EDGE_JUNK = re.compile(r"^[^a-z0-9]+|[^a-z0-9]+$")
_URL_TRAILING = ".,;:!?"

JUNK_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "svg", "bmp", "webp", "pdf"}
MIN_ADDRESS_CHARS = 5
MIN_EVIDENCE_CHARS = 15
MAX_EVIDENCE_CHARS = 500
MAX_EVIDENCE_SENTENCES = 3
EVIDENCE_SEPARATOR = " ... "


def _collapse_ws(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def normalize_address(raw: str) -> str:
    return _EDGE_JUNK.sub("", raw.lower())


def is_plausible_address(address: str) -> bool:
    """Reject parser noise such as prices or image names that look like emails."""
    if "@" not in address or len(address) < MIN_ADDRESS_CHARS:
        return False
    tld = address.rsplit(".", 1)[-1]
    if any(ch.isdigit() for ch in tld):
        return False
    if tld in JUNK_EXTENSIONS:
        return False
    return True


def extract_addresses(text: str) -> Set[str]:
    """Return the normalized, de-duplicated contact addresses found in ``text``."""
    found: Set[str] = set()
    if not text:
        return found
    for match in ADDRESS_PATTERN.findall(text):
        candidate = normalize_address(match)
        if is_plausible_address(candidate):
            found.add(candidate)
    return found


def extract_text_urls(text: str) -> Set[str]:
    urls: Set[str] = set()
    if not text:
        return urls
    for match in URL_PATTERN.findall(text):
        url = match.rstrip(_URL_TRAILING)
        if url:
            urls.add(url)
    return urls


def has_extension(url: str, extension: str) -> bool:
    """True when the URL path, ignoring query and fragment, ends in ``extension``."""
    try:
        path = urlparse(url.strip()).path
    except ValueError:
        return False
    return path.lower().endswith(extension.lower())


def filter_document_links(links: Iterable[str], extension: str = ".pdf") -> Set[str]:
    return {link.strip() for link in links if link and has_extension(link, extension)}


def split_sentences(text: str) -> List[str]:
    if not text:
        return []
    return SENTENCE_BREAK.split(text)


def collect_evidence(
    text: str,
    terms: Iterable[str],
    limit: int = MAX_EVIDENCE_SENTENCES,
) -> List[str]:
    """Pick up to ``limit`` sentences that mention one of ``terms``.

    Sentences are cleaned by collapsing whitespace; only those whose cleaned
    length is strictly between the evidence bounds are kept.
    """
    terms = [t for t in terms if t]
    evidence: List[str] = []
    if not terms:
        return evidence
    for sentence in split_sentences(text):
        if len(evidence) >= limit:
            break
        if not any(matches(sentence, term) for term in terms):
            continue
        clean = _collapse_ws(sentence)
        if MIN_EVIDENCE_CHARS < len(clean) < MAX_EVIDENCE_CHARS:
            evidence.append(clean)
    return evidence


def classify(text: str, relevance_terms: Iterable[str]) -> Tuple[Set[str], List[str]]:
    """Return the matched terms and supporting evidence for ``text``."""
    matched = find_all(text, relevance_terms)
    if not matched:
        return set(), []
    return matched, collect_evidence(text, sorted(matched))
