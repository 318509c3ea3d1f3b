"""Resolve one listing item into a ledger entry, following linked documents."""

from __future__ import annotations

import asyncio
import logging
import tempfile
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Set

from .documents import DocumentAnalyzer
from .fetch import Downloader
from .models import DocumentAnalysis, ItemDescriptor, LedgerEntry, Relevance, STATUS_COMPLETE
from .storage import ContactStore, LedgerStore
from .utils import epoch_millis, slugify

logger = logging.getLogger("bidscout.processor")

MAX_EVIDENCE_CHARS = 2000
LINKED_TAG = "(Linked): "


def merge_evidence(
    main: DocumentAnalysis,
    linked: Iterable[DocumentAnalysis],
    max_chars: int = MAX_EVIDENCE_CHARS,
) -> Relevance:
    """Combine main and linked relevance; any match makes the item relevant."""
    is_match = bool(main.matched_keywords)
    parts: List[str] = []
    main_evidence = main.relevance.evidence
    if main_evidence:
        parts.append(main_evidence)
    for analysis in linked:
        if not analysis.matched_keywords:
            continue
        is_match = True
        parts.append(LINKED_TAG + analysis.relevance.evidence)
    evidence = " | ".join(parts)
    if len(evidence) > max_chars:
        evidence = evidence[:max_chars]
    return Relevance(is_match=is_match, evidence=evidence)


class ItemProcessor:
    """Download, analyze and record one item at most once."""

    def __init__(
        self,
        analyzer: DocumentAnalyzer,
        downloader: Downloader,
        contacts: ContactStore,
        link_depth: int = 1,
        scratch_root: Optional[Path] = None,
        max_evidence_chars: int = MAX_EVIDENCE_CHARS,
        clock: Callable[[], int] = epoch_millis,
    ) -> None:
        self.analyzer = analyzer
        self.downloader = downloader
        self.contacts = contacts
        self.link_depth = max(0, link_depth)
        self.scratch_root = scratch_root
        self.max_evidence_chars = max_evidence_chars
        self.clock = clock

    async def _download(self, url: str, destination: Path) -> bool:
        return await asyncio.to_thread(self.downloader.download, url, destination)

    async def _analyze(self, path: Path) -> DocumentAnalysis:
        try:
            return await asyncio.to_thread(self.analyzer.analyze_path, path)
        except OSError as exc:
            logger.warning("Could not read %s: %s", path, exc)
            return DocumentAnalysis()

    async def _follow_links(
        self,
        links: Set[str],
        scratch: Path,
        level: int,
        visited: Set[str],
    ) -> List[DocumentAnalysis]:
        results: List[DocumentAnalysis] = []
        if level > self.link_depth:
            return results
        for index, url in enumerate(sorted(links - visited)):
            visited.add(url)
            linked_path = scratch / f"linked_{level}_{index}.pdf"
            if not await self._download(url, linked_path):
                logger.info("Skipping linked document %s", url)
                continue
            try:
                analysis = await self._analyze(linked_path)
            finally:
                linked_path.unlink(missing_ok=True)
            results.append(analysis)
            results.extend(
                await self._follow_links(analysis.links, scratch, level + 1, visited)
            )
        return results

    async def process(
        self,
        descriptor: ItemDescriptor,
        ledger: LedgerStore,
    ) -> Optional[LedgerEntry]:
        """Return a completed ledger entry, or None when skipped or failed."""
        if ledger.is_complete(descriptor.identity):
            logger.info("[SKIP] %s", descriptor.display_id)
            return None

        if self.scratch_root is not None:
            self.scratch_root.mkdir(parents=True, exist_ok=True)

        logger.info("[DOWNLOADING] %s", descriptor.display_id)
        with tempfile.TemporaryDirectory(
            prefix="bidscout-", dir=str(self.scratch_root) if self.scratch_root else None
        ) as tmp_dir:
            scratch = Path(tmp_dir)
            main_path = scratch / f"bid_{slugify(descriptor.display_id)}.pdf"
            if not await self._download(descriptor.identity, main_path):
                logger.warning("Download failed for %s; leaving it for a later run", descriptor.display_id)
                return None
            main = await self._analyze(main_path)
            linked = await self._follow_links(
                set(main.links), scratch, 1, {descriptor.identity}
            )

        addresses: Set[str] = set(main.addresses)
        matched: Set[str] = set(main.matched_keywords)
        for analysis in linked:
            addresses |= analysis.addresses
            matched |= analysis.matched_keywords

        if addresses:
            created = self.contacts.upsert(addresses)
            if created:
                logger.info("%s: %d new contact(s)", descriptor.display_id, created)

        relevance = merge_evidence(main, linked, self.max_evidence_chars)
        logger.info(
            "[DONE] %s (links=%d, contacts=%d, relevant=%s)",
            descriptor.display_id,
            len(main.links),
            len(addresses),
            relevance.is_match,
        )
        return LedgerEntry(
            timestamp=self.clock(),
            display_id=descriptor.display_id,
            status=STATUS_COMPLETE,
            matched_keywords=frozenset(matched),
            extracted_links=frozenset(main.links),
            extracted_contacts=frozenset(addresses),
            relevance=relevance,
        )
