from __future__ import annotations

import asyncio

from bidscout.documents import ParsedDocument
from bidscout.models import DocumentAnalysis, ItemDescriptor, LedgerEntry
from bidscout.processor import ItemProcessor, merge_evidence

from conftest import FakeDownloader

MAIN_URL = "https://bidplus.gem.gov.in/showbidDocument/6001"
LINKED_URL = "https://bidplus.gem.gov.in/resources/ATC_6001.pdf"
NESTED_URL = "https://bidplus.gem.gov.in/resources/annex_6001.pdf"

MAIN_BYTES = b"%PDF-1.4 main"
LINKED_BYTES = b"%PDF-1.4 linked"
NESTED_BYTES = b"%PDF-1.4 nested"

DESCRIPTOR = ItemDescriptor(identity=MAIN_URL, display_id="GEM/2024/B/6001")


def _documents():
    return {
        MAIN_BYTES: ParsedDocument(
            text=f"NDT inspection of risers is required. Contact buyer@ongc.co.in. See {LINKED_URL}",
        ),
        LINKED_BYTES: ParsedDocument(
            text="Drone survey checklist attached here. Queries: ATC.Cell@ongc.co.in",
            structural_links={NESTED_URL},
        ),
        NESTED_BYTES: ParsedDocument(text="Nested inspection team: deep@ongc.co.in"),
    }


def _processor(analyzer_factory, contacts, downloader, **kwargs) -> ItemProcessor:
    analyzer = analyzer_factory(_documents(), terms=("inspection", "ndt", "drone"))
    return ItemProcessor(analyzer, downloader, contacts, clock=lambda: 1717000000000, **kwargs)


def _downloader() -> FakeDownloader:
    return FakeDownloader({MAIN_URL: MAIN_BYTES, LINKED_URL: LINKED_BYTES, NESTED_URL: NESTED_BYTES})


def test_process_aggregates_main_and_linked(analyzer_factory, memory_ledger, memory_contacts) -> None:
    downloader = _downloader()
    processor = _processor(analyzer_factory, memory_contacts, downloader)

    entry = asyncio.run(processor.process(DESCRIPTOR, memory_ledger))

    assert entry is not None
    assert entry.is_complete
    assert entry.timestamp == 1717000000000
    assert entry.display_id == "GEM/2024/B/6001"
    assert entry.extracted_links == frozenset({LINKED_URL})
    assert entry.extracted_contacts == frozenset({"buyer@ongc.co.in", "atc.cell@ongc.co.in"})
    assert entry.matched_keywords == frozenset({"ndt", "inspection", "drone"})
    assert entry.relevance.is_match
    assert entry.relevance.evidence == (
        "NDT inspection of risers is required. | (Linked): Drone survey checklist attached here."
    )
    assert memory_contacts.get("buyer@ongc.co.in") is not None
    assert memory_contacts.get("atc.cell@ongc.co.in") is not None


def test_link_depth_is_bounded(analyzer_factory, memory_ledger, memory_contacts) -> None:
    downloader = _downloader()
    processor = _processor(analyzer_factory, memory_contacts, downloader, link_depth=1)

    entry = asyncio.run(processor.process(DESCRIPTOR, memory_ledger))

    assert downloader.calls == [MAIN_URL, LINKED_URL]
    assert "deep@ongc.co.in" not in entry.extracted_contacts


def test_deeper_link_depth_follows_nested(analyzer_factory, memory_ledger, memory_contacts) -> None:
    downloader = _downloader()
    processor = _processor(analyzer_factory, memory_contacts, downloader, link_depth=2)

    entry = asyncio.run(processor.process(DESCRIPTOR, memory_ledger))

    assert downloader.calls == [MAIN_URL, LINKED_URL, NESTED_URL]
    assert "deep@ongc.co.in" in entry.extracted_contacts


def test_completed_item_is_skipped_without_download(analyzer_factory, memory_ledger, memory_contacts) -> None:
    memory_ledger.record(MAIN_URL, LedgerEntry(timestamp=1, display_id=DESCRIPTOR.display_id))
    downloader = _downloader()
    processor = _processor(analyzer_factory, memory_contacts, downloader)

    assert asyncio.run(processor.process(DESCRIPTOR, memory_ledger)) is None
    assert downloader.calls == []
    assert len(memory_contacts) == 0


def test_failed_main_download_returns_none(analyzer_factory, memory_ledger, memory_contacts) -> None:
    downloader = FakeDownloader({})
    processor = _processor(analyzer_factory, memory_contacts, downloader)

    assert asyncio.run(processor.process(DESCRIPTOR, memory_ledger)) is None
    assert downloader.calls == [MAIN_URL]
    assert len(memory_contacts) == 0


def test_failed_linked_download_is_skipped(analyzer_factory, memory_ledger, memory_contacts) -> None:
    downloader = FakeDownloader({MAIN_URL: MAIN_BYTES})
    processor = _processor(analyzer_factory, memory_contacts, downloader)

    entry = asyncio.run(processor.process(DESCRIPTOR, memory_ledger))

    assert entry is not None
    assert entry.extracted_contacts == frozenset({"buyer@ongc.co.in"})
    assert entry.relevance.evidence == "NDT inspection of risers is required."


def test_scratch_files_are_removed(analyzer_factory, memory_ledger, memory_contacts, tmp_path) -> None:
    scratch_root = tmp_path / "scratch"
    downloader = _downloader()
    processor = _processor(analyzer_factory, memory_contacts, downloader, scratch_root=scratch_root)

    asyncio.run(processor.process(DESCRIPTOR, memory_ledger))

    assert downloader.destinations
    assert not any(path.exists() for path in downloader.destinations)
    assert list(scratch_root.iterdir()) == []


def test_merge_evidence_truncates_and_skips_unmatched_links() -> None:
    main = DocumentAnalysis(matched_keywords=set(), evidence=[])
    unmatched = DocumentAnalysis(matched_keywords=set(), evidence=["ignored sentence here."])
    matched = DocumentAnalysis(matched_keywords={"ndt"}, evidence=["x" * 50])

    relevance = merge_evidence(main, [unmatched, matched], max_chars=20)

    assert relevance.is_match
    assert relevance.evidence == ("(Linked): " + "x" * 50)[:20]


def test_merge_evidence_no_match() -> None:
    relevance = merge_evidence(DocumentAnalysis(), [])
    assert not relevance.is_match
    assert relevance.evidence == ""
