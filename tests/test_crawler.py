from __future__ import annotations

import asyncio
from typing import Dict, List, Optional

from bidscout.crawler import (
    STOP_EMPTY_PAGE,
    STOP_LAST_PAGE,
    STOP_PAGE_LIMIT,
    STOP_STUCK_PAGINATION,
    page_signature,
    run_crawler,
)
from bidscout.models import ItemDescriptor, LedgerEntry, Relevance


def _item(n: int, summary: str = "") -> ItemDescriptor:
    return ItemDescriptor(
        identity=f"https://gem.gov.in/showbidDocument/{n}",
        display_id=f"GEM/2024/B/{n}",
        summary=summary,
    )


class FakeSource:
    """Serves pre-built pages; ``stuck`` keeps returning the last page."""

    def __init__(self, pages: List[List[ItemDescriptor]], stuck: bool = False) -> None:
        self.pages = pages
        self.index = 0
        self.stuck = stuck
        self.advances = 0

    async def current_items(self) -> List[ItemDescriptor]:
        if self.index >= len(self.pages):
            return []
        return list(self.pages[self.index])

    async def has_next(self) -> bool:
        return self.stuck or self.index + 1 < len(self.pages)

    async def advance(self) -> bool:
        self.advances += 1
        if not self.stuck:
            self.index += 1
        return True


class FakeProcessor:
    """Completes items unless told to skip, fail or raise for them."""

    def __init__(
        self,
        relevant: Optional[set] = None,
        fail: Optional[set] = None,
        explode: Optional[set] = None,
    ) -> None:
        self.relevant = relevant or set()
        self.fail = fail or set()
        self.explode = explode or set()
        self.calls: Dict[str, int] = {}

    async def process(self, descriptor: ItemDescriptor, ledger) -> Optional[LedgerEntry]:
        self.calls[descriptor.identity] = self.calls.get(descriptor.identity, 0) + 1
        if ledger.is_complete(descriptor.identity):
            return None
        if descriptor.identity in self.explode:
            raise RuntimeError("worker crashed")
        if descriptor.identity in self.fail:
            return None
        return LedgerEntry(
            timestamp=1,
            display_id=descriptor.display_id,
            relevance=Relevance(is_match=descriptor.identity in self.relevant),
        )


def test_page_signature_ignores_order() -> None:
    assert page_signature([_item(2), _item(1)]) == page_signature([_item(1), _item(2)])


def test_stops_on_empty_first_page(memory_ledger) -> None:
    report = asyncio.run(run_crawler(FakeSource([]), FakeProcessor(), memory_ledger))
    assert report.stop_reason == STOP_EMPTY_PAGE
    assert report.pages == 0
    assert report.seen == 0


def test_walks_all_pages_until_last(memory_ledger) -> None:
    pages = [[_item(1), _item(2), _item(3)], [_item(4), _item(5)]]
    relevant = {_item(2).identity, _item(5).identity}
    report = asyncio.run(
        run_crawler(FakeSource(pages), FakeProcessor(relevant=relevant), memory_ledger, batch_size=2)
    )
    assert report.stop_reason == STOP_LAST_PAGE
    assert report.pages == 2
    assert report.seen == 5
    assert report.processed == 5
    assert report.relevant == 2
    assert len(memory_ledger) == 5
    assert memory_ledger.backend.persists >= 2


def test_stuck_pagination_stops_after_second_read(memory_ledger) -> None:
    source = FakeSource([[_item(1), _item(2)]], stuck=True)
    processor = FakeProcessor()
    report = asyncio.run(run_crawler(source, processor, memory_ledger))

    assert report.stop_reason == STOP_STUCK_PAGINATION
    assert report.pages == 1
    assert source.advances == 1
    # The repeated page is never handed to the processor.
    assert all(count == 1 for count in processor.calls.values())


def test_page_limit(memory_ledger) -> None:
    pages = [[_item(1)], [_item(2)], [_item(3)]]
    report = asyncio.run(run_crawler(FakeSource(pages), FakeProcessor(), memory_ledger, max_pages=2))
    assert report.stop_reason == STOP_PAGE_LIMIT
    assert report.pages == 2
    assert not memory_ledger.is_complete(_item(3).identity)


def test_counts_skips_failures_and_errors(memory_ledger) -> None:
    memory_ledger.record(_item(1).identity, LedgerEntry(timestamp=1, display_id="GEM/2024/B/1"))
    processor = FakeProcessor(fail={_item(2).identity}, explode={_item(3).identity})
    pages = [[_item(1), _item(2), _item(3), _item(4)]]

    report = asyncio.run(run_crawler(FakeSource(pages), processor, memory_ledger, batch_size=5))

    assert report.skipped == 1
    assert report.failed == 2
    assert report.processed == 1
    assert sorted(report.failed_items) == ["GEM/2024/B/2", "GEM/2024/B/3"]
    assert not memory_ledger.is_complete(_item(2).identity)
    assert not memory_ledger.is_complete(_item(3).identity)
    assert memory_ledger.is_complete(_item(4).identity)


def test_rerun_over_complete_ledger_processes_nothing(memory_ledger) -> None:
    pages = [[_item(1), _item(2)]]
    asyncio.run(run_crawler(FakeSource(pages), FakeProcessor(), memory_ledger))
    persists = memory_ledger.backend.persists

    report = asyncio.run(run_crawler(FakeSource(pages), FakeProcessor(), memory_ledger))

    assert report.processed == 0
    assert report.skipped == 2
    assert memory_ledger.backend.persists == persists


def test_search_terms_do_not_end_the_crawl_early(memory_ledger) -> None:
    pages = [
        [_item(1, "Pump supply for booster station")],
        [_item(2, "Pipeline inspection by drone"), _item(3, "Office chairs")],
    ]
    processor = FakeProcessor()
    report = asyncio.run(
        run_crawler(FakeSource(pages), processor, memory_ledger, search_terms=["inspection"])
    )

    assert report.stop_reason == STOP_LAST_PAGE
    assert report.pages == 2
    assert report.seen == 3
    assert report.filtered == 2
    assert report.processed == 1
    assert list(processor.calls) == [_item(2).identity]


def test_stuck_guard_uses_unfiltered_page(memory_ledger) -> None:
    # Two pages whose matching items coincide but whose full contents differ.
    pages = [
        [_item(1, "inspection"), _item(2, "furniture")],
        [_item(1, "inspection"), _item(3, "stationery")],
    ]
    report = asyncio.run(
        run_crawler(FakeSource(pages), FakeProcessor(), memory_ledger, search_terms=["inspection"])
    )
    assert report.stop_reason == STOP_LAST_PAGE
    assert report.pages == 2


class BrokenPagingSource(FakeSource):
    """Fails while turning the page, as a detached or timed-out control would."""

    async def advance(self) -> bool:
        raise RuntimeError("next button detached")


class BrokenReadSource(FakeSource):
    async def current_items(self) -> List[ItemDescriptor]:
        raise RuntimeError("page crashed")


def test_pagination_error_ends_crawl_gracefully(memory_ledger) -> None:
    pages = [[_item(1)], [_item(2)]]
    report = asyncio.run(run_crawler(BrokenPagingSource(pages), FakeProcessor(), memory_ledger))
    assert report.stop_reason == STOP_LAST_PAGE
    assert report.pages == 1
    assert memory_ledger.is_complete(_item(1).identity)


def test_page_read_error_counts_as_empty_page(memory_ledger) -> None:
    report = asyncio.run(run_crawler(BrokenReadSource([[_item(1)]]), FakeProcessor(), memory_ledger))
    assert report.stop_reason == STOP_EMPTY_PAGE
    assert report.pages == 0
