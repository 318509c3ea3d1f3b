"""High-level orchestration: paginate the listing and process items in batches."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from .listing import ListingSource, filter_items
from .models import ItemDescriptor
from .pool import BatchPool
from .processor import ItemProcessor
from .storage import LedgerStore

logger = logging.getLogger("bidscout")

STOP_EMPTY_PAGE = "empty_page"
STOP_STUCK_PAGINATION = "stuck_pagination"
STOP_LAST_PAGE = "last_page"
STOP_PAGE_LIMIT = "page_limit"


@dataclass
class CrawlReport:
    """Counters describing one crawl run."""

    pages: int = 0
    seen: int = 0
    processed: int = 0
    skipped: int = 0
    filtered: int = 0
    failed: int = 0
    relevant: int = 0
    stop_reason: Optional[str] = None
    total_seconds: float = 0.0
    failed_items: List[str] = field(default_factory=list)


def page_signature(items: List[ItemDescriptor]) -> str:
    """Order-independent fingerprint of a page's display ids."""
    return ",".join(sorted(item.display_id for item in items))


async def process_page(
    items: List[ItemDescriptor],
    processor: ItemProcessor,
    ledger: LedgerStore,
    pool: BatchPool,
    report: CrawlReport,
) -> None:
    """Run a page's items through the pool, recording results after each batch."""

    async def _work(item: ItemDescriptor):
        return await processor.process(item, ledger)

    async for outcomes in pool.map(items, _work):
        saved = 0
        for outcome in outcomes:
            item = outcome.item
            if outcome.error is not None:
                report.failed += 1
                report.failed_items.append(item.display_id)
            elif outcome.result is not None:
                ledger.record(item.identity, outcome.result)
                saved += 1
                report.processed += 1
                if outcome.result.relevance.is_match:
                    report.relevant += 1
            elif ledger.is_complete(item.identity):
                report.skipped += 1
            else:
                report.failed += 1
                report.failed_items.append(item.display_id)
        if saved:
            ledger.persist()


async def _read_page(source: ListingSource, page_number: int) -> List[ItemDescriptor]:
    try:
        return await source.current_items()
    except Exception:  # pylint: disable=broad-except
        logger.exception("Could not read listing page %d", page_number)
        return []


async def _turn_page(source: ListingSource, page_number: int) -> bool:
    try:
        return await source.has_next() and await source.advance()
    except Exception:  # pylint: disable=broad-except
        logger.exception("Pagination failed after page %d", page_number)
        return False


async def run_crawler(
    source: ListingSource,
    processor: ItemProcessor,
    ledger: LedgerStore,
    batch_size: int = 5,
    max_pages: Optional[int] = None,
    search_terms: Optional[Iterable[str]] = None,
) -> CrawlReport:
    """Walk the listing until it runs dry, repeats itself, or ends.

    Stop conditions look at every item on a page; ``search_terms`` only
    narrows which of those items are processed.
    """
    report = CrawlReport()
    pool = BatchPool(batch_size)
    terms = list(search_terms) if search_terms is not None else None
    previous_signature: Optional[str] = None
    start = time.perf_counter()

    while True:
        page_number = report.pages + 1
        logger.info("=== Processing page %d ===", page_number)
        items = await _read_page(source, page_number)
        if not items:
            logger.info("No items on page %d. Stopping.", page_number)
            report.stop_reason = STOP_EMPTY_PAGE
            break

        signature = page_signature(items)
        if signature == previous_signature:
            logger.warning("Page %d repeats the previous page (pagination stuck). Stopping.", page_number)
            report.stop_reason = STOP_STUCK_PAGINATION
            break
        previous_signature = signature

        report.pages += 1
        report.seen += len(items)
        wanted = filter_items(items, terms)
        report.filtered += len(items) - len(wanted)
        if len(wanted) < len(items):
            logger.info("Page %d: %d of %d item(s) match the search terms", page_number, len(wanted), len(items))
        await process_page(wanted, processor, ledger, pool, report)

        if max_pages is not None and report.pages >= max_pages:
            logger.info("Reached the page limit (%d).", max_pages)
            report.stop_reason = STOP_PAGE_LIMIT
            break
        if not await _turn_page(source, page_number):
            logger.info("End of pagination reached.")
            report.stop_reason = STOP_LAST_PAGE
            break

    report.total_seconds = time.perf_counter() - start
    logger.info(
        "Crawl finished in %.2fs: %d page(s), %d processed, %d skipped, %d filtered, %d failed (%s)",
        report.total_seconds,
        report.pages,
        report.processed,
        report.skipped,
        report.filtered,
        report.failed,
        report.stop_reason,
    )
    return report
