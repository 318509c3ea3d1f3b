"""Paginated listing sources that yield item descriptors page by page."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Protocol
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from playwright.async_api import (
    Browser,
    Error as PlaywrightError,
    Page,
    Playwright,
    Route,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from .config import Settings
from .keywords import find_all
from .models import ItemDescriptor

logger = logging.getLogger("bidscout.listing")

BLOCKED_RESOURCE_TYPES = {"image", "stylesheet", "font", "media"}
CARD_SELECTOR = "#bidCard .card"
DOCUMENT_LINK_SELECTOR = 'a[href*="showbidDocument"]'
LOADER_SELECTOR = ".backgroundLoder"
NEXT_SELECTOR = "#light-pagination .next"
LOADER_TIMEOUT_MS = 30_000
LOADER_APPEAR_TIMEOUT_MS = 5_000
SETTLE_MS = 2_000

_OPTIONS_READY_JS = """() => {
    const select = document.querySelector('#ministry');
    return !!select && select.options.length > 1;
}"""

_SELECT_CATEGORY_JS = """(target) => {
    const select = document.querySelector('#ministry');
    if (!select) return false;
    const opt = Array.from(select.options).find(o => o.text.includes(target));
    if (!opt) return false;
    select.value = opt.value;
    select.dispatchEvent(new Event('change'));
    return true;
}"""

_IS_DISABLED_JS = """(el) => el.classList.contains('disabled')
    || (!!el.parentElement && el.parentElement.classList.contains('disabled'))"""


class ListingUnavailableError(RuntimeError):
    """Raised when the listing source cannot be opened at all."""


class ListingSource(Protocol):
    """A paginated source of item descriptors."""

    async def current_items(self) -> List[ItemDescriptor]: ...

    async def has_next(self) -> bool: ...

    async def advance(self) -> bool: ...


def parse_listing_html(html: str, base_url: str) -> List[ItemDescriptor]:
    """Extract every item descriptor on a rendered listing page.

    Each descriptor carries its card's visible text so callers can filter
    by search terms without changing what counts as an empty page.
    """
    soup = BeautifulSoup(html, "html.parser")
    cards = soup.select(CARD_SELECTOR) or [soup]

    items: List[ItemDescriptor] = []
    seen = set()
    for card in cards:
        summary = card.get_text(" ", strip=True)
        for anchor in card.select(DOCUMENT_LINK_SELECTOR):
            href = (anchor.get("href") or "").strip()
            display_id = anchor.get_text(strip=True)
            if not href or not display_id:
                continue
            identity = urljoin(base_url, href)
            if identity in seen:
                continue
            seen.add(identity)
            items.append(ItemDescriptor(identity=identity, display_id=display_id, summary=summary))
    return items


def filter_items(
    items: Iterable[ItemDescriptor],
    search_terms: Optional[Iterable[str]] = None,
) -> List[ItemDescriptor]:
    """Keep items whose card text mentions a search term; ``None`` keeps all."""
    if search_terms is None:
        return list(items)
    terms = list(search_terms)
    return [item for item in items if find_all(item.summary, terms)]


class GemListingSource:
    """Drive the bid portal's advance-search listing in a headless browser."""

    def __init__(self, settings: Settings, headless: bool = True) -> None:
        self.settings = settings
        self.headless = headless
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._page: Optional[Page] = None

    @property
    def page(self) -> Page:
        if self._page is None:
            raise RuntimeError("listing source is not open")
        return self._page

    async def __aenter__(self) -> "GemListingSource":
        try:
            await self.open()
        except Exception as exc:
            await self.close()
            raise ListingUnavailableError(f"Could not open listing {self.settings.listing_url}: {exc}") from exc
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @staticmethod
    async def _block_heavy(route: Route) -> None:
        if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
            await route.abort()
        else:
            await route.continue_()

    async def open(self) -> None:
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self.headless,
            args=["--no-sandbox", "--disable-setuid-sandbox"],
        )
        page = await self._browser.new_page(viewport={"width": 1366, "height": 768})
        page.set_default_navigation_timeout(self.settings.navigation_timeout * 1000)
        await page.route("**/*", self._block_heavy)
        self._page = page

        logger.info("Loading %s", self.settings.listing_url)
        await page.goto(self.settings.listing_url, wait_until="domcontentloaded")
        await page.click("#ministry-tab")
        await page.wait_for_function(_OPTIONS_READY_JS)
        selected = await page.evaluate(_SELECT_CATEGORY_JS, self.settings.category)
        if not selected:
            logger.warning("Category %r not offered by the listing; searching unfiltered", self.settings.category)
        await page.wait_for_timeout(SETTLE_MS)
        await page.click("#tab1 #searchByBid")

    async def close(self) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        self._page = None

    async def current_items(self) -> List[ItemDescriptor]:
        page = self.page
        try:
            await page.wait_for_selector(LOADER_SELECTOR, state="hidden", timeout=LOADER_TIMEOUT_MS)
            await page.wait_for_selector(
                CARD_SELECTOR,
                state="visible",
                timeout=self.settings.page_ready_timeout * 1000,
            )
        except PlaywrightTimeoutError:
            logger.info("No items found or page-ready timeout")
            return []
        except PlaywrightError as exc:
            logger.warning("Listing page could not be read: %s", exc)
            return []
        try:
            html = await page.content()
        except PlaywrightError as exc:
            logger.warning("Listing page content unavailable: %s", exc)
            return []
        return parse_listing_html(html, page.url)

    async def has_next(self) -> bool:
        try:
            button = await self.page.query_selector(NEXT_SELECTOR)
            if button is None:
                return False
            return not await button.evaluate(_IS_DISABLED_JS)
        except PlaywrightError as exc:
            logger.warning("Could not inspect the next-page control: %s", exc)
            return False

    async def advance(self) -> bool:
        page = self.page
        try:
            button = await page.query_selector(NEXT_SELECTOR)
            if button is None:
                return False
            await button.click()
        except PlaywrightError as exc:
            logger.warning("Could not move to the next listing page: %s", exc)
            return False
        try:
            await page.wait_for_selector(LOADER_SELECTOR, state="visible", timeout=LOADER_APPEAR_TIMEOUT_MS)
            await page.wait_for_selector(LOADER_SELECTOR, state="hidden", timeout=LOADER_TIMEOUT_MS)
        except PlaywrightTimeoutError:
            # The loader can come and go before we look for it.
            await page.wait_for_timeout(SETTLE_MS)
        except PlaywrightError as exc:
            logger.warning("Listing did not settle after paging: %s", exc)
            return False
        return True
