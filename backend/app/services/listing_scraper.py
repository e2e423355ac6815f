"""
Listing Scraper Service - Browser automation for CRE listing sites.

Uses Playwright to pull retail listing cards from CREXi and LoopNet. Card
text is returned raw (ScrapedListingRecord); parsing happens in the
normalizer. Markup changes simply yield fewer or no records.
"""

import asyncio
import logging
from abc import abstractmethod
from typing import Optional
from urllib.parse import quote

from playwright.async_api import async_playwright, Browser, Page, Playwright

from app.core.config import Settings
from app.services.collectors import Collector, CollectionContext
from app.services.normalizer import ScrapedListingRecord

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class BaseScraper(Collector):
    """
    Base class for listing scrapers.

    Each collect() call launches its own browser, so one scraper instance
    can serve overlapping jobs.
    """

    BASE_URL = ""
    LOGIN_URL = ""
    SOURCE_LABEL = ""
    CARD_SELECTOR = ""

    requires_location = True

    def __init__(
        self,
        headless: bool = True,
        page_timeout_ms: int = 30000,
        max_listings: int = 20,
        username: Optional[str] = None,
        password: Optional[str] = None,
    ):
        self.headless = headless
        self.page_timeout_ms = page_timeout_ms
        self.max_listings = max_listings
        self.username = username
        self.password = password

    @abstractmethod
    def search_url(self, location: str) -> str:
        """Search results URL for a location."""

    @abstractmethod
    async def login(self, page: Page) -> bool:
        """Login to the platform. Returns True if successful."""

    async def launch_browser(self, playwright: Playwright) -> Browser:
        """Launch a browser for one collect() call."""
        return await playwright.chromium.launch(headless=self.headless)

    async def new_page(self, browser: Browser) -> Page:
        context = await browser.new_context(
            viewport={"width": 1920, "height": 1080},
            user_agent=USER_AGENT,
        )
        page = await context.new_page()
        page.set_default_timeout(self.page_timeout_ms)
        return page

    async def collect(self, context: CollectionContext) -> list[ScrapedListingRecord]:
        async with async_playwright() as playwright:
            browser = await self.launch_browser(playwright)
            try:
                page = await self.new_page(browser)
                if self.username and self.password:
                    await self.login(page)
                return await self.search(page, context.location)
            finally:
                await browser.close()

    async def search(self, page: Page, location: str) -> list[ScrapedListingRecord]:
        """Search the platform for retail listings around a location."""
        url = self.search_url(location)
        logger.info(f"Searching {self.SOURCE_LABEL}: {url}")
        await page.goto(url, wait_until="networkidle", timeout=self.page_timeout_ms)

        try:
            await page.wait_for_selector(self.CARD_SELECTOR, timeout=15000)
        except Exception:
            logger.info(f"No {self.SOURCE_LABEL} listings found or selector changed")
            return []

        cards = await page.locator(self.CARD_SELECTOR).all()
        logger.info(f"Found {len(cards)} listings on {self.SOURCE_LABEL}")

        records = []
        for card in cards[:self.max_listings]:
            try:
                record = await self.parse_card(card, location)
                if record:
                    records.append(record)
            except Exception as e:
                logger.warning(f"Error parsing {self.SOURCE_LABEL} listing: {e}")
                continue

        logger.info(f"{self.SOURCE_LABEL} scrape complete: {len(records)} listings")
        return records

    @abstractmethod
    async def parse_card(self, card, location: str) -> Optional[ScrapedListingRecord]:
        """Extract one listing card."""

    async def _text(self, card, selector: str) -> Optional[str]:
        el = card.locator(selector)
        if await el.count() == 0:
            return None
        text = await el.first.text_content()
        return text.strip() if text else None

    async def _attr(self, card, selector: str, *names: str) -> Optional[str]:
        el = card.locator(selector)
        if await el.count() == 0:
            return None
        for name in names:
            value = await el.first.get_attribute(name)
            if value and not value.startswith("data:"):
                return value
        return None

    def _absolute(self, href: Optional[str]) -> Optional[str]:
        if not href:
            return None
        return href if href.startswith("http") else f"{self.BASE_URL}{href}"


class CrexiScraper(BaseScraper):
    """Scraper for CREXi retail listings."""

    name = "crexi"
    BASE_URL = "https://www.crexi.com"
    LOGIN_URL = "https://www.crexi.com/login"
    SOURCE_LABEL = "CREXi"
    CARD_SELECTOR = '.property-card, [class*="PropertyCard"], [class*="ListingCard"]'

    def search_url(self, location: str) -> str:
        return f"{self.BASE_URL}/properties?propertyTypes=retail&q={quote(location)}"

    async def login(self, page: Page) -> bool:
        """Login to CREXi with credentials."""
        try:
            await page.goto(self.LOGIN_URL)
            await page.wait_for_load_state("networkidle")

            await page.fill('input[name="email"], input[type="email"]', self.username)
            await page.fill('input[name="password"], input[type="password"]', self.password)

            await page.click('button[type="submit"]')
            await page.wait_for_load_state("networkidle")
            await asyncio.sleep(2)
            logger.info("Submitted CREXi login")
            return True

        except Exception as e:
            logger.error(f"Error logging into CREXi: {e}")
            return False

    async def parse_card(self, card, location: str) -> Optional[ScrapedListingRecord]:
        name = await self._text(card, '[class*="name"], [class*="title"], h3, h4')
        address = await self._text(card, '[class*="address"], [class*="location"]')
        if not name and not address:
            return None

        return ScrapedListingRecord(
            source=self.SOURCE_LABEL,
            name=name or "Retail Property",
            address=address,
            price_text=await self._text(card, '[class*="price"]'),
            sqft_text=await self._text(card, '[class*="size"], [class*="sqft"], [class*="sf"]'),
            cap_rate_text=await self._text(card, '[class*="cap"], [class*="rate"]'),
            vacancy_text=await self._text(card, '[class*="occupancy"], [class*="vacan"]'),
            type_text=await self._text(card, '[class*="type"]'),
            listing_url=self._absolute(await self._attr(card, 'a[href*="/properties/"]', "href")),
            image_url=await self._attr(card, "img", "src", "data-src"),
            search_location=location,
        )


class LoopNetScraper(BaseScraper):
    """Scraper for LoopNet retail listings."""

    name = "loopnet"
    BASE_URL = "https://www.loopnet.com"
    LOGIN_URL = "https://www.loopnet.com/profile/Account/Login"
    SOURCE_LABEL = "LoopNet"
    CARD_SELECTOR = '.placard, .property-card, [data-testid="property-card"]'

    def search_url(self, location: str) -> str:
        # LoopNet uses city-state slug format
        slug = "-".join(part.strip().lower().replace(" ", "-") for part in location.split(",") if part.strip())
        return f"{self.BASE_URL}/search/retail-properties/{quote(slug)}/for-sale/"

    async def login(self, page: Page) -> bool:
        """Login to LoopNet with credentials."""
        try:
            await page.goto(self.LOGIN_URL)
            await page.wait_for_load_state("networkidle")

            await page.fill('#Email, input[name="Email"]', self.username)
            await page.fill('#Password, input[name="Password"]', self.password)

            await page.click('button[type="submit"], input[type="submit"]')
            await page.wait_for_load_state("networkidle")
            await asyncio.sleep(2)
            logger.info("Submitted LoopNet login")
            return True

        except Exception as e:
            logger.error(f"Error logging into LoopNet: {e}")
            return False

    async def parse_card(self, card, location: str) -> Optional[ScrapedListingRecord]:
        name = await self._text(card, '.placard-title, .property-name, h4, h3, [class*="title"]')
        address = await self._text(card, '.placard-address, .property-address, [class*="address"]')
        # LoopNet cards without both are ads or placeholders
        if not name or not address:
            return None

        return ScrapedListingRecord(
            source=self.SOURCE_LABEL,
            name=name,
            address=address,
            price_text=await self._text(card, '.placard-price, .property-price, [class*="price"]'),
            sqft_text=await self._text(card, '.placard-specs, [class*="size"], [class*="sqft"]'),
            cap_rate_text=await self._text(card, '[class*="cap"], [class*="rate"]'),
            vacancy_text=await self._text(card, '[class*="occupancy"], [class*="vacan"]'),
            type_text=await self._text(card, '.placard-type, .property-type, [class*="type"]'),
            listing_url=self._absolute(await self._attr(card, 'a[href*="/Listing/"]', "href")),
            image_url=await self._attr(card, 'img[src*="loopnet"], img[data-src*="loopnet"]', "src", "data-src"),
            search_location=location,
        )


def build_scrapers(settings: Settings) -> list[BaseScraper]:
    """CREXi and LoopNet scrapers configured from settings."""
    common = {
        "headless": settings.SCRAPER_HEADLESS,
        "page_timeout_ms": settings.SCRAPER_PAGE_TIMEOUT_MS,
        "max_listings": settings.SCRAPER_MAX_LISTINGS,
    }
    return [
        LoopNetScraper(username=settings.LOOPNET_USERNAME, password=settings.LOOPNET_PASSWORD, **common),
        CrexiScraper(username=settings.CREXI_USERNAME, password=settings.CREXI_PASSWORD, **common),
    ]
