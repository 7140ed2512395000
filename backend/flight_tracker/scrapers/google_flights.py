import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional
from urllib.parse import quote_plus

from playwright.async_api import Page, TimeoutError as PlaywrightTimeout
from playwright_stealth import Stealth

from flight_tracker.exceptions import ScraperError
from flight_tracker.models.flight import PREMIUM_CABINS
from flight_tracker.scrapers.browser import BrowserLauncher, BrowserSession, SharedBrowser
from flight_tracker.scrapers.extractors import PriceExtractionStrategy, TextPatternExtractor
from flight_tracker.services.quote_engine import FlightRequest, Quote

logger = logging.getLogger(__name__)


CABIN_NAMES = {
    "economy": "Economy",
    "premium_economy": "Premium Economy",
    "business": "Business",
    "first": "First",
}


def cabin_name(cabin_class: Optional[str]) -> str:
    return CABIN_NAMES.get((cabin_class or "").lower(), "Economy")


def build_search_query(request: FlightRequest) -> str:
    query = f"{request.origin} to {request.destination} {request.departure_date.isoformat()}"
    if request.return_date:
        query += f" to {request.return_date.isoformat()}"
    query += f" {request.adults} passenger {cabin_name(request.cabin_class)}"
    airline = (request.preferred_airline or "").strip()
    if airline and airline.lower() != "any":
        query += f" {airline}"
    return query


def build_search_url(request: FlightRequest) -> str:
    """Natural-language search URL; Google parses the query itself."""
    return f"{GoogleFlightsScraper.BASE_URL}?q={quote_plus(build_search_query(request))}&curr=USD"


class GoogleFlightsScraper:
    """
    Google Flights quote source.

    Each call opens a fresh stealth context on either the browser it is
    handed (a BrowserSession or a SharedBrowser) or a browser it launches
    itself. A browser is only ever closed by the call that launched it.
    """
    name = "google_flights"
    BASE_URL = "https://www.google.com/travel/flights"

    NAVIGATION_TIMEOUT_MS = 30000
    SETTLE_SECONDS = 4.0
    PREMIUM_SETTLE_SECONDS = 6.0
    EXPLORE_SETTLE_SECONDS = 3.0

    VIEWPORT = {"width": 1400, "height": 900}
    USER_AGENT = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/120.0.0.0 Safari/537.36"
    )

    def __init__(
        self,
        launcher: Optional[BrowserLauncher] = None,
        extractor: Optional[PriceExtractionStrategy] = None,
        screenshots_dir: Optional[str] = None,
    ):
        self.launcher = launcher or BrowserLauncher()
        self.extractor = extractor or TextPatternExtractor()
        self.screenshots_dir = Path(screenshots_dir) if screenshots_dir else None
        if self.screenshots_dir:
            self.screenshots_dir.mkdir(parents=True, exist_ok=True)

    async def launch_browser(self) -> BrowserSession:
        return await self.launcher.launch()

    def _settle_seconds(self, request: FlightRequest) -> float:
        if (request.cabin_class or "").lower() in PREMIUM_CABINS:
            return self.PREMIUM_SETTLE_SECONDS
        return self.SETTLE_SECONDS

    async def _save_screenshot(self, page: Page, request: FlightRequest):
        if not self.screenshots_dir:
            return
        timestamp = datetime.utcnow().strftime("%Y%m%d_%H%M%S")
        path = self.screenshots_dir / f"flight-{request.flight_id or 'adhoc'}-{timestamp}.png"
        try:
            await page.screenshot(path=str(path), full_page=False)
        except Exception as e:
            logger.debug(f"Screenshot failed: {e}")

    async def _read_page_text(self, session: BrowserSession, request: FlightRequest) -> str:
        context = await session.browser.new_context(
            viewport=self.VIEWPORT,
            user_agent=self.USER_AGENT,
            locale="en-US",
        )
        try:
            await Stealth().apply_stealth_async(context)
            page = await context.new_page()

            url = build_search_url(request)
            logger.info(f"Scraping {request.origin}->{request.destination} ({cabin_name(request.cabin_class)}): {url}")
            await page.goto(url, wait_until="domcontentloaded", timeout=self.NAVIGATION_TIMEOUT_MS)
            await asyncio.sleep(self._settle_seconds(request))
            await self._save_screenshot(page, request)

            explore = await page.query_selector('button[aria-label="Explore"]')
            if explore:
                await explore.click()
                await asyncio.sleep(self.EXPLORE_SETTLE_SECONDS)

            return await page.evaluate("() => document.body.innerText")
        finally:
            await context.close()

    async def get_quote(
        self,
        request: FlightRequest,
        browser: Optional[BrowserSession | SharedBrowser] = None,
    ) -> Quote:
        owns_browser = browser is None
        session = await browser.acquire() if browser is not None else await self.launch_browser()

        try:
            page_text = await self._read_page_text(session, request)
            extracted = self.extractor.extract(page_text, request.preferred_airline)
        except ScraperError:
            raise
        except PlaywrightTimeout as e:
            raise ScraperError(f"Page load timed out after {self.NAVIGATION_TIMEOUT_MS // 1000} seconds") from e
        except Exception as e:
            raise ScraperError(f"Scrape failed: {e}") from e
        finally:
            if owns_browser:
                await session.close()

        logger.info(
            f"Found ${extracted.price} ({extracted.airline}) for {request.origin}->{request.destination} "
            f"| all: {extracted.found_prices}"
        )
        return Quote(
            price=extracted.price,
            currency="USD",
            airline=extracted.airline,
            source=self.name,
            raw_data=extracted.to_raw_data(),
        )
