"""
Remote polling agent.

Runs next to a real browser (typically on a home machine) while the API
server runs with EXECUTION_MODE=remote. The agent claims queued jobs over
HTTP, prices them locally and posts the outcome back; the server applies
the side effects.

    python -m flight_tracker.agent
"""
import asyncio
import logging
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from flight_tracker.config import Settings, get_settings
from flight_tracker.jobs.alerts import CONTEXT_MAX_AGE_HOURS, FLEX_SUGGESTION_MAX_AGE_HOURS
from flight_tracker.jobs.runner import describe_failure
from flight_tracker.models import JobType
from flight_tracker.scrapers.browser import BrowserLauncher, SharedBrowser
from flight_tracker.scrapers.google_flights import GoogleFlightsScraper
from flight_tracker.services.context_fetcher import ContextFetcher
from flight_tracker.services.flex_prices import FAILED_SOURCE
from flight_tracker.services.notification import PriceAlertNotifier, PriceDropAlert, build_email_sender
from flight_tracker.services.quote_engine import AmadeusSource, FlightRequest, QuoteEngine

logger = logging.getLogger(__name__)


class AgentError(Exception):
    """The server refused or failed an agent request."""


class RemoteAgent:
    def __init__(
        self,
        settings: Settings,
        quote_engine: QuoteEngine,
        context_fetcher: ContextFetcher,
        notifier: PriceAlertNotifier,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not settings.agent_base_url:
            raise ValueError("AGENT_BASE_URL is required (e.g. https://your-app.example.com)")
        self.settings = settings
        self.quote_engine = quote_engine
        self.context_fetcher = context_fetcher
        self.notifier = notifier
        headers = {"Authorization": f"Bearer {settings.agent_token}"} if settings.agent_token else {}
        self.client = httpx.AsyncClient(
            base_url=settings.agent_base_url.rstrip("/"),
            headers=headers,
            timeout=30.0,
            transport=transport,
        )
        self.handlers: Dict[str, Callable[[dict], Awaitable[dict]]] = {
            JobType.CHECK_NOW.value: self._check_now,
            JobType.CHECK_ALL.value: self._check_all,
            JobType.FLEX_SCAN.value: self._flex_scan,
            JobType.CONTEXT_REFRESH.value: self._context_refresh,
            JobType.SEND_EMAIL.value: self._send_email,
        }

    async def close(self):
        await self.client.aclose()

    # ------------------------------------------------------------------
    # Server calls
    # ------------------------------------------------------------------

    async def _get_json(self, path: str, **params) -> Any:
        response = await self.client.get(path, params=params or None)
        if response.status_code >= 400:
            raise AgentError(f"GET {path} failed ({response.status_code})")
        return response.json()

    async def claim(self) -> Optional[dict]:
        response = await self.client.get("/api/agent/jobs")
        if response.status_code == 204:
            return None
        if response.status_code >= 400:
            raise AgentError(f"Agent job fetch failed ({response.status_code})")
        return response.json()

    async def complete(self, job_id: int, status: str, result: Any = None, error_text: Optional[str] = None):
        body = {"status": status, "result": result, "error_text": error_text}
        response = await self.client.post(f"/api/agent/jobs/{job_id}/complete", json=body)
        if response.status_code >= 400:
            raise AgentError(f"Complete failed for job {job_id} ({response.status_code}): {response.text}")

    async def _flight(self, job: dict) -> dict:
        return job.get("flight") or await self._get_json(f"/api/flights/{job['flight_id']}")

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def run_once(self) -> bool:
        """Claim and process one job. False when the queue was empty."""
        job = await self.claim()
        if job is None:
            return False

        logger.info(f"Claimed job {job['id']} ({job['type']})")
        handler = self.handlers.get(job["type"])
        try:
            if handler is None:
                raise ValueError(f"Unknown job type: {job['type']}")
            result = await handler(job)
        except Exception as e:
            message = describe_failure(e)
            logger.warning(f"Job {job['id']} ({job['type']}) failed: {message}")
            await self.complete(job["id"], "error", error_text=message)
            return True

        await self.complete(job["id"], "success", result=result)
        logger.info(f"Job {job['id']} ({job['type']}) reported")
        return True

    async def run_forever(self):
        logger.info(f"Agent polling {self.settings.agent_base_url} every {self.settings.agent_poll_interval_seconds}s")
        while True:
            try:
                worked = await self.run_once()
            except (httpx.HTTPError, AgentError) as e:
                logger.error(f"Agent loop error: {e}")
                worked = False
            if not worked:
                await asyncio.sleep(self.settings.agent_poll_interval_seconds)

    # ------------------------------------------------------------------
    # Handlers: each returns the result body the server applies
    # ------------------------------------------------------------------

    async def _check_now(self, job: dict) -> dict:
        request = FlightRequest.from_snapshot(await self._flight(job))
        quote = await self.quote_engine.get_quote(request)
        return {"flight_id": request.flight_id, **quote.to_result()}

    async def _check_all(self, job: dict) -> dict:
        active: List[dict] = await self._get_json("/api/flights")
        browser = SharedBrowser(self.quote_engine.scraper.launcher)
        results = []
        try:
            for snapshot in active:
                request = FlightRequest.from_snapshot(snapshot)
                try:
                    quote = await self.quote_engine.get_quote(request, browser=browser)
                except Exception as e:
                    results.append({"flight_id": request.flight_id, "error": describe_failure(e)})
                    continue
                results.append({"flight_id": request.flight_id, **quote.to_result()})
        finally:
            await browser.close()

        succeeded = sum(1 for item in results if "error" not in item)
        return {
            "checked": len(results),
            "succeeded": succeeded,
            "failed": len(results) - succeeded,
            "results": results,
        }

    async def _flex_scan(self, job: dict) -> dict:
        base = FlightRequest.from_snapshot(await self._flight(job))
        window = int((job.get("payload") or {}).get("window") or self.settings.flex_default_window)
        browser = SharedBrowser(self.quote_engine.scraper.launcher)
        results = []
        try:
            for offset in range(-window, window + 1):
                request = base.shifted(offset)
                entry = {
                    "departure_date": request.departure_date.isoformat(),
                    "return_date": request.return_date.isoformat() if request.return_date else None,
                    "cabin_class": base.cabin_class,
                    "passengers": base.passengers,
                }
                try:
                    quote = await self.quote_engine.get_quote(request, browser=browser)
                    entry.update(price=float(quote.price), currency=quote.currency,
                                 airline=quote.airline, source=quote.source)
                except Exception as e:
                    entry.update(price=None, currency="USD", airline=None,
                                 source=FAILED_SOURCE, error=describe_failure(e))
                results.append(entry)
        finally:
            await browser.close()
        return {"window": window, "results": results}

    async def _context_refresh(self, job: dict) -> dict:
        request = FlightRequest.from_snapshot(await self._flight(job))
        context = await self.context_fetcher.fetch_travel_context(request)
        return {"context": context}

    async def _send_email(self, job: dict) -> dict:
        flight_id = job.get("flight_id") or (job.get("payload") or {}).get("flight_id")
        flight = await self._get_json(f"/api/flights/{flight_id}")
        if not flight.get("notify_email"):
            return {"sent": False, "reason": "No notification address"}

        summary = await self._get_json(f"/api/flights/{flight_id}/summary")
        if not summary.get("check_count"):
            return {"sent": False, "reason": "No price history"}

        current = Decimal(str(summary["current_price"]))
        alert = PriceDropAlert(
            to=flight["notify_email"],
            flight_name=flight["name"],
            route=f"{flight['origin']} → {flight['destination']}",
            current_price=current,
            previous_price=Decimal(str(summary["previous_price"])) if summary.get("previous_price") else current,
            lowest_price=Decimal(str(summary["lowest_price"])) if summary.get("lowest_price") else current,
            airline=summary.get("airline"),
            trend=summary.get("trend"),
            flex_suggestion=await self._flex_suggestion(flight_id, current),
            context=await self._cached_context(flight_id),
            meta={"flight_id": flight_id},
        )
        schedule = await self._optional_json("/api/schedule")
        if schedule:
            alert.next_run_at = schedule.get("next_run_at")

        delivery = await self.notifier.send_price_drop_alert(alert)
        return {"sent": True, "to": alert.to, "provider": self.notifier.provider, "delivery": delivery}

    async def _optional_json(self, path: str, **params) -> Optional[Any]:
        try:
            return await self._get_json(path, **params)
        except (httpx.HTTPError, AgentError, ValueError) as e:
            logger.info(f"Optional alert input {path} unavailable: {e}")
            return None

    async def _flex_suggestion(self, flight_id: int, current: Decimal) -> Optional[dict]:
        flex = await self._optional_json(
            f"/api/flights/{flight_id}/flex", window=self.settings.flex_default_window,
            max_age_hours=FLEX_SUGGESTION_MAX_AGE_HOURS,
        )
        best = (flex or {}).get("best")
        if not best or best.get("price") is None:
            return None
        price = Decimal(str(best["price"]))
        return {
            "price": price,
            "departure_date": best["departure_date"],
            "return_date": best.get("return_date"),
            "savings": max(0, round(current - price)),
        }

    async def _cached_context(self, flight_id: int) -> Optional[dict]:
        data = await self._optional_json(f"/api/flights/{flight_id}/context", max_age_hours=CONTEXT_MAX_AGE_HOURS)
        return (data or {}).get("context")


def build_agent(settings: Settings) -> RemoteAgent:
    scraper = GoogleFlightsScraper(
        launcher=BrowserLauncher(settings.browser_executable_path, headless=settings.scraper_headless),
        screenshots_dir=settings.screenshots_dir,
    )
    amadeus = None
    if settings.amadeus_configured:
        amadeus = AmadeusSource(
            settings.amadeus_client_id, settings.amadeus_client_secret, base_url=settings.amadeus_base_url,
        )
    return RemoteAgent(
        settings,
        QuoteEngine(scraper, amadeus),
        ContextFetcher(),
        PriceAlertNotifier(build_email_sender(settings)),
    )


async def run_agent():
    agent = build_agent(get_settings())
    try:
        await agent.run_forever()
    finally:
        await agent.close()


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    try:
        asyncio.run(run_agent())
    except KeyboardInterrupt:
        logger.info("Agent stopped")


if __name__ == "__main__":
    main()
