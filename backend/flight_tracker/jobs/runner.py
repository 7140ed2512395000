"""
In-process job execution.

Every handler runs only after ``start_job`` has moved the job to running,
and every handler opens its own short-lived sessions from the injected
session factory. Quote failures are recorded on the job and the flight;
they never escape ``JobRunner.run``.
"""
import logging
from typing import Awaitable, Callable, Dict, Optional

from sqlalchemy.orm import sessionmaker

from flight_tracker.config import Settings
from flight_tracker.exceptions import ConfigurationError
from flight_tracker.jobs.alerts import AlertSkipped, PriceAlertBuilder
from flight_tracker.models import CheckStatus, Job, JobStatus, JobType
from flight_tracker.scrapers.browser import SharedBrowser
from flight_tracker.services import contexts, flex_prices, flights, job_store, price_history
from flight_tracker.services.context_fetcher import ContextFetcher
from flight_tracker.services.notification import PriceAlertNotifier
from flight_tracker.services.quote_engine import FlightRequest, QuoteEngine

logger = logging.getLogger(__name__)


def describe_failure(error: Exception) -> str:
    message = str(error) or error.__class__.__name__
    if isinstance(error, ConfigurationError):
        logger.error(f"Configuration error: {message}")
    return message


class JobRunner:
    def __init__(
        self,
        session_factory: sessionmaker,
        quote_engine: QuoteEngine,
        context_fetcher: ContextFetcher,
        notifier: PriceAlertNotifier,
        settings: Settings,
        next_run_at: Optional[Callable[[], Optional[str]]] = None,
    ):
        self.session_factory = session_factory
        self.quote_engine = quote_engine
        self.context_fetcher = context_fetcher
        self.notifier = notifier
        self.settings = settings
        self.alert_builder = PriceAlertBuilder(session_factory, context_fetcher, next_run_at)
        self.handlers: Dict[str, Callable[[Job], Awaitable[None]]] = {
            JobType.CHECK_NOW.value: self._check_now,
            JobType.CHECK_ALL.value: self._check_all,
            JobType.FLEX_SCAN.value: self._flex_scan,
            JobType.CONTEXT_REFRESH.value: self._context_refresh,
            JobType.SEND_EMAIL.value: self._send_email,
        }

    def _shared_browser(self) -> SharedBrowser:
        return SharedBrowser(self.quote_engine.scraper.launcher)

    async def run(self, job_id: int) -> None:
        with self.session_factory() as db:
            job = job_store.start_job(db, job_id)
        if job is None:
            logger.info(f"Job {job_id} is no longer queued, skipping")
            return

        handler = self.handlers.get(job.type)
        logger.info(f"Running job {job.id} ({job.type})")
        try:
            if handler is None:
                raise ValueError(f"Unknown job type: {job.type}")
            await handler(job)
        except Exception as e:
            logger.exception(f"Job {job.id} ({job.type}) failed")
            with self.session_factory() as db:
                current = job_store.get_job(db, job.id)
                if current is not None and current.status == JobStatus.RUNNING.value:
                    job_store.finish_job(db, job.id, JobStatus.ERROR, error_text=describe_failure(e))

    # ------------------------------------------------------------------
    # check_now
    # ------------------------------------------------------------------

    async def _check_now(self, job: Job):
        with self.session_factory() as db:
            flight = flights.get_flight(db, job.flight_id) if job.flight_id else None
            if flight is None:
                job_store.finish_job(db, job.id, JobStatus.ERROR, error_text="Flight not found")
                return
            request = FlightRequest.from_flight(flight)
            flights.set_check_status(db, flight.id, CheckStatus.RUNNING)
            job_store.update_job(db, job.id, progress_total=1)

        try:
            quote = await self.quote_engine.get_quote(request)
        except Exception as e:
            message = describe_failure(e)
            logger.warning(f"check_now failed for flight {request.flight_id}: {message}")
            with self.session_factory() as db:
                flights.set_check_status(db, request.flight_id, CheckStatus.ERROR, message, commit=False)
                job_store.finish_job(db, job.id, JobStatus.ERROR, error_text=message)
            return

        with self.session_factory() as db:
            price_history.save_price(
                db, request.flight_id, quote.price, quote.currency, quote.airline,
                quote.source, quote.raw_data, commit=False,
            )
            flights.set_check_status(db, request.flight_id, CheckStatus.OK, commit=False)
            job_store.update_job(db, job.id, progress_current=1)
            job_store.finish_job(db, job.id, JobStatus.SUCCESS, result=quote.to_result())

    # ------------------------------------------------------------------
    # check_all
    # ------------------------------------------------------------------

    async def _check_all(self, job: Job):
        with self.session_factory() as db:
            requests = [FlightRequest.from_flight(f) for f in flights.list_active_flights(db)]
            job_store.update_job(db, job.id, progress_total=len(requests), progress_current=0)

        logger.info(f"check_all job {job.id}: {len(requests)} active flight(s)")
        browser = self._shared_browser()
        results = []
        succeeded = 0
        try:
            for index, request in enumerate(requests, start=1):
                with self.session_factory() as db:
                    flights.set_check_status(db, request.flight_id, CheckStatus.RUNNING)

                try:
                    quote = await self.quote_engine.get_quote(request, browser=browser)
                except Exception as e:
                    message = describe_failure(e)
                    logger.warning(f"check_all: flight {request.flight_id} failed: {message}")
                    with self.session_factory() as db:
                        flights.set_check_status(db, request.flight_id, CheckStatus.ERROR, message, commit=False)
                        job_store.update_job(db, job.id, progress_current=index)
                    results.append({"flight_id": request.flight_id, "error": message})
                    continue

                with self.session_factory() as db:
                    price_history.save_price(
                        db, request.flight_id, quote.price, quote.currency, quote.airline,
                        quote.source, quote.raw_data, commit=False,
                    )
                    flights.set_check_status(db, request.flight_id, CheckStatus.OK, commit=False)
                    job_store.update_job(db, job.id, progress_current=index)
                succeeded += 1
                results.append({"flight_id": request.flight_id, **quote.to_result()})
        finally:
            await browser.close()

        result = {
            "checked": len(requests),
            "succeeded": succeeded,
            "failed": len(requests) - succeeded,
            "results": results,
        }
        with self.session_factory() as db:
            job_store.finish_job(db, job.id, JobStatus.SUCCESS, result=result)

    # ------------------------------------------------------------------
    # flex_scan
    # ------------------------------------------------------------------

    def _window(self, job: Job) -> int:
        payload = job.payload or {}
        try:
            window = int(payload.get("window", self.settings.flex_default_window))
        except (TypeError, ValueError):
            window = self.settings.flex_default_window
        return max(0, window)

    async def _flex_scan(self, job: Job):
        window = self._window(job)
        with self.session_factory() as db:
            flight = flights.get_flight(db, job.flight_id) if job.flight_id else None
            if flight is None:
                job_store.finish_job(db, job.id, JobStatus.ERROR, error_text="Flight not found")
                return
            base = FlightRequest.from_flight(flight)
            job_store.update_job(db, job.id, progress_total=window * 2 + 1, progress_current=0)

        browser = self._shared_browser()
        results = []
        try:
            for index, offset in enumerate(range(-window, window + 1), start=1):
                request = base.shifted(offset)
                try:
                    quote = await self.quote_engine.get_quote(request, browser=browser)
                    entry = {
                        "departure_date": request.departure_date.isoformat(),
                        "return_date": request.return_date.isoformat() if request.return_date else None,
                        "price": float(quote.price),
                        "currency": quote.currency,
                        "airline": quote.airline,
                        "source": quote.source,
                    }
                except Exception as e:
                    message = describe_failure(e)
                    logger.info(f"flex_scan probe {request.departure_date} failed: {message}")
                    entry = {
                        "departure_date": request.departure_date.isoformat(),
                        "return_date": request.return_date.isoformat() if request.return_date else None,
                        "price": None,
                        "currency": "USD",
                        "airline": None,
                        "source": flex_prices.FAILED_SOURCE,
                        "error": message,
                    }

                with self.session_factory() as db:
                    flex_prices.upsert_flex_price(
                        db,
                        flight_id=base.flight_id,
                        departure_date=request.departure_date,
                        return_date=request.return_date,
                        cabin_class=base.cabin_class,
                        passengers=base.passengers,
                        price=entry["price"],
                        currency=entry["currency"],
                        airline=entry["airline"],
                        source=entry["source"],
                        commit=False,
                    )
                    job_store.update_job(db, job.id, progress_current=index)
                results.append(entry)
        finally:
            await browser.close()

        with self.session_factory() as db:
            job_store.finish_job(db, job.id, JobStatus.SUCCESS, result={"window": window, "results": results})

    # ------------------------------------------------------------------
    # context_refresh
    # ------------------------------------------------------------------

    async def _context_refresh(self, job: Job):
        with self.session_factory() as db:
            flight = flights.get_flight(db, job.flight_id) if job.flight_id else None
            if flight is None:
                job_store.finish_job(db, job.id, JobStatus.ERROR, error_text="Flight not found")
                return
            job_store.update_job(db, job.id, progress_total=1)

        try:
            context = await self.context_fetcher.fetch_travel_context(flight)
        except Exception as e:
            with self.session_factory() as db:
                job_store.finish_job(db, job.id, JobStatus.ERROR, error_text=describe_failure(e))
            return

        with self.session_factory() as db:
            contexts.save_context(db, flight.id, context, commit=False)
            job_store.update_job(db, job.id, progress_current=1)
            job_store.finish_job(db, job.id, JobStatus.SUCCESS, result=context)

    # ------------------------------------------------------------------
    # send_email
    # ------------------------------------------------------------------

    async def _send_email(self, job: Job):
        flight_id = job.flight_id or (job.payload or {}).get("flight_id")
        try:
            alert = await self.alert_builder.build(flight_id) if flight_id else None
        except AlertSkipped as skipped:
            with self.session_factory() as db:
                job_store.finish_job(
                    db, job.id, JobStatus.SUCCESS, result={"sent": False, "reason": skipped.reason},
                )
            return
        if alert is None:
            with self.session_factory() as db:
                job_store.finish_job(db, job.id, JobStatus.ERROR, error_text="Flight not found")
            return

        try:
            delivery = await self.notifier.send_price_drop_alert(alert)
        except Exception as e:
            with self.session_factory() as db:
                job_store.finish_job(db, job.id, JobStatus.ERROR, error_text=describe_failure(e))
            return

        with self.session_factory() as db:
            job_store.update_job(db, job.id, progress_current=1)
            job_store.finish_job(
                db, job.id, JobStatus.SUCCESS,
                result={"sent": True, "to": alert.to, "provider": self.notifier.provider, "delivery": delivery},
            )
