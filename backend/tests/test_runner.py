"""Tests for local job execution: check, flex scan, context refresh and alert e-mails."""
import asyncio
import logging
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import inspect

from flight_tracker.exceptions import (
    ContextFetchError,
    EmailNotConfiguredError,
    PricingConfigurationError,
    ScraperError,
)
from flight_tracker.models import ContextSnapshot, FlexPriceEntry, JobType
from flight_tracker.services import contexts, flex_prices, flights, job_store, price_history

from conftest import FakeContextFetcher, FakeQuoteEngine


class GatedQuoteEngine(FakeQuoteEngine):
    """Holds every quote until ``release`` is set and records how many overlap."""

    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()
        self.started = asyncio.Event()
        self.in_flight = 0
        self.max_in_flight = 0
        self.finished = []

    async def get_quote(self, request, browser=None):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self.started.set()
        try:
            await self.release.wait()
            return await super().get_quote(request, browser)
        finally:
            self.in_flight -= 1
            self.finished.append(request.flight_id)


class SessionCheckingContextFetcher(FakeContextFetcher):
    """Records whether the flight it is handed is still attached to a session."""

    def __init__(self):
        super().__init__()
        self.attached = []

    async def fetch_travel_context(self, flight) -> dict:
        self.attached.append(not inspect(flight).detached)
        return await super().fetch_travel_context(flight)


async def run_job(container, type, **kwargs):
    """Create a job through the service and wait for the local worker to finish it."""
    with container.session_factory() as db:
        job = await container.job_service.create_and_run_job(db, type, **kwargs)
    await container.executor.drain()
    with container.session_factory() as db:
        return job_store.get_job(db, job.id)


# ============================================================================
# check_now / check_all
# ============================================================================

class TestCheckNow:
    async def test_saves_price_and_marks_flight_ok(self, container, make_flight, quote_engine):
        flight = make_flight()
        quote_engine.responses[flight.id] = Decimal("412.50")

        job = await run_job(container, JobType.CHECK_NOW, flight_id=flight.id, progress_total=1)

        assert job.status == "success"
        assert job.progress_current == 1
        assert job.result["price"] == 412.5
        assert job.result["source"] == "amadeus"
        with container.session_factory() as db:
            latest = price_history.get_latest_price(db, flight.id)
            assert latest.price == Decimal("412.50")
            refreshed = flights.get_flight(db, flight.id)
            assert refreshed.last_check_status == "ok"
            assert refreshed.last_checked_at is not None

    async def test_quote_failure_marks_job_and_flight(self, container, make_flight, quote_engine):
        flight = make_flight()
        quote_engine.responses[flight.id] = ScraperError("Timed out loading Google Flights")

        job = await run_job(container, JobType.CHECK_NOW, flight_id=flight.id)

        assert job.status == "error"
        assert "Timed out" in job.error_text
        with container.session_factory() as db:
            assert price_history.get_latest_price(db, flight.id) is None
            refreshed = flights.get_flight(db, flight.id)
            assert refreshed.last_check_status == "error"
            assert "Timed out" in refreshed.last_check_error

    async def test_configuration_error_logged_distinctly(self, container, make_flight, quote_engine, caplog):
        flight = make_flight()
        quote_engine.responses[flight.id] = PricingConfigurationError("Amadeus credentials rejected (401)")

        with caplog.at_level(logging.ERROR):
            job = await run_job(container, JobType.CHECK_NOW, flight_id=flight.id)

        assert job.status == "error"
        assert "credentials rejected" in job.error_text
        assert any("Configuration error" in r.getMessage() for r in caplog.records)


class TestCheckAll:
    async def test_one_failure_does_not_stop_the_rest(self, container, make_flight, quote_engine):
        first = make_flight(origin="JFK", destination="LAX")
        second = make_flight(origin="SFO", destination="ORD")
        third = make_flight(origin="BOS", destination="MIA")
        quote_engine.responses[first.id] = Decimal("300")
        quote_engine.responses[second.id] = ScraperError("No prices found on page")
        quote_engine.responses[third.id] = Decimal("250")

        job = await run_job(container, JobType.CHECK_ALL, progress_total=3)

        assert job.status == "success"
        assert job.progress_current == 3
        assert job.progress_total == 3
        assert job.result["checked"] == 3
        assert job.result["succeeded"] == 2
        assert job.result["failed"] == 1
        assert [r["flight_id"] for r in job.result["results"]] == [first.id, second.id, third.id]
        assert job.result["results"][1]["error"] == "No prices found on page"

        with container.session_factory() as db:
            assert price_history.get_latest_price(db, first.id).price == Decimal("300")
            assert price_history.get_latest_price(db, second.id) is None
            assert price_history.get_latest_price(db, third.id).price == Decimal("250")
            assert flights.get_flight(db, second.id).last_check_status == "error"
            assert flights.get_flight(db, third.id).last_check_status == "ok"

    async def test_skips_inactive_flights(self, container, make_flight, quote_engine, db_session):
        active = make_flight()
        inactive = make_flight(origin="SEA", destination="DEN")
        flights.deactivate_flight(db_session, inactive)

        job = await run_job(container, JobType.CHECK_ALL)

        assert job.result["checked"] == 1
        assert [c.flight_id for c in quote_engine.calls] == [active.id]

    async def test_no_active_flights(self, container):
        job = await run_job(container, JobType.CHECK_ALL)
        assert job.status == "success"
        assert job.result["checked"] == 0
        assert job.progress_total == 0

    async def test_worker_survives_failed_job(self, container, make_flight, quote_engine):
        flight = make_flight()
        quote_engine.responses[flight.id] = RuntimeError("unexpected")

        failed = await run_job(container, JobType.CHECK_NOW, flight_id=flight.id)
        quote_engine.responses[flight.id] = Decimal("199")
        succeeded = await run_job(container, JobType.CHECK_NOW, flight_id=flight.id)

        assert failed.status == "error"
        assert succeeded.status == "success"


class TestLocalExecutor:
    @pytest.fixture
    def quote_engine(self):
        return GatedQuoteEngine()

    async def test_runs_one_job_at_a_time_in_submission_order(self, container, make_flight, quote_engine):
        tracked = [make_flight(origin=origin) for origin in ("JFK", "BOS", "SFO")]
        with container.session_factory() as db:
            jobs = [
                await container.job_service.create_and_run_job(db, JobType.CHECK_NOW, flight_id=flight.id)
                for flight in tracked
            ]

        await asyncio.wait_for(quote_engine.started.wait(), timeout=1)
        await asyncio.sleep(0.05)
        assert quote_engine.in_flight == 1
        with container.session_factory() as db:
            assert [job_store.get_job(db, job.id).status for job in jobs] == ["running", "queued", "queued"]

        quote_engine.release.set()
        await container.executor.drain()

        assert quote_engine.max_in_flight == 1
        assert quote_engine.finished == [flight.id for flight in tracked]
        with container.session_factory() as db:
            done = [job_store.get_job(db, job.id) for job in jobs]
        assert all(job.status == "success" for job in done)
        assert [job.finished_at for job in done] == sorted(job.finished_at for job in done)

    async def test_same_job_is_not_queued_twice(self, container, make_flight, quote_engine):
        flight = make_flight()
        with container.session_factory() as db:
            job = await container.job_service.create_and_run_job(db, JobType.CHECK_NOW, flight_id=flight.id)
            await container.executor.submit(job.id)
            await container.job_service.resubmit_queued_jobs(db)

        quote_engine.release.set()
        await container.executor.drain()

        assert quote_engine.finished == [flight.id]


# ============================================================================
# flex_scan
# ============================================================================

class TestFlexScan:
    async def test_probes_every_offset_and_records_failures(self, container, make_flight, quote_engine):
        flight = make_flight()
        failing_date = flight.departure_date + timedelta(days=1)

        def respond(request):
            if request.departure_date == failing_date:
                return ScraperError("No prices found on page")
            return Decimal("400") + (request.departure_date - flight.departure_date).days

        quote_engine.responder = respond

        job = await run_job(container, JobType.FLEX_SCAN, flight_id=flight.id, window=2)

        assert job.status == "success"
        assert job.progress_total == 5
        assert job.progress_current == 5
        assert job.result["window"] == 2
        assert len(job.result["results"]) == 5

        with container.session_factory() as db:
            view = flex_prices.get_flex_prices(db, flight.id, window=2)
            assert len(view.rows) == 5
            assert view.is_complete
            assert view.failed_count == 1
            failed = [row for row in view.rows if row.failed][0]
            assert failed.departure_date == failing_date
            assert failed.price is None
            # Trip length is preserved for every probe
            assert all((row.return_date - row.departure_date).days == 7 for row in view.rows)

    async def test_rescan_overwrites_instead_of_duplicating(self, container, make_flight):
        flight = make_flight()

        await run_job(container, JobType.FLEX_SCAN, flight_id=flight.id, window=1)
        await run_job(container, JobType.FLEX_SCAN, flight_id=flight.id, window=1)

        with container.session_factory() as db:
            count = db.query(FlexPriceEntry).filter(FlexPriceEntry.flight_id == flight.id).count()
        assert count == 3

    async def test_default_window_from_settings(self, container, make_flight):
        flight = make_flight()
        job = await run_job(container, JobType.FLEX_SCAN, flight_id=flight.id)
        assert job.payload["window"] == 5
        assert job.progress_total == 11

    async def test_one_way_flight(self, container, make_flight):
        flight = make_flight(return_date=None)
        await run_job(container, JobType.FLEX_SCAN, flight_id=flight.id, window=1)

        with container.session_factory() as db:
            view = flex_prices.get_flex_prices(db, flight.id, window=1)
        assert len(view.rows) == 3
        assert all(row.return_date is None for row in view.rows)


# ============================================================================
# context_refresh
# ============================================================================

class TestContextRefresh:
    async def test_newest_snapshot_wins(self, container, make_flight, context_fetcher):
        flight = make_flight()

        first = await run_job(container, JobType.CONTEXT_REFRESH, flight_id=flight.id)
        second = await run_job(container, JobType.CONTEXT_REFRESH, flight_id=flight.id)

        assert first.status == second.status == "success"
        assert context_fetcher.calls == 2
        with container.session_factory() as db:
            cached = contexts.get_context(db, flight.id, max_age_hours=6)
            assert cached.context["fetch_number"] == 2
            assert len(db.query(ContextSnapshot).filter_by(flight_id=flight.id).all()) == 2

    async def test_fetch_failure_marks_job_error(self, container, make_flight, context_fetcher):
        flight = make_flight()
        context_fetcher.error = ContextFetchError("GDELT error (503)")

        job = await run_job(container, JobType.CONTEXT_REFRESH, flight_id=flight.id)

        assert job.status == "error"
        assert job.error_text == "GDELT error (503)"
        with container.session_factory() as db:
            assert contexts.get_context(db, flight.id) is None


class TestContextRefreshSessions:
    @pytest.fixture
    def context_fetcher(self):
        return SessionCheckingContextFetcher()

    async def test_fetch_runs_without_an_open_session(self, container, make_flight, context_fetcher):
        flight = make_flight()

        job = await run_job(container, JobType.CONTEXT_REFRESH, flight_id=flight.id)

        assert job.status == "success"
        assert context_fetcher.attached == [False]
        with container.session_factory() as db:
            assert contexts.get_context(db, flight.id).context["fetch_number"] == 1


# ============================================================================
# send_email
# ============================================================================

class TestSendEmail:
    async def test_sends_alert_with_history(self, container, make_flight, db_session, sender, context_fetcher):
        flight = make_flight(notify_email="traveler@example.com", name="Summer trip")
        price_history.save_price(db_session, flight.id, Decimal("500"), airline="Delta")
        price_history.save_price(db_session, flight.id, Decimal("450"), airline="Delta")

        job = await run_job(container, JobType.SEND_EMAIL, flight_id=flight.id, progress_total=1)

        assert job.status == "success"
        assert job.result["sent"] is True
        assert job.result["to"] == "traveler@example.com"
        assert job.result["provider"] == "recording"
        assert len(sender.sent) == 1
        message = sender.sent[0]
        assert message["subject"].startswith("Price Drop! Summer trip now $450")
        assert "$450.00" in message["html"]
        assert "$500.00" in message["html"]
        # Missing context is fetched and cached on the way
        assert context_fetcher.calls == 1
        with container.session_factory() as db:
            assert contexts.get_context(db, flight.id) is not None

    async def test_uses_cached_context(self, container, make_flight, db_session, context_fetcher):
        flight = make_flight(notify_email="traveler@example.com")
        price_history.save_price(db_session, flight.id, Decimal("500"))
        contexts.save_context(db_session, flight.id, {"headlines": [], "summary": "cached"})

        await run_job(container, JobType.SEND_EMAIL, flight_id=flight.id)

        assert context_fetcher.calls == 0

    async def test_context_failure_still_sends(self, container, make_flight, db_session, sender, context_fetcher):
        flight = make_flight(notify_email="traveler@example.com")
        price_history.save_price(db_session, flight.id, Decimal("500"))
        context_fetcher.error = ContextFetchError("down")

        job = await run_job(container, JobType.SEND_EMAIL, flight_id=flight.id)

        assert job.status == "success"
        assert len(sender.sent) == 1

    async def test_no_address_is_skipped(self, container, make_flight, db_session, sender):
        flight = make_flight(notify_email=None)
        price_history.save_price(db_session, flight.id, Decimal("500"))

        job = await run_job(container, JobType.SEND_EMAIL, flight_id=flight.id)

        assert job.status == "success"
        assert job.result == {"sent": False, "reason": "No notification address"}
        assert sender.sent == []

    async def test_no_history_is_skipped(self, container, make_flight, sender):
        flight = make_flight(notify_email="traveler@example.com")

        job = await run_job(container, JobType.SEND_EMAIL, flight_id=flight.id)

        assert job.result == {"sent": False, "reason": "No price history"}
        assert sender.sent == []

    async def test_unconfigured_provider_fails_job(self, container, make_flight, db_session, sender):
        flight = make_flight(notify_email="traveler@example.com")
        price_history.save_price(db_session, flight.id, Decimal("500"))
        sender.error = EmailNotConfiguredError()

        job = await run_job(container, JobType.SEND_EMAIL, flight_id=flight.id)

        assert job.status == "error"
        assert "No email provider configured" in job.error_text

    async def test_includes_best_flex_suggestion(self, container, make_flight, db_session, sender):
        flight = make_flight(notify_email="traveler@example.com")
        price_history.save_price(db_session, flight.id, Decimal("500"))
        flex_prices.upsert_flex_price(
            db_session,
            flight_id=flight.id,
            departure_date=flight.departure_date + timedelta(days=2),
            return_date=flight.return_date + timedelta(days=2),
            cabin_class=flight.cabin_class,
            passengers=flight.passengers,
            price=Decimal("380"),
        )

        await run_job(container, JobType.SEND_EMAIL, flight_id=flight.id)

        assert "$380.00" in sender.sent[0]["html"]
        assert "save ~$120" in sender.sent[0]["html"]
