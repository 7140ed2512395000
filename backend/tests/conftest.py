"""
Test fixtures for flight tracker backend tests.
"""
from datetime import date, timedelta
from decimal import Decimal
from typing import Callable, Dict, List, Optional
from unittest.mock import MagicMock

import pytest
from httpx import AsyncClient, ASGITransport

from flight_tracker.config import Settings
from flight_tracker.container import ServiceContainer
from flight_tracker.database import create_db_engine
from flight_tracker.main import create_app
from flight_tracker.services import flights
from flight_tracker.services.notification import EmailSender, PriceAlertNotifier
from flight_tracker.services.quote_engine import FlightRequest, Quote


# ============================================================================
# Fake collaborators
# ============================================================================

class FakeQuoteEngine:
    """
    Stands in for QuoteEngine. ``responses`` maps flight_id to a price or an
    exception; ``responder`` (when set) decides per request instead.
    """

    def __init__(self, default=Decimal("500.00")):
        self.scraper = MagicMock()
        self.default = default
        self.responses: Dict[int, object] = {}
        self.responder: Optional[Callable[[FlightRequest], object]] = None
        self.calls: List[FlightRequest] = []

    async def get_quote(self, request: FlightRequest, browser=None) -> Quote:
        self.calls.append(request)
        if self.responder is not None:
            response = self.responder(request)
        else:
            response = self.responses.get(request.flight_id, self.default)
        if isinstance(response, Exception):
            raise response
        return Quote(price=Decimal(str(response)), currency="USD", airline="Delta", source="amadeus")


class FakeContextFetcher:
    def __init__(self):
        self.calls = 0
        self.error: Optional[Exception] = None

    async def fetch_travel_context(self, flight) -> dict:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return {
            "query": f"{flight.origin} {flight.destination}",
            "summary": "Recent travel-related headlines for this route.",
            "headlines": [{"title": f"Headline {self.calls}", "url": f"https://news.example.com/{self.calls}"}],
            "holiday_note": None,
            "fetch_number": self.calls,
        }


class RecordingSender(EmailSender):
    name = "recording"

    def __init__(self):
        self.sent: List[dict] = []
        self.error: Optional[Exception] = None

    async def send(self, to, subject, html, meta=None) -> dict:
        if self.error is not None:
            raise self.error
        self.sent.append({"to": to, "subject": subject, "html": html, "meta": meta})
        return {"provider": self.name, "id": f"msg-{len(self.sent)}"}


# ============================================================================
# Container and sessions
# ============================================================================

def make_settings(**overrides) -> Settings:
    values = {
        "database_url": "sqlite://",
        "execution_mode": "local",
        "scheduler_enabled": False,
        "agent_token": "",
        "cron_schedule": "0 */6 * * *",
        "cron_tz": "America/New_York",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def quote_engine():
    return FakeQuoteEngine()


@pytest.fixture
def context_fetcher():
    return FakeContextFetcher()


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
async def container(settings, quote_engine, context_fetcher, sender):
    """
    A fully wired container on a fresh in-memory database.
    """
    container = ServiceContainer.build(
        settings,
        engine=create_db_engine(settings.database_url),
        quote_engine=quote_engine,
        context_fetcher=context_fetcher,
        notifier=PriceAlertNotifier(sender),
    )
    yield container
    await container.stop()


@pytest.fixture
def db_session(container):
    session = container.session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
async def client(container):
    """
    Create an async test client bound to the test container.
    """
    app = create_app(container)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ============================================================================
# Data helpers
# ============================================================================

@pytest.fixture
def make_flight(db_session):
    def _make_flight(**fields):
        values = {
            "origin": "JFK",
            "destination": "LAX",
            "departure_date": date.today() + timedelta(days=60),
            "return_date": date.today() + timedelta(days=67),
            "passengers": 1,
            "cabin_class": "economy",
            "preferred_airline": "any",
        }
        values.update(fields)
        return flights.create_flight(db_session, **values)

    return _make_flight
