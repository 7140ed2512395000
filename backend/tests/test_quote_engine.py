"""Tests for the Amadeus source and the quote fallback chain."""
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from flight_tracker.exceptions import PricingConfigurationError, ScraperError
from flight_tracker.services.quote_engine import (
    AmadeusSource,
    FlightRequest,
    Quote,
    QuoteEngine,
    normalize_airline_code,
)

BASE_URL = "https://amadeus.test"


def make_request(**overrides) -> FlightRequest:
    values = {
        "origin": "JFK",
        "destination": "LAX",
        "departure_date": date(2026, 12, 20),
        "return_date": date(2026, 12, 27),
        "passengers": 2,
        "cabin_class": "business",
        "preferred_airline": "any",
        "flight_id": 1,
    }
    values.update(overrides)
    return FlightRequest(**values)


def offer(total, carrier="DL", currency="USD"):
    return {"price": {"grandTotal": str(total), "currency": currency}, "validatingAirlineCodes": [carrier]}


class AmadeusStub:
    """httpx MockTransport handler playing the token and offers endpoints."""

    def __init__(self, offers=None, token_status=200, offers_status=200):
        self.offers = offers or []
        self.token_status = token_status
        self.offers_status = offers_status
        self.token_calls = 0
        self.search_params = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v1/security/oauth2/token":
            self.token_calls += 1
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "invalid_client"})
            return httpx.Response(200, json={"access_token": "tok", "expires_in": 1799})
        if request.url.path == "/v2/shopping/flight-offers":
            self.search_params.append(dict(request.url.params))
            if self.offers_status != 200:
                return httpx.Response(self.offers_status, json={"errors": []})
            return httpx.Response(200, json={"data": self.offers})
        return httpx.Response(404)


def make_amadeus(stub: AmadeusStub) -> AmadeusSource:
    return AmadeusSource("id", "secret", base_url=BASE_URL, transport=httpx.MockTransport(stub))


def make_scraper(quote=None, error=None):
    scraper = MagicMock()
    scraper.get_quote = AsyncMock(
        return_value=quote or Quote(price=Decimal("321"), airline="United", source="google_flights"),
        side_effect=error,
    )
    return scraper


class TestAirlineCodes:
    def test_known_name(self):
        assert normalize_airline_code("Delta") == "DL"
        assert normalize_airline_code("british airways") == "BA"

    def test_code_passthrough(self):
        assert normalize_airline_code("b6") == "B6"

    def test_unknown_or_empty(self):
        assert normalize_airline_code("Mystery Air") is None
        assert normalize_airline_code("") is None
        assert normalize_airline_code(None) is None


class TestAmadeusSource:
    async def test_cheapest_offer_wins(self):
        stub = AmadeusStub(offers=[offer(650), offer(420, "UA"), offer(480, "AA")])
        quote = await make_amadeus(stub).get_quote(make_request())

        assert quote.price == Decimal("420")
        assert quote.airline == "UA"
        assert quote.source == "amadeus"

    async def test_tie_keeps_first_offer(self):
        stub = AmadeusStub(offers=[offer(420, "DL"), offer(420, "UA")])
        quote = await make_amadeus(stub).get_quote(make_request())
        assert quote.airline == "DL"

    async def test_unusable_offers_ignored(self):
        stub = AmadeusStub(offers=[{"price": {}}, offer("abc"), offer(0), offer(510, "AS")])
        quote = await make_amadeus(stub).get_quote(make_request())
        assert quote.price == Decimal("510")

    async def test_no_offers(self):
        quote = await make_amadeus(AmadeusStub()).get_quote(make_request())
        assert quote is None

    async def test_search_parameters(self):
        stub = AmadeusStub(offers=[offer(400)])
        await make_amadeus(stub).get_quote(make_request(preferred_airline="Delta"))

        params = stub.search_params[0]
        assert params["originLocationCode"] == "JFK"
        assert params["returnDate"] == "2026-12-27"
        assert params["adults"] == "2"
        assert params["travelClass"] == "BUSINESS"
        assert params["includedAirlineCodes"] == "DL"

    async def test_any_airline_not_filtered(self):
        stub = AmadeusStub(offers=[offer(400)])
        await make_amadeus(stub).get_quote(make_request(return_date=None))

        params = stub.search_params[0]
        assert "includedAirlineCodes" not in params
        assert "returnDate" not in params

    async def test_token_is_cached(self):
        stub = AmadeusStub(offers=[offer(400)])
        source = make_amadeus(stub)
        await source.get_quote(make_request())
        await source.get_quote(make_request())
        assert stub.token_calls == 1

    async def test_rejected_credentials(self):
        with pytest.raises(PricingConfigurationError):
            await make_amadeus(AmadeusStub(token_status=401)).get_quote(make_request())


class TestQuoteEngine:
    async def test_amadeus_first(self):
        scraper = make_scraper()
        engine = QuoteEngine(scraper, make_amadeus(AmadeusStub(offers=[offer(400)])))

        quote = await engine.get_quote(make_request())

        assert quote.source == "amadeus"
        scraper.get_quote.assert_not_called()

    async def test_scraper_when_unconfigured(self):
        scraped = Quote(price=Decimal("321"), airline="United", source="google_flights")
        engine = QuoteEngine(make_scraper(scraped))

        quote = await engine.get_quote(make_request())

        assert quote is scraped

    async def test_scraper_when_no_offers(self):
        scraper = make_scraper()
        engine = QuoteEngine(scraper, make_amadeus(AmadeusStub()))

        quote = await engine.get_quote(make_request())

        assert quote.source == "google_flights"
        scraper.get_quote.assert_awaited_once()

    async def test_scraper_when_amadeus_errors(self):
        scraper = make_scraper()
        engine = QuoteEngine(scraper, make_amadeus(AmadeusStub(offers_status=500)))

        quote = await engine.get_quote(make_request())

        assert quote.price == Decimal("321")

    async def test_browser_passed_through(self):
        scraper = make_scraper()
        browser = object()
        await QuoteEngine(scraper).get_quote(make_request(), browser=browser)
        assert scraper.get_quote.await_args.kwargs["browser"] is browser

    async def test_credential_error_not_masked(self):
        scraper = make_scraper()
        engine = QuoteEngine(scraper, make_amadeus(AmadeusStub(token_status=403)))

        with pytest.raises(PricingConfigurationError):
            await engine.get_quote(make_request())
        scraper.get_quote.assert_not_called()

    async def test_scraper_error_propagates(self):
        engine = QuoteEngine(make_scraper(error=ScraperError("No prices found on page")))
        with pytest.raises(ScraperError):
            await engine.get_quote(make_request())


class TestFlightRequest:
    def test_shift_keeps_trip_length(self):
        shifted = make_request().shifted(-3)
        assert shifted.departure_date == date(2026, 12, 17)
        assert shifted.return_date == date(2026, 12, 24)

    def test_from_snapshot(self):
        request = FlightRequest.from_snapshot({
            "id": 7,
            "origin": "SFO",
            "destination": "ORD",
            "departure_date": "2026-11-02T00:00:00",
            "return_date": None,
            "passengers": None,
        })
        assert request.flight_id == 7
        assert request.departure_date == date(2026, 11, 2)
        assert request.return_date is None
        assert request.passengers == 1
        assert request.cabin_class == "economy"
