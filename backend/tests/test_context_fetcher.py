"""Tests for travel context fetching."""
from datetime import date
from types import SimpleNamespace

import httpx
import pytest

from flight_tracker.exceptions import ContextFetchError
from flight_tracker.services.context_fetcher import (
    ContextFetcher,
    build_query,
    holiday_note,
    us_holidays,
)


def make_flight(**overrides):
    values = {
        "origin": "JFK",
        "destination": "CDG",
        "departure_date": date(2026, 12, 23),
        "preferred_airline": "any",
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class TestHolidays:
    def test_floating_holidays_2026(self):
        holidays = dict(us_holidays(2026))
        assert holidays["Thanksgiving"] == date(2026, 11, 26)
        assert holidays["Memorial Day"] == date(2026, 5, 25)
        assert holidays["Labor Day"] == date(2026, 9, 7)

    def test_near_holiday(self):
        assert "Christmas" in holiday_note(date(2026, 12, 23))

    def test_far_from_holidays(self):
        assert holiday_note(date(2026, 10, 14)) is None
        assert holiday_note(None) is None


class TestBuildQuery:
    def test_cities_substituted(self):
        query = build_query("JFK", "CDG")
        assert query.startswith('("New York" OR "Paris") AND (')
        assert "strike" in query

    def test_unknown_airport_kept(self):
        assert build_query("XYZ", "CDG").startswith('("XYZ" OR "Paris")')

    def test_preferred_airline(self):
        assert build_query("JFK", "CDG", "Delta").endswith(' OR "Delta"')
        assert '"any"' not in build_query("JFK", "CDG", "any")


class TestContextFetcher:
    async def test_fetch(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"articles": [
                {"title": "Strike at CDG", "url": "https://news.example.com/1", "domain": "news.example.com"},
                {"title": "No link"},
                "junk",
            ] + [{"title": f"Story {i}", "url": f"https://news.example.com/s{i}"} for i in range(6)]})

        context = await ContextFetcher(transport=httpx.MockTransport(handler)).fetch_travel_context(make_flight())

        assert seen[0].url.params["format"] == "json"
        assert len(context["headlines"]) == 5
        assert context["headlines"][0] == {
            "title": "Strike at CDG",
            "url": "https://news.example.com/1",
            "source": "news.example.com",
            "published_at": None,
        }
        assert "Christmas" in context["holiday_note"]
        assert context["expires_at"] > context["fetched_at"]

    async def test_no_articles(self):
        fetcher = ContextFetcher(transport=httpx.MockTransport(lambda request: httpx.Response(200, json={})))
        context = await fetcher.fetch_travel_context(make_flight(departure_date=date(2026, 10, 14)))
        assert context["headlines"] == []
        assert context["holiday_note"] is None

    async def test_http_error(self):
        fetcher = ContextFetcher(transport=httpx.MockTransport(lambda request: httpx.Response(503)))
        with pytest.raises(ContextFetchError, match="GDELT error \\(503\\)"):
            await fetcher.fetch_travel_context(make_flight())

    async def test_invalid_json(self):
        fetcher = ContextFetcher(transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>")))
        with pytest.raises(ContextFetchError):
            await fetcher.fetch_travel_context(make_flight())
