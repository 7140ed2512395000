"""
Travel context for a flight: recent disruption headlines from the GDELT
doc API plus a note when departure falls near a US federal holiday.
"""
import logging
from datetime import date, datetime, timedelta
from typing import List, Optional

import httpx

from flight_tracker.exceptions import ContextFetchError

logger = logging.getLogger(__name__)

GDELT_DOC_URL = "https://api.gdeltproject.org/api/v2/doc/doc"
CONTEXT_TTL_HOURS = 6
HOLIDAY_PROXIMITY_DAYS = 3
MAX_HEADLINES = 5

AIRPORT_CITIES = {
    "ATL": "Atlanta",
    "JFK": "New York",
    "LAX": "Los Angeles",
    "ORD": "Chicago",
    "DFW": "Dallas",
    "MAD": "Madrid",
    "BCN": "Barcelona",
    "CDG": "Paris",
    "LHR": "London",
    "FCO": "Rome",
    "AMS": "Amsterdam",
    "FRA": "Frankfurt",
    "LIS": "Lisbon",
    "MIA": "Miami",
    "SFO": "San Francisco",
    "SEA": "Seattle",
    "BOS": "Boston",
    "IAD": "Washington",
    "DCA": "Washington",
    "EWR": "Newark",
    "PHX": "Phoenix",
    "DEN": "Denver",
}

DISRUPTION_TERMS = [
    "airport",
    "airline",
    "flight",
    "delay",
    "disruption",
    "strike",
    "protest",
    "shutdown",
    "union",
    "holiday travel",
    "travel warning",
]


def _nth_weekday(year: int, month: int, weekday: int, nth: int) -> date:
    first = date(year, month, 1)
    offset = (weekday - first.weekday()) % 7
    return first + timedelta(days=offset + (nth - 1) * 7)


def _last_weekday(year: int, month: int, weekday: int) -> date:
    next_month = date(year + month // 12, month % 12 + 1, 1)
    last = next_month - timedelta(days=1)
    return last - timedelta(days=(last.weekday() - weekday) % 7)


def us_holidays(year: int) -> List[tuple]:
    # weekday(): Monday=0 .. Sunday=6
    return [
        ("New Year's Day", date(year, 1, 1)),
        ("Martin Luther King Jr. Day", _nth_weekday(year, 1, 0, 3)),
        ("Presidents' Day", _nth_weekday(year, 2, 0, 3)),
        ("Memorial Day", _last_weekday(year, 5, 0)),
        ("Independence Day", date(year, 7, 4)),
        ("Labor Day", _nth_weekday(year, 9, 0, 1)),
        ("Thanksgiving", _nth_weekday(year, 11, 3, 4)),
        ("Christmas", date(year, 12, 25)),
    ]


def holiday_note(departure_date: Optional[date]) -> Optional[str]:
    if departure_date is None:
        return None
    for name, holiday in us_holidays(departure_date.year):
        if abs((departure_date - holiday).days) <= HOLIDAY_PROXIMITY_DAYS:
            return f"Travel is within {HOLIDAY_PROXIMITY_DAYS} days of {name}, which can increase demand and delays."
    return None


def build_query(origin: str, destination: str, preferred_airline: Optional[str] = None) -> str:
    origin_city = AIRPORT_CITIES.get(origin, origin)
    destination_city = AIRPORT_CITIES.get(destination, destination)
    query = f'("{origin_city}" OR "{destination_city}") AND (' + " OR ".join(DISRUPTION_TERMS) + ")"
    if preferred_airline and preferred_airline.lower() != "any":
        query += f' OR "{preferred_airline}"'
    return query


class ContextFetcher:
    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport

    async def _fetch_headlines(self, query: str) -> List[dict]:
        params = {
            "query": query,
            "mode": "ArtList",
            "maxrecords": 8,
            "format": "json",
            "sort": "DateDesc",
        }
        try:
            async with httpx.AsyncClient(timeout=20.0, transport=self._transport) as client:
                response = await client.get(GDELT_DOC_URL, params=params)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            raise ContextFetchError(f"GDELT error ({e.response.status_code})") from e
        except (httpx.HTTPError, ValueError) as e:
            raise ContextFetchError(f"GDELT request failed: {e}") from e

        articles = data.get("articles") if isinstance(data, dict) else None
        headlines = []
        for article in articles if isinstance(articles, list) else []:
            if not isinstance(article, dict):
                continue
            url = article.get("url") or ""
            if not url:
                continue
            headlines.append({
                "title": article.get("title") or "Headline",
                "url": url,
                "source": article.get("sourcecountry") or article.get("domain") or "Unknown",
                "published_at": article.get("seendate"),
            })
        return headlines

    async def fetch_travel_context(self, flight) -> dict:
        """Context dict for ``flight`` (anything with origin/destination/departure_date/preferred_airline)."""
        query = build_query(flight.origin, flight.destination, flight.preferred_airline)
        headlines = await self._fetch_headlines(query)
        now = datetime.utcnow()
        logger.info(f"Fetched {len(headlines)} headline(s) for {flight.origin}->{flight.destination}")
        return {
            "query": query,
            "summary": "Recent travel-related headlines for this route. Click links for details.",
            "headlines": headlines[:MAX_HEADLINES],
            "holiday_note": holiday_note(flight.departure_date),
            "fetched_at": now.isoformat(),
            "expires_at": (now + timedelta(hours=CONTEXT_TTL_HOURS)).isoformat(),
        }
