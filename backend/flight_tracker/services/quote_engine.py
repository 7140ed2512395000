import httpx
import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from flight_tracker.exceptions import PricingConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FlightRequest:
    """The itinerary fields a quote source needs. Built from a Flight or a JSON snapshot."""
    origin: str
    destination: str
    departure_date: date
    return_date: Optional[date] = None
    passengers: int = 1
    cabin_class: str = "economy"
    preferred_airline: str = "any"
    flight_id: Optional[int] = None
    name: str = ""

    @classmethod
    def from_flight(cls, flight) -> "FlightRequest":
        return cls(
            origin=flight.origin,
            destination=flight.destination,
            departure_date=flight.departure_date,
            return_date=flight.return_date,
            passengers=flight.passengers or 1,
            cabin_class=flight.cabin_class or "economy",
            preferred_airline=flight.preferred_airline or "any",
            flight_id=flight.id,
            name=flight.name or "",
        )

    @classmethod
    def from_snapshot(cls, data: dict) -> "FlightRequest":
        return_date = data.get("return_date")
        return cls(
            origin=data["origin"],
            destination=data["destination"],
            departure_date=date.fromisoformat(str(data["departure_date"])[:10]),
            return_date=date.fromisoformat(str(return_date)[:10]) if return_date else None,
            passengers=int(data.get("passengers") or 1),
            cabin_class=data.get("cabin_class") or "economy",
            preferred_airline=data.get("preferred_airline") or "any",
            flight_id=data.get("id"),
            name=data.get("name") or "",
        )

    @property
    def adults(self) -> int:
        return max(1, self.passengers or 1)

    def shifted(self, days: int) -> "FlightRequest":
        """Same trip moved by ``days``; the trip length is preserved."""
        delta = timedelta(days=days)
        return replace(
            self,
            departure_date=self.departure_date + delta,
            return_date=self.return_date + delta if self.return_date else None,
        )


@dataclass
class Quote:
    price: Decimal
    currency: str = "USD"
    airline: Optional[str] = None
    source: str = "unknown"
    raw_data: Optional[dict] = field(default=None, repr=False)

    def to_result(self) -> dict:
        """JSON-safe form stored on job results."""
        return {
            "price": float(self.price),
            "currency": self.currency,
            "airline": self.airline,
            "source": self.source,
        }


# =============================================================================
# Amadeus
# =============================================================================

CABIN_MAP = {
    "economy": "ECONOMY",
    "premium_economy": "PREMIUM_ECONOMY",
    "business": "BUSINESS",
    "first": "FIRST",
}

AIRLINE_CODE_MAP = {
    "delta": "DL",
    "united": "UA",
    "american": "AA",
    "southwest": "WN",
    "alaska": "AS",
    "jetblue": "B6",
    "spirit": "NK",
    "frontier": "F9",
    "british airways": "BA",
    "lufthansa": "LH",
    "air france": "AF",
    "iberia": "IB",
    "turkish": "TK",
    "klm": "KL",
    "emirates": "EK",
    "qatar": "QR",
    "virgin atlantic": "VS",
    "air canada": "AC",
}


def normalize_airline_code(value: Optional[str]) -> Optional[str]:
    """IATA code for a carrier name, or the value itself when it already is a 2-char code."""
    if not value:
        return None
    value = str(value).strip()
    if not value:
        return None
    code = value.upper()
    if len(code) == 2 and code.isalnum():
        return code
    return AIRLINE_CODE_MAP.get(value.lower())


def _parse_offer_price(offer: Any) -> Optional[Decimal]:
    try:
        value = Decimal(str(offer["price"]["grandTotal"]))
    except (KeyError, TypeError, InvalidOperation):
        return None
    if not value.is_finite() or value <= 0:
        return None
    return value


class AmadeusSource:
    name = "amadeus"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        base_url: str = "https://test.api.amadeus.com",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = base_url.rstrip("/")
        self._transport = transport
        self._token: Optional[str] = None
        self._token_expires: Optional[datetime] = None

    def is_available(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    async def _get_token(self) -> str:
        if self._token and self._token_expires and datetime.utcnow() < self._token_expires:
            return self._token

        async with self._client(10.0) as client:
            response = await client.post(
                f"{self.base_url}/v1/security/oauth2/token",
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                },
            )
        if response.status_code in (401, 403):
            raise PricingConfigurationError(
                f"Amadeus rejected the configured credentials (HTTP {response.status_code})"
            )
        response.raise_for_status()
        data = response.json()
        self._token = data["access_token"]
        self._token_expires = datetime.utcnow() + timedelta(seconds=data.get("expires_in", 1799) - 60)
        return self._token

    async def search_offers(self, request: FlightRequest) -> list:
        token = await self._get_token()
        params = {
            "originLocationCode": request.origin,
            "destinationLocationCode": request.destination,
            "departureDate": request.departure_date.isoformat(),
            "adults": request.adults,
            "travelClass": CABIN_MAP.get((request.cabin_class or "").lower(), "ECONOMY"),
            "currencyCode": "USD",
        }
        if request.return_date:
            params["returnDate"] = request.return_date.isoformat()
        airline_code = normalize_airline_code(
            None if (request.preferred_airline or "").lower() == "any" else request.preferred_airline
        )
        if airline_code:
            params["includedAirlineCodes"] = airline_code

        async with self._client(30.0) as client:
            response = await client.get(
                f"{self.base_url}/v2/shopping/flight-offers",
                headers={"Authorization": f"Bearer {token}"},
                params=params,
            )
        if response.status_code == 401:
            # Token revoked early; forget it so the next call re-authenticates
            self._token = None
        response.raise_for_status()
        data = response.json()
        offers = data.get("data") if isinstance(data, dict) else None
        return offers if isinstance(offers, list) else []

    async def get_quote(self, request: FlightRequest) -> Optional[Quote]:
        """Cheapest offer, or None when Amadeus returned nothing usable. Ties keep the first offer."""
        best: Optional[Quote] = None
        for offer in await self.search_offers(request):
            price = _parse_offer_price(offer)
            if price is None:
                continue
            if best is None or price < best.price:
                carriers = offer.get("validatingAirlineCodes") or []
                best = Quote(
                    price=price,
                    currency=offer.get("price", {}).get("currency") or "USD",
                    airline=carriers[0] if carriers else None,
                    source=self.name,
                    raw_data=offer,
                )
        return best


# =============================================================================
# Engine
# =============================================================================

class QuoteEngine:
    """
    Best single quote for an itinerary.

    Amadeus is tried first when configured. The scraper is used when Amadeus
    is not configured, returns no usable offer, or fails over HTTP. Rejected
    credentials are a configuration problem and propagate as-is. Nothing is
    retried here; callers decide.
    """

    def __init__(self, scraper, amadeus: Optional[AmadeusSource] = None):
        self.scraper = scraper
        self.amadeus = amadeus

    async def get_quote(self, request: FlightRequest, browser=None) -> Quote:
        if self.amadeus is not None and self.amadeus.is_available():
            try:
                quote = await self.amadeus.get_quote(request)
            except PricingConfigurationError:
                logger.error(f"Configuration error: Amadeus credentials rejected for {request.origin}->{request.destination}")
                raise
            except (httpx.HTTPError, ValueError) as e:
                logger.warning(f"Amadeus failed for {request.origin}->{request.destination}, falling back to scraper: {e}")
                quote = None
            if quote is not None:
                logger.info(f"Amadeus quote {request.origin}->{request.destination}: ${quote.price} ({quote.airline})")
                return quote
            logger.info(f"No Amadeus offers for {request.origin}->{request.destination}, using scraper")

        return await self.scraper.get_quote(request, browser=browser)
