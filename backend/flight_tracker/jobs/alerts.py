import logging
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy.orm import sessionmaker

from flight_tracker.exceptions import ContextFetchError
from flight_tracker.services import contexts, flex_prices, flights, price_history
from flight_tracker.services.context_fetcher import ContextFetcher
from flight_tracker.services.notification import PriceDropAlert

logger = logging.getLogger(__name__)

FLEX_SUGGESTION_MAX_AGE_HOURS = 12
CONTEXT_MAX_AGE_HOURS = 6
TREND_WINDOW_DAYS = 30


class AlertSkipped(Exception):
    """The flight has nothing to alert about; not a failure."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class PriceAlertBuilder:
    """
    Assembles a PriceDropAlert from the reconciled price history, the flex
    cache and the context cache. A missing or stale context is fetched and
    cached; a failed fetch only leaves the context section out.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        context_fetcher: ContextFetcher,
        next_run_at: Optional[Callable[[], Optional[str]]] = None,
    ):
        self.session_factory = session_factory
        self.context_fetcher = context_fetcher
        self.next_run_at = next_run_at

    async def build(self, flight_id: int) -> PriceDropAlert:
        with self.session_factory() as db:
            flight = flights.get_flight(db, flight_id)
            if flight is None:
                raise AlertSkipped("Flight not found")
            if not flight.notify_email:
                raise AlertSkipped("No notification address")

            latest = price_history.get_latest_price(db, flight_id)
            if latest is None:
                raise AlertSkipped("No price history")
            previous = price_history.get_previous_price(db, flight_id)
            lowest = price_history.get_lowest_price(db, flight_id)
            history = price_history.get_price_history(db, flight_id, days=TREND_WINDOW_DAYS)
            trend = price_history.analyze_price_trend(history)

            current_price = Decimal(latest.price)
            flex_suggestion = None
            best_flex = flex_prices.get_best_flex_price(
                db,
                flight_id,
                max_age_hours=FLEX_SUGGESTION_MAX_AGE_HOURS,
                cabin_class=flight.cabin_class,
                passengers=flight.passengers,
            )
            if best_flex is not None:
                flex_suggestion = {
                    "price": best_flex.price,
                    "departure_date": best_flex.departure_date.isoformat(),
                    "return_date": best_flex.return_date.isoformat() if best_flex.return_date else None,
                    "savings": max(0, round(current_price - Decimal(best_flex.price))),
                }

            cached = contexts.get_context(db, flight_id, max_age_hours=CONTEXT_MAX_AGE_HOURS)
            alert = PriceDropAlert(
                to=flight.notify_email,
                flight_name=flight.name,
                route=flight.route,
                current_price=current_price,
                previous_price=Decimal(previous.price) if previous else current_price,
                lowest_price=Decimal(lowest.price) if lowest else current_price,
                airline=latest.airline,
                trend=trend.to_dict(),
                flex_suggestion=flex_suggestion,
                context=cached.context if cached else None,
                meta={"flight_id": flight_id},
            )

            if alert.context is None:
                alert.context = await self._refresh_context(db, flight)

        if self.next_run_at is not None:
            alert.next_run_at = self.next_run_at()
        return alert

    async def _refresh_context(self, db, flight) -> Optional[dict]:
        try:
            context = await self.context_fetcher.fetch_travel_context(flight)
        except ContextFetchError as e:
            logger.info(f"Context unavailable for flight {flight.id}: {e}")
            return None
        contexts.save_context(db, flight.id, context)
        return context
