import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from flight_tracker.models import FlexPriceEntry

logger = logging.getLogger(__name__)

FAILED_SOURCE = "error"


@dataclass
class FlexPriceView:
    """Cached flex rows for a flight plus the completeness verdict."""
    window: int
    rows: List[FlexPriceEntry] = field(default_factory=list)

    @property
    def expected(self) -> int:
        return self.window * 2 + 1

    @property
    def is_complete(self) -> bool:
        # Row count only: failed probes still count as attempted
        return len(self.rows) >= self.expected

    @property
    def failed_count(self) -> int:
        return sum(1 for row in self.rows if row.source == FAILED_SOURCE)

    @property
    def priced_rows(self) -> List[FlexPriceEntry]:
        return [row for row in self.rows if row.price is not None]


def upsert_flex_price(
    db: Session,
    flight_id: int,
    departure_date: date,
    return_date: Optional[date],
    cabin_class: str,
    passengers: int,
    price: Optional[Decimal],
    currency: str = "USD",
    airline: Optional[str] = None,
    source: str = "amadeus",
    commit: bool = True,
) -> FlexPriceEntry:
    """Insert or overwrite the row for this (flight, dates, cabin, passengers) probe."""
    query = db.query(FlexPriceEntry).filter(
        FlexPriceEntry.flight_id == flight_id,
        FlexPriceEntry.departure_date == departure_date,
        FlexPriceEntry.cabin_class == cabin_class,
        FlexPriceEntry.passengers == passengers,
    )
    if return_date is None:
        query = query.filter(FlexPriceEntry.return_date.is_(None))
    else:
        query = query.filter(FlexPriceEntry.return_date == return_date)

    entry = query.first()
    if entry is None:
        entry = FlexPriceEntry(
            flight_id=flight_id,
            departure_date=departure_date,
            return_date=return_date,
            cabin_class=cabin_class,
            passengers=passengers,
        )
        db.add(entry)

    entry.price = Decimal(str(price)) if price is not None else None
    entry.currency = currency or "USD"
    entry.airline = airline
    entry.source = source or "amadeus"
    entry.checked_at = datetime.utcnow()

    if commit:
        db.commit()
        db.refresh(entry)
    else:
        db.flush()
    return entry


def get_flex_prices(
    db: Session,
    flight_id: int,
    window: int = 5,
    max_age_hours: int = 6,
    cabin_class: Optional[str] = None,
    passengers: Optional[int] = None,
) -> FlexPriceView:
    cutoff = datetime.utcnow() - timedelta(hours=max_age_hours)
    query = db.query(FlexPriceEntry).filter(
        FlexPriceEntry.flight_id == flight_id,
        FlexPriceEntry.checked_at >= cutoff,
    )
    if cabin_class:
        query = query.filter(FlexPriceEntry.cabin_class == cabin_class)
    if passengers:
        query = query.filter(FlexPriceEntry.passengers == passengers)

    rows = query.order_by(FlexPriceEntry.departure_date.asc()).all()
    return FlexPriceView(window=window, rows=rows)


def get_best_flex_price(
    db: Session,
    flight_id: int,
    max_age_hours: int = 12,
    cabin_class: Optional[str] = None,
    passengers: Optional[int] = None,
) -> Optional[FlexPriceEntry]:
    cutoff = datetime.utcnow() - timedelta(hours=max_age_hours)
    query = db.query(FlexPriceEntry).filter(
        FlexPriceEntry.flight_id == flight_id,
        FlexPriceEntry.checked_at >= cutoff,
        FlexPriceEntry.price.isnot(None),
    )
    if cabin_class:
        query = query.filter(FlexPriceEntry.cabin_class == cabin_class)
    if passengers:
        query = query.filter(FlexPriceEntry.passengers == passengers)
    return query.order_by(FlexPriceEntry.price.asc(), FlexPriceEntry.departure_date.asc()).first()
