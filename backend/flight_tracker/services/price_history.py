"""
Append-only price history and the aggregate views read from it.

"Current" is the row with the greatest ``checked_at`` (ties broken by the
newer id), "previous" the one before it, "lowest"/"highest" the global
min/max over every row of the flight.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from flight_tracker.models import Flight, PriceRecord

logger = logging.getLogger(__name__)

# Percent change beyond which the trend counts as moving
TREND_THRESHOLD_PERCENT = 5.0


@dataclass
class PriceTrend:
    trend: str  # dropping | rising | stable | unknown
    change_percent: float = 0.0
    current: Optional[Decimal] = None
    lowest: Optional[Decimal] = None
    highest: Optional[Decimal] = None
    average: Optional[Decimal] = None
    data_points: int = 0

    def to_dict(self) -> dict:
        return {
            "trend": self.trend,
            "change_percent": self.change_percent,
            "current": float(self.current) if self.current is not None else None,
            "lowest": float(self.lowest) if self.lowest is not None else None,
            "highest": float(self.highest) if self.highest is not None else None,
            "average": float(self.average) if self.average is not None else None,
            "data_points": self.data_points,
        }


def save_price(
    db: Session,
    flight_id: int,
    price: Decimal,
    currency: str = "USD",
    airline: Optional[str] = None,
    source: str = "google_flights",
    raw_data: Optional[dict] = None,
    stops: Optional[int] = None,
    duration_minutes: Optional[int] = None,
    departure_time: Optional[str] = None,
    arrival_time: Optional[str] = None,
    commit: bool = True,
) -> PriceRecord:
    record = PriceRecord(
        flight_id=flight_id,
        price=Decimal(str(price)),
        currency=currency or "USD",
        airline=airline or None,
        source=source or "google_flights",
        raw_data=raw_data,
        stops=stops,
        duration_minutes=duration_minutes,
        departure_time=departure_time,
        arrival_time=arrival_time,
        checked_at=datetime.utcnow(),
    )
    db.add(record)
    if commit:
        db.commit()
        db.refresh(record)
    else:
        db.flush()
    logger.info(f"Saved price ${record.price} {record.currency} for flight {flight_id} ({record.source})")
    return record


def _newest_first(db: Session, flight_id: int):
    return (
        db.query(PriceRecord)
        .filter(PriceRecord.flight_id == flight_id)
        .order_by(PriceRecord.checked_at.desc(), PriceRecord.id.desc())
    )


def get_latest_price(db: Session, flight_id: int) -> Optional[PriceRecord]:
    return _newest_first(db, flight_id).first()


def get_previous_price(db: Session, flight_id: int) -> Optional[PriceRecord]:
    return _newest_first(db, flight_id).offset(1).first()


def get_lowest_price(db: Session, flight_id: int) -> Optional[PriceRecord]:
    return (
        db.query(PriceRecord)
        .filter(PriceRecord.flight_id == flight_id)
        .order_by(PriceRecord.price.asc(), PriceRecord.checked_at.desc())
        .first()
    )


def get_highest_price(db: Session, flight_id: int) -> Optional[PriceRecord]:
    return (
        db.query(PriceRecord)
        .filter(PriceRecord.flight_id == flight_id)
        .order_by(PriceRecord.price.desc(), PriceRecord.checked_at.desc())
        .first()
    )


def get_price_history(db: Session, flight_id: int, days: int = 30) -> List[PriceRecord]:
    """Rows from the last ``days`` days, oldest first."""
    cutoff = datetime.utcnow() - timedelta(days=days)
    return (
        db.query(PriceRecord)
        .filter(PriceRecord.flight_id == flight_id, PriceRecord.checked_at >= cutoff)
        .order_by(PriceRecord.checked_at.asc(), PriceRecord.id.asc())
        .all()
    )


def analyze_price_trend(prices: List[PriceRecord]) -> PriceTrend:
    """
    Summarize a window of observations (oldest first).

    The change is measured from the oldest to the newest observation; more
    than 5% down is "dropping", more than 5% up is "rising".
    """
    if not prices:
        return PriceTrend(trend="unknown")

    values = [Decimal(p.price) for p in prices]
    current = values[-1]
    oldest = values[0]
    change = float((current - oldest) / oldest * 100) if oldest else 0.0
    change = round(change, 1)

    trend = "stable"
    if change < -TREND_THRESHOLD_PERCENT:
        trend = "dropping"
    elif change > TREND_THRESHOLD_PERCENT:
        trend = "rising"

    average = (sum(values) / len(values)).quantize(Decimal("0.01"))
    return PriceTrend(
        trend=trend,
        change_percent=change,
        current=current,
        lowest=min(values),
        highest=max(values),
        average=average,
        data_points=len(values),
    )


def get_price_summary(db: Session, flight_id: int) -> dict:
    latest = get_latest_price(db, flight_id)
    previous = get_previous_price(db, flight_id)
    stats = (
        db.query(
            func.min(PriceRecord.price),
            func.max(PriceRecord.price),
            func.avg(PriceRecord.price),
            func.count(PriceRecord.id),
        )
        .filter(PriceRecord.flight_id == flight_id)
        .one()
    )
    lowest, highest, average, count = stats
    return {
        "flight_id": flight_id,
        "current_price": latest.price if latest else None,
        "previous_price": previous.price if previous else None,
        "airline": latest.airline if latest else None,
        "last_checked": latest.checked_at if latest else None,
        "lowest_price": lowest,
        "highest_price": highest,
        "average_price": round(float(average), 2) if average is not None else None,
        "check_count": count,
    }


def flights_with_latest_price(db: Session, active_only: bool = False) -> List[dict]:
    """Every flight joined with its price summary, newest flights first."""
    query = db.query(Flight)
    if active_only:
        query = query.filter(Flight.is_active == True)
    flights = query.order_by(Flight.created_at.desc(), Flight.id.desc()).all()
    return [
        {"flight": flight, **get_price_summary(db, flight.id)}
        for flight in flights
    ]
