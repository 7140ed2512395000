import enum
from datetime import date, datetime

from sqlalchemy import Boolean, Column, Date, DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship

from flight_tracker.database import Base


class CabinClass(str, enum.Enum):
    ECONOMY = "economy"
    PREMIUM_ECONOMY = "premium_economy"
    BUSINESS = "business"
    FIRST = "first"


class CheckStatus(str, enum.Enum):
    OK = "ok"
    ERROR = "error"
    RUNNING = "running"


PREMIUM_CABINS = {
    CabinClass.PREMIUM_ECONOMY.value,
    CabinClass.BUSINESS.value,
    CabinClass.FIRST.value,
}


class Flight(Base):
    """
    A tracked itinerary.

    Flights are never hard-deleted by the service: deactivation flips
    ``is_active`` so history, jobs and caches stay attached.
    """
    __tablename__ = "flights"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)

    origin = Column(String(3), nullable=False)
    destination = Column(String(3), nullable=False)
    departure_date = Column(Date, nullable=False)
    return_date = Column(Date, nullable=True)  # Null for one-way

    passengers = Column(Integer, default=1, nullable=False)
    cabin_class = Column(String(20), default=CabinClass.ECONOMY.value, nullable=False)
    preferred_airline = Column(String(100), default="any", nullable=False)

    is_active = Column(Boolean, default=True, nullable=False, index=True)
    notify_email = Column(String(255), nullable=True)
    price_threshold = Column(Numeric(10, 2), nullable=True)

    # Last check bookkeeping: ok | error | running | null
    last_checked_at = Column(DateTime, nullable=True)
    last_check_status = Column(String(20), nullable=True)
    last_check_error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    prices = relationship("PriceRecord", back_populates="flight", cascade="all, delete-orphan", passive_deletes=True)
    jobs = relationship("Job", back_populates="flight", cascade="all, delete-orphan", passive_deletes=True)

    @property
    def route(self) -> str:
        return f"{self.origin} → {self.destination}"

    @property
    def trip_length_days(self) -> int | None:
        if self.return_date is None:
            return None
        return (self.return_date - self.departure_date).days

    @property
    def has_airline_preference(self) -> bool:
        return bool(self.preferred_airline) and self.preferred_airline.strip().lower() != "any"

    def __repr__(self) -> str:
        return f"<Flight {self.id}: {self.origin}-{self.destination} {self.departure_date}>"
