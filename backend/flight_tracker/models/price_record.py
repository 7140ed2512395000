from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, Numeric, String
from sqlalchemy.orm import relationship

from flight_tracker.database import Base


class PriceRecord(Base):
    """
    Immutable price observation for a flight.

    Rows are append-only. The row with the greatest ``checked_at`` is the
    current price; ``checked_at`` is stamped in Python so two checks in the
    same second still order correctly.
    """
    __tablename__ = "prices"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    flight_id = Column(
        Integer,
        ForeignKey("flights.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    price = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), default="USD", nullable=False)

    airline = Column(String(100), nullable=True)
    stops = Column(Integer, nullable=True)
    duration_minutes = Column(Integer, nullable=True)
    departure_time = Column(String(20), nullable=True)
    arrival_time = Column(String(20), nullable=True)

    # Which quote path produced the row: amadeus, google_flights, agent, ...
    source = Column(String(50), default="google_flights", nullable=False)
    raw_data = Column(JSON, nullable=True)

    checked_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    flight = relationship("Flight", back_populates="prices")

    def __repr__(self) -> str:
        return f"<PriceRecord {self.id}: ${self.price} on {self.checked_at}>"
