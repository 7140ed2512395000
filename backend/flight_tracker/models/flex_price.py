from datetime import datetime

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, Numeric, String, UniqueConstraint

from flight_tracker.database import Base


class FlexPriceEntry(Base):
    """
    Cached quote for a date-shifted variant of a flight.

    One row per (flight, departure_date, return_date, cabin_class,
    passengers); a later scan overwrites the earlier one. ``price`` is null
    and ``source`` is ``error`` when the probe failed, which tells "checked
    and failed" apart from "never checked".
    """
    __tablename__ = "flex_prices"
    __table_args__ = (
        UniqueConstraint(
            "flight_id", "departure_date", "return_date", "cabin_class", "passengers",
            name="uq_flex_prices_probe",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    flight_id = Column(
        Integer,
        ForeignKey("flights.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    departure_date = Column(Date, nullable=False)
    return_date = Column(Date, nullable=True)
    cabin_class = Column(String(20), nullable=False)
    passengers = Column(Integer, nullable=False)

    price = Column(Numeric(10, 2), nullable=True)
    currency = Column(String(3), default="USD", nullable=False)
    airline = Column(String(100), nullable=True)
    source = Column(String(50), default="amadeus", nullable=False)

    checked_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    @property
    def failed(self) -> bool:
        return self.source == "error"

    def __repr__(self) -> str:
        return f"<FlexPriceEntry {self.flight_id} {self.departure_date}: {self.price}>"
