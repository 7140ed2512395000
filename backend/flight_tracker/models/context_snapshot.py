from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Text

from flight_tracker.database import Base


class ContextSnapshot(Base):
    """Cached news/holiday signals for a flight. A time-bounded cache, newest row wins."""
    __tablename__ = "contexts"

    id = Column(Integer, primary_key=True, index=True)
    flight_id = Column(
        Integer,
        ForeignKey("flights.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Kept as text: a corrupt blob must read as "no cached context"
    context_json = Column(Text, nullable=False)
    fetched_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=True, index=True)

    def __repr__(self) -> str:
        return f"<ContextSnapshot {self.id}: flight {self.flight_id} at {self.fetched_at}>"
