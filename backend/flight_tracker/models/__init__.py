# SQLAlchemy models
from flight_tracker.models.flight import Flight, CabinClass, CheckStatus
from flight_tracker.models.price_record import PriceRecord
from flight_tracker.models.job import Job, JobType, JobStatus
from flight_tracker.models.flex_price import FlexPriceEntry
from flight_tracker.models.context_snapshot import ContextSnapshot

__all__ = [
    "Flight",
    "PriceRecord",
    "Job",
    "FlexPriceEntry",
    "ContextSnapshot",
    # Enums
    "CabinClass",
    "CheckStatus",
    "JobType",
    "JobStatus",
]
