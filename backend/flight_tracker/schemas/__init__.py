from flight_tracker.schemas.flight import (
    FlightCreate,
    FlightResponse,
    FlightUpdate,
    FlightWithPrice,
    PriceRecordResponse,
)
from flight_tracker.schemas.job import (
    AgentCompletion,
    FlexPriceResponse,
    FlexScanResponse,
    JobResponse,
)

__all__ = [
    "FlightCreate",
    "FlightResponse",
    "FlightUpdate",
    "FlightWithPrice",
    "PriceRecordResponse",
    "AgentCompletion",
    "FlexPriceResponse",
    "FlexScanResponse",
    "JobResponse",
]
