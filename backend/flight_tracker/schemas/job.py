from datetime import date, datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel


class JobResponse(BaseModel):
    id: int
    type: str
    flight_id: Optional[int] = None
    status: str
    progress_current: int
    progress_total: int
    payload: Optional[Any] = None
    result: Optional[Any] = None
    error_text: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AgentCompletion(BaseModel):
    # Left as a plain string so an unknown status maps to 422 from the bridge
    status: str
    result: Optional[Any] = None
    error_text: Optional[str] = None
    progress_current: Optional[int] = None


class FlexPriceResponse(BaseModel):
    departure_date: date
    return_date: Optional[date] = None
    cabin_class: str
    passengers: int
    price: Optional[Decimal] = None
    currency: str
    airline: Optional[str] = None
    source: str
    checked_at: datetime

    class Config:
        from_attributes = True


class FlexScanResponse(BaseModel):
    flight_id: int
    window: int
    expected: int
    complete: bool
    failed_count: int
    best: Optional[FlexPriceResponse] = None
    prices: List[FlexPriceResponse]
