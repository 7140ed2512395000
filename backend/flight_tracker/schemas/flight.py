import re
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from flight_tracker.models import CabinClass

IATA_PATTERN = re.compile(r"^[A-Za-z]{3}$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _airport_code(value: str) -> str:
    value = value.strip()
    if not IATA_PATTERN.match(value):
        raise ValueError("Airport code must be 3 letters (IATA)")
    return value.upper()


def _email(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    if not EMAIL_PATTERN.match(value):
        raise ValueError("Invalid e-mail address")
    return value


class FlightBase(BaseModel):
    name: Optional[str] = None
    origin: str
    destination: str
    departure_date: date
    return_date: Optional[date] = None
    passengers: int = Field(default=1, ge=1, le=9)
    cabin_class: CabinClass = CabinClass.ECONOMY
    preferred_airline: str = "any"
    notify_email: Optional[str] = None
    price_threshold: Optional[Decimal] = Field(default=None, gt=0)

    @field_validator("origin", "destination")
    @classmethod
    def check_airport(cls, value: str) -> str:
        return _airport_code(value)

    @field_validator("notify_email")
    @classmethod
    def check_email(cls, value: Optional[str]) -> Optional[str]:
        return _email(value)


class FlightCreate(FlightBase):
    @model_validator(mode="after")
    def check_dates(self):
        if self.return_date is not None and self.return_date < self.departure_date:
            raise ValueError("return_date must not be before departure_date")
        if self.origin == self.destination:
            raise ValueError("origin and destination must differ")
        return self


class FlightUpdate(BaseModel):
    name: Optional[str] = None
    origin: Optional[str] = None
    destination: Optional[str] = None
    departure_date: Optional[date] = None
    return_date: Optional[date] = None
    passengers: Optional[int] = Field(default=None, ge=1, le=9)
    cabin_class: Optional[CabinClass] = None
    preferred_airline: Optional[str] = None
    is_active: Optional[bool] = None
    notify_email: Optional[str] = None
    price_threshold: Optional[Decimal] = Field(default=None, gt=0)

    @field_validator("origin", "destination")
    @classmethod
    def check_airport(cls, value: Optional[str]) -> Optional[str]:
        return _airport_code(value) if value is not None else None

    @field_validator("notify_email")
    @classmethod
    def check_email(cls, value: Optional[str]) -> Optional[str]:
        return _email(value)


class FlightResponse(BaseModel):
    id: int
    name: str
    origin: str
    destination: str
    departure_date: date
    return_date: Optional[date] = None
    passengers: int
    cabin_class: str
    preferred_airline: str
    is_active: bool
    notify_email: Optional[str] = None
    price_threshold: Optional[Decimal] = None
    last_checked_at: Optional[datetime] = None
    last_check_status: Optional[str] = None
    last_check_error: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class FlightWithPrice(FlightResponse):
    current_price: Optional[Decimal] = None
    previous_price: Optional[Decimal] = None
    lowest_price: Optional[Decimal] = None
    highest_price: Optional[Decimal] = None
    airline: Optional[str] = None
    last_checked: Optional[datetime] = None
    check_count: int = 0


class PriceRecordResponse(BaseModel):
    id: int
    flight_id: int
    price: Decimal
    currency: str
    airline: Optional[str] = None
    stops: Optional[int] = None
    duration_minutes: Optional[int] = None
    source: str
    checked_at: datetime

    class Config:
        from_attributes = True
