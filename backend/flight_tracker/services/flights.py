import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from flight_tracker.models import Flight, CheckStatus

logger = logging.getLogger(__name__)


def get_flight(db: Session, flight_id: int) -> Optional[Flight]:
    return db.get(Flight, flight_id)


def list_flights(db: Session, active_only: bool = True) -> List[Flight]:
    query = db.query(Flight)
    if active_only:
        query = query.filter(Flight.is_active == True)
    return query.order_by(Flight.created_at.desc(), Flight.id.desc()).all()


def list_active_flights(db: Session) -> List[Flight]:
    """Active flights in creation order, the order ``check_all`` walks them."""
    return (
        db.query(Flight)
        .filter(Flight.is_active == True)
        .order_by(Flight.created_at, Flight.id)
        .all()
    )


def create_flight(db: Session, **fields) -> Flight:
    flight = Flight(**fields)
    flight.origin = flight.origin.upper()
    flight.destination = flight.destination.upper()
    if not flight.name:
        flight.name = f"{flight.origin} to {flight.destination}"
    db.add(flight)
    db.commit()
    db.refresh(flight)
    logger.info(f"Created flight {flight.id}: {flight.origin}->{flight.destination} {flight.departure_date}")
    return flight


def update_flight(db: Session, flight: Flight, **fields) -> Flight:
    for field, value in fields.items():
        if field in ("origin", "destination") and value:
            value = value.upper()
        setattr(flight, field, value)
    db.commit()
    db.refresh(flight)
    return flight


def deactivate_flight(db: Session, flight: Flight) -> Flight:
    flight.is_active = False
    db.commit()
    db.refresh(flight)
    logger.info(f"Deactivated flight {flight.id}")
    return flight


def set_check_status(
    db: Session,
    flight_id: int,
    status: CheckStatus,
    error: Optional[str] = None,
    commit: bool = True,
) -> None:
    """Record the outcome of the latest check attempt on the flight row."""
    flight = db.get(Flight, flight_id)
    if flight is None:
        logger.warning(f"Cannot record check status for missing flight {flight_id}")
        return
    flight.last_check_status = CheckStatus(status).value
    flight.last_check_error = error
    if status != CheckStatus.RUNNING:
        flight.last_checked_at = datetime.utcnow()
    if commit:
        db.commit()


def flight_snapshot(flight: Flight) -> dict:
    """JSON-safe copy of the itinerary fields a remote executor needs."""
    return {
        "id": flight.id,
        "name": flight.name,
        "origin": flight.origin,
        "destination": flight.destination,
        "departure_date": flight.departure_date.isoformat(),
        "return_date": flight.return_date.isoformat() if flight.return_date else None,
        "passengers": flight.passengers,
        "cabin_class": flight.cabin_class,
        "preferred_airline": flight.preferred_airline,
        "notify_email": flight.notify_email,
    }
