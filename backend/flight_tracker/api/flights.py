from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from flight_tracker.api.deps import get_container
from flight_tracker.container import ServiceContainer
from flight_tracker.database import get_db
from flight_tracker.models import Flight, JobType
from flight_tracker.schemas import (
    FlexPriceResponse,
    FlexScanResponse,
    FlightCreate,
    FlightResponse,
    FlightUpdate,
    FlightWithPrice,
    JobResponse,
    PriceRecordResponse,
)
from flight_tracker.services import contexts, flex_prices, flights, job_store, price_history

router = APIRouter()


def _get_flight_or_404(db: Session, flight_id: int) -> Flight:
    flight = flights.get_flight(db, flight_id)
    if not flight:
        raise HTTPException(status_code=404, detail="Flight not found")
    return flight


@router.get("", response_model=List[FlightWithPrice])
async def list_flights(
    active_only: bool = True,
    db: Session = Depends(get_db)
):
    rows = price_history.flights_with_latest_price(db, active_only=active_only)
    return [
        FlightWithPrice(**FlightResponse.model_validate(row.pop("flight")).model_dump(), **row)
        for row in rows
    ]


@router.post("", response_model=FlightResponse, status_code=201)
async def create_flight(
    flight: FlightCreate,
    db: Session = Depends(get_db)
):
    data = flight.model_dump()
    data["cabin_class"] = flight.cabin_class.value
    return flights.create_flight(db, **data)


# ============================================================================
# Check triggers
# ============================================================================

@router.post("/check", response_model=JobResponse, status_code=202)
async def check_all_flights(
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    """Queue a price check for every active flight."""
    active = flights.list_active_flights(db)
    return await container.job_service.create_and_run_job(
        db, JobType.CHECK_ALL, progress_total=len(active), payload={"origin": "api"},
    )


@router.get("/{flight_id}", response_model=FlightResponse)
async def get_flight(
    flight_id: int,
    db: Session = Depends(get_db)
):
    return _get_flight_or_404(db, flight_id)


@router.put("/{flight_id}", response_model=FlightResponse)
async def update_flight(
    flight_id: int,
    flight_update: FlightUpdate,
    db: Session = Depends(get_db)
):
    flight = _get_flight_or_404(db, flight_id)
    update_data = flight_update.model_dump(exclude_unset=True)
    if update_data.get("cabin_class") is not None:
        update_data["cabin_class"] = update_data["cabin_class"].value

    departure = update_data.get("departure_date", flight.departure_date)
    return_date = update_data.get("return_date", flight.return_date)
    if return_date is not None and return_date < departure:
        raise HTTPException(status_code=422, detail="return_date must not be before departure_date")

    return flights.update_flight(db, flight, **update_data)


@router.delete("/{flight_id}")
async def delete_flight(
    flight_id: int,
    db: Session = Depends(get_db)
):
    flight = _get_flight_or_404(db, flight_id)
    flights.deactivate_flight(db, flight)
    return {"status": "deactivated", "id": flight_id}


@router.get("/{flight_id}/prices", response_model=List[PriceRecordResponse])
async def get_prices(
    flight_id: int,
    days: int = Query(default=30, ge=1, le=365),
    db: Session = Depends(get_db)
):
    _get_flight_or_404(db, flight_id)
    return price_history.get_price_history(db, flight_id, days=days)


@router.get("/{flight_id}/summary")
async def get_price_summary(
    flight_id: int,
    days: int = Query(default=30, ge=1, le=365),
    db: Session = Depends(get_db)
):
    _get_flight_or_404(db, flight_id)
    summary = price_history.get_price_summary(db, flight_id)
    summary["trend"] = price_history.analyze_price_trend(
        price_history.get_price_history(db, flight_id, days=days)
    ).to_dict()
    return summary


@router.post("/{flight_id}/check", response_model=JobResponse, status_code=202)
async def check_flight(
    flight_id: int,
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    _get_flight_or_404(db, flight_id)
    return await container.job_service.create_and_run_job(
        db, JobType.CHECK_NOW, flight_id=flight_id, progress_total=1,
    )


# ============================================================================
# Flexible dates
# ============================================================================

@router.post("/{flight_id}/flex-scan", response_model=JobResponse, status_code=202)
async def flex_scan(
    flight_id: int,
    window: Optional[int] = Query(default=None, ge=1, le=14),
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    _get_flight_or_404(db, flight_id)
    return await container.job_service.create_and_run_job(
        db, JobType.FLEX_SCAN, flight_id=flight_id, window=window,
    )


@router.get("/{flight_id}/flex", response_model=FlexScanResponse)
async def get_flex_prices(
    flight_id: int,
    window: int = Query(default=5, ge=1, le=14),
    max_age_hours: int = Query(default=6, ge=1),
    db: Session = Depends(get_db)
):
    flight = _get_flight_or_404(db, flight_id)
    view = flex_prices.get_flex_prices(
        db,
        flight_id,
        window=window,
        max_age_hours=max_age_hours,
        cabin_class=flight.cabin_class,
        passengers=flight.passengers,
    )
    priced = view.priced_rows
    best = min(priced, key=lambda row: row.price) if priced else None
    return FlexScanResponse(
        flight_id=flight_id,
        window=window,
        expected=view.expected,
        complete=view.is_complete,
        failed_count=view.failed_count,
        best=FlexPriceResponse.model_validate(best) if best else None,
        prices=[FlexPriceResponse.model_validate(row) for row in view.rows],
    )


# ============================================================================
# Travel context
# ============================================================================

@router.post("/{flight_id}/context-refresh", response_model=JobResponse, status_code=202)
async def refresh_context(
    flight_id: int,
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    _get_flight_or_404(db, flight_id)
    return await container.job_service.create_and_run_job(
        db, JobType.CONTEXT_REFRESH, flight_id=flight_id, progress_total=1,
    )


@router.get("/{flight_id}/context")
async def get_context(
    flight_id: int,
    max_age_hours: int = Query(default=6, ge=1),
    db: Session = Depends(get_db)
):
    _get_flight_or_404(db, flight_id)
    cached = contexts.get_context(db, flight_id, max_age_hours=max_age_hours)
    if cached is None:
        return {"flight_id": flight_id, "context": None, "fetched_at": None}
    return {
        "flight_id": flight_id,
        "context": cached.context,
        "fetched_at": cached.snapshot.fetched_at,
    }


@router.get("/{flight_id}/jobs", response_model=List[JobResponse])
async def list_flight_jobs(
    flight_id: int,
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db)
):
    _get_flight_or_404(db, flight_id)
    return job_store.list_jobs_for_flight(db, flight_id, limit=limit)
