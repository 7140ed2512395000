from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from flight_tracker.api.deps import get_container
from flight_tracker.container import ServiceContainer
from flight_tracker.database import get_db
from flight_tracker.schemas import JobResponse

router = APIRouter()


@router.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: int,
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    job = container.job_service.get_job(db, job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@router.post("/jobs/reset-stuck")
async def reset_stuck_jobs(
    threshold_minutes: Optional[int] = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    """Put jobs that have been running longer than the threshold back in the queue."""
    threshold = threshold_minutes or container.settings.stuck_job_threshold_minutes
    count = await container.job_service.reset_stuck_jobs(db, threshold)
    return {"reset": count, "threshold_minutes": threshold}


@router.get("/schedule")
async def get_schedule(container: ServiceContainer = Depends(get_container)):
    return container.scheduler.get_schedule_info()
