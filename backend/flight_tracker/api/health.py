from fastapi import APIRouter, Depends
from sqlalchemy import func, text
from sqlalchemy.orm import Session

from flight_tracker.api.deps import get_container
from flight_tracker.container import ServiceContainer
from flight_tracker.database import get_db
from flight_tracker.models import Job

router = APIRouter()


@router.get("/health")
async def health_check(
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    try:
        db.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"

    jobs = {}
    if db_status == "healthy":
        jobs = dict(db.query(Job.status, func.count(Job.id)).group_by(Job.status).all())

    return {
        "status": "ok" if db_status == "healthy" else "degraded",
        "database": db_status,
        "execution_mode": container.executor.mode,
        "scheduler_running": container.scheduler.running,
        "jobs": jobs,
    }
