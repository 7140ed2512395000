"""
Durable job rows and their state machine.

    queued -> running -> success | error
    running -> queued            (stuck-job reset only)

Claiming is a compare-and-set on ``status``: a caller owns a job only when
its ``UPDATE ... WHERE status = 'queued'`` touched exactly one row. On
PostgreSQL the candidate select also takes ``FOR UPDATE SKIP LOCKED`` so
concurrent claimants spread over different rows instead of queueing up
behind one lock.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Iterable, List, Optional

from sqlalchemy.orm import Session

from flight_tracker.exceptions import InvalidJobTransition
from flight_tracker.models import Job, JobStatus, JobType

logger = logging.getLogger(__name__)


UPDATABLE_FIELDS = {
    "status",
    "progress_current",
    "progress_total",
    "payload",
    "result",
    "error_text",
    "started_at",
    "finished_at",
}

# running -> queued is deliberately absent: only reset_stuck_jobs does that
ALLOWED_TRANSITIONS = {
    JobStatus.QUEUED.value: {JobStatus.RUNNING.value},
    JobStatus.RUNNING.value: {JobStatus.SUCCESS.value, JobStatus.ERROR.value},
    JobStatus.SUCCESS.value: set(),
    JobStatus.ERROR.value: set(),
}


def _status_value(status: Any) -> str:
    return status.value if isinstance(status, JobStatus) else str(status)


def create_job(
    db: Session,
    type: JobType | str,
    flight_id: Optional[int] = None,
    progress_total: int = 0,
    payload: Optional[dict] = None,
) -> Job:
    job = Job(
        type=JobType(type).value,
        flight_id=flight_id,
        status=JobStatus.QUEUED.value,
        progress_current=0,
        progress_total=progress_total or 0,
        payload=payload,
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    logger.info(f"Created job {job.id} ({job.type}) for flight {flight_id}")
    return job


def get_job(db: Session, job_id: int) -> Optional[Job]:
    return db.get(Job, job_id, populate_existing=True)


def list_jobs_for_flight(db: Session, flight_id: int, limit: int = 10) -> List[Job]:
    return (
        db.query(Job)
        .filter(Job.flight_id == flight_id)
        .order_by(Job.created_at.desc(), Job.id.desc())
        .limit(limit)
        .all()
    )


def list_queued_job_ids(db: Session) -> List[int]:
    """Ids of every queued job, oldest first."""
    rows = (
        db.query(Job.id)
        .filter(Job.status == JobStatus.QUEUED.value)
        .order_by(Job.created_at, Job.id)
        .all()
    )
    return [row.id for row in rows]


def update_job(db: Session, job_id: int, **fields) -> Optional[Job]:
    """
    Partially update a job.

    Only keys in UPDATABLE_FIELDS are applied; anything else is ignored. When
    no recognized key is left the call does nothing and returns None. A
    status change must follow ALLOWED_TRANSITIONS.
    """
    updates = {key: value for key, value in fields.items() if key in UPDATABLE_FIELDS}
    if not updates:
        return None

    job = get_job(db, job_id)
    if job is None:
        return None

    if "status" in updates:
        requested = _status_value(updates["status"])
        if requested != job.status:
            if requested not in ALLOWED_TRANSITIONS.get(job.status, set()):
                raise InvalidJobTransition(job.id, job.status, requested)
        updates["status"] = requested

    for key, value in updates.items():
        setattr(job, key, value)
    db.commit()
    return job


def start_job(db: Session, job_id: int) -> Optional[Job]:
    """Move one specific queued job to running. None if someone else got there first."""
    updated = (
        db.query(Job)
        .filter(Job.id == job_id, Job.status == JobStatus.QUEUED.value)
        .update(
            {"status": JobStatus.RUNNING.value, "started_at": datetime.utcnow()},
            synchronize_session=False,
        )
    )
    db.commit()
    if updated != 1:
        return None
    return get_job(db, job_id)


def claim_next_job(db: Session, job_types: Optional[Iterable[str]] = None) -> Optional[Job]:
    """
    Atomically take the oldest queued job.

    Exactly one of any number of concurrent callers receives a given job;
    the rest move on to the next candidate and get None once the queue is
    exhausted.
    """
    type_filter = [JobType(t).value for t in job_types] if job_types else None
    lost: set[int] = set()

    while True:
        query = db.query(Job.id).filter(Job.status == JobStatus.QUEUED.value)
        if type_filter:
            query = query.filter(Job.type.in_(type_filter))
        if lost:
            query = query.filter(Job.id.notin_(lost))
        candidate = (
            query.order_by(Job.created_at, Job.id)
            .with_for_update(skip_locked=True)
            .first()
        )
        if candidate is None:
            db.rollback()
            return None

        job_id = candidate.id
        updated = (
            db.query(Job)
            .filter(Job.id == job_id, Job.status == JobStatus.QUEUED.value)
            .update(
                {"status": JobStatus.RUNNING.value, "started_at": datetime.utcnow()},
                synchronize_session=False,
            )
        )
        db.commit()

        if updated == 1:
            logger.info(f"Claimed job {job_id}")
            return get_job(db, job_id)

        logger.debug(f"Lost claim race for job {job_id}")
        lost.add(job_id)


def finish_job(
    db: Session,
    job_id: int,
    status: JobStatus | str,
    result: Optional[Any] = None,
    error_text: Optional[str] = None,
    progress_current: Optional[int] = None,
) -> Optional[Job]:
    status = _status_value(status)
    if status not in (JobStatus.SUCCESS.value, JobStatus.ERROR.value):
        raise InvalidJobTransition(job_id, "running", status)

    fields = {"status": status, "finished_at": datetime.utcnow()}
    if result is not None:
        fields["result"] = result
    if error_text is not None:
        fields["error_text"] = error_text
    if progress_current is not None:
        fields["progress_current"] = progress_current
    job = update_job(db, job_id, **fields)
    if job is not None:
        log = logger.info if status == JobStatus.SUCCESS.value else logger.warning
        log(f"Job {job_id} ({job.type}) finished: {status}")
    return job


def reset_stuck_jobs(db: Session, threshold_minutes: int) -> int:
    """Return running jobs older than the threshold to the queue. Returns the count."""
    cutoff = datetime.utcnow() - timedelta(minutes=threshold_minutes)
    count = (
        db.query(Job)
        .filter(
            Job.status == JobStatus.RUNNING.value,
            Job.started_at.isnot(None),
            Job.started_at < cutoff,
        )
        .update(
            {"status": JobStatus.QUEUED.value, "started_at": None},
            synchronize_session=False,
        )
    )
    db.commit()
    if count:
        logger.warning(f"Reset {count} stuck job(s) running for more than {threshold_minutes} minutes")
    return count
