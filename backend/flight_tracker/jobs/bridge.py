"""
Server side of the remote agent contract.

An agent claims the oldest queued job, runs it wherever it lives, and
reports back. Reported results are applied as the same side effects the
local runner produces, in one transaction with the job's final status.
"""
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from sqlalchemy.orm import Session

from flight_tracker.exceptions import InvalidJobTransition, JobNotFound
from flight_tracker.models import CheckStatus, Flight, Job, JobStatus, JobType
from flight_tracker.services import contexts, flex_prices, flights, job_store, price_history

logger = logging.getLogger(__name__)

COMPLETION_STATUSES = {JobStatus.SUCCESS.value, JobStatus.ERROR.value}


def coerce_price(value: Any) -> Optional[Decimal]:
    """A finite positive price from a reported value, or None when malformed."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        value = str(value)
    if not isinstance(value, str):
        return None
    try:
        price = Decimal(value.strip())
    except InvalidOperation:
        return None
    if not price.is_finite() or price <= 0:
        return None
    return price


def _coerce_date(value: Any) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _coerce_text(value: Any, max_length: int) -> Optional[str]:
    """A trimmed reported string cut to the column width, or None when it is not a string."""
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value[:max_length] or None


def _coerce_currency(value: Any) -> str:
    text = _coerce_text(value, 3)
    return text.upper() if text and len(text) == 3 and text.isalpha() else "USD"


@dataclass
class ApplyReport:
    applied: int = 0
    skipped: int = 0


def serialize_job(job: Job, flight: Optional[Flight] = None) -> dict:
    return {
        "id": job.id,
        "type": job.type,
        "flight_id": job.flight_id,
        "status": job.status,
        "progress_current": job.progress_current,
        "progress_total": job.progress_total,
        "payload": job.payload,
        "flight": flights.flight_snapshot(flight) if flight is not None else None,
        "created_at": job.created_at.isoformat() if job.created_at else None,
        "started_at": job.started_at.isoformat() if job.started_at else None,
    }


class RemoteAgentBridge:
    def claim(self, db: Session, job_types: Optional[Iterable[str]] = None) -> Optional[dict]:
        job = job_store.claim_next_job(db, job_types)
        if job is None:
            return None
        flight = flights.get_flight(db, job.flight_id) if job.flight_id else None
        return serialize_job(job, flight)

    def complete(
        self,
        db: Session,
        job_id: int,
        status: str,
        result: Any = None,
        error_text: Optional[str] = None,
        progress_current: Optional[int] = None,
    ) -> Job:
        if status not in COMPLETION_STATUSES:
            raise ValueError(f"Invalid completion status: {status}")

        job = job_store.get_job(db, job_id)
        if job is None:
            raise JobNotFound(job_id)
        if job.status != JobStatus.RUNNING.value:
            raise InvalidJobTransition(job_id, job.status, status)

        if progress_current is None and status == JobStatus.SUCCESS.value:
            progress_current = job.progress_total

        if status == JobStatus.ERROR.value:
            logger.warning(f"Remote agent reported job {job_id} ({job.type}) failed: {error_text}")
            return job_store.finish_job(
                db, job_id, JobStatus.ERROR, result=result, error_text=error_text or "Remote agent reported an error",
                progress_current=progress_current,
            )

        try:
            report = self._apply(db, job, result)
            finished = job_store.finish_job(
                db, job_id, JobStatus.SUCCESS, result=result, progress_current=progress_current,
            )
        except Exception as e:
            db.rollback()
            logger.exception(f"Failed to apply result of job {job_id} ({job.type})")
            return job_store.finish_job(
                db, job_id, JobStatus.ERROR, error_text=f"Failed to apply result: {e}",
            )

        logger.info(
            f"Remote job {job_id} ({job.type}) completed: "
            f"{report.applied} applied, {report.skipped} skipped"
        )
        return finished

    # ------------------------------------------------------------------
    # Side effects, staged on the session; finish_job commits them
    # ------------------------------------------------------------------

    def _apply(self, db: Session, job: Job, result: Any) -> ApplyReport:
        report = ApplyReport()
        if not isinstance(result, dict):
            return report

        if job.type == JobType.CHECK_NOW.value:
            flight_id = job.flight_id or result.get("flight_id")
            self._apply_quote(db, flight_id, result, report)
        elif job.type == JobType.CHECK_ALL.value:
            for item in result.get("results") or []:
                if not isinstance(item, dict):
                    report.skipped += 1
                    continue
                flight_id = item.get("flight_id")
                if item.get("error"):
                    if self._known_flight(db, flight_id):
                        flights.set_check_status(db, flight_id, CheckStatus.ERROR, str(item["error"]), commit=False)
                    continue
                self._apply_quote(db, flight_id, item, report)
        elif job.type == JobType.FLEX_SCAN.value:
            self._apply_flex(db, job, result, report)
        elif job.type == JobType.CONTEXT_REFRESH.value:
            context = result.get("context")
            if isinstance(context, dict) and self._known_flight(db, job.flight_id):
                contexts.save_context(db, job.flight_id, context, commit=False)
                report.applied += 1
            else:
                report.skipped += 1
        return report

    @staticmethod
    def _known_flight(db: Session, flight_id: Any) -> bool:
        return isinstance(flight_id, int) and not isinstance(flight_id, bool) and flights.get_flight(db, flight_id) is not None

    def _apply_quote(self, db: Session, flight_id: Any, item: dict, report: ApplyReport):
        price = coerce_price(item.get("price"))
        if price is None or not self._known_flight(db, flight_id):
            report.skipped += 1
            return
        raw_data = item.get("raw_data")
        price_history.save_price(
            db,
            flight_id,
            price,
            currency=_coerce_currency(item.get("currency")),
            airline=_coerce_text(item.get("airline"), 100),
            source=_coerce_text(item.get("source"), 50) or "agent",
            raw_data=raw_data if isinstance(raw_data, dict) else None,
            commit=False,
        )
        flights.set_check_status(db, flight_id, CheckStatus.OK, commit=False)
        report.applied += 1

    def _apply_flex(self, db: Session, job: Job, result: dict, report: ApplyReport):
        flight = flights.get_flight(db, job.flight_id) if job.flight_id else None
        if flight is None:
            return
        for item in result.get("results") or []:
            if not isinstance(item, dict):
                report.skipped += 1
                continue
            departure_date = _coerce_date(item.get("departure_date"))
            if departure_date is None:
                report.skipped += 1
                continue
            cabin_class = item.get("cabin_class")
            passengers = item.get("passengers")
            raw_price = item.get("price")
            price = coerce_price(raw_price)
            if raw_price is not None and price is None:
                report.skipped += 1
                continue
            flex_prices.upsert_flex_price(
                db,
                flight_id=flight.id,
                departure_date=departure_date,
                return_date=_coerce_date(item.get("return_date")),
                cabin_class=_coerce_text(cabin_class, 20) or flight.cabin_class,
                passengers=passengers if isinstance(passengers, int) and passengers > 0 else flight.passengers,
                price=price,
                currency=_coerce_currency(item.get("currency")),
                airline=_coerce_text(item.get("airline"), 100),
                source=flex_prices.FAILED_SOURCE if price is None else (_coerce_text(item.get("source"), 50) or "agent"),
                commit=False,
            )
            report.applied += 1
