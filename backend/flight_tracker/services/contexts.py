import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from flight_tracker.models import ContextSnapshot

logger = logging.getLogger(__name__)


@dataclass
class CachedContext:
    snapshot: ContextSnapshot
    context: dict


def _parse_expires_at(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    # Stored naive, in UTC
    if parsed.tzinfo is not None:
        parsed = parsed.replace(tzinfo=None) - (parsed.utcoffset() or timedelta(0))
    return parsed


def save_context(db: Session, flight_id: int, context: dict, commit: bool = True) -> ContextSnapshot:
    """Append a snapshot. Earlier snapshots stay; readers pick the newest."""
    snapshot = ContextSnapshot(
        flight_id=flight_id,
        context_json=json.dumps(context, default=str),
        fetched_at=datetime.utcnow(),
        expires_at=_parse_expires_at(context.get("expires_at")),
    )
    db.add(snapshot)
    if commit:
        db.commit()
        db.refresh(snapshot)
    else:
        db.flush()
    return snapshot


def _decode(snapshot: Optional[ContextSnapshot]) -> Optional[CachedContext]:
    if snapshot is None:
        return None
    try:
        context = json.loads(snapshot.context_json)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring unparseable context snapshot {snapshot.id} for flight {snapshot.flight_id}")
        return None
    if not isinstance(context, dict):
        return None
    return CachedContext(snapshot=snapshot, context=context)


def get_context(db: Session, flight_id: int, max_age_hours: float = 6) -> Optional[CachedContext]:
    """Newest snapshot fetched within ``max_age_hours``, or None."""
    cutoff = datetime.utcnow() - timedelta(hours=max_age_hours)
    snapshot = (
        db.query(ContextSnapshot)
        .filter(ContextSnapshot.flight_id == flight_id, ContextSnapshot.fetched_at >= cutoff)
        .order_by(ContextSnapshot.fetched_at.desc(), ContextSnapshot.id.desc())
        .first()
    )
    return _decode(snapshot)


def get_latest_context(db: Session, flight_id: int) -> Optional[CachedContext]:
    snapshot = (
        db.query(ContextSnapshot)
        .filter(ContextSnapshot.flight_id == flight_id)
        .order_by(ContextSnapshot.fetched_at.desc(), ContextSnapshot.id.desc())
        .first()
    )
    return _decode(snapshot)
