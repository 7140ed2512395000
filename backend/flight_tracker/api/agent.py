"""HTTP side of the remote agent: claim the next queued job, report how it went."""
import hmac
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response
from sqlalchemy.orm import Session

from flight_tracker.api.deps import get_container
from flight_tracker.container import ServiceContainer
from flight_tracker.database import get_db
from flight_tracker.exceptions import InvalidJobTransition, JobNotFound
from flight_tracker.schemas import AgentCompletion, JobResponse

logger = logging.getLogger(__name__)


def require_agent_token(
    authorization: Optional[str] = Header(default=None),
    container: ServiceContainer = Depends(get_container),
):
    expected = container.settings.agent_token
    if not expected:
        return
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(token.strip(), expected):
        logger.warning("Rejected agent request with missing or invalid token")
        raise HTTPException(status_code=401, detail="Invalid agent token")


router = APIRouter(dependencies=[Depends(require_agent_token)])


@router.get("/jobs")
async def claim_job(
    types: Optional[List[str]] = Query(default=None),
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    """Claim the oldest queued job. 204 when there is nothing to do."""
    try:
        claimed = container.bridge.claim(db, types)
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown job type in {types}")
    if claimed is None:
        return Response(status_code=204)
    return claimed


@router.post("/jobs/{job_id}/complete", response_model=JobResponse)
async def complete_job(
    job_id: int,
    completion: AgentCompletion,
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    try:
        return container.bridge.complete(
            db,
            job_id,
            completion.status,
            result=completion.result,
            error_text=completion.error_text,
            progress_current=completion.progress_current,
        )
    except JobNotFound:
        raise HTTPException(status_code=404, detail="Job not found")
    except InvalidJobTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
