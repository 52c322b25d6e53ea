"""Storage finalize push endpoint. Non-2xx responses make the platform redeliver."""

import logging

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from services.analysis import AnalysisOutcome, AnalysisTrigger, StorageEvent
from services.errors import TransientIOError

router = APIRouter(tags=["events"])
logger = logging.getLogger(__name__)


class StorageEventBody(BaseModel):
    """GCS object notification payload (only the fields we use)."""

    bucket: str = ""
    name: str


class AnalysisResponse(BaseModel):
    outcome: AnalysisOutcome
    score: float | None = None


def get_trigger(request: Request) -> AnalysisTrigger:
    trigger = getattr(request.app.state, "trigger", None)
    if trigger is None:
        raise HTTPException(status_code=503, detail="Analysis pipeline not initialised")
    return trigger


@router.post("/events/storage", response_model=AnalysisResponse)
def storage_event(body: StorageEventBody, request: Request) -> AnalysisResponse:
    """Analyze one finalized frame object."""
    trigger = get_trigger(request)
    try:
        result = trigger.handle(StorageEvent(bucket=body.bucket, name=body.name))
    except TransientIOError as exc:
        logger.error("[events] Transient failure for %s, requesting redelivery: %s", body.name, exc, exc_info=True)
        raise HTTPException(status_code=503, detail="Transient failure; retry") from exc
    return AnalysisResponse(
        outcome=result.outcome,
        score=result.score.score if result.score is not None else None,
    )
