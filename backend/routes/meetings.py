"""Read API over the aggregated engagement time series."""

import logging
import time
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel

from services.aggregation import AggregationStore

router = APIRouter(tags=["meetings"])
logger = logging.getLogger(__name__)

RECENT_WINDOW_MS = 5 * 60 * 1000


class ParticipantAggregateResponse(BaseModel):
    meeting_id: str
    participant_id: str
    total_frames: int
    total_score: float
    average_score: float
    first_frame_ts: int | None = None
    last_frame_ts: int | None = None
    time_series_start: int | None = None
    time_series_end: int | None = None
    sampling_rate_ms: float
    last_update: int | None = None


class TimeBucketSummaryResponse(BaseModel):
    bucket_index: int
    bucket_start: int
    bucket_end: int
    samples: int
    total_score: float
    average_score: float
    emotion_sums: dict[str, float]


def get_aggregation(request: Request) -> AggregationStore:
    aggregation = getattr(request.app.state, "aggregation", None)
    if aggregation is None:
        raise HTTPException(status_code=503, detail="Aggregation store not initialised")
    return aggregation


def _aggregate_response(agg: Any) -> ParticipantAggregateResponse:
    return ParticipantAggregateResponse(
        meeting_id=agg.meeting_id,
        participant_id=agg.participant_id,
        total_frames=agg.total_frames,
        total_score=agg.total_score,
        average_score=agg.average_score,
        first_frame_ts=agg.first_frame_ts,
        last_frame_ts=agg.last_frame_ts,
        time_series_start=agg.time_series_start,
        time_series_end=agg.time_series_end,
        sampling_rate_ms=agg.sampling_rate_ms,
        last_update=agg.last_update,
    )


@router.get("/meetings/{meeting_id}/participants", response_model=list[ParticipantAggregateResponse])
def list_participants(meeting_id: str, request: Request) -> list[ParticipantAggregateResponse]:
    """All participant aggregates of a meeting."""
    aggregation = get_aggregation(request)
    return [_aggregate_response(agg) for agg in aggregation.list_participant_aggregates(meeting_id)]


@router.get(
    "/meetings/{meeting_id}/participants/{participant_id}",
    response_model=ParticipantAggregateResponse,
)
def get_participant(meeting_id: str, participant_id: str, request: Request) -> ParticipantAggregateResponse:
    aggregation = get_aggregation(request)
    agg = aggregation.get_participant_aggregate(meeting_id, participant_id)
    if agg is None:
        raise HTTPException(status_code=404, detail="Participant not found")
    return _aggregate_response(agg)


@router.get(
    "/meetings/{meeting_id}/participants/{participant_id}/summaries",
    response_model=list[TimeBucketSummaryResponse],
)
def list_summaries(meeting_id: str, participant_id: str, request: Request) -> list[TimeBucketSummaryResponse]:
    """Time-bucket summaries in bucket order. Gaps are simply absent buckets."""
    aggregation = get_aggregation(request)
    return [
        TimeBucketSummaryResponse(
            bucket_index=s.bucket_index,
            bucket_start=s.bucket_start,
            bucket_end=s.bucket_end,
            samples=s.samples,
            total_score=s.total_score,
            average_score=s.average_score,
            emotion_sums=s.emotion_sums,
        )
        for s in aggregation.list_summaries(meeting_id, participant_id)
    ]


@router.get("/meetings/{meeting_id}/participants/{participant_id}/analyses")
def list_analyses(
    meeting_id: str,
    participant_id: str,
    request: Request,
    since_ms: int | None = Query(None, description="Only analyses at or after this epoch-ms timestamp"),
) -> list[dict[str, Any]]:
    """Per-frame analyses, newest first. Defaults to the last five minutes."""
    aggregation = get_aggregation(request)
    if since_ms is None:
        since_ms = int(time.time() * 1000) - RECENT_WINDOW_MS
    return aggregation.list_analyses(meeting_id, participant_id, since_ms=since_ms)
