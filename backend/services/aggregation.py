"""
Per-participant engagement aggregation over a TransactionalStore.

Document layout:
  meetings/{m}/participants/{p}                  ParticipantAggregate
  meetings/{m}/participants/{p}/analyses/{ts}    EngagementScore + features
  meetings/{m}/participants/{p}/summaries/{idx}  TimeBucketSummary
  meetings/{m}/participants/{p}/processed/{ts}   dedup marker {aggregate, summary}

Every update is a sum, count, min or max, so the final aggregate does not
depend on the order frames are processed in. The processed marker is read
inside the same transaction that applies an update, so a redelivered frame
is never counted twice.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from typing import Any
from urllib.parse import quote

from models import EMOTIONS, ParticipantAggregate, TimeBucketSummary
from services.doc_store import Transaction, TransactionalStore

logger = logging.getLogger(__name__)

DEFAULT_BUCKET_WIDTH_MS = 60_000


def doc_id(value: str) -> str:
    """Document ids cannot contain "/"; everything else is kept readable."""
    return quote(value, safe="@.+-_~ ")


def participant_path(meeting_id: str, participant_id: str) -> str:
    return f"meetings/{doc_id(meeting_id)}/participants/{doc_id(participant_id)}"


def analysis_path(meeting_id: str, participant_id: str, timestamp_ms: int) -> str:
    return f"{participant_path(meeting_id, participant_id)}/analyses/{int(timestamp_ms)}"


def summary_path(meeting_id: str, participant_id: str, index: int) -> str:
    return f"{participant_path(meeting_id, participant_id)}/summaries/{index}"


def marker_path(meeting_id: str, participant_id: str, timestamp_ms: int) -> str:
    return f"{participant_path(meeting_id, participant_id)}/processed/{int(timestamp_ms)}"


def bucket_index(timestamp_ms: int, bucket_width_ms: int) -> int:
    return int(timestamp_ms) // bucket_width_ms


class AggregationStore:
    def __init__(
        self,
        store: TransactionalStore,
        *,
        bucket_width_ms: int = DEFAULT_BUCKET_WIDTH_MS,
        clock: Callable[[], int] | None = None,
    ) -> None:
        if bucket_width_ms <= 0:
            raise ValueError("bucket_width_ms must be positive")
        self._store = store
        self._bucket_width_ms = bucket_width_ms
        self._clock = clock or (lambda: int(time.time() * 1000))

    @property
    def bucket_width_ms(self) -> int:
        return self._bucket_width_ms

    # -- writes ---------------------------------------------------------

    def save_analysis(self, meeting_id: str, participant_id: str, timestamp_ms: int, document: Mapping[str, Any]) -> None:
        """Upsert the per-frame analysis; a redelivered frame overwrites its own document."""
        self._store.set(analysis_path(meeting_id, participant_id, timestamp_ms), dict(document))

    def is_processed(self, meeting_id: str, participant_id: str, timestamp_ms: int) -> bool:
        marker = self._store.get(marker_path(meeting_id, participant_id, timestamp_ms)) or {}
        return bool(marker.get("aggregate")) and bool(marker.get("summary"))

    def update_participant_aggregate(
        self,
        meeting_id: str,
        participant_id: str,
        timestamp_ms: int,
        score: float,
    ) -> ParticipantAggregate | None:
        """
        Fold one score into the participant's running totals.

        Returns the new aggregate, or None when this frame was already counted.
        """
        ppath = participant_path(meeting_id, participant_id)
        mpath = marker_path(meeting_id, participant_id, timestamp_ms)
        ts = int(timestamp_ms)

        def _update(txn: Transaction) -> ParticipantAggregate | None:
            marker = txn.read(mpath) or {}
            if marker.get("aggregate"):
                return None
            current = txn.read(ppath)
            if current:
                agg = ParticipantAggregate.from_dict(current)
            else:
                agg = ParticipantAggregate(meeting_id=meeting_id, participant_id=participant_id)
            agg.meeting_id = meeting_id
            agg.participant_id = participant_id
            agg.total_frames += 1
            agg.total_score += float(score)
            agg.average_score = agg.total_score / agg.total_frames
            agg.first_frame_ts = ts if agg.first_frame_ts is None else min(agg.first_frame_ts, ts)
            agg.last_frame_ts = ts if agg.last_frame_ts is None else max(agg.last_frame_ts, ts)
            agg.time_series_start = ts if agg.time_series_start is None else min(agg.time_series_start, ts)
            agg.time_series_end = ts if agg.time_series_end is None else max(agg.time_series_end, ts)
            agg.sampling_rate_ms = (agg.time_series_end - agg.time_series_start) / agg.total_frames
            agg.last_score = float(score)
            agg.last_update = self._clock()
            txn.write(ppath, agg.to_dict())
            txn.write(mpath, {"aggregate": True, "timestamp": ts}, merge=True)
            return agg

        result = self._store.run_transaction(_update)
        if result is None:
            logger.info(
                "[aggregation] Frame %s/%s@%d already counted in aggregate; skipping",
                meeting_id,
                participant_id,
                ts,
            )
        return result

    def update_time_bucket_summary(
        self,
        meeting_id: str,
        participant_id: str,
        timestamp_ms: int,
        score: float,
        emotions: Mapping[str, float],
    ) -> TimeBucketSummary | None:
        """
        Add one sample to its time bucket, then recompute the bucket average.

        The increment pass is a blind atomic increment guarded by the
        processed marker. The recompute pass is a separate transaction; its
        averageScore may trail concurrent increments until the next pass.
        Returns the bucket after recompute, or None if the frame was already
        counted.
        """
        ts = int(timestamp_ms)
        index = bucket_index(ts, self._bucket_width_ms)
        spath = summary_path(meeting_id, participant_id, index)
        mpath = marker_path(meeting_id, participant_id, ts)
        increments: dict[str, Any] = {
            "samples": 1,
            "totalScore": float(score),
            "emotionSums": {name: float(emotions.get(name, 0.0) or 0.0) for name in EMOTIONS},
        }
        static = {
            "meetingId": meeting_id,
            "participantId": participant_id,
            "bucketIndex": index,
            "bucketStart": index * self._bucket_width_ms,
            "bucketEnd": (index + 1) * self._bucket_width_ms,
        }

        def _increment(txn: Transaction) -> bool:
            marker = txn.read(mpath) or {}
            if marker.get("summary"):
                return False
            txn.increment(spath, increments, set_fields=static)
            txn.write(mpath, {"summary": True, "timestamp": ts}, merge=True)
            return True

        applied = self._store.run_transaction(_increment)
        summary = self.recompute_bucket_average(meeting_id, participant_id, index)
        if not applied:
            logger.info(
                "[aggregation] Frame %s/%s@%d already counted in bucket %d; skipping",
                meeting_id,
                participant_id,
                ts,
                index,
            )
            return None
        return summary

    def recompute_bucket_average(self, meeting_id: str, participant_id: str, index: int) -> TimeBucketSummary | None:
        spath = summary_path(meeting_id, participant_id, index)

        def _recompute(txn: Transaction) -> dict[str, Any] | None:
            doc = txn.read(spath)
            if not doc or not doc.get("samples"):
                return None
            doc["averageScore"] = float(doc.get("totalScore", 0.0)) / int(doc["samples"])
            txn.write(spath, {"averageScore": doc["averageScore"]}, merge=True)
            return doc

        doc = self._store.run_transaction(_recompute)
        return TimeBucketSummary.from_dict(doc) if doc else None

    # -- reads ----------------------------------------------------------

    def get_participant_aggregate(self, meeting_id: str, participant_id: str) -> ParticipantAggregate | None:
        doc = self._store.get(participant_path(meeting_id, participant_id))
        return ParticipantAggregate.from_dict(doc) if doc else None

    def previous_score(self, meeting_id: str, participant_id: str) -> float | None:
        """Most recently folded score for the participant, whatever its frame time."""
        agg = self.get_participant_aggregate(meeting_id, participant_id)
        return agg.last_score if agg is not None else None

    def list_participant_aggregates(self, meeting_id: str) -> list[ParticipantAggregate]:
        docs = self._store.list_documents(f"meetings/{doc_id(meeting_id)}/participants")
        return [ParticipantAggregate.from_dict(doc) for _, doc in docs if doc]

    def list_summaries(self, meeting_id: str, participant_id: str) -> list[TimeBucketSummary]:
        docs = self._store.list_documents(f"{participant_path(meeting_id, participant_id)}/summaries")
        summaries = [TimeBucketSummary.from_dict(doc) for _, doc in docs if doc]
        return sorted(summaries, key=lambda s: s.bucket_index)

    def list_analyses(self, meeting_id: str, participant_id: str, *, since_ms: int | None = None) -> list[dict[str, Any]]:
        docs = self._store.list_documents(f"{participant_path(meeting_id, participant_id)}/analyses")
        analyses = [doc for _, doc in docs if doc]
        if since_ms is not None:
            analyses = [doc for doc in analyses if int(doc.get("timestamp", 0)) >= since_ms]
        return sorted(analyses, key=lambda doc: int(doc.get("timestamp", 0)), reverse=True)
