"""Event-driven frame analysis: storage finalize event -> score -> aggregates."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import StrEnum

from models import EngagementScore, FrameKey
from services.aggregation import AggregationStore
from services.errors import NoFaceDetected, NotFoundError, ValidationError
from services.feature_extraction import FaceAnalyzer
from services.object_store import FRAMES_PREFIX, RESULTS_PREFIX, ObjectStore, parse_frame_object_key, result_object_key
from services.scoring import ScoringEngine

logger = logging.getLogger(__name__)


class AnalysisOutcome(StrEnum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"        # already folded into both aggregates
    IGNORED = "ignored"            # outside the input prefix or bucket
    INVALID = "invalid"            # malformed object key
    NO_FACE = "no_face"
    MISSING = "missing"            # object already gone


@dataclass(frozen=True)
class StorageEvent:
    bucket: str
    name: str


@dataclass(frozen=True)
class AnalysisResult:
    outcome: AnalysisOutcome
    key: FrameKey | None = None
    score: EngagementScore | None = None


class AnalysisTrigger:
    """
    Handles one "object finalized" event per captured frame.

    Terminal outcomes (ignored, invalid key, no face, missing object,
    duplicate) return normally. Everything else that fails propagates so
    the platform redelivers the event; each step tolerates being repeated.
    """

    def __init__(
        self,
        objects: ObjectStore,
        analyzer: FaceAnalyzer,
        scorer: ScoringEngine,
        aggregation: AggregationStore,
        *,
        bucket_name: str | None = None,
        input_prefix: str = FRAMES_PREFIX,
        results_prefix: str = RESULTS_PREFIX,
        write_result_objects: bool = False,
        delete_on_no_face: bool = True,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._objects = objects
        self._analyzer = analyzer
        self._scorer = scorer
        self._aggregation = aggregation
        self._bucket_name = bucket_name
        self._input_prefix = input_prefix
        self._results_prefix = results_prefix
        self._write_result_objects = write_result_objects
        self._delete_on_no_face = delete_on_no_face
        self._now = now or (lambda: datetime.now(timezone.utc))

    def handle(self, event: StorageEvent) -> AnalysisResult:
        object_key = event.name or ""
        if not object_key.startswith(self._input_prefix):
            logger.debug("[analysis] Skipping object outside %s: %s", self._input_prefix, object_key)
            return AnalysisResult(AnalysisOutcome.IGNORED)
        if self._bucket_name and event.bucket and event.bucket != self._bucket_name:
            logger.info("[analysis] Skipping object from unexpected bucket %s: %s", event.bucket, object_key)
            return AnalysisResult(AnalysisOutcome.IGNORED)

        try:
            key = parse_frame_object_key(object_key, prefix=self._input_prefix)
        except ValidationError as exc:
            logger.warning("[analysis] Malformed frame key, dropping event: %s", exc)
            return AnalysisResult(AnalysisOutcome.INVALID)

        logger.info("[analysis] Processing frame %s", object_key)

        if self._aggregation.is_processed(key.meeting_id, key.participant_id, key.timestamp_ms):
            logger.info("[analysis] Frame %s was already processed; cleaning up", object_key)
            self._delete_source(object_key)
            return AnalysisResult(AnalysisOutcome.DUPLICATE, key=key)

        try:
            image = self._objects.download(object_key)
        except NotFoundError:
            logger.info("[analysis] Frame %s no longer exists; nothing to do", object_key)
            return AnalysisResult(AnalysisOutcome.MISSING, key=key)
        logger.info("[analysis] Downloaded %s (%d bytes)", object_key, len(image))

        try:
            features = self._analyzer.analyze(image)
        except NoFaceDetected:
            logger.info("[analysis] No face detected in %s; skipping", object_key)
            if self._delete_on_no_face:
                self._delete_source(object_key)
            return AnalysisResult(AnalysisOutcome.NO_FACE, key=key)

        previous = None
        if self._scorer.policy.smoothing_enabled:
            previous = self._aggregation.previous_score(key.meeting_id, key.participant_id)
        score = self._scorer.score(features, previous, timestamp_ms=key.timestamp_ms)
        logger.info(
            "[analysis] Score for %s/%s@%d: %.3f (eye=%.2f emotion=%.2f attention=%.2f)",
            key.meeting_id,
            key.participant_id,
            key.timestamp_ms,
            score.score,
            score.factors.eye_contact,
            score.factors.emotion,
            score.factors.attention,
        )

        processed_at = self._now().isoformat()
        self._aggregation.save_analysis(
            key.meeting_id,
            key.participant_id,
            key.timestamp_ms,
            {
                "meetingId": key.meeting_id,
                "participantId": key.participant_id,
                "timestamp": key.timestamp_ms,
                "processedAt": processed_at,
                "score": score.to_dict(),
                "analysis": features.to_dict(),
                "storagePath": object_key,
            },
        )
        if self._write_result_objects:
            payload = {
                "analysis": features.to_dict(),
                "score": score.to_dict(),
                "timestamp": key.timestamp_ms,
                "processedAt": processed_at,
            }
            self._objects.upload(
                result_object_key(
                    key.meeting_id, key.participant_id, key.timestamp_ms, prefix=self._results_prefix
                ),
                json.dumps(payload).encode("utf-8"),
                content_type="application/json",
            )

        self._aggregation.update_participant_aggregate(
            key.meeting_id, key.participant_id, key.timestamp_ms, score.score
        )
        self._aggregation.update_time_bucket_summary(
            key.meeting_id,
            key.participant_id,
            key.timestamp_ms,
            score.score,
            features.emotions.as_dict(),
        )

        self._delete_source(object_key)
        logger.info("[analysis] Finished frame %s", object_key)
        return AnalysisResult(AnalysisOutcome.PROCESSED, key=key, score=score)

    def _delete_source(self, object_key: str) -> None:
        try:
            self._objects.delete(object_key)
        except Exception as exc:  # noqa: BLE001
            logger.warning("[analysis] Could not delete %s: %s", object_key, exc)
