"""Engagement records: per-frame score, running aggregate, time buckets."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .features import EMOTIONS


@dataclass(frozen=True)
class ScoreFactors:
    eye_contact: float         # 0.0–1.0
    emotion: float             # 0.0–1.0
    attention: float           # 0.0–1.0


@dataclass(frozen=True)
class EngagementScore:
    score: float               # 0.0–1.0, after optional smoothing
    factors: ScoreFactors
    timestamp_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "factors": {
                "eyeContact": self.factors.eye_contact,
                "emotion": self.factors.emotion,
                "attention": self.factors.attention,
            },
            "timestamp": self.timestamp_ms,
        }


@dataclass
class ParticipantAggregate:
    meeting_id: str
    participant_id: str
    total_frames: int = 0
    total_score: float = 0.0
    average_score: float = 0.0
    first_frame_ts: int | None = None
    last_frame_ts: int | None = None
    time_series_start: int | None = None
    time_series_end: int | None = None
    sampling_rate_ms: float = 0.0
    last_score: float | None = None
    last_update: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "meetingId": self.meeting_id,
            "participantId": self.participant_id,
            "totalFrames": self.total_frames,
            "totalScore": self.total_score,
            "averageScore": self.average_score,
            "firstFrameTs": self.first_frame_ts,
            "lastFrameTs": self.last_frame_ts,
            "timeSeriesStart": self.time_series_start,
            "timeSeriesEnd": self.time_series_end,
            "samplingRateMs": self.sampling_rate_ms,
            "lastScore": self.last_score,
            "lastUpdate": self.last_update,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ParticipantAggregate:
        return cls(
            meeting_id=data.get("meetingId", ""),
            participant_id=data.get("participantId", ""),
            total_frames=int(data.get("totalFrames", 0)),
            total_score=float(data.get("totalScore", 0.0)),
            average_score=float(data.get("averageScore", 0.0)),
            first_frame_ts=data.get("firstFrameTs"),
            last_frame_ts=data.get("lastFrameTs"),
            time_series_start=data.get("timeSeriesStart"),
            time_series_end=data.get("timeSeriesEnd"),
            sampling_rate_ms=float(data.get("samplingRateMs", 0.0)),
            last_score=data.get("lastScore"),
            last_update=data.get("lastUpdate"),
        )


@dataclass
class TimeBucketSummary:
    meeting_id: str
    participant_id: str
    bucket_index: int          # floor(timestamp_ms / bucket_width_ms)
    bucket_start: int
    bucket_end: int
    samples: int = 0
    total_score: float = 0.0
    average_score: float = 0.0
    emotion_sums: dict[str, float] = field(default_factory=lambda: {name: 0.0 for name in EMOTIONS})

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TimeBucketSummary:
        sums = data.get("emotionSums") or {}
        return cls(
            meeting_id=data.get("meetingId", ""),
            participant_id=data.get("participantId", ""),
            bucket_index=int(data.get("bucketIndex", 0)),
            bucket_start=int(data.get("bucketStart", 0)),
            bucket_end=int(data.get("bucketEnd", 0)),
            samples=int(data.get("samples", 0)),
            total_score=float(data.get("totalScore", 0.0)),
            average_score=float(data.get("averageScore", 0.0)),
            emotion_sums={name: float(sums.get(name, 0.0)) for name in EMOTIONS},
        )
