"""Engagement scoring: features -> bounded score with three factors."""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from models import EMOTIONS, EngagementScore, FeatureSet, ScoreFactors

logger = logging.getLogger(__name__)

FORWARD_FACING_YAW_DEG = 30.0
PARTIAL_ATTENTION = 0.5
DEFAULT_SMOOTHING_ALPHA = 0.3

# Canonical emotion weighting: happy strongly positive, surprised mildly
# positive, neutral slightly negative, sad/angry negative.
DEFAULT_EMOTION_WEIGHTS: dict[str, float] = {
    "happy": 1.0,
    "surprised": 0.6,
    "neutral": -0.1,
    "sad": -0.5,
    "angry": -0.6,
}

DEFAULT_FACTOR_WEIGHTS: dict[str, float] = {"eye": 0.35, "emotion": 0.3, "attention": 0.35}


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    if not math.isfinite(value):
        return low
    return max(low, min(value, high))


@dataclass(frozen=True)
class ScoringWeights:
    eye: float = DEFAULT_FACTOR_WEIGHTS["eye"]
    emotion: float = DEFAULT_FACTOR_WEIGHTS["emotion"]
    attention: float = DEFAULT_FACTOR_WEIGHTS["attention"]

    def __post_init__(self) -> None:
        weights = (self.eye, self.emotion, self.attention)
        if any(w < 0 for w in weights):
            raise ValueError(f"factor weights must be non-negative, got {weights}")
        if not math.isclose(sum(weights), 1.0, abs_tol=1e-6):
            raise ValueError(f"factor weights must sum to 1, got {sum(weights):.4f}")

    @classmethod
    def from_mapping(cls, raw: Mapping[str, float] | None) -> ScoringWeights:
        if not raw:
            return cls()
        unknown = set(raw) - set(DEFAULT_FACTOR_WEIGHTS)
        if unknown:
            raise ValueError(f"unknown factor weights: {sorted(unknown)}")
        return cls(**{**DEFAULT_FACTOR_WEIGHTS, **raw})


@dataclass(frozen=True)
class ScoringPolicy:
    weights: ScoringWeights = field(default_factory=ScoringWeights)
    emotion_weights: Mapping[str, float] = field(default_factory=lambda: dict(DEFAULT_EMOTION_WEIGHTS))
    smoothing_enabled: bool = False
    smoothing_alpha: float = DEFAULT_SMOOTHING_ALPHA

    def __post_init__(self) -> None:
        unknown = set(self.emotion_weights) - set(EMOTIONS)
        if unknown:
            raise ValueError(f"unknown emotion weights: {sorted(unknown)}")
        if not 0.0 < self.smoothing_alpha <= 1.0:
            raise ValueError("smoothing_alpha must be in (0, 1]")


class ScoringEngine:
    """
    Pure scoring of a FeatureSet.

    score() never raises: missing or malformed fields count as 0/False, so
    the worst case for a factor is its lowest-confidence value.
    """

    def __init__(self, policy: ScoringPolicy | None = None) -> None:
        self._policy = policy or ScoringPolicy()
        self._emotion_weights = {name: float(self._policy.emotion_weights.get(name, 0.0)) for name in EMOTIONS}

    @property
    def policy(self) -> ScoringPolicy:
        return self._policy

    @staticmethod
    def eye_contact(features: FeatureSet) -> float:
        if not features.is_looking_at_screen:
            return 0.0
        gaze = features.gaze_vector
        deviation = math.sqrt(gaze.x**2 + gaze.y**2)
        return clamp(1.0 - deviation) * clamp(features.gaze_confidence)

    def emotion_score(self, features: FeatureSet) -> float:
        distribution = features.emotions.as_dict()
        raw = sum(self._emotion_weights[name] * clamp(distribution[name]) for name in EMOTIONS)
        return clamp(raw * clamp(features.emotion_confidence))

    @staticmethod
    def attention(features: FeatureSet) -> float:
        forward = abs(features.head_pose.yaw) < FORWARD_FACING_YAW_DEG
        if forward and features.is_looking_at_screen:
            return clamp(features.gaze_confidence)
        return PARTIAL_ATTENTION

    def smooth(self, current: float, previous: float | None) -> float:
        if previous is None or not self._policy.smoothing_enabled:
            return current
        alpha = self._policy.smoothing_alpha
        return clamp(alpha * current + (1.0 - alpha) * clamp(float(previous)))

    def score(
        self,
        features: FeatureSet | Mapping[str, Any] | None,
        previous_score: float | None = None,
        *,
        timestamp_ms: int = 0,
    ) -> EngagementScore:
        if not isinstance(features, FeatureSet):
            features = FeatureSet.from_dict(features)
        try:
            eye = self.eye_contact(features)
            emotion = self.emotion_score(features)
            attention = self.attention(features)
        except (TypeError, ValueError, AttributeError):
            logger.warning("[scoring] Unusable feature set; scoring as disengaged.", exc_info=True)
            eye, emotion, attention = 0.0, 0.0, PARTIAL_ATTENTION

        w = self._policy.weights
        raw = clamp(w.eye * eye + w.emotion * emotion + w.attention * attention)
        try:
            final = self.smooth(raw, previous_score)
        except (TypeError, ValueError):
            final = raw
        return EngagementScore(
            score=final,
            factors=ScoreFactors(eye_contact=eye, emotion=emotion, attention=attention),
            timestamp_ms=timestamp_ms,
        )
