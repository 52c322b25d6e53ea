"""Feature set produced by the face analyzer and consumed by scoring.

``from_dict`` is deliberately forgiving: absent or non-numeric fields fall
back to ``0``/``False`` so partial extractor output still scores.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from typing import Any

EMOTIONS = ("happy", "sad", "angry", "surprised", "neutral")


def finite_float(value: Any) -> float:
    """float(value), or 0.0 when it is missing, non-numeric or not finite."""
    try:
        result = float(value)
    except (TypeError, ValueError):
        return 0.0
    return result if math.isfinite(result) else 0.0


def _map(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


@dataclass
class Point:
    x: float = 0.0
    y: float = 0.0


@dataclass
class Landmarks:
    left_eye: Point = field(default_factory=Point)
    right_eye: Point = field(default_factory=Point)
    nose: Point = field(default_factory=Point)
    left_mouth: Point = field(default_factory=Point)
    right_mouth: Point = field(default_factory=Point)


@dataclass
class HeadPose:
    roll: float = 0.0          # degrees
    pitch: float = 0.0         # degrees
    yaw: float = 0.0           # degrees, 0 = facing the camera


@dataclass
class EmotionDistribution:
    happy: float = 0.0
    sad: float = 0.0
    angry: float = 0.0
    surprised: float = 0.0
    neutral: float = 0.0

    def as_dict(self) -> dict[str, float]:
        return {name: getattr(self, name) for name in EMOTIONS}


@dataclass
class GazeVector:
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0


@dataclass
class FeatureSet:
    landmarks: Landmarks = field(default_factory=Landmarks)
    head_pose: HeadPose = field(default_factory=HeadPose)
    eyes_open: bool = False
    emotions: EmotionDistribution = field(default_factory=EmotionDistribution)
    emotion_confidence: float = 0.0
    gaze_vector: GazeVector = field(default_factory=GazeVector)
    is_looking_at_screen: bool = False
    gaze_confidence: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Document form (camelCase) stored alongside each analysis."""
        lm = self.landmarks
        return {
            "landmarks": {
                "leftEye": asdict(lm.left_eye),
                "rightEye": asdict(lm.right_eye),
                "nose": asdict(lm.nose),
                "leftMouth": asdict(lm.left_mouth),
                "rightMouth": asdict(lm.right_mouth),
            },
            "headPose": asdict(self.head_pose),
            "eyesOpen": self.eyes_open,
            "emotionDistribution": self.emotions.as_dict(),
            "emotionConfidence": self.emotion_confidence,
            "gazeVector": asdict(self.gaze_vector),
            "isLookingAtScreen": self.is_looking_at_screen,
            "gazeConfidence": self.gaze_confidence,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> FeatureSet:
        data = _map(data)
        lm = _map(data.get("landmarks"))

        def point(name: str) -> Point:
            raw = _map(lm.get(name))
            return Point(finite_float(raw.get("x")), finite_float(raw.get("y")))

        pose = _map(data.get("headPose"))
        emotions = _map(data.get("emotionDistribution"))
        gaze = _map(data.get("gazeVector"))
        return cls(
            landmarks=Landmarks(
                left_eye=point("leftEye"),
                right_eye=point("rightEye"),
                nose=point("nose"),
                left_mouth=point("leftMouth"),
                right_mouth=point("rightMouth"),
            ),
            head_pose=HeadPose(finite_float(pose.get("roll")), finite_float(pose.get("pitch")), finite_float(pose.get("yaw"))),
            eyes_open=bool(data.get("eyesOpen", False)),
            emotions=EmotionDistribution(**{name: finite_float(emotions.get(name)) for name in EMOTIONS}),
            emotion_confidence=finite_float(data.get("emotionConfidence")),
            gaze_vector=GazeVector(finite_float(gaze.get("x")), finite_float(gaze.get("y")), finite_float(gaze.get("z"))),
            is_looking_at_screen=data.get("isLookingAtScreen") is True,
            gaze_confidence=finite_float(data.get("gazeConfidence")),
        )
