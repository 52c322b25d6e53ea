from .engagement import EngagementScore, ParticipantAggregate, ScoreFactors, TimeBucketSummary
from .features import EMOTIONS, EmotionDistribution, FeatureSet, GazeVector, HeadPose, Landmarks, Point
from .frame import Frame, FrameKey

__all__ = [
    "Frame",
    "FrameKey",
    "FeatureSet",
    "Landmarks",
    "Point",
    "HeadPose",
    "EmotionDistribution",
    "GazeVector",
    "EMOTIONS",
    "EngagementScore",
    "ScoreFactors",
    "ParticipantAggregate",
    "TimeBucketSummary",
]
