from models import (
    EMOTIONS,
    EngagementScore,
    FeatureSet,
    FrameKey,
    ParticipantAggregate,
    ScoreFactors,
    TimeBucketSummary,
)
from models.features import finite_float
from models.frame import Frame


def test_feature_set_defaults_are_disengaged() -> None:
    features = FeatureSet()
    assert features.eyes_open is False
    assert features.is_looking_at_screen is False
    assert features.emotions.as_dict() == {name: 0.0 for name in EMOTIONS}


def test_feature_set_document_form_round_trips() -> None:
    features = FeatureSet.from_dict(
        {
            "headPose": {"yaw": 12.5},
            "eyesOpen": True,
            "emotionDistribution": {"happy": 0.7},
            "emotionConfidence": 0.7,
            "isLookingAtScreen": True,
            "gazeConfidence": 0.9,
        }
    )
    doc = features.to_dict()
    assert doc["headPose"] == {"roll": 0.0, "pitch": 0.0, "yaw": 12.5}
    assert doc["emotionDistribution"]["happy"] == 0.7
    assert FeatureSet.from_dict(doc) == features


def test_feature_set_from_garbage_uses_defaults() -> None:
    features = FeatureSet.from_dict({"headPose": "sideways", "eyesOpen": 0, "gazeConfidence": float("nan")})
    assert features.head_pose.yaw == 0.0
    assert features.eyes_open is False
    assert features.gaze_confidence == 0.0
    assert FeatureSet.from_dict(None) == FeatureSet()


def test_looking_at_screen_requires_a_real_boolean() -> None:
    assert FeatureSet.from_dict({"isLookingAtScreen": "yes"}).is_looking_at_screen is False


def test_engagement_score_document() -> None:
    score = EngagementScore(score=0.7, factors=ScoreFactors(0.8, 0.5, 0.9), timestamp_ms=1000)
    assert score.to_dict() == {
        "score": 0.7,
        "factors": {"eyeContact": 0.8, "emotion": 0.5, "attention": 0.9},
        "timestamp": 1000,
    }


def test_participant_aggregate_document_round_trips() -> None:
    agg = ParticipantAggregate(
        meeting_id="m1",
        participant_id="alice",
        total_frames=2,
        total_score=1.2,
        average_score=0.6,
        first_frame_ts=1000,
        last_frame_ts=4000,
        time_series_start=1000,
        time_series_end=4000,
        sampling_rate_ms=1500.0,
        last_score=0.4,
        last_update=5000,
    )
    assert agg.to_dict()["averageScore"] == 0.6
    assert ParticipantAggregate.from_dict(agg.to_dict()) == agg


def test_time_bucket_summary_fills_missing_emotions() -> None:
    summary = TimeBucketSummary.from_dict({"bucketIndex": 3, "samples": 2, "emotionSums": {"sad": 0.4}})
    assert summary.bucket_index == 3
    assert summary.emotion_sums == {"happy": 0.0, "sad": 0.4, "angry": 0.0, "surprised": 0.0, "neutral": 0.0}


def test_frame_key() -> None:
    frame = Frame(meeting_id="m1", participant_id="a@b.com", timestamp_ms=42, image_bytes=b"")
    assert frame.key == FrameKey("m1", "a@b.com", 42)


def test_finite_float_rejects_non_numeric_and_non_finite() -> None:
    assert finite_float("0.25") == 0.25
    assert finite_float(None) == 0.0
    assert finite_float("n/a") == 0.0
    assert finite_float(float("inf")) == 0.0
