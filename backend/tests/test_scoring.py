from __future__ import annotations

import math
import random

import pytest

from models import EmotionDistribution, FeatureSet, GazeVector, HeadPose
from services.scoring import PARTIAL_ATTENTION, ScoringEngine, ScoringPolicy, ScoringWeights


def _features(
    *,
    looking: bool = True,
    gaze: tuple[float, float] = (0.0, 0.0),
    gaze_confidence: float = 0.9,
    yaw: float = 0.0,
    emotions: dict[str, float] | None = None,
    emotion_confidence: float = 1.0,
) -> FeatureSet:
    return FeatureSet(
        head_pose=HeadPose(yaw=yaw),
        emotions=EmotionDistribution(**(emotions or {"neutral": 1.0})),
        emotion_confidence=emotion_confidence,
        gaze_vector=GazeVector(x=gaze[0], y=gaze[1]),
        is_looking_at_screen=looking,
        gaze_confidence=gaze_confidence,
    )


def _random_features(rng: random.Random) -> FeatureSet:
    return _features(
        looking=rng.random() < 0.5,
        gaze=(rng.uniform(-3, 3), rng.uniform(-3, 3)),
        gaze_confidence=rng.uniform(-0.5, 1.5),
        yaw=rng.uniform(-180, 180),
        emotions={name: rng.uniform(0, 1) for name in ("happy", "sad", "angry", "surprised", "neutral")},
        emotion_confidence=rng.uniform(0, 1),
    )


def test_score_is_always_within_unit_interval() -> None:
    rng = random.Random(42)
    engine = ScoringEngine()
    smoothing = ScoringEngine(ScoringPolicy(smoothing_enabled=True))
    for _ in range(500):
        features = _random_features(rng)
        for result in (engine.score(features), smoothing.score(features, rng.uniform(-1, 2))):
            assert 0.0 <= result.score <= 1.0
            for factor in (result.factors.eye_contact, result.factors.emotion, result.factors.attention):
                assert 0.0 <= factor <= 1.0


@pytest.mark.parametrize("gaze", [(0.0, 0.0), (0.2, -0.1), (5.0, 5.0)])
def test_not_looking_at_screen_means_no_eye_contact(gaze: tuple[float, float]) -> None:
    result = ScoringEngine().score(_features(looking=False, gaze=gaze))
    assert result.factors.eye_contact == 0.0


def test_centered_gaze_eye_contact_equals_gaze_confidence() -> None:
    result = ScoringEngine().score(_features(gaze=(0.0, 0.0), gaze_confidence=0.9))
    assert result.factors.eye_contact == pytest.approx(0.9)


def test_eye_contact_falls_with_gaze_deviation() -> None:
    engine = ScoringEngine()
    centered = engine.score(_features(gaze=(0.0, 0.0))).factors.eye_contact
    off = engine.score(_features(gaze=(0.3, 0.4))).factors.eye_contact
    assert off == pytest.approx(0.5 * 0.9)
    assert off < centered


def test_head_turned_beyond_threshold_gives_partial_attention() -> None:
    result = ScoringEngine().score(_features(yaw=45.0, looking=True))
    assert result.factors.attention == PARTIAL_ATTENTION


def test_forward_facing_and_looking_attention_uses_gaze_confidence() -> None:
    result = ScoringEngine().score(_features(yaw=-10.0, gaze_confidence=0.8))
    assert result.factors.attention == pytest.approx(0.8)


def test_emotion_policy_rewards_positive_and_penalises_negative() -> None:
    engine = ScoringEngine()
    happy = engine.score(_features(emotions={"happy": 1.0})).factors.emotion
    surprised = engine.score(_features(emotions={"surprised": 1.0})).factors.emotion
    neutral = engine.score(_features(emotions={"neutral": 1.0})).factors.emotion
    angry = engine.score(_features(emotions={"angry": 1.0})).factors.emotion
    assert happy > surprised > neutral
    assert neutral == 0.0
    assert angry == 0.0


def test_emotion_weights_are_configurable() -> None:
    policy = ScoringPolicy(emotion_weights={"neutral": 0.5})
    result = ScoringEngine(policy).score(_features(emotions={"neutral": 1.0}))
    assert result.factors.emotion == pytest.approx(0.5)


def test_final_score_is_weighted_sum() -> None:
    weights = ScoringWeights(eye=0.4, emotion=0.2, attention=0.4)
    result = ScoringEngine(ScoringPolicy(weights=weights)).score(_features(emotions={"happy": 1.0}))
    f = result.factors
    assert result.score == pytest.approx(0.4 * f.eye_contact + 0.2 * f.emotion + 0.4 * f.attention)


def test_smoothing_is_opt_in() -> None:
    features = _features()
    raw = ScoringEngine().score(features, previous_score=0.1)
    smoothed = ScoringEngine(ScoringPolicy(smoothing_enabled=True)).score(features, previous_score=0.1)
    baseline = ScoringEngine().score(features).score
    assert raw.score == pytest.approx(baseline)
    assert smoothed.score == pytest.approx(0.3 * baseline + 0.7 * 0.1)


def test_missing_or_garbage_input_never_raises() -> None:
    engine = ScoringEngine()
    for features in (None, {}, {"gazeVector": "bad", "headPose": {"yaw": "north"}}, {"gazeConfidence": math.nan}):
        result = engine.score(features)
        assert result.factors.eye_contact == 0.0
        assert result.factors.emotion == 0.0
        assert result.factors.attention == PARTIAL_ATTENTION
        assert 0.0 <= result.score <= 1.0


def test_timestamp_is_carried_through() -> None:
    assert ScoringEngine().score(_features(), timestamp_ms=1234).timestamp_ms == 1234


@pytest.mark.parametrize(
    "weights",
    [{"eye": 0.5, "emotion": 0.5, "attention": 0.5}, {"eye": -0.2, "emotion": 0.6, "attention": 0.6}],
)
def test_invalid_factor_weights_are_rejected(weights: dict[str, float]) -> None:
    with pytest.raises(ValueError):
        ScoringWeights(**weights)


def test_unknown_emotion_weight_is_rejected() -> None:
    with pytest.raises(ValueError):
        ScoringPolicy(emotion_weights={"bored": 1.0})
