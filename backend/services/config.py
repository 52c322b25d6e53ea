"""Pipeline configuration read from the environment."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from services.errors import ConfigurationError
from services.gcs import DEFAULT_BUCKET
from services.scoring import ScoringPolicy, ScoringWeights

DEFAULT_REQUIRED_MODELS = ("blazeface.json", "emotion.json", "iris.json")


def _parse_bool(raw: str, key: str) -> bool:
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ConfigurationError(f"{key} must be a boolean, got {raw!r}")


def _parse_number(raw: str, key: str, cast: type) -> float | int:
    try:
        return cast(raw.strip())
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be a {cast.__name__}, got {raw!r}") from exc


def parse_weight_map(raw: str, key: str) -> dict[str, float]:
    """Parse ``name=value,name=value`` into a dict of floats."""
    weights: dict[str, float] = {}
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        name, sep, value = item.partition("=")
        if not sep or not name.strip():
            raise ConfigurationError(f"{key}: expected name=value, got {item!r}")
        weights[name.strip()] = float(_parse_number(value, key, float))
    return weights


@dataclass(frozen=True)
class PipelineConfig:
    bucket_name: str = DEFAULT_BUCKET
    input_prefix: str = "frames/"
    results_prefix: str = "results/"
    write_result_objects: bool = False
    delete_on_no_face: bool = True
    bucket_width_ms: int = 60_000

    capture_interval_ms: int = 3000
    min_capture_interval_ms: int = 2000
    max_concurrent_uploads: int = 3
    upload_max_attempts: int = 3
    upload_retry_delay_ms: int = 1000
    upload_retry_backoff: float = 2.0

    smoothing_enabled: bool = False
    smoothing_alpha: float = 0.3
    score_weights: dict[str, float] = field(default_factory=dict)
    emotion_weights: dict[str, float] = field(default_factory=dict)

    model_dir: str = "models"
    face_model_factory: str | None = None
    required_models: tuple[str, ...] = DEFAULT_REQUIRED_MODELS
    doc_store: str = "memory"
    txn_max_attempts: int = 5

    def __post_init__(self) -> None:
        if self.bucket_width_ms <= 0:
            raise ConfigurationError("BUCKET_WIDTH_MS must be positive")
        if self.max_concurrent_uploads < 1:
            raise ConfigurationError("MAX_CONCURRENT_UPLOADS must be at least 1")
        if self.upload_max_attempts < 1:
            raise ConfigurationError("UPLOAD_MAX_ATTEMPTS must be at least 1")
        if self.txn_max_attempts < 1:
            raise ConfigurationError("TXN_MAX_ATTEMPTS must be at least 1")
        if self.min_capture_interval_ms < 1 or self.capture_interval_ms < 1:
            raise ConfigurationError("CAPTURE_INTERVAL_MS and MIN_CAPTURE_INTERVAL_MS must be positive")
        if self.upload_retry_delay_ms < 0:
            raise ConfigurationError("UPLOAD_RETRY_DELAY_MS must not be negative")
        if not 0.0 < self.smoothing_alpha <= 1.0:
            raise ConfigurationError("SCORE_SMOOTHING_ALPHA must be in (0, 1]")
        if self.doc_store not in ("memory", "firestore"):
            raise ConfigurationError(f"DOC_STORE must be 'memory' or 'firestore', got {self.doc_store!r}")
        try:
            ScoringWeights.from_mapping(self.score_weights)
        except ValueError as exc:
            raise ConfigurationError(f"SCORE_WEIGHTS: {exc}") from exc
        if self.emotion_weights:
            try:
                ScoringPolicy(emotion_weights=dict(self.emotion_weights))
            except ValueError as exc:
                raise ConfigurationError(f"EMOTION_WEIGHTS: {exc}") from exc

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> PipelineConfig:
        env = os.environ if env is None else env
        kwargs: dict[str, object] = {}

        def text(key: str) -> str | None:
            value = env.get(key, "").strip()
            return value or None

        if (bucket := text("GCS_BUCKET")) is not None:
            kwargs["bucket_name"] = bucket
        if (prefix := text("FRAMES_PREFIX")) is not None:
            kwargs["input_prefix"] = prefix.rstrip("/") + "/"
        if (prefix := text("RESULTS_PREFIX")) is not None:
            kwargs["results_prefix"] = prefix.rstrip("/") + "/"

        for key, name in (
            ("WRITE_RESULT_OBJECTS", "write_result_objects"),
            ("DELETE_ON_NO_FACE", "delete_on_no_face"),
            ("SCORE_SMOOTHING", "smoothing_enabled"),
        ):
            if (raw := text(key)) is not None:
                kwargs[name] = _parse_bool(raw, key)

        for key, name, cast in (
            ("BUCKET_WIDTH_MS", "bucket_width_ms", int),
            ("CAPTURE_INTERVAL_MS", "capture_interval_ms", int),
            ("MIN_CAPTURE_INTERVAL_MS", "min_capture_interval_ms", int),
            ("MAX_CONCURRENT_UPLOADS", "max_concurrent_uploads", int),
            ("UPLOAD_MAX_ATTEMPTS", "upload_max_attempts", int),
            ("UPLOAD_RETRY_DELAY_MS", "upload_retry_delay_ms", int),
            ("UPLOAD_RETRY_BACKOFF", "upload_retry_backoff", float),
            ("SCORE_SMOOTHING_ALPHA", "smoothing_alpha", float),
            ("TXN_MAX_ATTEMPTS", "txn_max_attempts", int),
        ):
            if (raw := text(key)) is not None:
                kwargs[name] = _parse_number(raw, key, cast)

        if (raw := text("SCORE_WEIGHTS")) is not None:
            kwargs["score_weights"] = parse_weight_map(raw, "SCORE_WEIGHTS")
        if (raw := text("EMOTION_WEIGHTS")) is not None:
            kwargs["emotion_weights"] = parse_weight_map(raw, "EMOTION_WEIGHTS")
        if (raw := text("MODEL_DIR")) is not None:
            kwargs["model_dir"] = raw
        if (raw := text("FACE_MODEL_FACTORY")) is not None:
            kwargs["face_model_factory"] = raw
        if (raw := text("REQUIRED_MODELS")) is not None:
            kwargs["required_models"] = tuple(m.strip() for m in raw.split(",") if m.strip())
        if (raw := text("DOC_STORE")) is not None:
            kwargs["doc_store"] = raw.lower()

        return cls(**kwargs)  # type: ignore[arg-type]
