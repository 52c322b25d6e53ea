"""Wiring: build the capture and analysis sides from a PipelineConfig."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from services.aggregation import AggregationStore
from services.analysis import AnalysisTrigger
from services.config import PipelineConfig
from services.doc_store import TransactionalStore, create_store
from services.feature_extraction import FaceAnalyzer, load_model_factory
from services.frame_capture import FrameCaptureController
from services.object_store import GcsObjectStore, ObjectStore
from services.scoring import ScoringEngine, ScoringPolicy, ScoringWeights
from services.uploader import FrameUploader

logger = logging.getLogger(__name__)


@dataclass
class AnalysisPipeline:
    trigger: AnalysisTrigger
    aggregation: AggregationStore
    store: TransactionalStore


def build_scoring_engine(config: PipelineConfig) -> ScoringEngine:
    policy_kwargs: dict[str, object] = {
        "weights": ScoringWeights.from_mapping(config.score_weights),
        "smoothing_enabled": config.smoothing_enabled,
        "smoothing_alpha": config.smoothing_alpha,
    }
    if config.emotion_weights:
        policy_kwargs["emotion_weights"] = dict(config.emotion_weights)
    return ScoringEngine(ScoringPolicy(**policy_kwargs))  # type: ignore[arg-type]


def build_analysis_pipeline(
    config: PipelineConfig,
    *,
    objects: ObjectStore | None = None,
    store: TransactionalStore | None = None,
    analyzer: FaceAnalyzer | None = None,
) -> AnalysisPipeline:
    store = store or create_store(config.doc_store, max_attempts=config.txn_max_attempts)
    if analyzer is None:
        factory = load_model_factory(config.face_model_factory) if config.face_model_factory else None
        analyzer = FaceAnalyzer(model_factory=factory)
    aggregation = AggregationStore(store, bucket_width_ms=config.bucket_width_ms)
    trigger = AnalysisTrigger(
        objects or GcsObjectStore(config.bucket_name),
        analyzer,
        build_scoring_engine(config),
        aggregation,
        bucket_name=config.bucket_name,
        input_prefix=config.input_prefix,
        results_prefix=config.results_prefix,
        write_result_objects=config.write_result_objects,
        delete_on_no_face=config.delete_on_no_face,
    )
    logger.info(
        "[pipeline] Analysis pipeline ready (bucket=%s store=%s bucket_width=%dms smoothing=%s)",
        config.bucket_name,
        config.doc_store,
        config.bucket_width_ms,
        config.smoothing_enabled,
    )
    return AnalysisPipeline(trigger=trigger, aggregation=aggregation, store=store)


def build_capture_controller(
    config: PipelineConfig,
    *,
    objects: ObjectStore | None = None,
    autostart: bool = True,
) -> FrameCaptureController:
    uploader = FrameUploader(
        objects or GcsObjectStore(config.bucket_name),
        max_attempts=config.upload_max_attempts,
        retry_delay_ms=config.upload_retry_delay_ms,
        backoff=config.upload_retry_backoff,
        prefix=config.input_prefix,
    )
    return FrameCaptureController(
        uploader,
        min_interval_ms=config.min_capture_interval_ms,
        default_interval_ms=config.capture_interval_ms,
        max_concurrent_uploads=config.max_concurrent_uploads,
        autostart=autostart,
    )
