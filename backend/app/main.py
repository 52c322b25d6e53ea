import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from routes.events import router as events_router
from routes.meetings import router as meetings_router
from services.config import PipelineConfig
from services.feature_extraction import validate_model_deployment
from services.pipeline import build_analysis_pipeline

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # Missing models raise ConfigurationError here, so the service never starts accepting events.
    config = PipelineConfig.from_env()
    validate_model_deployment(config.model_dir, config.required_models)
    pipeline = build_analysis_pipeline(config)
    app.state.config = config
    app.state.trigger = pipeline.trigger
    app.state.aggregation = pipeline.aggregation
    logger.info("[app] Engagement analysis service ready.")
    yield


app = FastAPI(title="Engagecast API", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


app.include_router(events_router, prefix="/api")
app.include_router(meetings_router, prefix="/api")
