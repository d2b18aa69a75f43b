"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from facesift.api.routes import router
from facesift.config import Settings, get_settings
from facesift.fetch import create_http_client
from facesift.ml.face_analyzer import OnnxFaceAnalyzer
from facesift.ml.face_detector import ScrfdFaceDetector
from facesift.ml.face_landmarks import OnnxLandmarkModel
from facesift.ml.face_recognizer import OnnxFaceRecognizer
from facesift.ml.model_manager import ModelTask, OnnxModelManager
from facesift.ml.runtime import RuntimeResources
from facesift.pipeline.orchestrator import DetectionOrchestrator
from facesift.pipeline.queue import ResourceBoundedQueue
from facesift.pipeline.strategies import StrategyRunner, build_strategies

logger = logging.getLogger(__name__)


def build_pipeline(
    settings: Settings, model_manager: OnnxModelManager
) -> tuple[RuntimeResources, ResourceBoundedQueue]:
    """Wire the analyzer, strategies, orchestrator, and queue together."""
    model_manager.validate([settings.face_detection_model], ModelTask.FACE_DETECTION)
    model_manager.validate([settings.face_recognition_model], ModelTask.FACE_RECOGNITION)
    landmark_model = None
    if settings.face_landmark_model is not None:
        model_manager.validate([settings.face_landmark_model], ModelTask.FACE_LANDMARKS)
        landmark_model = OnnxLandmarkModel(model_manager, settings.face_landmark_model)

    analyzer = OnnxFaceAnalyzer(
        detector=ScrfdFaceDetector(model_manager, settings.face_detection_model),
        recognizer=OnnxFaceRecognizer(model_manager, settings.face_recognition_model),
        landmark_model=landmark_model,
    )
    resources = RuntimeResources(model_manager)
    orchestrator = DetectionOrchestrator(
        StrategyRunner(analyzer, resources),
        build_strategies(settings),
    )
    queue = ResourceBoundedQueue(
        orchestrator,
        resources,
        batch_size=settings.queue_batch_size,
        reschedule_delay=settings.queue_reschedule_delay,
        memory_threshold_bytes=settings.memory_threshold_bytes,
    )
    return resources, queue


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting FaceSift (device=%s, batch_size=%s, detection=%s, landmarks=%s, recognition=%s)",
        settings.device,
        settings.queue_batch_size,
        settings.face_detection_model,
        settings.face_landmark_model,
        settings.face_recognition_model,
    )

    model_manager = OnnxModelManager(settings)
    resources, queue = build_pipeline(settings, model_manager)
    app.state.model_manager = model_manager
    app.state.runtime_resources = resources
    app.state.detection_queue = queue
    app.state.http_client = create_http_client(settings.fetch_timeout)

    logger.info("FaceSift ready")
    yield

    logger.info("Shutting down FaceSift")
    await app.state.http_client.aclose()
    queue.shutdown()
    model_manager.shutdown()
    logger.info("FaceSift shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="FaceSift",
        description="Multi-strategy face detection with quality ranking and bounded resource usage",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Serve the application with uvicorn."""
    settings = get_settings()
    uvicorn.run("facesift.main:app", host=settings.host, port=settings.port)
