"""API route definitions."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Request, UploadFile, status
from fastapi.responses import JSONResponse

from facesift.api.middleware import verify_api_key
from facesift.api.schemas import (
    CompareFacesRequest,
    CompareFacesResponse,
    DetectedFace,
    DetectFacesResponse,
    DetectFacesUrlRequest,
    ErrorResponse,
    HealthResponse,
    ModelInfo,
    ModelsResponse,
)
from facesift.errors import ImageFetchError, InputError, QueueClosed
from facesift.fetch import fetch_image
from facesift.matching import compare_embeddings
from facesift.ml.model_manager import MODEL_REGISTRY
from facesift.ml.preprocessing import decode_image
from facesift.pipeline.detections import SelectionPolicy

if TYPE_CHECKING:
    import httpx

    from facesift.config import Settings
    from facesift.ml.model_manager import ModelManager
    from facesift.ml.runtime import RuntimeResources
    from facesift.pipeline.queue import ResourceBoundedQueue

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

_DETECT_RESPONSES: dict[int | str, dict[str, object]] = {
    status.HTTP_400_BAD_REQUEST: {"model": DetectFacesResponse},
    status.HTTP_502_BAD_GATEWAY: {"model": DetectFacesResponse},
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": DetectFacesResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": DetectFacesResponse},
}


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_queue(request: Request) -> ResourceBoundedQueue:
    queue: ResourceBoundedQueue = request.app.state.detection_queue
    return queue


def _failure(status_code: int, message: str) -> JSONResponse:
    body = DetectFacesResponse(faces=[], error=message)
    return JSONResponse(status_code=status_code, content=body.model_dump())


async def _detect(request: Request, image_bytes: bytes, return_all: bool) -> DetectFacesResponse | JSONResponse:
    settings = _get_settings(request)
    queue = _get_queue(request)
    try:
        image = await asyncio.to_thread(
            decode_image,
            image_bytes,
            max_pixels=settings.max_image_pixels,
            max_file_size=settings.max_file_size,
        )
        faces = await queue.submit(image, SelectionPolicy(return_all=return_all))
    except InputError as exc:
        return _failure(status.HTTP_400_BAD_REQUEST, exc.message)
    except QueueClosed as exc:
        return _failure(status.HTTP_503_SERVICE_UNAVAILABLE, exc.message)
    except Exception:
        logger.exception("Face detection failed")
        return _failure(status.HTTP_500_INTERNAL_SERVER_ERROR, "Face detection failed")
    return DetectFacesResponse(faces=[DetectedFace.from_scored(face) for face in faces])


@router.post(
    "/detect-faces",
    response_model=DetectFacesResponse,
    responses=_DETECT_RESPONSES,
    summary="Detect faces in an uploaded image",
)
async def detect_faces(
    request: Request,
    file: UploadFile,
    return_all: bool = False,
) -> DetectFacesResponse | JSONResponse:
    """Detect faces and compute descriptors for an uploaded image."""
    return await _detect(request, await file.read(), return_all)


@router.post(
    "/detect-faces/url",
    response_model=DetectFacesResponse,
    responses=_DETECT_RESPONSES,
    summary="Detect faces in an image fetched from a URL",
)
async def detect_faces_from_url(request: Request, body: DetectFacesUrlRequest) -> DetectFacesResponse | JSONResponse:
    """Download an image and detect faces in it."""
    settings = _get_settings(request)
    client: httpx.AsyncClient = request.app.state.http_client
    try:
        image_bytes = await fetch_image(client, body.image_url, max_bytes=settings.max_file_size)
    except ImageFetchError as exc:
        return _failure(status.HTTP_502_BAD_GATEWAY, exc.message)
    except InputError as exc:
        return _failure(status.HTTP_400_BAD_REQUEST, exc.message)
    return await _detect(request, image_bytes, body.return_all)


@router.post(
    "/compare-faces",
    response_model=CompareFacesResponse,
    responses={status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse}},
    summary="Compare two face descriptors",
)
async def compare_faces(body: CompareFacesRequest) -> CompareFacesResponse | JSONResponse:
    """Return the Euclidean distance, similarity, and match decision."""
    try:
        result = compare_embeddings(body.embedding1, body.embedding2)
    except ValueError as exc:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": str(exc)},
        )
    return CompareFacesResponse(distance=result.distance, similarity=result.similarity, is_match=result.is_match)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health; ``degraded`` when memory stays above the threshold."""
    settings = _get_settings(request)
    queue = _get_queue(request)
    model_manager: ModelManager = request.app.state.model_manager
    resources: RuntimeResources = request.app.state.runtime_resources
    usage = resources.estimate_usage()
    return HealthResponse(
        status="degraded" if queue.degraded else "ok",
        gpu=settings.device == "cuda",
        models_loaded=model_manager.get_loaded_models(),
        queue_depth=queue.queue_depth,
        processing=queue.is_processing,
        memory_bytes=usage.bytes_in_use,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return available models and their status based on current configuration."""
    settings = _get_settings(request)
    active_models = {
        settings.face_detection_model,
        settings.face_landmark_model,
        settings.face_recognition_model,
    }

    models: list[ModelInfo] = []
    for spec in MODEL_REGISTRY.values():
        if spec.name in active_models:
            model_status = "active"
        elif spec.insightface and not settings.accept_insightface_license:
            model_status = "requires_license"
        else:
            model_status = "available"
        models.append(ModelInfo(name=spec.name, task=spec.task, status=model_status, license=spec.license))

    return ModelsResponse(models=models)
