"""Pydantic request/response schemas for the FaceSift API."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from facesift.pipeline.detections import ScoredDetection


class FaceBox(BaseModel):
    """Face bounding box in pixels, origin top-left."""

    x: float
    y: float
    width: float
    height: float


class FacePose(BaseModel):
    """Normalised head pose."""

    yaw: float = Field(ge=-1.0, le=1.0)
    pitch: float = Field(ge=-1.0, le=1.0)
    frontal: bool


class DetectedFace(BaseModel):
    """A single detected face with box, scores, descriptor, and pose."""

    box: FaceBox
    confidence: float = Field(ge=0.0, le=1.0, description="Detector confidence")
    quality_score: float = Field(ge=0.0, le=1.0, description="Composite quality (confidence, size, centrality)")
    descriptor: list[float] = Field(description="L2-normalised face descriptor")
    pose: FacePose | None = Field(default=None, description="Null when landmarks are missing or degenerate")
    strategy: str = Field(description="Detection strategy that produced this face")

    @classmethod
    def from_scored(cls, scored: ScoredDetection) -> DetectedFace:
        pose = None
        if scored.pose is not None:
            pose = FacePose(yaw=scored.pose.yaw, pitch=scored.pose.pitch, frontal=scored.pose.frontal)
        box = scored.box
        return cls(
            box=FaceBox(x=box.x, y=box.y, width=box.width, height=box.height),
            confidence=scored.confidence,
            quality_score=scored.quality_score,
            descriptor=[float(v) for v in scored.descriptor],
            pose=pose,
            strategy=scored.strategy,
        )


class DetectFacesResponse(BaseModel):
    """Faces found in an image; ``error`` is set (with no faces) on failure."""

    faces: list[DetectedFace]
    error: str | None = None


class DetectFacesUrlRequest(BaseModel):
    """Detection request for a remote image."""

    image_url: str = Field(min_length=1)
    return_all: bool = False


class CompareFacesRequest(BaseModel):
    """Two descriptors to compare."""

    embedding1: list[float] = Field(min_length=1)
    embedding2: list[float] = Field(min_length=1)


class CompareFacesResponse(BaseModel):
    """Euclidean comparison result."""

    distance: float
    similarity: float
    is_match: bool


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    models_loaded: list[str]
    queue_depth: int
    processing: bool
    memory_bytes: int


class ModelInfo(BaseModel):
    """Information about an available model."""

    name: str
    task: str = Field(description="Model task: 'face_detection', 'face_landmarks', or 'face_recognition'")
    status: str = Field(description="Model status: 'active', 'available', or 'requires_license'")
    license: str


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
