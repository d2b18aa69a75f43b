"""Environment-based configuration for FaceSift."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from FACESIFT_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FACESIFT_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8082
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Model selection (landmark model None = no 68-point landmarks, no pose)
    face_detection_model: str = "scrfd_10g_kps"
    face_landmark_model: str | None = "landmark_1k3d68"
    face_recognition_model: str = "auraface_v1"
    accept_insightface_license: bool = False
    models_dir: str = "models"

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Work queue
    queue_batch_size: int = Field(default=3, ge=1, le=5)
    queue_reschedule_delay: float = Field(default=0.05, ge=0.0)
    memory_threshold_bytes: int = Field(default=1_610_612_736, ge=1)

    # Multi-scale strategy
    multi_scale_min_width: int = Field(default=800, ge=1)
    multi_scale_min_height: int = Field(default=600, ge=1)
    multi_scale_factor: float = Field(default=0.5, gt=0.0, lt=1.0)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=209_715_200, ge=1)
    fetch_timeout: float = Field(default=10.0, gt=0.0)

    # Model management
    model_ttl: int = Field(default=300, ge=0)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
