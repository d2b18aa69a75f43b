"""Model manager: download, load, cache, run, and evict ONNX models.

Sessions are created lazily from files fetched off the Hugging Face Hub and
evicted after ``model_ttl`` seconds of inactivity. Every inference goes
through :meth:`OnnxModelManager.run`, which asks ONNX Runtime to shrink its
memory arenas once the run finishes, so transient activations do not pile up
between detection passes.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from huggingface_hub import hf_hub_download
from onnxruntime import GraphOptimizationLevel, InferenceSession, RunOptions, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    import numpy as np
    from numpy.typing import NDArray

    from facesift.config import Settings

logger = logging.getLogger(__name__)

ARENA_SHRINKAGE_KEY = "memory.enable_memory_arena_shrinkage"


class ModelManager(Protocol):
    """What the face models and resource accounting need from a session cache."""

    def run(self, model_name: str, inputs: Mapping[str, NDArray[np.float32]]) -> list[NDArray[np.float32]]:
        """Run a model and return all of its outputs."""
        ...

    def input_name(self, model_name: str) -> str:
        """Return the name of the model's first input."""
        ...

    def get_loaded_models(self) -> list[str]: ...

    def unload_idle_models(self) -> list[str]:
        """Drop sessions idle for longer than the TTL; return their names."""
        ...

    def shutdown(self) -> None: ...


# ---------------------------------------------------------------------------
# Model registry
# ---------------------------------------------------------------------------


class ModelTask(StrEnum):
    FACE_DETECTION = "face_detection"
    FACE_LANDMARKS = "face_landmarks"
    FACE_RECOGNITION = "face_recognition"


@dataclass(frozen=True)
class ModelSpec:
    """Where a model lives on the Hub and what it is allowed to do."""

    name: str
    repo_id: str
    filename: str
    subfolder: str | None
    task: ModelTask
    license: str
    insightface: bool


_INSIGHTFACE_LICENSE = "Non-commercial (InsightFace)"


def _buffalo(name: str, filename: str, task: ModelTask) -> ModelSpec:
    """An InsightFace ``buffalo_l`` pack member (licence-gated)."""
    return ModelSpec(name, "public-data/insightface", filename, "models/buffalo_l", task, _INSIGHTFACE_LICENSE, True)


def _auraface(name: str, filename: str, task: ModelTask, license_name: str) -> ModelSpec:
    return ModelSpec(name, "fal/AuraFace-v1", filename, None, task, license_name, license_name == _INSIGHTFACE_LICENSE)


MODEL_REGISTRY: dict[str, ModelSpec] = {
    spec.name: spec
    for spec in (
        # The AuraFace repo redistributes the SCRFD detector under its original licence.
        _auraface("scrfd_10g_kps", "scrfd_10g_bnkps.onnx", ModelTask.FACE_DETECTION, _INSIGHTFACE_LICENSE),
        _buffalo("det_10g", "det_10g.onnx", ModelTask.FACE_DETECTION),
        _buffalo("landmark_1k3d68", "1k3d68.onnx", ModelTask.FACE_LANDMARKS),
        _auraface("auraface_v1", "glintr100.onnx", ModelTask.FACE_RECOGNITION, "Apache-2.0"),
        _buffalo("w600k_r50", "w600k_r50.onnx", ModelTask.FACE_RECOGNITION),
    )
}


def get_model_spec(model_name: str) -> ModelSpec:
    try:
        return MODEL_REGISTRY[model_name]
    except KeyError:
        raise KeyError(f"Unknown model: {model_name}") from None


# ---------------------------------------------------------------------------
# Session cache
# ---------------------------------------------------------------------------


@dataclass
class _LoadedModel:
    session: InferenceSession
    input_name: str
    last_used: float = field(default_factory=time.monotonic)
    runs: int = 0

    def touch(self) -> None:
        self.last_used = time.monotonic()


class OnnxModelManager:
    """Thread-safe cache of ONNX Runtime sessions keyed by registry name."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)
        self._models_dir.mkdir(parents=True, exist_ok=True)

        self._lock = threading.Lock()
        self._loaded: dict[str, _LoadedModel] = {}
        self._model_paths: dict[str, Path] = {}

        self._providers = self._build_providers()
        self._session_options = self._build_session_options()
        self._run_options = self._build_run_options()

    # -- Public API ---------------------------------------------------------

    def validate(self, model_names: Iterable[str], task: ModelTask | None = None) -> None:
        """Fail fast on unknown, mis-tasked, or licence-gated models.

        Raises:
            KeyError: If a model is not in the registry.
            ValueError: If a model does not perform ``task``.
            RuntimeError: If a model needs the InsightFace licence flag.
        """
        for name in model_names:
            spec = get_model_spec(name)
            if task is not None and spec.task != task:
                raise ValueError(f"Model '{name}' is a {spec.task} model, expected {task}")
            self._check_license(spec)

    def ensure_downloaded(self, model_name: str) -> Path:
        """Return the local path of ``model_name``, fetching it from the Hub if needed."""
        spec = get_model_spec(model_name)
        self._check_license(spec)

        known = self._model_paths.get(model_name)
        if known is not None and known.exists():
            return known

        path = Path(
            hf_hub_download(
                repo_id=spec.repo_id,
                filename=spec.filename,
                subfolder=spec.subfolder,
                local_dir=str(self._models_dir),
            )
        )
        self._model_paths[model_name] = path
        logger.info("Model %s available at %s", model_name, path)
        return path

    def run(self, model_name: str, inputs: Mapping[str, NDArray[np.float32]]) -> list[NDArray[np.float32]]:
        """Run ``model_name`` on ``inputs`` with arena shrinkage enabled."""
        model = self._acquire(model_name)
        outputs: list[NDArray[np.float32]] = model.session.run(None, dict(inputs), self._run_options)
        model.runs += 1
        return outputs

    def input_name(self, model_name: str) -> str:
        return self._acquire(model_name).input_name

    def get_loaded_models(self) -> list[str]:
        with self._lock:
            return list(self._loaded)

    def unload_idle_models(self) -> list[str]:
        """Drop sessions unused for longer than ``model_ttl`` (0 keeps them forever)."""
        ttl = self._settings.model_ttl
        if ttl == 0:
            return []

        cutoff = time.monotonic() - ttl
        with self._lock:
            idle = [name for name, model in self._loaded.items() if model.last_used < cutoff]
            for name in idle:
                model = self._loaded.pop(name)
                logger.info("Evicted idle session %s after %d runs", name, model.runs)
        return idle

    def shutdown(self) -> None:
        with self._lock:
            count = len(self._loaded)
            self._loaded.clear()
        logger.info("Released %d model sessions", count)

    # -- Internal -----------------------------------------------------------

    def _acquire(self, model_name: str) -> _LoadedModel:
        with self._lock:
            model = self._loaded.get(model_name)
            if model is not None:
                model.touch()
                return model

        fresh = self._load_session(model_name)

        with self._lock:
            # A concurrent caller may have won the race.
            model = self._loaded.setdefault(model_name, fresh)
            model.touch()
            return model

    def _load_session(self, model_name: str) -> _LoadedModel:
        path = self.ensure_downloaded(model_name)
        session = InferenceSession(str(path), sess_options=self._session_options, providers=self._providers)
        inputs = session.get_inputs()
        logger.info("Loaded session for %s (providers=%s)", model_name, self._settings.device)
        return _LoadedModel(session=session, input_name=inputs[0].name)

    def _check_license(self, spec: ModelSpec) -> None:
        if spec.insightface and not self._settings.accept_insightface_license:
            raise RuntimeError(f"Model '{spec.name}' requires FACESIFT_ACCEPT_INSIGHTFACE_LICENSE=true")

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            cuda_options: dict[str, object] = {
                "device_id": 0,
                "gpu_mem_limit": self._settings.gpu_mem_limit,
                "arena_extend_strategy": "kSameAsRequested",
            }
            return [("CUDAExecutionProvider", cuda_options), "CPUExecutionProvider"]
        if device == "openvino":
            return [("OpenVINOExecutionProvider", {"device_type": "CPU"}), "CPUExecutionProvider"]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True
        if self._settings.device == "openvino":
            # OpenVINO optimizes the graph itself
            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts

    def _build_run_options(self) -> RunOptions:
        opts = RunOptions()
        arenas = "cpu:0;gpu:0" if self._settings.device == "cuda" else "cpu:0"
        opts.add_run_config_entry(ARENA_SHRINKAGE_KEY, arenas)
        return opts
