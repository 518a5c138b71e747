"""Service configuration read from the environment.

Every setting has an environment variable with a sensible default, and the
server CLI can override the most common ones. Both dataclasses are frozen:
configuration is built once at startup and never mutated.
"""

import logging
import os
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

# Native output resolution for each supported Stable Diffusion export
VARIANT_RESOLUTIONS = {
    "SD1_5": 512,
    "SD2_1": 768,
}


class Backend(str, Enum):
    """Execution target an inference session is bound to."""

    GPU = "GPU"
    CPU = "CPU"


def _env_bool(environ: Mapping[str, str], name: str, default: bool) -> bool:
    value = environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    value = environ.get(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


def _env_float(environ: Mapping[str, str], name: str, default: float) -> float:
    value = environ.get(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}")


@dataclass(frozen=True)
class EngineConfig:
    """Immutable description of which models to load and where to run them."""

    models_base_path: Path = Path("./models")
    preferred_backend: Backend = Backend.GPU
    gpu_device_id: int = 0
    variant: str = "SD1_5"
    embedding_model: str = "ViT-B-32"
    embedding_pretrained: str = "openai"
    intra_op_threads: int = 4
    inter_op_threads: int = 4

    def __post_init__(self):
        if self.variant not in VARIANT_RESOLUTIONS:
            raise ValueError(
                f"Unknown engine variant {self.variant!r}; "
                f"expected one of {sorted(VARIANT_RESOLUTIONS)}"
            )
        if self.gpu_device_id < 0:
            raise ValueError("gpu_device_id must be >= 0")

    @property
    def gpu_enabled(self) -> bool:
        return self.preferred_backend is Backend.GPU

    @property
    def stable_diffusion_path(self) -> Path:
        return self.models_base_path / "stable-diffusion"

    @property
    def native_resolution(self) -> int:
        return VARIANT_RESOLUTIONS[self.variant]

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineConfig":
        environ = os.environ if environ is None else environ
        gpu_enabled = _env_bool(environ, "GPU_ENABLED", True)
        return cls(
            models_base_path=Path(environ.get("MODELS_BASE_PATH", "./models")),
            preferred_backend=Backend.GPU if gpu_enabled else Backend.CPU,
            gpu_device_id=_env_int(environ, "GPU_DEVICE_ID", 0),
            variant=environ.get("ENGINE_VARIANT", "SD1_5").upper(),
            embedding_model=environ.get("EMBEDDING_MODEL", "ViT-B-32"),
            embedding_pretrained=environ.get("EMBEDDING_PRETRAINED", "openai"),
            intra_op_threads=_env_int(environ, "ORT_INTRA_OP_THREADS", 4),
            inter_op_threads=_env_int(environ, "ORT_INTER_OP_THREADS", 4),
        )


@dataclass(frozen=True)
class ServiceConfig:
    """Engine configuration plus request-handling settings."""

    engine: EngineConfig = field(default_factory=EngineConfig)
    inference_workers: int = 2
    queue_depth: int = 10
    generation_timeout: float = 120.0
    embedding_timeout: float = 30.0
    image_generation_enabled: bool = True
    validate_models_on_startup: bool = True

    def __post_init__(self):
        if self.inference_workers < 1:
            raise ValueError("inference_workers must be >= 1")
        if self.queue_depth < 0:
            raise ValueError("queue_depth must be >= 0")
        if self.generation_timeout <= 0 or self.embedding_timeout <= 0:
            raise ValueError("timeouts must be positive")

    def with_engine(self, **changes) -> "ServiceConfig":
        """Return a copy with some engine settings replaced (used by the CLI)."""
        return replace(self, engine=replace(self.engine, **changes))

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServiceConfig":
        environ = os.environ if environ is None else environ
        return cls(
            engine=EngineConfig.from_env(environ),
            inference_workers=_env_int(environ, "INFERENCE_WORKERS", 2),
            queue_depth=_env_int(environ, "INFERENCE_QUEUE_DEPTH", 10),
            generation_timeout=_env_float(environ, "GENERATION_TIMEOUT_SECONDS", 120.0),
            embedding_timeout=_env_float(environ, "EMBEDDING_TIMEOUT_SECONDS", 30.0),
            image_generation_enabled=_env_bool(environ, "IMAGE_GENERATION_ENABLED", True),
            validate_models_on_startup=_env_bool(environ, "VALIDATE_MODELS_ON_STARTUP", True),
        )
