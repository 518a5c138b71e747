"""GPU/CPU execution provider selection with a one-shot CPU fallback."""

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple, Union

import onnxruntime as ort

from .config import Backend, EngineConfig
from .errors import EngineInitializationError

logger = logging.getLogger(__name__)

CUDA_PROVIDER = "CUDAExecutionProvider"
CPU_PROVIDER = "CPUExecutionProvider"

EngineFactory = Callable[[Backend, int], Any]
ProviderSpec = Union[str, Tuple[str, dict]]


@dataclass(frozen=True)
class ProviderSelection:
    """Engine built by the selector and the backend it ended up on."""

    engine: Any
    backend: Backend
    fallback_reason: Optional[str] = None

    @property
    def fell_back(self) -> bool:
        return self.fallback_reason is not None


def onnx_providers(backend: Backend, device_id: int = 0) -> List[ProviderSpec]:
    """
    Build the ONNX Runtime provider list for a backend.

    GPU sessions list only the CUDA provider. Callers still have to check
    ``session.get_providers()`` afterwards, since ONNX Runtime drops a CUDA
    provider it cannot load and keeps going on CPU.
    """
    if backend is Backend.GPU:
        return [(CUDA_PROVIDER, {"device_id": device_id})]
    return [CPU_PROVIDER]


def torch_device(backend: Backend, device_id: int = 0) -> str:
    """Torch device string for a backend."""
    if backend is Backend.GPU:
        return f"cuda:{device_id}"
    return "cpu"


def gpu_available() -> bool:
    """Whether the installed ONNX Runtime build offers the CUDA provider."""
    return CUDA_PROVIDER in ort.get_available_providers()


def runtime_version() -> str:
    return ort.__version__


class ExecutionProviderSelector:
    """Construct an engine on the preferred backend, falling back to CPU once."""

    def __init__(self, config: EngineConfig):
        self.config = config

    def select(self, factory: EngineFactory, name: str = "inference") -> ProviderSelection:
        """
        Build an engine with ``factory(backend, device_id)``.

        Args:
            factory: Callable constructing the engine for a backend
            name: Engine name used in log messages and errors

        Returns:
            ProviderSelection with the engine and the backend actually used

        Raises:
            EngineInitializationError: if the CPU attempt fails as well
        """
        fallback_reason = None

        if self.config.preferred_backend is Backend.GPU:
            device_id = self.config.gpu_device_id
            logger.info(f"Initializing {name} engine on GPU (device {device_id})")
            try:
                engine = factory(Backend.GPU, device_id)
                logger.info(f"✓ {name} engine initialized on GPU")
                return ProviderSelection(engine=engine, backend=Backend.GPU)
            except Exception as e:
                fallback_reason = f"{type(e).__name__}: {e}"
                logger.warning(
                    f"⚠ GPU initialization of {name} engine failed, falling back to CPU: "
                    f"{fallback_reason}"
                )
                logger.warning(
                    "Ensure CUDA and cuDNN are installed and LD_LIBRARY_PATH is set correctly"
                )

        logger.info(f"Initializing {name} engine on CPU")
        try:
            engine = factory(Backend.CPU, 0)
        except Exception as e:
            logger.error(f"Failed to initialize {name} engine on CPU", exc_info=True)
            raise EngineInitializationError(name, f"{type(e).__name__}: {e}") from e

        if fallback_reason:
            logger.info(f"✓ {name} engine initialized with CPU fallback")
        else:
            logger.info(f"✓ {name} engine initialized on CPU")
        return ProviderSelection(
            engine=engine,
            backend=Backend.CPU,
            fallback_reason=fallback_reason,
        )
