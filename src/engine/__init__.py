"""Engine selection, readiness tracking and execution for the inference service."""

from .config import Backend, EngineConfig, ServiceConfig
from .errors import (
    ClientInputError,
    EngineExecutionError,
    EngineInitializationError,
    GenerationCancelledError,
    GenerationUnavailableError,
    ImageEncodingError,
    InferenceError,
    InferenceQueueFullError,
    InferenceTimeoutError,
)
from .executor import InferenceExecutor
from .providers import ExecutionProviderSelector, ProviderSelection
from .readiness import EngineHandle, ReadinessState, ReadinessStatus, ReadinessTracker

__all__ = [
    "Backend",
    "ClientInputError",
    "EngineConfig",
    "EngineExecutionError",
    "EngineHandle",
    "EngineInitializationError",
    "ExecutionProviderSelector",
    "GenerationCancelledError",
    "GenerationUnavailableError",
    "ImageEncodingError",
    "InferenceError",
    "InferenceExecutor",
    "InferenceQueueFullError",
    "InferenceTimeoutError",
    "ProviderSelection",
    "ReadinessState",
    "ReadinessStatus",
    "ReadinessTracker",
    "ServiceConfig",
]
