"""Inference service: owns the engines and implements the request handlers.

The service is created once per process and handed to the FastAPI app. Both
engines (Stable Diffusion and the text embedder) start uninitialized and are
built on their first request. Status and metrics only read snapshots, so they
never wait on, or trigger, engine initialization.
"""

import logging
import os
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import torch
from starlette.concurrency import run_in_threadpool

from ..embedding.embedder import SimilarityResult, TextEmbedder, compute_similarity
from ..engine.config import Backend, EngineConfig, ServiceConfig
from ..engine.errors import (
    ClientInputError,
    EngineExecutionError,
    GenerationCancelledError,
    GenerationUnavailableError,
    InferenceTimeoutError,
)
from ..engine.executor import InferenceExecutor
from ..engine.providers import ExecutionProviderSelector, gpu_available, runtime_version
from ..engine.readiness import ReadinessState, ReadinessTracker
from ..generation.image_generator import StableDiffusionEngine, encode_png
from ..generation.prompts import plan_generation
from ..models.model_files import ModelFileManager, ModelReport

logger = logging.getLogger(__name__)

IMAGE_ENGINE = "stable-diffusion"
EMBEDDING_ENGINE = "text-embedding"

MAX_TEXT_LENGTH = 2000


@dataclass(frozen=True)
class StatusSnapshot:
    """Point-in-time view of one engine, built per request."""

    name: str
    state: ReadinessState
    runtime_version: str

    def to_dict(self) -> dict:
        data = self.state.to_dict()
        data["name"] = self.name
        data["runtimeVersion"] = self.runtime_version
        return data


def log_gpu_configuration(config: EngineConfig):
    """Log the GPU environment at startup."""
    logger.info("=" * 60)
    logger.info("GPU Configuration:")
    logger.info(f"  GPU enabled: {config.gpu_enabled} (device {config.gpu_device_id})")
    logger.info(f"  CUDA_PATH: {os.getenv('CUDA_PATH', 'Not set')}")
    logger.info(f"  LD_LIBRARY_PATH: {os.getenv('LD_LIBRARY_PATH', 'Not set')}")
    logger.info(f"  ONNX Runtime: {runtime_version()} (CUDA provider: {'YES' if gpu_available() else 'NO'})")
    if torch.cuda.is_available():
        logger.info(f"  PyTorch CUDA: YES ({torch.version.cuda}), {torch.cuda.device_count()} device(s)")
        for i in range(torch.cuda.device_count()):
            gpu_mem = torch.cuda.get_device_properties(i).total_memory / 1024**3
            logger.info(f"  GPU {i}: {torch.cuda.get_device_name(i)} ({gpu_mem:.2f} GB)")
    elif config.gpu_enabled:
        logger.warning("  PyTorch CUDA: NO - embeddings will run on CPU!")
    logger.info("=" * 60)


def validate_text(value: Optional[str], field_name: str) -> str:
    if value is None or not value.strip():
        raise ClientInputError(f"{field_name} must not be empty")
    if len(value) > MAX_TEXT_LENGTH:
        raise ClientInputError(f"{field_name} must be at most {MAX_TEXT_LENGTH} characters")
    return value


def model_entry(state: ReadinessState, **info) -> dict:
    """One ``/metrics`` model entry: readiness fields plus a readable ``status``.

    The raw readiness status is kept under ``state``.
    """
    entry = state.to_dict()
    entry["state"] = entry.pop("status")
    entry.update(info)
    entry["available"] = state.is_ready
    entry["status"] = state.describe()
    return entry


class InferenceService:
    """Manages engine readiness and inference execution."""

    def __init__(
        self,
        config: ServiceConfig,
        image_factory: Optional[Callable] = None,
        embedding_factory: Optional[Callable] = None,
        model_files: Optional[ModelFileManager] = None,
    ):
        """
        Args:
            config: Service configuration
            image_factory: ``factory(backend, device_id)`` building the image engine
            embedding_factory: ``factory(backend, device_id)`` building the text embedder
            model_files: Model file inspector (defaults to the configured base path)
        """
        self.config = config
        engine_config = config.engine

        if image_factory is None:
            def image_factory(backend: Backend, device_id: int):
                return StableDiffusionEngine.load(engine_config, backend, device_id)

        if embedding_factory is None:
            def embedding_factory(backend: Backend, device_id: int):
                return TextEmbedder.load(engine_config, backend, device_id)

        selector = ExecutionProviderSelector(engine_config)
        self.image_tracker = ReadinessTracker(IMAGE_ENGINE, image_factory, selector)
        self.embedding_tracker = ReadinessTracker(EMBEDDING_ENGINE, embedding_factory, selector)
        self.executor = InferenceExecutor(
            max_workers=config.inference_workers,
            queue_depth=config.queue_depth,
        )
        self.model_files = model_files or ModelFileManager(engine_config.models_base_path)
        self.model_reports: Dict[str, ModelReport] = {}
        self._shutdown_lock = threading.Lock()
        self._shut_down = False

    def startup(self):
        """Log the environment and inspect model files. Engines stay lazy."""
        log_gpu_configuration(self.config.engine)
        self.model_reports = self.model_files.inspect_all(
            validate=self.config.validate_models_on_startup,
        )
        if not self.config.image_generation_enabled:
            logger.info("Image generation disabled by configuration")

    async def generate_image(self, prompt: str, style: str) -> bytes:
        """
        Generate a PNG for a prompt and style.

        Raises:
            ClientInputError: invalid prompt or style (checked before any engine work)
            GenerationUnavailableError: image generation disabled
            EngineInitializationError: engine could not be built
            EngineExecutionError / ImageEncodingError: generation failed
            InferenceQueueFullError / InferenceTimeoutError: pool saturated or call too slow
        """
        plan = plan_generation(prompt, style, resolution=self.config.engine.native_resolution)
        if not self.config.image_generation_enabled:
            raise GenerationUnavailableError()

        handle = await run_in_threadpool(self.image_tracker.ensure_ready)

        def job(cancel_event: threading.Event) -> bytes:
            with handle.lock:
                if cancel_event.is_set():
                    raise GenerationCancelledError("Generation cancelled before start")
                try:
                    result = handle.engine.generate(plan, cancel_event=cancel_event)
                except GenerationCancelledError:
                    raise
                except Exception as e:
                    logger.exception("Failed to generate image")
                    raise EngineExecutionError("Image generation") from e
            return encode_png(result.image)

        try:
            return await self.executor.run(job, timeout=self.config.generation_timeout, operation="Image generation")
        except GenerationCancelledError:
            raise InferenceTimeoutError("Image generation", self.config.generation_timeout)

    async def compare_embeddings(self, text1: str, text2: str) -> SimilarityResult:
        """
        Embed two texts and return their cosine similarity.

        Raises:
            ClientInputError: empty or oversized text
            EngineInitializationError: embedder could not be built
            EngineExecutionError: embedding failed
        """
        text1 = validate_text(text1, "text1")
        text2 = validate_text(text2, "text2")

        handle = await run_in_threadpool(self.embedding_tracker.ensure_ready)

        def job(cancel_event: threading.Event) -> SimilarityResult:
            with handle.lock:
                if cancel_event.is_set():
                    raise GenerationCancelledError("Embedding computation cancelled before start")
                try:
                    embeddings = handle.engine.embed_texts([text1, text2])
                except Exception as e:
                    logger.exception("Failed to compute embeddings")
                    raise EngineExecutionError("Embedding computation") from e
            return compute_similarity(embeddings[0], embeddings[1])

        logger.info(f"Comparing embeddings for texts (lengths: {len(text1)}, {len(text2)})")
        try:
            result = await self.executor.run(job, timeout=self.config.embedding_timeout, operation="Embedding computation")
        except GenerationCancelledError:
            raise InferenceTimeoutError("Embedding computation", self.config.embedding_timeout)
        logger.info(f"Embedding similarity: {result.similarity:.4f}")
        return result

    def status(self) -> Dict[str, StatusSnapshot]:
        version = runtime_version()
        return {
            tracker.name: StatusSnapshot(name=tracker.name, state=tracker.state, runtime_version=version)
            for tracker in (self.image_tracker, self.embedding_tracker)
        }

    def gpu_in_use(self) -> bool:
        """GPU status as observed: the image engine's backend once built, else the configured probe."""
        if self.image_tracker.state.fell_back or self.embedding_tracker.state.fell_back:
            return False
        state = self.image_tracker.state
        if state.is_ready:
            return state.backend is Backend.GPU
        return self.config.engine.gpu_enabled and gpu_available()

    def metrics(self) -> dict:
        """System metrics: GPU status, engine readiness and model information."""
        engine_config = self.config.engine
        image_state = self.image_tracker.state
        embedding_state = self.embedding_tracker.state
        sd_report = self.model_reports.get("stableDiffusion")

        stable_diffusion = model_entry(
            image_state,
            enabled=self.config.image_generation_enabled,
            provider="diffusers ONNX pipeline (ONNX Runtime)",
            model=f"Stable Diffusion {engine_config.variant}",
            variant=engine_config.variant,
            sizeBytes=sd_report.size_bytes if sd_report else 0,
            missingComponents=list(sd_report.missing_components) if sd_report else [],
        )
        text_embedding = model_entry(
            embedding_state,
            provider="open_clip (PyTorch)",
            model=f"{engine_config.embedding_model} ({engine_config.embedding_pretrained})",
        )

        return {
            "gpuAvailable": self.gpu_in_use(),
            "modelsLoaded": image_state.is_ready,
            "models": {
                "stableDiffusion": stable_diffusion,
                "textEmbedding": text_embedding,
            },
            "runtimeVersion": runtime_version(),
            "torchVersion": torch.__version__,
        }

    def shutdown(self):
        """Release engines and stop the worker pool. Safe to call more than once."""
        with self._shutdown_lock:
            if self._shut_down:
                return
            self._shut_down = True

        logger.info("Shutting down inference service...")
        self.executor.shutdown()
        for tracker in (self.image_tracker, self.embedding_tracker):
            try:
                tracker.close()
            except Exception:
                logger.exception(f"Error closing {tracker.name} engine")
        logger.info("Inference service stopped")
