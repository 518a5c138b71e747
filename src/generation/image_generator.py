"""Stable Diffusion image generation on ONNX Runtime.

Wraps the diffusers ONNX pipeline. The pipeline handles tokenization, U-Net
denoising and VAE decoding; this module only binds it to an execution
provider, runs it with fixed sampling settings and encodes the result.

Expected model layout under ``<models>/stable-diffusion``::

    model_index.json
    scheduler/  tokenizer/  text_encoder/  unet/  vae_decoder/  [safety_checker/]
"""

import gc
import io
import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np
import onnxruntime as ort
from PIL import Image

from ..engine.config import Backend, EngineConfig
from ..engine.errors import GenerationCancelledError, ImageEncodingError
from ..engine.providers import CUDA_PROVIDER, onnx_providers
from .prompts import GenerationPlan

logger = logging.getLogger(__name__)


@dataclass
class GeneratedImage:
    """Result of one generation call."""

    image: Image.Image
    nsfw_detected: bool
    duration_seconds: float


def build_session_options(config: EngineConfig) -> ort.SessionOptions:
    """ONNX Runtime session options shared by all pipeline components."""
    options = ort.SessionOptions()
    options.enable_mem_pattern = True
    options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
    options.intra_op_num_threads = config.intra_op_threads
    options.inter_op_num_threads = config.inter_op_threads
    return options


class StableDiffusionEngine:
    """Text-to-image engine bound to one execution provider."""

    def __init__(self, pipeline, backend: Backend, variant: str, model_path: Path):
        self.pipeline = pipeline
        self.backend = backend
        self.variant = variant
        self.model_path = model_path

    @classmethod
    def load(cls, config: EngineConfig, backend: Backend, device_id: int = 0) -> "StableDiffusionEngine":
        """
        Load the ONNX pipeline on the given backend.

        Raises:
            FileNotFoundError: if the model directory does not exist
            RuntimeError: if GPU was requested but the sessions did not bind CUDA
        """
        model_path = config.stable_diffusion_path
        if not model_path.is_dir():
            raise FileNotFoundError(f"Stable Diffusion model directory not found: {model_path}")

        from diffusers import EulerAncestralDiscreteScheduler, OnnxStableDiffusionPipeline

        provider = onnx_providers(backend, device_id)[0]
        provider_options = None
        if isinstance(provider, tuple):
            provider, provider_options = provider

        logger.info(f"Loading Stable Diffusion ({config.variant}) from {model_path}")
        logger.info(f"  Execution provider: {provider} {provider_options or ''}")
        pipeline = OnnxStableDiffusionPipeline.from_pretrained(
            str(model_path),
            provider=provider,
            provider_options=provider_options,
            sess_options=build_session_options(config),
        )

        if backend is Backend.GPU:
            active = pipeline.unet.model.get_providers()
            if CUDA_PROVIDER not in active:
                raise RuntimeError(f"CUDA provider not active for U-Net session (active: {active})")

        pipeline.scheduler = EulerAncestralDiscreteScheduler.from_config(pipeline.scheduler.config)
        return cls(pipeline, backend=backend, variant=config.variant, model_path=model_path)

    def generate(self, plan: GenerationPlan, cancel_event: Optional[threading.Event] = None) -> GeneratedImage:
        """
        Run the diffusion pipeline for a prepared plan.

        Args:
            plan: Prompt, negative prompt and sampling parameters
            cancel_event: Checked after every denoising step

        Returns:
            GeneratedImage with the decoded image

        Raises:
            GenerationCancelledError: if ``cancel_event`` was set mid-run
        """
        if self.pipeline is None:
            raise RuntimeError("Stable Diffusion pipeline has been released")

        params = plan.parameters
        logger.info("Generating image:")
        logger.info(f"  Prompt: {plan.enhanced_prompt}")
        logger.info(f"  Negative: {plan.negative_prompt}")
        logger.info(f"  Steps: {params.num_inference_steps}, Guidance: {params.guidance_scale}, Seed: {params.seed}")
        logger.info(f"  Size: {params.width}x{params.height}")

        def on_step(step: int, timestep, latents):
            if cancel_event is not None and cancel_event.is_set():
                raise GenerationCancelledError(f"Generation cancelled at step {step}")
            if step % 10 == 0:
                logger.debug(f"  Diffusion step: {step}/{params.num_inference_steps}")

        start = time.time()
        result = self.pipeline(
            prompt=plan.enhanced_prompt,
            negative_prompt=plan.negative_prompt,
            height=params.height,
            width=params.width,
            num_inference_steps=params.num_inference_steps,
            guidance_scale=params.guidance_scale,
            generator=np.random.RandomState(params.seed),
            callback=on_step,
            callback_steps=1,
        )
        duration = time.time() - start
        logger.info(f"✓ Image generated in {duration:.1f}s")

        flags = result.nsfw_content_detected
        nsfw = bool(flags and flags[0])
        if nsfw:
            logger.warning("⚠ Image failed safety check (NSFW content detected)")

        return GeneratedImage(image=result.images[0], nsfw_detected=nsfw, duration_seconds=duration)

    def info(self) -> dict:
        return {
            "model": f"Stable Diffusion {self.variant}",
            "backend": self.backend.value,
            "model_path": str(self.model_path),
        }

    def close(self):
        self.pipeline = None
        gc.collect()


def encode_png(image: Image.Image) -> bytes:
    """
    Encode an image as PNG.

    Raises:
        ImageEncodingError: if Pillow cannot serialize the image
    """
    try:
        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
    except Exception as e:
        logger.exception("Failed to encode image as PNG")
        raise ImageEncodingError() from e

    data = buffer.getvalue()
    logger.info(f"✓ Image encoded to PNG ({len(data) // 1024} KB)")
    return data
