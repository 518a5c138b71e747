"""Inference server for image generation and text embedding similarity.

This service is responsible for:
- Selecting GPU or CPU execution for each engine (with a one-time CPU fallback)
- Loading engines lazily on their first request
- Generating images and comparing text embeddings over HTTP
- Reporting engine status without touching the engines

Key principle: the service keeps no state besides the loaded engines.
Model files are read-only inputs supplied by the deployment.
"""

import logging
import os
from dataclasses import replace
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from ..engine.config import Backend, ServiceConfig
from ..engine.errors import InferenceError
from .service import InferenceService

logger = logging.getLogger(__name__)

API_PREFIX = "/api/inference"
STATIC_DIR = Path(__file__).parent / "static"


class ImageRequest(BaseModel):
    """Request to generate an image."""

    prompt: str
    style: str = "CLASSIC"


class EmbeddingRequest(BaseModel):
    """Request to compare two texts."""

    text1: str
    text2: str


class EmbeddingResponse(BaseModel):
    """Cosine similarity of two texts."""

    similarity: float
    text1: str
    text2: str
    degenerate: bool = False


def get_service(request: Request) -> InferenceService:
    return request.app.state.inference_service


router = APIRouter(prefix=API_PREFIX)


@router.post("/image", response_class=Response)
async def generate_image(request: ImageRequest, service: InferenceService = Depends(get_service)):
    """
    Generate an image with Stable Diffusion.

    Body: {"prompt": "string", "style": "CLASSIC|HAPPY|CONFUSED|EXCITED"}
    Returns: PNG image data
    """
    logger.info(f"Generating image with prompt: '{request.prompt}', style: {request.style}")
    try:
        image_data = await service.generate_image(request.prompt, request.style)
    except InferenceError:
        raise
    except Exception:
        logger.exception("Error during image generation")
        raise HTTPException(status_code=500, detail="Image generation failed")

    logger.info(f"Successfully generated image: {len(image_data)} bytes")
    return Response(content=image_data, media_type="image/png")


@router.post("/embeddings", response_model=EmbeddingResponse)
async def compare_embeddings(request: EmbeddingRequest, service: InferenceService = Depends(get_service)):
    """
    Compare two texts using embeddings.

    Body: {"text1": "string", "text2": "string"}
    Returns: {"similarity": 0.95, "text1": "...", "text2": "...", "degenerate": false}
    """
    try:
        result = await service.compare_embeddings(request.text1, request.text2)
    except InferenceError:
        raise
    except Exception:
        logger.exception("Error during embedding comparison")
        raise HTTPException(status_code=500, detail="Embedding comparison failed")

    return EmbeddingResponse(
        similarity=result.similarity,
        text1=request.text1,
        text2=request.text2,
        degenerate=result.degenerate,
    )


@router.get("/metrics")
async def get_metrics(service: InferenceService = Depends(get_service)):
    """GPU status, engine readiness and model information."""
    return service.metrics()


@router.get("/status")
async def get_status(service: InferenceService = Depends(get_service)):
    """Readiness snapshot of each engine."""
    return {name: snapshot.to_dict() for name, snapshot in service.status().items()}


@router.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "UP"}


def create_app(service: Optional[InferenceService] = None, config: Optional[ServiceConfig] = None) -> FastAPI:
    """Create FastAPI application for the inference service."""

    if service is None:
        service = InferenceService(config or ServiceConfig.from_env())

    app = FastAPI(
        title="GPU Inference Demo Service",
        description="Stable Diffusion image generation and text embedding similarity",
        version="0.1.0",
    )
    app.state.inference_service = service

    @app.on_event("startup")
    async def startup():
        logger.info("Starting inference service...")
        service.startup()
        logger.info("Inference service ready (engines load on first request)")

    @app.on_event("shutdown")
    async def shutdown():
        service.shutdown()

    @app.exception_handler(InferenceError)
    async def inference_error_handler(request: Request, exc: InferenceError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.detail}")
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})

    app.include_router(router)
    app.mount("/", StaticFiles(directory=STATIC_DIR, html=True), name="static")

    return app


def main():
    """Main entry point."""
    import argparse
    import uvicorn

    parser = argparse.ArgumentParser(description="Inference service for image generation and embeddings")
    parser.add_argument(
        "--host",
        type=str,
        default=os.getenv("HOST", "127.0.0.1"),
        help="Host to bind to (default: 127.0.0.1 or HOST env var)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("PORT", "8080")),
        help="Port to bind to (default: 8080 or PORT env var)",
    )
    parser.add_argument(
        "--models-path",
        type=Path,
        default=None,
        help="Base directory of model assets (default: MODELS_BASE_PATH env var or ./models)",
    )
    parser.add_argument(
        "--gpu",
        dest="gpu",
        action="store_true",
        default=None,
        help="Prefer GPU execution (default: GPU_ENABLED env var, true)",
    )
    parser.add_argument(
        "--no-gpu",
        dest="gpu",
        action="store_false",
        help="Run on CPU only",
    )
    parser.add_argument(
        "--gpu-device-id",
        type=int,
        default=None,
        help="CUDA device index (default: GPU_DEVICE_ID env var or 0)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Inference worker threads (default: INFERENCE_WORKERS env var or 2)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=os.getenv("LOG_LEVEL", "info"),
        choices=["debug", "info", "warning", "error"],
        help="Logging level (default: info or LOG_LEVEL env var)",
    )

    args = parser.parse_args()

    log_level = getattr(logging, args.log_level.upper())
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    config = ServiceConfig.from_env()
    engine_changes = {}
    if args.models_path is not None:
        engine_changes["models_base_path"] = args.models_path
    if args.gpu is not None:
        engine_changes["preferred_backend"] = Backend.GPU if args.gpu else Backend.CPU
    if args.gpu_device_id is not None:
        engine_changes["gpu_device_id"] = args.gpu_device_id
    if engine_changes:
        config = config.with_engine(**engine_changes)
    if args.workers is not None:
        config = replace(config, inference_workers=args.workers)

    logger.info(f"Starting inference service on {args.host}:{args.port}")
    logger.info(f"Models: {config.engine.models_base_path}, preferred backend: {config.engine.preferred_backend.value}")

    app = create_app(config=config)
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level)


if __name__ == "__main__":
    main()
