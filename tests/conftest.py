"""Shared fixtures: fake engines and a service wired to them.

The fakes stand in for the Stable Diffusion pipeline and the CLIP text
encoder so the request handling, readiness and fallback logic can be tested
without model weights or a GPU.
"""

from __future__ import annotations

import hashlib
import threading
import time
from typing import List, Optional, Set

import numpy as np
import pytest
from fastapi.testclient import TestClient
from PIL import Image

from src.engine.config import Backend, EngineConfig, ServiceConfig
from src.engine.errors import GenerationCancelledError
from src.generation.image_generator import GeneratedImage
from src.inference_service.server import create_app
from src.inference_service.service import InferenceService


class FakeImageEngine:
    """Returns a small solid image for every plan."""

    def __init__(self, backend: Backend):
        self.backend = backend
        self.plans = []
        self.close_calls = 0
        self.error: Optional[Exception] = None
        self.image: Optional[Image.Image] = None

    def generate(self, plan, cancel_event=None) -> GeneratedImage:
        self.plans.append(plan)
        if self.error is not None:
            raise self.error
        image = self.image or Image.new("RGB", (8, 8), color=(200, 30, 30))
        return GeneratedImage(image=image, nsfw_detected=False, duration_seconds=0.0)

    def close(self):
        self.close_calls += 1


class SlowImageEngine(FakeImageEngine):
    """Runs "diffusion steps" until cancelled, like the real step callback."""

    def __init__(self, backend: Backend):
        super().__init__(backend)
        self.cancelled = threading.Event()

    def generate(self, plan, cancel_event=None) -> GeneratedImage:
        for _ in range(500):
            if cancel_event is not None and cancel_event.is_set():
                self.cancelled.set()
                raise GenerationCancelledError("cancelled")
            time.sleep(0.01)
        return super().generate(plan, cancel_event)


class FakeEmbedder:
    """Deterministic pseudo-embeddings: equal texts give equal vectors."""

    dimension = 16

    def __init__(self, backend: Backend):
        self.backend = backend
        self.close_calls = 0

    def embed_texts(self, texts: List[str]) -> np.ndarray:
        vectors = []
        for text in texts:
            if text == "<zero>":
                vectors.append(np.zeros(self.dimension, dtype=np.float32))
                continue
            seed = int(hashlib.md5(text.encode("utf-8")).hexdigest()[:8], 16)
            vectors.append(np.random.RandomState(seed).randn(self.dimension).astype(np.float32))
        return np.vstack(vectors)

    def close(self):
        self.close_calls += 1


class CountingFactory:
    """Engine factory that records calls and can fail per backend."""

    def __init__(self, engine_cls, fail_on: Optional[Set[Backend]] = None, delay: float = 0.0):
        self.engine_cls = engine_cls
        self.fail_on = fail_on or set()
        self.delay = delay
        self.calls = []
        self.engines = []
        self._lock = threading.Lock()

    def __call__(self, backend: Backend, device_id: int):
        with self._lock:
            self.calls.append((backend, device_id))
        if self.delay:
            time.sleep(self.delay)
        if backend in self.fail_on:
            raise RuntimeError(f"simulated {backend.value} construction failure")
        engine = self.engine_cls(backend)
        self.engines.append(engine)
        return engine


@pytest.fixture
def engine_config(tmp_path) -> EngineConfig:
    return EngineConfig(models_base_path=tmp_path / "models", preferred_backend=Backend.GPU)


@pytest.fixture
def service_config(engine_config) -> ServiceConfig:
    return ServiceConfig(engine=engine_config, validate_models_on_startup=False)


@pytest.fixture
def image_factory() -> CountingFactory:
    return CountingFactory(FakeImageEngine)


@pytest.fixture
def embedding_factory() -> CountingFactory:
    return CountingFactory(FakeEmbedder)


@pytest.fixture
def service(service_config, image_factory, embedding_factory) -> InferenceService:
    svc = InferenceService(
        service_config,
        image_factory=image_factory,
        embedding_factory=embedding_factory,
    )
    yield svc
    svc.shutdown()


@pytest.fixture
def client(service):
    app = create_app(service=service)
    with TestClient(app) as test_client:
        yield test_client
