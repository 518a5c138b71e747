"""Tests for environment-driven configuration."""

from __future__ import annotations

from pathlib import Path

import pytest

from src.engine.config import Backend, EngineConfig, ServiceConfig


def test_defaults():
    config = ServiceConfig.from_env({})

    assert config.engine.models_base_path == Path("./models")
    assert config.engine.preferred_backend is Backend.GPU
    assert config.engine.gpu_device_id == 0
    assert config.engine.variant == "SD1_5"
    assert config.engine.native_resolution == 512
    assert config.inference_workers == 2
    assert config.queue_depth == 10
    assert config.generation_timeout == 120.0
    assert config.image_generation_enabled is True


def test_environment_overrides():
    config = ServiceConfig.from_env({
        "MODELS_BASE_PATH": "/srv/models",
        "GPU_ENABLED": "false",
        "GPU_DEVICE_ID": "1",
        "ENGINE_VARIANT": "sd2_1",
        "INFERENCE_WORKERS": "4",
        "INFERENCE_QUEUE_DEPTH": "3",
        "GENERATION_TIMEOUT_SECONDS": "60",
        "IMAGE_GENERATION_ENABLED": "no",
    })

    assert config.engine.models_base_path == Path("/srv/models")
    assert config.engine.stable_diffusion_path == Path("/srv/models/stable-diffusion")
    assert config.engine.preferred_backend is Backend.CPU
    assert not config.engine.gpu_enabled
    assert config.engine.gpu_device_id == 1
    assert config.engine.native_resolution == 768
    assert config.inference_workers == 4
    assert config.queue_depth == 3
    assert config.generation_timeout == 60.0
    assert config.image_generation_enabled is False


def test_invalid_integer_is_reported():
    with pytest.raises(ValueError, match="GPU_DEVICE_ID"):
        EngineConfig.from_env({"GPU_DEVICE_ID": "first"})


def test_unknown_variant_rejected():
    with pytest.raises(ValueError, match="variant"):
        EngineConfig(variant="SDXL")


def test_worker_count_must_be_positive():
    with pytest.raises(ValueError):
        ServiceConfig(inference_workers=0)


def test_config_is_immutable():
    config = EngineConfig()
    with pytest.raises(AttributeError):
        config.gpu_device_id = 2


def test_with_engine_returns_copy():
    config = ServiceConfig()
    changed = config.with_engine(preferred_backend=Backend.CPU)

    assert changed.engine.preferred_backend is Backend.CPU
    assert config.engine.preferred_backend is Backend.GPU
