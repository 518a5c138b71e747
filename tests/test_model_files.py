"""Tests for model file inspection."""

from __future__ import annotations

import hashlib

import pytest

from src.models.model_files import REQUIRED_SD_COMPONENTS, ModelFileManager


@pytest.fixture
def manager(tmp_path):
    return ModelFileManager(tmp_path / "models")


def make_sd_dir(base, components=REQUIRED_SD_COMPONENTS):
    sd_dir = base / "stable-diffusion"
    for component in components:
        (sd_dir / component).mkdir(parents=True)
        (sd_dir / component / "weights.bin").write_bytes(b"\x00" * 100)
    (sd_dir / "model_index.json").write_text("{}")
    return sd_dir


def test_creates_base_dir(manager):
    manager.ensure_base_dir()
    assert manager.base_path.is_dir()


def test_missing_stable_diffusion_dir(manager):
    report = manager.inspect_stable_diffusion()

    assert not report.present
    assert not report.complete
    assert report.size_bytes == 0
    assert report.missing_components == list(REQUIRED_SD_COMPONENTS)


def test_complete_stable_diffusion_dir(manager):
    make_sd_dir(manager.base_path)

    report = manager.inspect_stable_diffusion()

    assert report.complete
    assert report.size_bytes == 100 * len(REQUIRED_SD_COMPONENTS) + 2
    assert report.to_dict()["sizeBytes"] == report.size_bytes


def test_partial_stable_diffusion_dir(manager):
    make_sd_dir(manager.base_path, components=("unet",))

    report = manager.inspect_stable_diffusion()

    assert report.present
    assert not report.complete
    assert report.missing_components == ["text_encoder", "vae_decoder"]


def test_inspect_all_reports_stable_diffusion(manager):
    reports = manager.inspect_all(validate=False)
    assert set(reports) == {"stableDiffusion"}
    assert manager.base_path.is_dir()


def test_model_availability_and_size(manager):
    manager.ensure_base_dir()
    (manager.base_path / "tiny.onnx").write_bytes(b"abc")

    assert manager.is_model_available("tiny.onnx")
    assert not manager.is_model_available("missing.onnx")
    assert manager.get_model_size("tiny.onnx") == 3
    assert manager.get_model_size("missing.onnx") == -1


def test_checksum(manager, tmp_path):
    path = tmp_path / "weights.bin"
    path.write_bytes(b"stable diffusion")

    assert manager.compute_checksum(path) == hashlib.sha256(b"stable diffusion").hexdigest()
    assert manager.compute_checksum(tmp_path / "missing.bin") is None


def test_validate_missing_onnx_model(manager, tmp_path):
    assert manager.validate_onnx_model(tmp_path / "missing.onnx") is False


def test_validate_corrupt_onnx_model(manager, tmp_path):
    path = tmp_path / "corrupt.onnx"
    path.write_bytes(b"not a protobuf")

    assert manager.validate_onnx_model(path) is False
