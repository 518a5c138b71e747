"""Model file inspection: presence, size, checksum and ONNX validation.

Model weights are supplied externally; this module never downloads anything.
It reports what is on disk so startup logs and ``/metrics`` can show it.
"""

import hashlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import onnxruntime as ort

logger = logging.getLogger(__name__)

STABLE_DIFFUSION_DIR = "stable-diffusion"
REQUIRED_SD_COMPONENTS = ("text_encoder", "unet", "vae_decoder")

# Files above this size are not opened for validation (startup time)
MAX_VALIDATION_SIZE_MB = 500


@dataclass
class ModelReport:
    """What was found on disk for one model."""

    name: str
    path: str
    present: bool
    size_bytes: int = 0
    missing_components: List[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return self.present and not self.missing_components

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "present": self.present,
            "complete": self.complete,
            "sizeBytes": self.size_bytes,
            "missingComponents": list(self.missing_components),
        }


class ModelFileManager:
    """Inspect model assets under a base directory."""

    def __init__(self, base_path: Path):
        self.base_path = Path(base_path)

    def ensure_base_dir(self):
        if not self.base_path.exists():
            self.base_path.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created model directory: {self.base_path}")

    def inspect_stable_diffusion(self) -> ModelReport:
        """Check the Stable Diffusion directory and its required components."""
        sd_path = self.base_path / STABLE_DIFFUSION_DIR
        if not sd_path.is_dir():
            logger.warning(f"Stable Diffusion directory not found: {sd_path}")
            logger.warning("Image generation will fail to initialize until models are provided")
            return ModelReport(
                name=STABLE_DIFFUSION_DIR,
                path=str(sd_path),
                present=False,
                missing_components=list(REQUIRED_SD_COMPONENTS),
            )

        logger.info(f"Stable Diffusion base directory found: {sd_path}")
        missing = []
        for component in REQUIRED_SD_COMPONENTS:
            if (sd_path / component).is_dir():
                logger.info(f"  ✓ Found {component} directory")
            else:
                logger.warning(f"  ⚠ Missing {component} directory")
                missing.append(component)

        return ModelReport(
            name=STABLE_DIFFUSION_DIR,
            path=str(sd_path),
            present=True,
            size_bytes=max(self.get_model_size(STABLE_DIFFUSION_DIR), 0),
            missing_components=missing,
        )

    def inspect_all(self, validate: bool = True) -> Dict[str, ModelReport]:
        """
        Inspect all known models.

        Args:
            validate: Also open small ONNX files with ONNX Runtime

        Returns:
            Mapping of model name to report
        """
        self.ensure_base_dir()
        sd_report = self.inspect_stable_diffusion()

        if validate and sd_report.present:
            for component in REQUIRED_SD_COMPONENTS:
                onnx_file = Path(sd_report.path) / component / "model.onnx"
                if onnx_file.exists():
                    self.validate_onnx_model(onnx_file)

        logger.info("✓ Model inspection completed")
        return {"stableDiffusion": sd_report}

    def is_model_available(self, model_name: str) -> bool:
        return (self.base_path / model_name).exists()

    def get_model_size(self, model_name: str) -> int:
        """Size in bytes of a model file or directory, -1 if it cannot be read."""
        model_path = self.base_path / model_name
        try:
            if model_path.is_dir():
                return sum(p.stat().st_size for p in model_path.rglob("*") if p.is_file())
            return model_path.stat().st_size
        except OSError as e:
            logger.error(f"Failed to get model size for {model_name}: {e}")
            return -1

    def compute_checksum(self, file_path: Path) -> Optional[str]:
        """SHA-256 hex digest of a file, or None if it cannot be read."""
        digest = hashlib.sha256()
        try:
            with open(file_path, "rb") as f:
                for chunk in iter(lambda: f.read(1024 * 1024), b""):
                    digest.update(chunk)
        except OSError as e:
            logger.error(f"Failed to compute checksum for {file_path}: {e}")
            return None
        return digest.hexdigest()

    def validate_onnx_model(self, model_path: Path) -> bool:
        """
        Validate an ONNX model by opening a CPU session on it.

        Large files are only checked for existence.

        Returns:
            True if the model exists and (when small enough) loads
        """
        model_path = Path(model_path)
        if not model_path.exists():
            logger.warning(f"Model file does not exist: {model_path}")
            return False

        size_mb = model_path.stat().st_size // (1024 * 1024)
        logger.info(f"Model {model_path.name} size: {size_mb} MB")
        if size_mb > MAX_VALIDATION_SIZE_MB:
            logger.info(f"Skipping validation for large model ({size_mb}MB): {model_path}")
            return True

        try:
            session = ort.InferenceSession(str(model_path), providers=["CPUExecutionProvider"])
        except Exception as e:
            logger.warning(f"Model validation failed for {model_path}: {e}")
            return False

        logger.info(
            f"Successfully validated model: {model_path} "
            f"(inputs: {len(session.get_inputs())}, outputs: {len(session.get_outputs())})"
        )
        return True
