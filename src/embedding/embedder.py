"""Text embedding generation using CLIP text encoders."""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional

import numpy as np
import open_clip
import torch

from ..engine.config import Backend, EngineConfig
from ..engine.providers import torch_device

logger = logging.getLogger(__name__)

WARMUP_TEXTS = [
    "This is a warmup text to preload the model into GPU memory",
    "Another warmup text for better initialization",
]


@dataclass
class SimilarityResult:
    """Cosine similarity between two embeddings."""

    similarity: float
    degenerate: bool = False


class TextEmbedder:
    """Generate text embeddings using CLIP-based models."""

    def __init__(
        self,
        model_name: str = "ViT-B-32",
        pretrained: str = "openai",
        device: Optional[str] = None,
    ):
        """
        Initialize embedder.

        Args:
            model_name: CLIP model architecture
            pretrained: Pretrained weights to use
            device: Device to use (cuda:N/cpu), auto-detected if None

        Raises:
            RuntimeError: if a CUDA device was requested but CUDA is unavailable
        """
        self.model_name = model_name
        self.pretrained = pretrained

        if device is None:
            device = "cuda" if torch.cuda.is_available() else "cpu"
        if device.startswith("cuda") and not torch.cuda.is_available():
            raise RuntimeError(f"CUDA device {device} requested but CUDA is not available")

        self.device = torch.device(device)
        logger.info(f"Using device: {self.device}")

        logger.info(f"Loading model: {model_name} ({pretrained})")
        self.model, _, _ = open_clip.create_model_and_transforms(
            model_name,
            pretrained=pretrained,
            device=self.device,
        )
        self.tokenizer = open_clip.get_tokenizer(model_name)
        self.model.eval()
        self.embedding_dim: Optional[int] = None

        logger.info("Model loaded successfully")

    @classmethod
    def load(cls, config: EngineConfig, backend: Backend, device_id: int = 0) -> "TextEmbedder":
        """Build an embedder for the configured model on a backend, then warm it up."""
        embedder = cls(
            model_name=config.embedding_model,
            pretrained=config.embedding_pretrained,
            device=torch_device(backend, device_id),
        )
        embedder.warmup()
        return embedder

    def warmup(self):
        """Run a throwaway batch so the first real request is not slowed by lazy allocation."""
        logger.info("Warming up embedding model...")
        try:
            embeddings = self.embed_texts(WARMUP_TEXTS)
            logger.info(f"✓ Model warmup completed, embedding dimension: {embeddings.shape[1]}")
        except Exception as e:
            logger.warning(f"⚠ Model warmup failed: {e}")

    def embed_texts(self, texts: List[str]) -> np.ndarray:
        """
        Generate embeddings for a batch of texts.

        Args:
            texts: Texts to embed

        Returns:
            Array of raw (unnormalized) embeddings, shape (n_texts, embedding_dim)
        """
        tokens = self.tokenizer(texts)
        # padding is 0; a filled last position means the text hit the context window
        for i in torch.nonzero(tokens[:, -1] != 0).flatten().tolist():
            logger.warning(
                f"⚠ Text {i + 1} reaches the {tokens.shape[1]}-token context window "
                f"and may have been truncated ({len(texts[i])} chars)"
            )
        tokens = tokens.to(self.device)

        with torch.no_grad():
            embeddings = self.model.encode_text(tokens)

        embeddings = embeddings.float().cpu().numpy()
        self.embedding_dim = embeddings.shape[1]
        return embeddings

    def get_model_info(self) -> dict:
        """Get model information."""
        return {
            "model_name": self.model_name,
            "pretrained": self.pretrained,
            "device": str(self.device),
            "embedding_dim": self.embedding_dim,
        }

    def close(self):
        on_cuda = self.device.type == "cuda"
        self.model = None
        if on_cuda:
            torch.cuda.empty_cache()


def compute_similarity(embedding1: np.ndarray, embedding2: np.ndarray) -> SimilarityResult:
    """
    Compute cosine similarity between two embeddings.

    If either vector has zero norm the similarity is undefined; the result is
    then 0.0 with ``degenerate`` set.

    Args:
        embedding1: First embedding vector
        embedding2: Second embedding vector

    Returns:
        SimilarityResult with a score in [-1, 1]
    """
    v1 = np.asarray(embedding1, dtype=np.float64).ravel()
    v2 = np.asarray(embedding2, dtype=np.float64).ravel()
    if v1.shape != v2.shape:
        raise ValueError(f"Embedding shapes differ: {v1.shape} vs {v2.shape}")

    if not (np.isfinite(v1).all() and np.isfinite(v2).all()):
        logger.warning("Cosine similarity requested for a non-finite embedding; returning 0.0")
        return SimilarityResult(similarity=0.0, degenerate=True)

    norm1 = math.sqrt(float(np.sum(v1 * v1)))
    norm2 = math.sqrt(float(np.sum(v2 * v2)))
    if norm1 == 0.0 or norm2 == 0.0:
        logger.warning("Cosine similarity requested for a zero vector; returning 0.0")
        return SimilarityResult(similarity=0.0, degenerate=True)

    similarity = float(np.dot(v1, v2)) / (norm1 * norm2)
    if not math.isfinite(similarity):
        logger.warning("Cosine similarity overflowed; returning 0.0")
        return SimilarityResult(similarity=0.0, degenerate=True)
    return SimilarityResult(similarity=max(-1.0, min(1.0, similarity)))
