"""Client for calling the inference service over HTTP."""

import logging
import os
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

API_PREFIX = "/api/inference"


class InferenceClient:
    """Client for calling the inference service.

    The service URL defaults to the INFERENCE_SERVICE_URL environment variable
    (or http://127.0.0.1:8080).
    """

    def __init__(
        self,
        service_url: str = None,
        timeout: float = 300.0,
        http_client: Optional[httpx.Client] = None,
    ):
        """
        Initialize client.

        Args:
            service_url: Base URL of inference service (or use INFERENCE_SERVICE_URL env)
            timeout: Request timeout in seconds; image generation can take minutes on CPU
            http_client: Preconfigured httpx client to use instead of creating one
        """
        self.service_url = (service_url or os.getenv("INFERENCE_SERVICE_URL", "http://127.0.0.1:8080")).rstrip("/")
        self.timeout = timeout
        self.client = http_client or httpx.Client(timeout=timeout)

        logger.info(f"InferenceClient initialized: url={self.service_url}")

    def _url(self, path: str) -> str:
        return f"{self.service_url}{API_PREFIX}{path}"

    def close(self):
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def health_check(self) -> bool:
        """
        Check if inference service is healthy.

        Returns:
            True if service is accessible and healthy
        """
        try:
            response = self.client.get(self._url("/health"))
            return response.status_code == 200 and response.json().get("status") == "UP"
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return False

    def get_metrics(self) -> dict:
        """Get GPU status and model information."""
        response = self.client.get(self._url("/metrics"))
        response.raise_for_status()
        return response.json()

    def get_status(self) -> dict:
        """Get readiness snapshots of both engines."""
        response = self.client.get(self._url("/status"))
        response.raise_for_status()
        return response.json()

    def generate_image(self, prompt: str, style: str = "CLASSIC") -> bytes:
        """
        Generate an image.

        Args:
            prompt: Description of the image
            style: One of CLASSIC, HAPPY, CONFUSED, EXCITED

        Returns:
            PNG image bytes

        Raises:
            httpx.HTTPStatusError: on any non-2xx response
        """
        try:
            response = self.client.post(self._url("/image"), json={"prompt": prompt, "style": style})
            response.raise_for_status()
        except Exception as e:
            logger.error(f"Failed to generate image: {e}")
            raise
        return response.content

    def compare_embeddings(self, text1: str, text2: str) -> dict:
        """
        Compare two texts.

        Returns:
            Dict with similarity, text1, text2 and degenerate
        """
        try:
            response = self.client.post(self._url("/embeddings"), json={"text1": text1, "text2": text2})
            response.raise_for_status()
        except Exception as e:
            logger.error(f"Failed to compare embeddings: {e}")
            raise
        return response.json()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)

    client = InferenceClient()

    if client.health_check():
        print("✓ Service is healthy")
        print(f"Metrics: {client.get_metrics()}")
    else:
        print("✗ Service is not available")
        print("Start the inference service with:")
        print("  python -m src.inference_service.server")
