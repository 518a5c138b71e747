"""Error types raised by the inference service.

Each error carries the HTTP status code it maps to, so the server only needs a
single exception handler for the whole family.
"""


class InferenceError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500
    public_message = "Inference failed"

    def __init__(self, message: str = None):
        super().__init__(message or self.public_message)

    @property
    def detail(self) -> str:
        return str(self)


class ClientInputError(InferenceError):
    """Invalid request input (unknown style, empty or oversized text)."""

    status_code = 400


class EngineInitializationError(InferenceError):
    """Neither the GPU nor the CPU backend could be constructed."""

    status_code = 503

    def __init__(self, engine_name: str, reason: str):
        self.engine_name = engine_name
        self.reason = reason
        super().__init__(f"{engine_name} engine is unavailable: {reason}")


class EngineExecutionError(InferenceError):
    """A ready engine failed while running a call.

    The message returned to the client is generic; the cause is only logged.
    """

    status_code = 500

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"{operation} failed")


class ImageEncodingError(InferenceError):
    """Inference succeeded but the image could not be serialized."""

    status_code = 500
    public_message = "Failed to encode generated image"


class GenerationUnavailableError(InferenceError):
    """Image generation is disabled for this deployment."""

    status_code = 501
    public_message = "Image generation is not enabled on this server"


class InferenceQueueFullError(InferenceError):
    status_code = 503
    public_message = "Inference queue is full, try again later"


class InferenceTimeoutError(InferenceError):
    status_code = 504

    def __init__(self, operation: str, timeout: float):
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"{operation} timed out after {timeout:.0f}s")


class GenerationCancelledError(Exception):
    """Raised inside a worker when a timed-out call is aborted."""
