"""Lazy, single-flight engine initialization and its lifecycle.

A ReadinessTracker owns at most one EngineHandle. The first caller of
``ensure_ready()`` builds it through the ExecutionProviderSelector while any
concurrent callers wait for that same attempt. The outcome (ready or failed)
is final for the lifetime of the tracker.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from .config import Backend
from .errors import EngineInitializationError
from .providers import EngineFactory, ExecutionProviderSelector

logger = logging.getLogger(__name__)

# Seconds shutdown waits for an in-flight call before releasing the engine
RELEASE_LOCK_TIMEOUT = 5.0

SHUTTING_DOWN = "service is shutting down"


class ReadinessStatus(str, Enum):
    NOT_INITIALIZED = "NOT_INITIALIZED"
    INITIALIZING = "INITIALIZING"
    READY = "READY"
    FAILED = "FAILED"


@dataclass(frozen=True)
class ReadinessState:
    """Immutable snapshot of a tracker's state."""

    status: ReadinessStatus = ReadinessStatus.NOT_INITIALIZED
    backend: Optional[Backend] = None
    reason: Optional[str] = None
    fallback_reason: Optional[str] = None

    @property
    def is_ready(self) -> bool:
        return self.status is ReadinessStatus.READY

    @property
    def fell_back(self) -> bool:
        return self.fallback_reason is not None

    def describe(self) -> str:
        if self.status is ReadinessStatus.READY:
            if self.fell_back:
                return f"Ready ({self.backend.value}, fell back from GPU)"
            return f"Ready ({self.backend.value})"
        if self.status is ReadinessStatus.FAILED:
            return f"Failed: {self.reason}"
        if self.status is ReadinessStatus.INITIALIZING:
            return "Initializing"
        return "Not initialized"

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "backend": self.backend.value if self.backend else None,
            "reason": self.reason,
            "fellBackToCpu": self.fell_back,
            "fallbackReason": self.fallback_reason,
        }


@dataclass
class EngineHandle:
    """An initialized engine and the backend it runs on.

    Calls against the engine must hold ``lock``; the wrapped engines are not
    assumed to be safe for concurrent use.
    """

    name: str
    engine: Any
    backend: Backend
    fallback_reason: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def release(self):
        close = getattr(self.engine, "close", None)
        if close is not None:
            close()


class ReadinessTracker:
    """Owns one lazily-built engine handle."""

    def __init__(
        self,
        name: str,
        factory: EngineFactory,
        selector: ExecutionProviderSelector,
    ):
        self.name = name
        self._factory = factory
        self._selector = selector
        self._condition = threading.Condition()
        self._state = ReadinessState()
        self._handle: Optional[EngineHandle] = None
        self._closed = False

    @property
    def state(self) -> ReadinessState:
        """Current state. Reading it never blocks or triggers initialization."""
        return self._state

    def ensure_ready(self) -> EngineHandle:
        """
        Return the engine handle, building it on first use.

        Only one initialization attempt ever runs. Callers that arrive while
        it is in flight block until it finishes and get the same outcome.

        Raises:
            EngineInitializationError: if initialization failed (now or earlier)
        """
        with self._condition:
            while self._state.status is ReadinessStatus.INITIALIZING:
                self._condition.wait()

            if self._state.status is ReadinessStatus.FAILED:
                raise EngineInitializationError(self.name, self._state.reason)
            if self._closed:
                raise EngineInitializationError(self.name, SHUTTING_DOWN)
            if self._state.status is ReadinessStatus.READY:
                return self._handle

            self._state = ReadinessState(status=ReadinessStatus.INITIALIZING)

        logger.info(f"Initializing {self.name} engine (first request)")
        start = time.time()
        try:
            selection = self._selector.select(self._factory, name=self.name)
        except BaseException as e:
            # waiters block until the state leaves INITIALIZING, whatever was raised
            reason = e.reason if isinstance(e, EngineInitializationError) else f"{type(e).__name__}: {e}"
            with self._condition:
                self._state = ReadinessState(status=ReadinessStatus.FAILED, reason=reason)
                self._condition.notify_all()
            logger.error(f"{self.name} engine initialization failed: {reason}")
            if isinstance(e, EngineInitializationError) or not isinstance(e, Exception):
                raise
            raise EngineInitializationError(self.name, reason) from e

        handle = EngineHandle(
            name=self.name,
            engine=selection.engine,
            backend=selection.backend,
            fallback_reason=selection.fallback_reason,
        )
        with self._condition:
            closed = self._closed
            if closed:
                self._state = ReadinessState(status=ReadinessStatus.FAILED, reason=SHUTTING_DOWN)
            else:
                self._handle = handle
                self._state = ReadinessState(
                    status=ReadinessStatus.READY,
                    backend=selection.backend,
                    fallback_reason=selection.fallback_reason,
                )
            self._condition.notify_all()

        if closed:
            # shutdown ran while we were initializing
            self._release(handle)
            raise EngineInitializationError(self.name, SHUTTING_DOWN)

        logger.info(
            f"{self.name} engine ready on {selection.backend.value} "
            f"in {time.time() - start:.1f}s"
        )
        return handle

    def close(self):
        """Release the engine's native resources exactly once.

        Safe to call repeatedly. Errors raised while releasing are logged.
        """
        with self._condition:
            if self._closed:
                return
            self._closed = True
            handle, self._handle = self._handle, None

        if handle is not None:
            self._release(handle)

    def _release(self, handle: EngineHandle):
        logger.info(f"Releasing {self.name} engine ({handle.backend.value})")
        acquired = handle.lock.acquire(timeout=RELEASE_LOCK_TIMEOUT)
        if not acquired:
            logger.warning(
                f"{self.name} engine still busy after {RELEASE_LOCK_TIMEOUT:.0f}s, releasing anyway"
            )
        try:
            handle.release()
            logger.info(f"✓ {self.name} engine released")
        except Exception:
            logger.exception(f"Error releasing {self.name} engine")
        finally:
            if acquired:
                handle.lock.release()
