from __future__ import annotations

"""Memory engine capability.

The engine is an external collaborator that stores text and hands back a
numeric handle, and that can be asked for the wave pattern behind a handle.
Codecs receive it as an injected object satisfying ``MemoryEngine``;
``InMemoryEngine`` is a self-contained implementation used by the CLI and
tests, and ``GuardedEngine`` adds a per-call timeout around any engine.
"""

import concurrent.futures as _fut
import logging
import math
import struct
import threading
from typing import Callable, Dict, NamedTuple, Optional, Protocol, Tuple, TypeVar

from .constants import MAX_IMPORTANCE, MIN_IMPORTANCE
from .errors import EngineError, FormatError
from .hashutil import sha256_32

logger = logging.getLogger(__name__)

_PATTERN_STRUCT = struct.Struct("<fff")
PATTERN_SIZE = _PATTERN_STRUCT.size

T = TypeVar("T")


class WavePattern(NamedTuple):
    amplitude: float
    frequency: float
    phase: float

    def to_bytes(self) -> bytes:
        return _PATTERN_STRUCT.pack(self.amplitude, self.frequency, self.phase)

    @classmethod
    def from_bytes(cls, raw: bytes) -> "WavePattern":
        if len(raw) != PATTERN_SIZE:
            raise FormatError(f"wave pattern must be {PATTERN_SIZE} bytes, got {len(raw)}")
        return cls(*_PATTERN_STRUCT.unpack(raw))


class MemoryEngine(Protocol):
    def store_text(self, text: str, importance: int) -> int:
        ...

    def fetch_pattern(self, handle: int) -> Tuple[float, float, float]:
        ...


def check_importance(importance: int) -> int:
    if not isinstance(importance, int) or not (MIN_IMPORTANCE <= importance <= MAX_IMPORTANCE):
        raise ValueError(f"importance must be an integer within {MIN_IMPORTANCE}..{MAX_IMPORTANCE}")
    return importance


def call_engine(fn: Callable[..., T], *args) -> T:
    """Invoke an engine method, wrapping any failure in EngineError."""
    try:
        return fn(*args)
    except EngineError:
        raise
    except Exception as exc:
        raise EngineError(f"memory engine call {getattr(fn, '__name__', fn)!s} failed: {exc}") from exc


def as_pattern(value, handle: int) -> WavePattern:
    """Coerce an engine's reply into a WavePattern that packs as ``<fff``."""
    try:
        pattern = WavePattern(*(float(v) for v in value))
        _PATTERN_STRUCT.pack(*pattern)
    except (TypeError, ValueError, OverflowError, struct.error) as exc:
        raise EngineError(f"memory engine returned a malformed pattern for handle {handle}: {value!r}") from exc
    return pattern


def pack_pattern(value, handle: int) -> bytes:
    return as_pattern(value, handle).to_bytes()


class InMemoryEngine:
    """Thread-safe engine that keeps texts in a dict.

    Handles start at 1 and increase monotonically. Patterns are derived
    deterministically from the stored text and its importance.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._texts: Dict[int, Tuple[str, int]] = {}
        self._next_handle = 1

    def store_text(self, text: str, importance: int) -> int:
        check_importance(importance)
        with self._lock:
            handle = self._next_handle
            self._next_handle += 1
            self._texts[handle] = (text, importance)
        return handle

    def fetch_pattern(self, handle: int) -> WavePattern:
        with self._lock:
            entry = self._texts.get(handle)
        if entry is None:
            raise EngineError(f"unknown memory handle: {handle}")
        text, importance = entry
        digest = sha256_32(text.encode("utf-8"))
        frequency = 1.0 + int.from_bytes(digest[0:4], "little") / 2**32 * 999.0
        phase = int.from_bytes(digest[4:8], "little") / 2**32 * 2.0 * math.pi
        amplitude = (importance + 1) / (MAX_IMPORTANCE + 1)
        return WavePattern(amplitude, frequency, phase)

    def text(self, handle: int) -> Optional[str]:
        with self._lock:
            entry = self._texts.get(handle)
        return entry[0] if entry else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._texts)


class GuardedEngine:
    """Wrap an engine so every call has an upper time bound.

    A call that exceeds ``timeout`` seconds raises EngineError. The worker
    thread running it cannot be interrupted and finishes in the background.
    With ``timeout=None`` calls run inline and are only error-wrapped.
    """

    def __init__(self, engine: MemoryEngine, timeout: Optional[float] = None, *, max_workers: int = 4):
        if timeout is not None and timeout <= 0:
            raise ValueError("timeout must be positive")
        self.engine = engine
        self.timeout = timeout
        self._pool: Optional[_fut.ThreadPoolExecutor] = None
        if timeout is not None:
            self._pool = _fut.ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="m8-engine")

    def _run(self, fn: Callable[..., T], *args) -> T:
        if self._pool is None:
            return call_engine(fn, *args)
        future = self._pool.submit(call_engine, fn, *args)
        try:
            return future.result(timeout=self.timeout)
        except _fut.TimeoutError:
            future.cancel()
            logger.debug("engine call %s timed out after %.3fs", getattr(fn, "__name__", fn), self.timeout)
            raise EngineError(f"memory engine call timed out after {self.timeout}s") from None

    def store_text(self, text: str, importance: int) -> int:
        return self._run(self.engine.store_text, text, importance)

    def fetch_pattern(self, handle: int) -> WavePattern:
        return as_pattern(self._run(self.engine.fetch_pattern, handle), handle)

    def close(self) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=False)
            self._pool = None

    def __enter__(self) -> "GuardedEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
