"""An asynchronous, buffered writer that flushes to an underlying sink in the background."""

from __future__ import annotations

import concurrent.futures
import dataclasses
import enum
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Deque, Optional, Protocol, Tuple, Union

DEFAULT_BUFFER_SIZE = 64 * 1024
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 0.1
_MAX_PENDING = 100

BytesLike = Union[bytes, bytearray, memoryview]


class WriterClosed(Exception):
    """Raised when writing to, or flushing, a closed writer."""

    def __init__(self, message: str = "writer is closed") -> None:
        super().__init__(message)


class BufferFull(Exception):
    """Raised when the buffer cannot take a write and blocking is disabled."""

    def __init__(self, message: str = "buffer is full") -> None:
        super().__init__(message)


class _Sink(Protocol):
    def write(self, data: bytes) -> Optional[int]:
        ...


@dataclass
class WriterStats:
    """A snapshot of writer counters; durations are in seconds."""

    bytes_written: int = 0
    write_count: int = 0
    flush_count: int = 0
    error_count: int = 0
    buffer_overflows: int = 0
    average_write_time: float = 0.0
    total_write_time: float = 0.0
    last_write_time: Optional[datetime] = None
    buffer_utilization: float = 0.0


@dataclass
class WriterConfig:
    """Settings for an AsyncWriter; times are in seconds.

    A flush_interval of 0 disables automatic flushing.
    """

    buffer_size: int = DEFAULT_BUFFER_SIZE
    flush_interval: float = 1.0
    block_on_full: bool = True
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay: float = DEFAULT_RETRY_DELAY
    on_error: Optional[Callable[[BaseException], None]] = None
    on_flush: Optional[Callable[[int, float], None]] = None
    on_buffer_full: Optional[Callable[[], None]] = None


class _Kind(enum.Enum):
    WRITE = "write"
    FLUSH = "flush"
    CLOSE = "close"


@dataclass
class _Request:
    kind: _Kind
    done: concurrent.futures.Future = field(default_factory=concurrent.futures.Future)
    data: bytes = b""


def _make_deadline(timeout: Optional[float]) -> Optional[float]:
    return None if timeout is None else time.monotonic() + timeout


def _remaining(deadline: Optional[float]) -> Optional[float]:
    return None if deadline is None else max(0.0, deadline - time.monotonic())


def _expired(deadline: Optional[float]) -> bool:
    return deadline is not None and time.monotonic() >= deadline


class AsyncWriter:
    """Buffers writes in memory and writes them to ``underlying`` from a worker thread.

    ``underlying`` is any object with a ``write(bytes)`` method; a return value of
    None counts as a complete write.
    """

    def __init__(self, underlying: Any, config: Optional[WriterConfig] = None) -> None:
        config = dataclasses.replace(config) if config is not None else WriterConfig()
        if config.buffer_size <= 0:
            config.buffer_size = DEFAULT_BUFFER_SIZE
        if config.max_retries < 0:
            config.max_retries = DEFAULT_MAX_RETRIES
        if config.retry_delay <= 0:
            config.retry_delay = DEFAULT_RETRY_DELAY
        self._underlying: _Sink = underlying
        self._config = config
        self._capacity = config.buffer_size

        self._buffer = bytearray()
        self._buffer_lock = threading.Lock()
        self._io_lock = threading.Lock()

        self._cond = threading.Condition()
        self._pending: Deque[_Request] = deque()
        self._closed = False
        self._shutdown = threading.Event()

        self._stats = WriterStats()
        self._stats_lock = threading.Lock()

        self._worker = threading.Thread(target=self._run, name="async-writer", daemon=True)
        self._worker.start()
        self._flusher: Optional[threading.Thread] = None
        if config.flush_interval > 0:
            self._flusher = threading.Thread(
                target=self._auto_flush, name="async-writer-flush", daemon=True
            )
            self._flusher.start()

    # -- public API ----------------------------------------------------

    def write(self, data: Optional[BytesLike], timeout: Optional[float] = None) -> None:
        """Queue ``data`` for writing.

        With ``block_on_full`` the call waits until the data is in the buffer;
        otherwise it returns at once and raises BufferFull if it would not fit.
        """
        if self._closed:
            raise WriterClosed()
        if not data:
            return
        payload = bytes(data)
        deadline = _make_deadline(timeout)

        if not self._config.block_on_full:
            with self._buffer_lock:
                overflow = len(self._buffer) + len(payload) > self._capacity
            if overflow:
                self._update(buffer_overflows=1)
                if self._config.on_buffer_full is not None:
                    self._config.on_buffer_full()
                raise BufferFull()

        future = self._submit(_Request(_Kind.WRITE, data=payload), deadline)
        if self._config.block_on_full:
            self._await(future, deadline)

    def write_string(self, text: str, timeout: Optional[float] = None) -> None:
        """Queue the UTF-8 encoding of ``text`` for writing."""
        self.write(text.encode("utf-8"), timeout)

    def flush(self, timeout: Optional[float] = None) -> None:
        """Write all buffered data to the underlying sink and wait for it."""
        if self._closed:
            raise WriterClosed()
        deadline = _make_deadline(timeout)
        future = self._submit(_Request(_Kind.FLUSH), deadline)
        self._await(future, deadline)

    def close(self) -> None:
        """Flush what remains and stop the background threads; closing twice does nothing."""
        with self._cond:
            if self._closed:
                return
            self._closed = True
            request = _Request(_Kind.CLOSE)
            self._pending.append(request)
            self._cond.notify_all()
        try:
            request.done.result()
        finally:
            current = threading.current_thread()
            for thread in (self._worker, self._flusher):
                if thread is not None and thread is not current:
                    thread.join()

    def is_closed(self) -> bool:
        return self._closed

    def stats(self) -> WriterStats:
        """Return a snapshot of the writer's statistics."""
        with self._stats_lock:
            snapshot = dataclasses.replace(self._stats)
        with self._buffer_lock:
            snapshot.buffer_utilization = min(1.0, len(self._buffer) / self._capacity)
        if snapshot.write_count > 0:
            snapshot.average_write_time = snapshot.total_write_time / snapshot.write_count
        return snapshot

    def buffer_size(self) -> int:
        """Return the number of bytes currently buffered."""
        with self._buffer_lock:
            return len(self._buffer)

    def buffer_capacity(self) -> int:
        """Return the configured buffer capacity in bytes."""
        return self._capacity

    def __enter__(self) -> "AsyncWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # -- request plumbing ----------------------------------------------

    def _submit(self, request: _Request, deadline: Optional[float]) -> concurrent.futures.Future:
        with self._cond:
            while True:
                if self._shutdown.is_set():
                    raise WriterClosed()
                if _expired(deadline):
                    raise TimeoutError("writer operation timed out")
                if len(self._pending) < _MAX_PENDING:
                    self._pending.append(request)
                    self._cond.notify_all()
                    return request.done
                self._cond.wait(_remaining(deadline))

    @staticmethod
    def _await(future: concurrent.futures.Future, deadline: Optional[float]) -> None:
        done, _ = concurrent.futures.wait([future], timeout=_remaining(deadline))
        if not done:
            raise TimeoutError("writer operation timed out")
        future.result()

    def _run(self) -> None:
        while True:
            with self._cond:
                while not self._pending:
                    self._cond.wait()
                request = self._pending.popleft()
                self._cond.notify_all()

            if request.kind is _Kind.CLOSE:
                error: Optional[BaseException] = None
                try:
                    self._flush_buffer()
                except Exception as exc:  # reported to the caller of close()
                    error = exc
                self._stop()
                if error is None:
                    request.done.set_result(None)
                else:
                    request.done.set_exception(error)
                return

            try:
                if request.kind is _Kind.WRITE:
                    self._handle_write(request.data)
                else:
                    self._flush_buffer()
            except Exception as exc:
                request.done.set_exception(exc)
            else:
                request.done.set_result(None)

    def _stop(self) -> None:
        self._shutdown.set()
        with self._cond:
            leftovers = list(self._pending)
            self._pending.clear()
            self._cond.notify_all()
        for request in leftovers:
            request.done.set_exception(WriterClosed())

    def _auto_flush(self) -> None:
        while not self._shutdown.wait(self._config.flush_interval):
            try:
                self._flush_buffer()
            except Exception:
                pass  # already counted and reported through on_error

    # -- buffering and I/O ---------------------------------------------

    def _handle_write(self, data: bytes) -> None:
        started = time.monotonic()
        with self._buffer_lock:
            no_room = len(self._buffer) + len(data) > self._capacity
        if no_room:
            try:
                self._flush_buffer()
            except Exception as exc:
                self._update(error_count=1)
                if self._config.on_error is not None:
                    self._config.on_error(exc)
                raise
        with self._buffer_lock:
            self._buffer.extend(data)
        duration = time.monotonic() - started
        with self._stats_lock:
            self._stats.write_count += 1
            self._stats.bytes_written += len(data)
            self._stats.total_write_time += duration
            self._stats.last_write_time = datetime.now()

    def _flush_buffer(self) -> None:
        with self._io_lock:
            with self._buffer_lock:
                if not self._buffer:
                    return
                data = bytes(self._buffer)
                self._buffer.clear()

            started = time.monotonic()
            written, error = self._write_with_retries(data)
            duration = time.monotonic() - started

            with self._stats_lock:
                self._stats.flush_count += 1
                if error is not None:
                    self._stats.error_count += 1

            if self._config.on_flush is not None:
                self._config.on_flush(written, duration)
            if error is not None:
                if self._config.on_error is not None:
                    self._config.on_error(error)
                raise error

    def _write_with_retries(self, data: bytes) -> Tuple[int, Optional[BaseException]]:
        total = 0
        last_error: Optional[BaseException] = None
        for attempt in range(self._config.max_retries + 1):
            if attempt > 0 and self._shutdown.wait(self._config.retry_delay):
                return total, WriterClosed()
            rest = data[total:]
            try:
                written = self._underlying.write(rest)
            except Exception as exc:
                last_error = exc
                continue
            total += len(rest) if written is None else written
            if total >= len(data):
                return total, None
        return total, last_error

    def _update(self, **increments: int) -> None:
        with self._stats_lock:
            for name, amount in increments.items():
                setattr(self._stats, name, getattr(self._stats, name) + amount)