"""Bounded channels with configurable backpressure handling."""

from __future__ import annotations

import dataclasses
import enum
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Deque, Generic, Optional, Tuple, TypeVar

T = TypeVar("T")

DEFAULT_BUFFER_SIZE = 100


class BackpressureStrategy(enum.Enum):
    """How a channel behaves when a send meets a full buffer."""

    BLOCK = "block"
    DROP = "drop"
    DROP_OLDEST = "drop_oldest"
    ERROR = "error"


class ChannelFull(Exception):
    """Raised when the buffer is full and the strategy does not block or drop."""

    def __init__(self, message: str = "channel buffer is full") -> None:
        super().__init__(message)


class ChannelClosed(Exception):
    """Raised when operating on a closed channel."""

    def __init__(self, message: str = "channel is closed") -> None:
        super().__init__(message)


@dataclass
class ChannelStats:
    """A snapshot of channel counters; durations are in seconds."""

    send_count: int = 0
    receive_count: int = 0
    dropped_count: int = 0
    blocked_sends: int = 0
    average_send_time: float = 0.0
    average_receive_time: float = 0.0
    buffer_utilization: float = 0.0
    last_send_time: Optional[datetime] = None
    last_receive_time: Optional[datetime] = None


@dataclass
class ChannelConfig:
    """Settings for a channel; timeouts are in seconds, 0 meaning none."""

    buffer_size: int = DEFAULT_BUFFER_SIZE
    strategy: BackpressureStrategy = BackpressureStrategy.BLOCK
    on_drop: Optional[Callable[[Any], None]] = None
    on_block: Optional[Callable[[], None]] = None
    on_error: Optional[Callable[[BaseException], None]] = None
    send_timeout: float = 0.0
    receive_timeout: float = 0.0


def _deadline(timeout: Optional[float], configured: float) -> Optional[float]:
    limits = [t for t in (timeout, configured if configured > 0 else None) if t is not None]
    if not limits:
        return None
    return time.monotonic() + min(limits)


def _expired(deadline: Optional[float]) -> bool:
    return deadline is not None and time.monotonic() >= deadline


class BackpressureChannel(Generic[T]):
    """A thread-safe bounded FIFO with a configurable backpressure strategy."""

    def __init__(self, config: Optional[ChannelConfig] = None) -> None:
        config = dataclasses.replace(config) if config is not None else ChannelConfig()
        if config.buffer_size <= 0:
            config.buffer_size = DEFAULT_BUFFER_SIZE
        self._config = config
        self._capacity = config.buffer_size
        self._buffer: Deque[T] = deque()
        self._closed = False
        self._cond = threading.Condition(threading.RLock())
        self._stats = ChannelStats()
        self._stats_lock = threading.Lock()
        self._send_total = 0.0
        self._receive_total = 0.0

    # -- sending -------------------------------------------------------

    def send(self, value: T, timeout: Optional[float] = None) -> None:
        """Send a value, handling a full buffer according to the strategy."""
        started = time.monotonic()
        try:
            if self._closed:
                raise ChannelClosed()
            deadline = _deadline(timeout, self._config.send_timeout)
            strategy = self._config.strategy
            if strategy is BackpressureStrategy.DROP:
                self._drop_send(value)
            elif strategy is BackpressureStrategy.DROP_OLDEST:
                self._drop_oldest_send(value)
            elif strategy is BackpressureStrategy.ERROR:
                self._error_send(value)
            else:
                self._blocking_send(value, deadline)
        finally:
            elapsed = time.monotonic() - started
            with self._stats_lock:
                self._send_total += elapsed
                self._stats.last_send_time = datetime.now()

    def try_send(self, value: T) -> None:
        """Send without blocking; raise ChannelFull if it cannot be placed."""
        if self._closed:
            raise ChannelClosed()
        with self._cond:
            if len(self._buffer) >= self._capacity:
                strategy = self._config.strategy
                if strategy is BackpressureStrategy.DROP:
                    self._count(dropped_count=1)
                    if self._config.on_drop is not None:
                        self._config.on_drop(value)
                    return
                if strategy is BackpressureStrategy.DROP_OLDEST:
                    self._buffer.popleft()
                    self._buffer.append(value)
                    self._count(send_count=1, dropped_count=1)
                    return
                raise ChannelFull()
            self._push(value)

    def _push(self, value: T) -> None:
        self._buffer.append(value)
        self._count(send_count=1)
        self._cond.notify_all()

    def _blocking_send(self, value: T, deadline: Optional[float]) -> None:
        with self._cond:
            while len(self._buffer) >= self._capacity and not self._closed:
                if self._config.on_block is not None:
                    self._config.on_block()
                self._count(blocked_sends=1)
                if _expired(deadline):
                    raise TimeoutError("send timed out")
                remaining = None if deadline is None else deadline - time.monotonic()
                self._cond.wait(remaining)
            if self._closed:
                raise ChannelClosed()
            self._push(value)

    def _drop_send(self, value: T) -> None:
        with self._cond:
            if len(self._buffer) >= self._capacity:
                self._count(dropped_count=1)
                if self._config.on_drop is not None:
                    self._config.on_drop(value)
                return
            self._push(value)

    def _drop_oldest_send(self, value: T) -> None:
        with self._cond:
            if len(self._buffer) >= self._capacity:
                old = self._buffer.popleft()
                self._count(dropped_count=1)
                if self._config.on_drop is not None:
                    self._config.on_drop(old)
            self._push(value)

    def _error_send(self, value: T) -> None:
        with self._cond:
            if len(self._buffer) >= self._capacity:
                raise ChannelFull()
            self._push(value)

    # -- receiving -----------------------------------------------------

    def receive(self, timeout: Optional[float] = None) -> T:
        """Receive the oldest value, waiting for one if the buffer is empty."""
        started = time.monotonic()
        try:
            deadline = _deadline(timeout, self._config.receive_timeout)
            with self._cond:
                while not self._buffer and not self._closed:
                    if _expired(deadline):
                        raise TimeoutError("receive timed out")
                    remaining = None if deadline is None else deadline - time.monotonic()
                    self._cond.wait(remaining)
                if not self._buffer:
                    raise ChannelClosed()
                return self._pop()
        finally:
            elapsed = time.monotonic() - started
            with self._stats_lock:
                self._receive_total += elapsed
                self._stats.last_receive_time = datetime.now()

    def try_receive(self) -> Tuple[Optional[T], bool]:
        """Return (value, True) if a value was waiting, else (None, False)."""
        if self._closed:
            raise ChannelClosed()
        with self._cond:
            if not self._buffer:
                if self._closed:
                    raise ChannelClosed()
                return None, False
            return self._pop(), True

    def _pop(self) -> T:
        value = self._buffer.popleft()
        self._count(receive_count=1)
        self._cond.notify_all()
        return value

    # -- state ---------------------------------------------------------

    def close(self) -> None:
        """Close the channel for sending; buffered values can still be received."""
        with self._cond:
            if self._closed:
                return
            self._closed = True
            self._cond.notify_all()

    def is_closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        with self._cond:
            return len(self._buffer)

    def capacity(self) -> int:
        return self._capacity

    def stats(self) -> ChannelStats:
        """Return a snapshot of the channel's statistics."""
        with self._stats_lock:
            snapshot = dataclasses.replace(self._stats)
            send_total = self._send_total
            receive_total = self._receive_total
        with self._cond:
            snapshot.buffer_utilization = len(self._buffer) / self._capacity
        if snapshot.send_count > 0:
            snapshot.average_send_time = send_total / snapshot.send_count
        if snapshot.receive_count > 0:
            snapshot.average_receive_time = receive_total / snapshot.receive_count
        return snapshot

    def _count(self, **increments: int) -> None:
        with self._stats_lock:
            for name, amount in increments.items():
                setattr(self._stats, name, getattr(self._stats, name) + amount)

    def __enter__(self) -> "BackpressureChannel[T]":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def make_channel(buffer_size: int) -> BackpressureChannel[Any]:
    """Create a blocking channel with the given buffer size."""
    return BackpressureChannel(ChannelConfig(buffer_size=buffer_size))