"""Element sources that feed streams."""

from __future__ import annotations

import abc
from typing import Callable, Generic, Iterable, Iterator, TypeVar

from flowstream.channel import BackpressureChannel, ChannelClosed

T = TypeVar("T")
U = TypeVar("U")


class Source(abc.ABC, Generic[T]):
    """A one-shot supply of elements for a stream."""

    @abc.abstractmethod
    def __iter__(self) -> Iterator[T]:
        """Yield the elements that are still available."""

    def close(self) -> None:
        """Release any resources held by the source."""


class SliceSource(Source[T]):
    """Supplies the items of a sequence, each exactly once."""

    def __init__(self, items: Iterable[T]) -> None:
        self._remaining = iter(list(items))

    def __iter__(self) -> Iterator[T]:
        yield from self._remaining


class ChannelSource(Source[T]):
    """Supplies values received from a channel until it is closed and drained."""

    def __init__(self, channel: BackpressureChannel[T]) -> None:
        self._channel = channel

    def __iter__(self) -> Iterator[T]:
        while True:
            try:
                value = self._channel.receive()
            except ChannelClosed:
                return
            yield value


class GeneratorSource(Source[T]):
    """Supplies an endless sequence of values produced by a function."""

    def __init__(self, generator: Callable[[], T]) -> None:
        self._generator = generator

    def __iter__(self) -> Iterator[T]:
        while True:
            yield self._generator()


class EmptySource(Source[T]):
    """Supplies nothing."""

    def __iter__(self) -> Iterator[T]:
        return iter(())


class MappingSource(Source[U], Generic[T, U]):
    """Supplies the elements of another source passed through a mapper."""

    def __init__(self, original: Source[T], mapper: Callable[[T], U]) -> None:
        self._original = original
        self._mapper = mapper

    def __iter__(self) -> Iterator[U]:
        for value in self._original:
            yield self._mapper(value)

    def close(self) -> None:
        self._original.close()