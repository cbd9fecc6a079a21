"""Lazy, chainable streams over sources with eager terminal operations."""

from __future__ import annotations

import contextlib
import threading
import time
from typing import (
    Any,
    Callable,
    Generic,
    Iterable,
    Iterator,
    List,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
)

from flowstream.channel import BackpressureChannel
from flowstream.operations import (
    DistinctOperation,
    FilterOperation,
    FlatMapOperation,
    LimitOperation,
    MapOperation,
    Operation,
    PeekOperation,
    SkipOperation,
    SortOperation,
)
from flowstream.sources import (
    ChannelSource,
    EmptySource,
    GeneratorSource,
    SliceSource,
    Source,
)

T = TypeVar("T")
R = TypeVar("R")


class StreamClosed(Exception):
    """Raised when a terminal operation is started on a closed stream."""

    def __init__(self, message: str = "stream is closed") -> None:
        super().__init__(message)


def _make_deadline(timeout: Optional[float]) -> Optional[float]:
    if timeout is None:
        return None
    return time.monotonic() + timeout


def _check(deadline: Optional[float]) -> None:
    if deadline is not None and time.monotonic() >= deadline:
        raise TimeoutError("stream operation timed out")


def _guarded(items: Iterable[Any], deadline: Optional[float]) -> Iterator[Any]:
    """Pull from ``items``, refusing to pull once the deadline has passed."""
    iterator = iter(items)
    while True:
        _check(deadline)
        try:
            value = next(iterator)
        except StopIteration:
            return
        yield value


class Stream(Generic[T]):
    """A lazy pipeline of operations over a source.

    Intermediate operations return new streams; terminal operations run the
    pipeline, close the stream and return a result. Timeouts are in seconds;
    when one runs out a TimeoutError is raised.
    """

    def __init__(self, source: Source[T], operations: Sequence[Operation] = ()) -> None:
        self._source = source
        self._operations: Tuple[Operation, ...] = tuple(operations)
        self._closed = False
        self._lock = threading.Lock()

    # -- intermediate operations ---------------------------------------

    def _then(self, operation: Operation) -> "Stream[Any]":
        return Stream(self._source, self._operations + (operation,))

    def filter(self, predicate: Callable[[T], bool]) -> "Stream[T]":
        """Keep the elements that satisfy ``predicate``."""
        return self._then(FilterOperation(predicate))

    def map(self, mapper: Callable[[T], T]) -> "Stream[T]":
        """Replace each element with ``mapper(element)``."""
        return self._then(MapOperation(mapper))

    def map_to(self, mapper: Callable[[T], R]) -> "Stream[R]":
        """Transform each element into a value of another type."""
        return self._then(MapOperation(mapper))

    def flat_map(self, mapper: Callable[[T], "Stream[T]"]) -> "Stream[T]":
        """Replace each element with the contents of the stream ``mapper`` returns."""
        return self._then(FlatMapOperation(mapper))

    def distinct(self) -> "Stream[T]":
        """Drop elements equal to one already seen."""
        return self._then(DistinctOperation())

    def sorted(self, compare: Callable[[T, T], int]) -> "Stream[T]":
        """Order the elements with a three-way comparator."""
        return self._then(SortOperation(compare))

    def skip(self, n: int) -> "Stream[T]":
        """Discard the first ``n`` elements."""
        return self._then(SkipOperation(n))

    def limit(self, max_size: int) -> "Stream[T]":
        """Keep at most ``max_size`` elements."""
        return self._then(LimitOperation(max_size))

    def peek(self, action: Callable[[T], None]) -> "Stream[T]":
        """Call ``action`` on each element as it passes through."""
        return self._then(PeekOperation(action))

    # -- execution -----------------------------------------------------

    def _pipeline(self, deadline: Optional[float]) -> Iterator[T]:
        items: Iterable[Any] = _guarded(self._source, deadline)
        for operation in self._operations:
            items = operation.apply(items)
        for item in items:
            _check(deadline)
            yield item

    @contextlib.contextmanager
    def _consuming(self, timeout: Optional[float]) -> Iterator[Iterator[T]]:
        if self.is_closed():
            raise StreamClosed()
        elements = self._pipeline(_make_deadline(timeout))
        try:
            yield elements
        finally:
            elements.close()
            self.close()

    # -- terminal operations -------------------------------------------

    def for_each(self, action: Callable[[T], None], timeout: Optional[float] = None) -> None:
        """Call ``action`` for every element."""
        with self._consuming(timeout) as elements:
            for item in elements:
                action(item)

    def reduce(
        self,
        identity: T,
        accumulator: Callable[[T, T], T],
        timeout: Optional[float] = None,
    ) -> T:
        """Fold the elements into one value starting from ``identity``."""
        result = identity
        with self._consuming(timeout) as elements:
            for item in elements:
                result = accumulator(result, item)
        return result

    def collect(
        self,
        supplier: Callable[[], Any],
        accumulator: Callable[[Any, T], None],
        combiner: Callable[[Any, Any], Any],
        timeout: Optional[float] = None,
    ) -> Any:
        """Accumulate the elements into a container made by ``supplier``.

        ``combiner`` merges partial containers; a sequential stream has only one.
        """
        with self._consuming(timeout) as elements:
            container = supplier()
            for item in elements:
                accumulator(container, item)
        return container

    def to_list(self, timeout: Optional[float] = None) -> List[T]:
        """Return every element in a list."""
        with self._consuming(timeout) as elements:
            return list(elements)

    def count(self, timeout: Optional[float] = None) -> int:
        """Return the number of elements."""
        with self._consuming(timeout) as elements:
            return sum(1 for _ in elements)

    def any_match(self, predicate: Callable[[T], bool], timeout: Optional[float] = None) -> bool:
        """Return whether some element satisfies ``predicate``."""
        with self._consuming(timeout) as elements:
            return any(predicate(item) for item in elements)

    def all_match(self, predicate: Callable[[T], bool], timeout: Optional[float] = None) -> bool:
        """Return whether every element satisfies ``predicate``."""
        with self._consuming(timeout) as elements:
            return all(predicate(item) for item in elements)

    def none_match(self, predicate: Callable[[T], bool], timeout: Optional[float] = None) -> bool:
        """Return whether no element satisfies ``predicate``."""
        return not self.any_match(predicate, timeout)

    def find_first(self, timeout: Optional[float] = None) -> Tuple[Optional[T], bool]:
        """Return ``(first, True)``, or ``(None, False)`` for an empty stream."""
        with self._consuming(timeout) as elements:
            for item in elements:
                return item, True
        return None, False

    def find_any(self, timeout: Optional[float] = None) -> Tuple[Optional[T], bool]:
        """Return some element; for a sequential stream this is the first."""
        return self.find_first(timeout)

    def _extreme(
        self, better: Callable[[T, T], bool], timeout: Optional[float]
    ) -> Tuple[Optional[T], bool]:
        best: Optional[T] = None
        found = False
        with self._consuming(timeout) as elements:
            for item in elements:
                if not found or better(item, best):  # type: ignore[arg-type]
                    best = item
                    found = True
        return best, found

    def min(
        self, compare: Callable[[T, T], int], timeout: Optional[float] = None
    ) -> Tuple[Optional[T], bool]:
        """Return ``(smallest, True)``, or ``(None, False)`` for an empty stream."""
        return self._extreme(lambda a, b: compare(a, b) < 0, timeout)

    def max(
        self, compare: Callable[[T, T], int], timeout: Optional[float] = None
    ) -> Tuple[Optional[T], bool]:
        """Return ``(largest, True)``, or ``(None, False)`` for an empty stream."""
        return self._extreme(lambda a, b: compare(a, b) > 0, timeout)

    # -- lifecycle -----------------------------------------------------

    def close(self) -> None:
        """Close the stream and its source; closing twice does nothing."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        if self._source is not None:
            self._source.close()

    def is_closed(self) -> bool:
        return self._closed

    def __iter__(self) -> Iterator[T]:
        if self.is_closed():
            raise StreamClosed()
        return self._iterate()

    def _iterate(self) -> Iterator[T]:
        elements = self._pipeline(None)
        try:
            yield from elements
        finally:
            elements.close()
            self.close()

    def __enter__(self) -> "Stream[T]":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def from_slice(items: Iterable[T]) -> Stream[T]:
    """Create a stream over the given items."""
    return Stream(SliceSource(items))


def from_channel(channel: BackpressureChannel[T]) -> Stream[T]:
    """Create a stream of the values received from a channel until it closes."""
    return Stream(ChannelSource(channel))


def generate(generator: Callable[[], T]) -> Stream[T]:
    """Create an endless stream of values produced by ``generator``."""
    return Stream(GeneratorSource(generator))


def empty() -> Stream[Any]:
    """Create a stream with no elements."""
    return Stream(EmptySource())