"""Intermediate stream operations, each a transformation of an iterator."""

from __future__ import annotations

import abc
import functools
import itertools
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator


class Operation(abc.ABC):
    """A lazy step in a stream pipeline."""

    @abc.abstractmethod
    def apply(self, items: Iterable[Any]) -> Iterator[Any]:
        """Return an iterator over the transformed elements."""


@dataclass(frozen=True)
class FilterOperation(Operation):
    """Keeps the elements that satisfy a predicate."""

    predicate: Callable[[Any], bool]

    def apply(self, items: Iterable[Any]) -> Iterator[Any]:
        return (item for item in items if self.predicate(item))


@dataclass(frozen=True)
class MapOperation(Operation):
    """Replaces each element with the mapper's result."""

    mapper: Callable[[Any], Any]

    def apply(self, items: Iterable[Any]) -> Iterator[Any]:
        return (self.mapper(item) for item in items)


@dataclass(frozen=True)
class FlatMapOperation(Operation):
    """Replaces each element with the contents of the iterable the mapper returns.

    Each inner iterable is closed after it is consumed if it has a close method.
    """

    mapper: Callable[[Any], Iterable[Any]]

    def apply(self, items: Iterable[Any]) -> Iterator[Any]:
        for item in items:
            inner = self.mapper(item)
            try:
                yield from inner
            finally:
                close = getattr(inner, "close", None)
                if close is not None:
                    close()


@dataclass(frozen=True)
class DistinctOperation(Operation):
    """Drops elements equal to one already seen; elements must be hashable."""

    def apply(self, items: Iterable[Any]) -> Iterator[Any]:
        seen = set()
        for item in items:
            if item not in seen:
                seen.add(item)
                yield item


@dataclass(frozen=True)
class SortOperation(Operation):
    """Collects every element and yields them ordered by a three-way comparator."""

    compare: Callable[[Any, Any], int]

    def apply(self, items: Iterable[Any]) -> Iterator[Any]:
        yield from sorted(items, key=functools.cmp_to_key(self.compare))


@dataclass(frozen=True)
class SkipOperation(Operation):
    """Discards the first ``count`` elements."""

    count: int

    def apply(self, items: Iterable[Any]) -> Iterator[Any]:
        return itertools.islice(items, max(self.count, 0), None)


@dataclass(frozen=True)
class LimitOperation(Operation):
    """Yields at most ``max_size`` elements and stops pulling after the last."""

    max_size: int

    def apply(self, items: Iterable[Any]) -> Iterator[Any]:
        return itertools.islice(items, max(self.max_size, 0))


@dataclass(frozen=True)
class PeekOperation(Operation):
    """Calls an action on each element as it passes, leaving it unchanged."""

    action: Callable[[Any], None]

    def apply(self, items: Iterable[Any]) -> Iterator[Any]:
        for item in items:
            self.action(item)
            yield item