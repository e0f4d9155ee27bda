from __future__ import annotations

from threading import Event
from typing import Generic, Iterable, Iterator, TypeVar

T = TypeVar("T")


class CancellableStream(Generic[T]):
    """Lazy sequence of chunks that can be told to stop.

    Each ``next()`` is the single point where the consumer waits on the
    source. ``cancel()`` may be called from any thread; it only means "stop
    consuming": no item is handed out after it returns, but an upstream call
    already in flight is not interrupted. The source is closed by the
    consuming thread the next time it touches the stream.
    """

    def __init__(self, source: Iterable[T]) -> None:
        self._source: Iterator[T] = iter(source)
        self._cancelled = Event()
        self._closed = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        close = getattr(self._source, "close", None)
        if close is not None:
            close()

    def __iter__(self) -> "CancellableStream[T]":
        return self

    def __next__(self) -> T:
        if self._cancelled.is_set() or self._closed:
            self.close()
            raise StopIteration
        try:
            item = next(self._source)
        except StopIteration:
            self._closed = True
            raise
        if self._cancelled.is_set():
            self.close()
            raise StopIteration
        return item

