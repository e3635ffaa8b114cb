"""Streaming proxies that observe a sequence without changing what consumers see.

A tapped stream owns the original sequence and delegates to it:

- Iterating the proxy yields the original items, unchanged, while buffering them.
- Any other attribute (auxiliary accessors like `get_final_message()`,
  `response`, ...) is looked up on the original object, so it keeps its binding.

Completion is reported exactly once per proxy, whichever happens first:

- the iterator is exhausted (full buffer),
- the consumer terminates early via `close()`/`aclose()` or by leaving a
  `with`/`async with` block (partial buffer),
- an iteration step raises (error; the exception still propagates),
- the proxy or its iterator is garbage collected after being abandoned.

Only the first iteration is tapped. Iterating the same proxy again returns the
original object's own iterator so items are never double counted.
"""

from __future__ import annotations

import asyncio
import inspect
import threading
from collections.abc import AsyncIterator, Callable, Iterator
from typing import Any

OnComplete = Callable[[list[Any]], None]
OnError = Callable[[BaseException], None]


class _Completion:
    """Item buffer plus a one-shot completion/error latch."""

    def __init__(self, on_complete: OnComplete, on_error: OnError) -> None:
        self.items: list[Any] = []
        self._on_complete = on_complete
        self._on_error = on_error
        self._done = False
        self._lock = threading.Lock()

    @property
    def done(self) -> bool:
        return self._done

    def _claim(self) -> bool:
        with self._lock:
            if self._done:
                return False
            self._done = True
            return True

    def complete(self) -> None:
        if self._claim():
            self._on_complete(list(self.items))

    def fail(self, exc: BaseException) -> None:
        if self._claim():
            self._on_error(exc)


class _TappedIterator:
    def __init__(self, inner: Iterator[Any], completion: _Completion) -> None:
        self._inner = inner
        self._completion = completion

    def __iter__(self) -> _TappedIterator:
        return self

    def __next__(self) -> Any:
        try:
            item = next(self._inner)
        except StopIteration:
            self._completion.complete()
            raise
        except BaseException as exc:
            self._completion.fail(exc)
            raise
        self._completion.items.append(item)
        return item

    def close(self) -> None:
        try:
            close = getattr(self._inner, "close", None)
            if callable(close):
                close()
        finally:
            self._completion.complete()

    def __del__(self) -> None:
        completion = self.__dict__.get("_completion")
        if completion is not None:
            completion.complete()


class _TappedAsyncIterator:
    def __init__(self, inner: AsyncIterator[Any], completion: _Completion) -> None:
        self._inner = inner
        self._completion = completion

    def __aiter__(self) -> _TappedAsyncIterator:
        return self

    async def __anext__(self) -> Any:
        try:
            item = await anext(self._inner)
        except StopAsyncIteration:
            self._completion.complete()
            raise
        except asyncio.CancelledError:
            # The consumer gave up; report what was received so far.
            self._completion.complete()
            raise
        except BaseException as exc:
            self._completion.fail(exc)
            raise
        self._completion.items.append(item)
        return item

    async def aclose(self) -> None:
        try:
            await _aclose(self._inner)
        finally:
            self._completion.complete()

    def __del__(self) -> None:
        completion = self.__dict__.get("_completion")
        if completion is not None:
            completion.complete()


async def _aclose(obj: Any) -> None:
    """Close an async resource via `aclose()` or `close()`, awaiting if needed."""
    closer = getattr(obj, "aclose", None) or getattr(obj, "close", None)
    if callable(closer):
        result = closer()
        if inspect.isawaitable(result):
            await result


class _TappedBase:
    def __init__(self, inner: Any, on_complete: OnComplete, on_error: OnError) -> None:
        self._inner = inner
        self._completion = _Completion(on_complete, on_error)
        self._tapped = False

    @property
    def wrapped(self) -> Any:
        """The original sequence object."""
        return self._inner

    @property
    def completed(self) -> bool:
        """True once completion (or an error) has been reported."""
        return self._completion.done

    def __getattr__(self, name: str) -> Any:
        # Only reached for names not defined on the proxy itself.
        inner = self.__dict__.get("_inner")
        if inner is None:
            raise AttributeError(name)
        return getattr(inner, name)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} of {self._inner!r}>"

    def __del__(self) -> None:
        completion = self.__dict__.get("_completion")
        if completion is not None:
            completion.complete()


class TappedStream(_TappedBase):
    """Proxy for a synchronous iterator (e.g. a generator or an SDK `Stream`)."""

    def __init__(self, inner: Any, on_complete: OnComplete, on_error: OnError) -> None:
        super().__init__(inner, on_complete, on_error)
        self._iterator: _TappedIterator | None = None

    def _tapped_iterator(self) -> _TappedIterator:
        if self._iterator is None:
            self._iterator = _TappedIterator(iter(self._inner), self._completion)
        return self._iterator

    def __iter__(self) -> Iterator[Any]:
        if self._tapped:
            return iter(self._inner)
        self._tapped = True
        return self._tapped_iterator()

    def __next__(self) -> Any:
        self._tapped = True
        return next(self._tapped_iterator())

    def close(self) -> None:
        """Close the original stream and report the items received so far."""
        try:
            if self._iterator is not None:
                self._iterator.close()
            close = getattr(self._inner, "close", None)
            if callable(close):
                close()
        finally:
            self._completion.complete()

    def __enter__(self) -> TappedStream:
        enter = getattr(self._inner, "__enter__", None)
        if callable(enter):
            enter()
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> Any:
        try:
            exit_ = getattr(self._inner, "__exit__", None)
            if callable(exit_):
                return exit_(exc_type, exc, tb)
            return None
        finally:
            self._completion.complete()


class TappedAsyncStream(_TappedBase):
    """Proxy for an async iterable (e.g. an async generator or an SDK `AsyncStream`)."""

    def __init__(self, inner: Any, on_complete: OnComplete, on_error: OnError) -> None:
        super().__init__(inner, on_complete, on_error)
        self._iterator: _TappedAsyncIterator | None = None

    def _tapped_iterator(self) -> _TappedAsyncIterator:
        if self._iterator is None:
            self._iterator = _TappedAsyncIterator(aiter(self._inner), self._completion)
        return self._iterator

    def __aiter__(self) -> AsyncIterator[Any]:
        if self._tapped:
            return aiter(self._inner)
        self._tapped = True
        return self._tapped_iterator()

    async def __anext__(self) -> Any:
        self._tapped = True
        return await anext(self._tapped_iterator())

    async def aclose(self) -> None:
        """Close the original stream and report the items received so far."""
        try:
            if self._iterator is not None:
                await _aclose(self._iterator._inner)
            if self._iterator is None or self._iterator._inner is not self._inner:
                await _aclose(self._inner)
        finally:
            self._completion.complete()

    async def close(self) -> None:
        await self.aclose()

    async def __aenter__(self) -> TappedAsyncStream:
        enter = getattr(self._inner, "__aenter__", None)
        if callable(enter):
            await enter()
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> Any:
        try:
            exit_ = getattr(self._inner, "__aexit__", None)
            if callable(exit_):
                return await exit_(exc_type, exc, tb)
            return None
        finally:
            self._completion.complete()


def tap(inner: Any, *, is_async: bool, on_complete: OnComplete, on_error: OnError) -> TappedStream | TappedAsyncStream:
    """Wrap `inner` in the matching proxy."""
    cls = TappedAsyncStream if is_async else TappedStream
    return cls(inner, on_complete, on_error)
