from __future__ import annotations

import asyncio
import gc
from typing import Any

import pytest

from shuntly import TappedAsyncStream, TappedStream
from shuntly.streams import tap


class _Recorder:
    def __init__(self) -> None:
        self.completed: list[list[Any]] = []
        self.errors: list[BaseException] = []

    def on_complete(self, items: list[Any]) -> None:
        self.completed.append(items)

    def on_error(self, exc: BaseException) -> None:
        self.errors.append(exc)

    @property
    def calls(self) -> int:
        return len(self.completed) + len(self.errors)


class _EventStream:
    """Iterator with an out-of-band accessor, like SDK message streams."""

    def __init__(self, items: list[Any]) -> None:
        self._items = iter(items)
        self.closed = False
        self.entered = False

    def __iter__(self):
        return self

    def __next__(self):
        return next(self._items)

    def result(self) -> str:
        return "final"

    def close(self) -> None:
        self.closed = True

    def __enter__(self):
        self.entered = True
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()


class _AsyncEventStream:
    def __init__(self, items: list[Any]) -> None:
        self._items = list(items)
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for item in self._items:
            yield item

    async def result(self) -> str:
        return "final"

    async def close(self) -> None:
        self.closed = True


def _tap_sync(inner: Any, rec: _Recorder) -> TappedStream:
    stream = tap(inner, is_async=False, on_complete=rec.on_complete, on_error=rec.on_error)
    assert isinstance(stream, TappedStream)
    return stream


def _tap_async(inner: Any, rec: _Recorder) -> TappedAsyncStream:
    stream = tap(inner, is_async=True, on_complete=rec.on_complete, on_error=rec.on_error)
    assert isinstance(stream, TappedAsyncStream)
    return stream


def test_exhaustion_reports_all_items_once() -> None:
    rec = _Recorder()
    stream = _tap_sync(iter([1, 2, 3]), rec)

    assert list(stream) == [1, 2, 3]
    assert rec.completed == [[1, 2, 3]]
    assert stream.completed

    stream.close()
    del stream
    gc.collect()
    assert rec.calls == 1


def test_items_pass_through_unchanged() -> None:
    rec = _Recorder()
    items = [{"a": 1}, object()]
    stream = _tap_sync(iter(items), rec)

    seen = list(stream)
    assert seen[0] is items[0]
    assert seen[1] is items[1]


def test_close_reports_partial_items_and_closes_inner() -> None:
    rec = _Recorder()
    inner = _EventStream([1, 2, 3])
    stream = _tap_sync(inner, rec)

    for item in stream:
        if item == 2:
            break
    assert rec.calls == 0

    stream.close()
    assert inner.closed
    assert rec.completed == [[1, 2]]


def test_abandoned_stream_reports_partial_items_when_collected() -> None:
    rec = _Recorder()

    def gen():
        yield "a"
        yield "b"
        yield "c"

    stream = _tap_sync(gen(), rec)
    it = iter(stream)
    assert next(it) == "a"

    del it
    del stream
    gc.collect()
    assert rec.completed == [["a"]]


def test_never_iterated_stream_reports_empty_when_collected() -> None:
    rec = _Recorder()
    stream = _tap_sync(iter([1]), rec)
    del stream
    gc.collect()
    assert rec.completed == [[]]


def test_step_failure_reports_error_and_reraises() -> None:
    rec = _Recorder()
    boom = RuntimeError("boom")

    def gen():
        yield 1
        raise boom

    stream = _tap_sync(gen(), rec)
    seen = []
    with pytest.raises(RuntimeError) as excinfo:
        for item in stream:
            seen.append(item)

    assert excinfo.value is boom
    assert seen == [1]
    assert rec.errors == [boom]
    assert rec.completed == []

    stream.close()
    assert rec.calls == 1


def test_second_iteration_is_not_tapped() -> None:
    rec = _Recorder()
    inner = [1, 2]

    class _Reiterable:
        def __iter__(self):
            return iter(inner)

        def __next__(self):
            raise StopIteration

    stream = _tap_sync(_Reiterable(), rec)
    assert list(stream) == [1, 2]
    assert list(stream) == [1, 2]
    assert rec.completed == [[1, 2]]


def test_next_on_proxy_is_tapped() -> None:
    rec = _Recorder()
    stream = _tap_sync(iter(["x", "y"]), rec)

    assert next(stream) == "x"
    assert next(stream) == "y"
    with pytest.raises(StopIteration):
        next(stream)
    assert rec.completed == [["x", "y"]]


def test_auxiliary_accessor_keeps_original_binding() -> None:
    rec = _Recorder()
    inner = _EventStream([1])
    stream = _tap_sync(inner, rec)

    assert stream.result() == "final"
    assert stream.result.__self__ is inner
    assert stream.wrapped is inner
    assert stream.entered is False


def test_context_manager_exit_completes() -> None:
    rec = _Recorder()
    inner = _EventStream([1, 2, 3])

    with _tap_sync(inner, rec) as stream:
        assert isinstance(stream, TappedStream)
        assert next(iter(stream)) == 1

    assert inner.entered
    assert inner.closed
    assert rec.completed == [[1]]


@pytest.mark.asyncio
async def test_async_exhaustion_reports_all_items_once() -> None:
    rec = _Recorder()
    stream = _tap_async(_AsyncEventStream(["hel", "lo"]), rec)

    chunks = [chunk async for chunk in stream]
    assert chunks == ["hel", "lo"]
    assert rec.completed == [["hel", "lo"]]

    await stream.aclose()
    assert rec.calls == 1


@pytest.mark.asyncio
async def test_async_close_reports_partial_items() -> None:
    rec = _Recorder()
    inner = _AsyncEventStream([1, 2, 3])
    stream = _tap_async(inner, rec)

    async for item in stream:
        break
    assert rec.calls == 0

    await stream.close()
    assert inner.closed
    assert rec.completed == [[1]]


@pytest.mark.asyncio
async def test_async_abandoned_stream_reports_partial_items_when_collected() -> None:
    rec = _Recorder()

    async def agen():
        yield 1
        yield 2

    stream = _tap_async(agen(), rec)
    it = aiter(stream)
    assert await anext(it) == 1

    del it
    del stream
    gc.collect()
    assert rec.completed == [[1]]


@pytest.mark.asyncio
async def test_async_step_failure_reports_error_and_reraises() -> None:
    rec = _Recorder()

    async def agen():
        yield 1
        raise ValueError("bad chunk")

    stream = _tap_async(agen(), rec)
    with pytest.raises(ValueError, match="bad chunk"):
        async for _ in stream:
            pass

    assert len(rec.errors) == 1
    assert str(rec.errors[0]) == "bad chunk"
    assert rec.completed == []


@pytest.mark.asyncio
async def test_async_cancellation_is_a_completion() -> None:
    rec = _Recorder()
    started = asyncio.Event()

    async def agen():
        yield 1
        started.set()
        await asyncio.sleep(10)
        yield 2

    stream = _tap_async(agen(), rec)

    async def consume() -> None:
        async for _ in stream:
            pass

    task = asyncio.create_task(consume())
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert rec.completed == [[1]]
    assert rec.errors == []


@pytest.mark.asyncio
async def test_async_auxiliary_accessor_keeps_original_binding() -> None:
    rec = _Recorder()
    inner = _AsyncEventStream([1])
    stream = _tap_async(inner, rec)

    assert await stream.result() == "final"
    assert stream.result.__self__ is inner


@pytest.mark.asyncio
async def test_async_second_iteration_is_not_tapped() -> None:
    rec = _Recorder()
    stream = _tap_async(_AsyncEventStream([1, 2]), rec)

    assert [x async for x in stream] == [1, 2]
    assert [x async for x in stream] == [1, 2]
    assert rec.completed == [[1, 2]]


@pytest.mark.asyncio
async def test_async_context_manager_exit_completes() -> None:
    rec = _Recorder()

    async with _tap_async(_AsyncEventStream([1, 2]), rec) as stream:
        assert await anext(stream) == 1

    assert rec.completed == [[1]]
