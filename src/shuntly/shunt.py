"""Interception of client methods and standalone functions.

`shunt()` installs an `Interceptor` in place of each target method. The
interceptor owns the original callable, calls it with the caller's arguments,
and writes exactly one `ShuntlyRecord` per invocation:

- plain return value: recorded immediately;
- coroutine: recorded when it settles (or, if it resolves to a stream, when the
  stream completes);
- asyncio future or task: returned unchanged and recorded from a done
  callback, whether or not the caller awaits it;
- stream (async iterable or iterator): recorded when iteration completes, is
  closed, or fails.

Errors are recorded and re-raised unchanged; return values are passed through
unchanged (streams are wrapped in a delegating proxy, see `shuntly.streams`).
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
import time
import types
from collections.abc import Callable, Iterable, Mapping
from typing import Any, TypeVar

from .exceptions import ShuntlyConfigError
from .models import ShuntlyRecord, format_error, utc_now
from .outcome import Deferred, Outcome, Sequence, classify
from .registry import DEFAULT_REGISTRY, MethodRegistry, resolve_qualified
from .sinks import Sink, SinkStream
from .streams import tap

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

UNKNOWN_CLIENT = "Unknown"
ANONYMOUS_METHOD = "anonymous"


def _safe_getattr(obj: Any, name: str) -> Any:
    """Best-effort attribute/key lookup that never raises."""
    try:
        if isinstance(obj, Mapping):
            return obj.get(name)
        return getattr(obj, name, None)
    except Exception:  # noqa: BLE001 - labels are best-effort
        return None


def _wrap_args(args: tuple[Any, ...], kwargs: Mapping[str, Any]) -> dict[str, Any]:
    request: dict[str, Any] = {"args": list(args)}
    if kwargs:
        request["kwargs"] = dict(kwargs)
    return request


def method_request(args: tuple[Any, ...], kwargs: Mapping[str, Any]) -> dict[Any, Any]:
    """Derive the request mapping for a client method call.

    Most SDK methods take keyword arguments (or a single options mapping).
    """
    if len(args) == 1 and not kwargs and isinstance(args[0], Mapping):
        return dict(args[0])
    if not args:
        return dict(kwargs)
    return _wrap_args(args, kwargs)


def function_request(args: tuple[Any, ...], kwargs: Mapping[str, Any]) -> dict[Any, Any]:
    """Derive the request mapping for a standalone function call.

    Functions of the form `f(model, context, ...)` record `context`, with any
    keyword arguments (call options such as `temperature`) merged over it.
    """
    if len(args) >= 2 and isinstance(args[1], Mapping):
        return {**args[1], **kwargs}
    if not args:
        return dict(kwargs)
    return _wrap_args(args, kwargs)


def function_client_label(args: tuple[Any, ...]) -> str:
    """Return `"<provider>/<id>"` from the first argument, or `"Unknown"`."""
    if not args:
        return UNKNOWN_CLIENT
    provider = _safe_getattr(args[0], "provider")
    model_id = _safe_getattr(args[0], "id")
    if isinstance(provider, str) and isinstance(model_id, str):
        return f"{provider}/{model_id}"
    return UNKNOWN_CLIENT


def function_method_label(func: Callable[..., Any]) -> str:
    name = getattr(func, "__name__", None)
    if not isinstance(name, str) or not name or name == "<lambda>":
        return ANONYMOUS_METHOD
    return name


class Interceptor:
    """Callable stand-in for an original function or bound method.

    With a fixed `client` label the interceptor behaves as a patched client
    method. Without one, labels and request are derived per call from the
    arguments (standalone function mode).
    """

    def __init__(
        self,
        func: Callable[..., Any],
        sink: Sink,
        *,
        client: str | None = None,
        method: str | None = None,
    ) -> None:
        if not callable(func):
            raise ShuntlyConfigError(f"{func!r} is not callable")
        functools.update_wrapper(self, func)
        self.original = func
        self.sink = sink
        self.client = client
        self.method = method or function_method_label(func)

    def __repr__(self) -> str:
        return f"<Interceptor {self.client or '*'}:{self.method} -> {self.original!r}>"

    def __get__(self, instance: Any, owner: type | None = None) -> Any:
        # Allows installing an interceptor on a class, like a plain function.
        if instance is None:
            return self
        return types.MethodType(self, instance)

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        if self.client is not None:
            client = self.client
            request = method_request(args, kwargs)
        else:
            client = function_client_label(args)
            request = function_request(args, kwargs)

        timestamp = utc_now()
        started = time.perf_counter()

        def record(response: Any, error: str | None) -> None:
            self.sink.write(
                ShuntlyRecord.build(
                    client=client,
                    method=self.method,
                    request=request,
                    response=response,
                    error=error,
                    started=started,
                    timestamp=timestamp,
                )
            )

        try:
            result = self.original(*args, **kwargs)
        except BaseException as exc:  # noqa: BLE001 - recorded, then re-raised unchanged
            record(None, format_error(exc))
            raise
        return self._dispatch(classify(result), record)

    def _dispatch(self, outcome: Outcome, record: Callable[[Any, str | None], None]) -> Any:
        if isinstance(outcome, Deferred):
            if asyncio.isfuture(outcome.awaitable):
                return _observe_future(outcome.awaitable, record)
            return self._settle(outcome.awaitable, record)
        if isinstance(outcome, Sequence):
            return _tap_sequence(outcome, record)
        record(outcome.value, None)
        return outcome.value

    async def _settle(self, awaitable: Any, record: Callable[[Any, str | None], None]) -> Any:
        try:
            resolved = await awaitable
        except BaseException as exc:  # noqa: BLE001 - recorded, then re-raised unchanged
            record(None, format_error(exc))
            raise
        outcome = classify(resolved)
        if isinstance(outcome, Sequence):
            return _tap_sequence(outcome, record)
        record(resolved, None)
        return resolved


def _observe_future(future: Any, record: Callable[[Any, str | None], None]) -> Any:
    """Record a scheduled future when it settles, and hand back the same object.

    The future is already running, so it is recorded even if the caller never
    awaits it. Its result is recorded as-is: a stream delivered through a
    future reaches the caller untapped.
    """

    def _on_done(fut: Any) -> None:
        if fut.cancelled():
            record(None, format_error(asyncio.CancelledError()))
            return
        exc = fut.exception()
        if exc is not None:
            record(None, format_error(exc))
            return
        record(fut.result(), None)

    future.add_done_callback(_on_done)
    return future


def _tap_sequence(outcome: Sequence, record: Callable[[Any, str | None], None]) -> Any:
    return tap(
        outcome.iterable,
        is_async=outcome.is_async,
        on_complete=lambda items: record(items, None),
        on_error=lambda exc: record(None, format_error(exc)),
    )


def _is_standalone(target: Any) -> bool:
    return inspect.isroutine(target) or isinstance(target, (functools.partial, Interceptor))


def _unwrap(func: Callable[..., Any]) -> Callable[..., Any]:
    return func.original if isinstance(func, Interceptor) else func


def _method_paths(target: object, methods: Iterable[str] | None, registry: MethodRegistry) -> tuple[str, ...]:
    if methods is not None:
        return tuple(methods)
    paths = registry.methods_for(target)
    if paths is None:
        raise ShuntlyConfigError(
            f'Unknown client "{type(target).__name__}". Pass methods to specify which methods to patch.'
        )
    return paths


def shunt(
    target: _T,
    sink: Sink | None = None,
    methods: Iterable[str] | None = None,
    *,
    registry: MethodRegistry = DEFAULT_REGISTRY,
) -> _T:
    """Record every call made through a client or function.

    Args:
        target: A client instance (patched in place and returned), or a
            function (an `Interceptor` wrapping it is returned).
        sink: Where records go. Defaults to JSON lines on stderr.
        methods: Dotted method paths to patch. Defaults to the registry entry
            for the client's type.
        registry: Registry consulted when `methods` is omitted.

    Raises:
        ShuntlyConfigError: the client type is unknown and no methods were
            given, or a method path does not resolve to a callable. Nothing is
            patched in that case.
    """
    actual_sink = sink if sink is not None else SinkStream()

    if _is_standalone(target):
        return Interceptor(_unwrap(target), actual_sink)  # type: ignore[return-value]

    client_name = type(target).__name__
    paths = _method_paths(target, methods, registry)

    # Resolve everything first so a bad path leaves the client untouched.
    resolved = [(path, *resolve_qualified(target, path)) for path in paths]
    for path, func, owner, attr in resolved:
        setattr(owner, attr, Interceptor(_unwrap(func), actual_sink, client=client_name, method=path))
        logger.debug("Patched %s.%s", client_name, path)
    return target


def unshunt(
    target: _T,
    methods: Iterable[str] | None = None,
    *,
    registry: MethodRegistry = DEFAULT_REGISTRY,
) -> _T:
    """Undo `shunt()`: restore original callables.

    For a standalone interceptor, returns the original function.
    """
    if isinstance(target, Interceptor):
        return target.original  # type: ignore[return-value]

    for path in _method_paths(target, methods, registry):
        func, owner, attr = resolve_qualified(target, path)
        if isinstance(func, Interceptor):
            setattr(owner, attr, func.original)
            logger.debug("Restored %s.%s", type(target).__name__, path)
    return target
