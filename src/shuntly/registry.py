"""Client type → method path registry, and dotted path resolution.

The registry is an explicit, read-only mapping supplied at configuration time.
`DEFAULT_REGISTRY` covers the SDK clients shuntly knows out of the box; pass a
custom `MethodRegistry` (or explicit method paths) to `shunt()` for anything else.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from types import MappingProxyType
from typing import Any

from .exceptions import ShuntlyConfigError

_ANTHROPIC_METHODS = ("messages.create",)
_OPENAI_METHODS = ("chat.completions.create", "responses.create")
_GOOGLE_METHODS = ("models.generate_content", "models.generate_content_stream")
_OLLAMA_METHODS = ("chat", "generate")


class MethodRegistry:
    """Read-only mapping of client type names to dotted method paths.

    Keys may be bare class names (`"Anthropic"`) or fully qualified names
    (`"google.genai.client.Client"`). Qualified names win on lookup, which keeps
    generic class names such as `Client` from matching unrelated libraries.
    """

    def __init__(self, entries: Mapping[str, Iterable[str]]) -> None:
        self._entries: Mapping[str, tuple[str, ...]] = MappingProxyType(
            {name: tuple(paths) for name, paths in entries.items()}
        )

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, name: str) -> tuple[str, ...] | None:
        """Return the method paths registered under `name`, if any."""
        return self._entries.get(name)

    def methods_for(self, client: object) -> tuple[str, ...] | None:
        """Return the method paths for a client instance, or None when its type is unknown."""
        cls = type(client)
        qualified = f"{cls.__module__}.{cls.__qualname__}"
        return self._entries.get(qualified) or self._entries.get(cls.__name__)

    def with_entries(self, entries: Mapping[str, Iterable[str]]) -> MethodRegistry:
        """Return a new registry with `entries` added (or replacing existing keys)."""
        merged: dict[str, Iterable[str]] = dict(self._entries)
        merged.update(entries)
        return MethodRegistry(merged)


DEFAULT_REGISTRY = MethodRegistry(
    {
        "Anthropic": _ANTHROPIC_METHODS,
        "AsyncAnthropic": _ANTHROPIC_METHODS,
        "OpenAI": _OPENAI_METHODS,
        "AsyncOpenAI": _OPENAI_METHODS,
        "google.genai.client.Client": _GOOGLE_METHODS,
        "google.genai.client.AsyncClient": _GOOGLE_METHODS,
        "ollama._client.Client": _OLLAMA_METHODS,
        "ollama._client.AsyncClient": _OLLAMA_METHODS,
    }
)


def resolve_qualified(obj: object, path: str) -> tuple[Callable[..., Any], object, str]:
    """Resolve a dotted path like `messages.create` on `obj`.

    Returns `(func, owner, attr_name)` so the owner's slot can be reassigned.

    Raises:
        ShuntlyConfigError: an intermediate attribute is missing or None, or the
            final value is not callable.
    """
    parts = path.split(".")
    if not path or any(not part for part in parts):
        raise ShuntlyConfigError(f"Invalid method path: {path!r}")

    owner = obj
    for part in parts[:-1]:
        owner = getattr(owner, part, None)
        if owner is None:
            raise ShuntlyConfigError(f"Invalid method path: {path}")

    attr = parts[-1]
    func = getattr(owner, attr, None)
    if not callable(func):
        raise ShuntlyConfigError(f"{path} is not a function")
    return func, owner, attr
