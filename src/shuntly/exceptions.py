"""Exceptions raised by shuntly itself.

Errors raised by intercepted calls are never wrapped: they are recorded and
re-raised unchanged. Only misconfiguration surfaces as a shuntly exception.
"""

from __future__ import annotations


class ShuntlyError(Exception):
    """Base class for shuntly errors."""


class ShuntlyConfigError(ShuntlyError, ValueError):
    """Raised at wrap/configuration time (unknown client, bad method path, bad sink config)."""
