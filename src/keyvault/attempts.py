"""Attempt outcomes and the native/fallback degrade policy.

Each backend call is captured as a value (``Ok``, ``NativeFailed`` or
``Failed``) so the decision between native and fallback results is a pure
function of two outcomes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar, Union

from keyvault.errors import InvocationFailure, NativeBackendError

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    """The backend call completed. ``value`` is ``None`` for writes and misses."""

    value: T


@dataclass(frozen=True)
class NativeFailed:
    """The native backend failed; the request is eligible for fallback."""

    reason: NativeBackendError


@dataclass(frozen=True)
class Failed:
    """The encrypted file store raised ``error``."""

    error: Exception


Attempt = Union[Ok[Any], NativeFailed, Failed]


def attempt_native(func: Callable[..., T], *args: Any) -> Ok[T] | NativeFailed:
    """Run a native backend call and capture its outcome.

    Unexpected exceptions are wrapped in ``InvocationFailure`` so every
    native failure carries a ``NativeBackendError`` reason.
    """
    try:
        return Ok(func(*args))
    except NativeBackendError as exc:
        return NativeFailed(exc)
    except Exception as exc:
        reason = InvocationFailure(f"{type(exc).__name__}: {exc}")
        reason.__cause__ = exc
        return NativeFailed(reason)


def attempt_fallback(func: Callable[..., T], *args: Any) -> Ok[T] | Failed:
    """Run an encrypted file store call and capture its outcome."""
    try:
        return Ok(func(*args))
    except Exception as exc:
        return Failed(exc)


def resolve_write(native: Attempt | None, fallback: Attempt | None) -> None:
    """Final result of ``save``/``delete``.

    A successful native attempt wins. Otherwise the fallback outcome is the
    result, and a fallback failure is raised unmodified.
    """
    if isinstance(native, Ok) or isinstance(fallback, Ok):
        return None
    if isinstance(fallback, Failed):
        raise fallback.error
    if isinstance(native, NativeFailed):
        raise native.reason
    raise ValueError("resolve_write needs at least one attempt")


def resolve_read(native: Attempt | None, fallback: Attempt | None) -> Any:
    """Final result of ``get``. Failures on every path degrade to ``None``.

    A native miss (``Ok(None)``) defers to a fallback value when one was read.
    """
    if isinstance(native, Ok) and native.value is not None:
        return native.value
    if isinstance(fallback, Ok):
        return fallback.value
    return None
