"""Lazy values and attribute sets.

Python stand-in for Nix's lazy evaluation:

    Nix:    fix (self: { a = 1; b = self.a + 1; })
    Python: fix(lambda self: {"a": 1, "b": lazy(lambda: self.a + 1)})

A Thunk is a memoized zero-argument computation. Plain values are
stored as-is; anything wrapped with lazy() is forced on first access
and cached, so every name is computed at most once. Forcing a thunk
that is already being forced raises instead of recursing, which is how
infinite recursion through `self` or `final` is reported.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Iterator, Mapping

from pixflake.errors import InfiniteRecursionError, MissingAttributeError

MISSING = object()

_PENDING, _RUNNING, _DONE = range(3)


class Thunk:
    """A deferred computation, evaluated at most once.

    Safe to share between threads: a thread reading a thunk that another
    thread is forcing waits for the value. Only re-entry from the thread
    already forcing it is a cycle.
    """

    __slots__ = ("_fn", "_value", "_state", "_lock", "name")

    def __init__(self, fn: Callable[[], Any], name: str | None = None):
        self._fn = fn
        self._value = None
        self._state = _PENDING
        self._lock = threading.RLock()
        self.name = name

    @property
    def forced(self) -> bool:
        return self._state == _DONE

    @property
    def running(self) -> bool:
        return self._state == _RUNNING

    def force(self, cycle_error: type[InfiniteRecursionError] = InfiniteRecursionError,
              section: str | None = None) -> Any:
        """Evaluate (once) and return the value.

        A failed computation is not memoized: the exception propagates
        and the thunk can be forced again.
        """
        if self._state == _DONE:
            return self._value
        with self._lock:
            if self._state == _DONE:
                return self._value
            what = self.name or section
            # The lock is reentrant, so only the forcing thread gets here.
            if self._state == _RUNNING:
                raise cycle_error(
                    f"infinite recursion encountered while evaluating {what or 'a lazy value'!r}",
                    section=what,
                )
            self._state = _RUNNING
            try:
                value = force(self._fn(), cycle_error, section)
                self._value = value
                self._fn = None
                self._state = _DONE
            finally:
                if self._state == _RUNNING:
                    self._state = _PENDING
            return value

    def __repr__(self) -> str:
        state = {_PENDING: "pending", _RUNNING: "running", _DONE: "forced"}[self._state]
        return f"<Thunk {self.name or '?'} {state}>"


def lazy(fn: Callable[[], Any]) -> Thunk:
    """Defer fn() until the value is first read. Usable as a decorator."""
    name = getattr(fn, "__name__", None)
    return Thunk(fn, None if name == "<lambda>" else name)


def force(value: Any, cycle_error: type[InfiniteRecursionError] = InfiniteRecursionError,
          section: str | None = None) -> Any:
    """Return value, forcing it first if it is a Thunk."""
    while isinstance(value, Thunk):
        value = value.force(cycle_error, section)
    return value


class AttrSetView:
    """Attribute/item access over a lazily-resolved set of names.

    Subclasses provide _lookup(name) (returning MISSING for absent
    names) and _names(). Names starting with '_' are never attributes.
    """

    _what = "attribute set"

    def _lookup(self, name: str) -> Any:
        raise NotImplementedError

    def _names(self) -> list[str]:
        raise NotImplementedError

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        value = self._lookup(name)
        if value is MISSING:
            raise MissingAttributeError(name, self._what)
        return value

    def __getitem__(self, name: str) -> Any:
        value = self._lookup(name)
        if value is MISSING:
            raise KeyError(name)
        return value

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError(f"{self._what} is immutable")

    def __delattr__(self, name: str) -> None:
        raise AttributeError(f"{self._what} is immutable")

    def get(self, name: str, default: Any = None) -> Any:
        value = self._lookup(name)
        return default if value is MISSING else value

    def keys(self) -> list[str]:
        return list(self._names())

    def items(self) -> Iterator[tuple[str, Any]]:
        for name in self._names():
            yield name, self[name]

    def __contains__(self, name: object) -> bool:
        return name in self._names()

    def __iter__(self) -> Iterator[str]:
        return iter(self._names())

    def __len__(self) -> int:
        return len(self._names())

    def __dir__(self):
        return sorted(set(super().__dir__()) | {n for n in self._names() if n.isidentifier()})


class LazyAttrSet(AttrSetView):
    """Attribute set whose values may be thunks, forced on first access."""

    def __init__(self, values: Mapping[str, Any] | None = None,
                 cycle_error: type[InfiniteRecursionError] = InfiniteRecursionError):
        object.__setattr__(self, "_values", dict(values or {}))
        object.__setattr__(self, "_cycle_error", cycle_error)

    def _lookup(self, name: str) -> Any:
        values = object.__getattribute__(self, "_values")
        if name not in values:
            return MISSING
        return force(values[name], object.__getattribute__(self, "_cycle_error"), name)

    def _names(self) -> list[str]:
        return list(object.__getattribute__(self, "_values"))

    def __repr__(self) -> str:
        return f"<LazyAttrSet {self._names()}>"


def fix(f: Callable[[LazyAttrSet], Mapping[str, Any]],
        cycle_error: type[InfiniteRecursionError] = InfiniteRecursionError) -> LazyAttrSet:
    """Compute the fixed point of f.

    f receives the final set before any of its values exist and returns
    the mapping of values (usually lazy thunks reading that set):

        fix = f: let x = f x; in x
    """
    result = LazyAttrSet(cycle_error=cycle_error)
    object.__setattr__(result, "_values", dict(f(result)))
    return result
