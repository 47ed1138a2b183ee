"""System-scoped package collections built from a base plus overlays.

A PackageCollection is a stack of layers: the base package set at the
bottom, one layer per overlay above it. Looking up a name walks the
stack from the top and returns the first layer that defines it, so the
last overlay wins. Every overlay function is called at most once, the
first time a lookup reaches its layer; values wrapped in lazy() are
forced on first read. Overlays receive

    final: the whole stack (the PackageCollection itself)
    prev:  the stack below their own layer

which is nixpkgs' fix (composeManyExtensions overlays base) without
forcing anything up front.

Base package sets can be plain mappings or PackageSet subclasses,
whose @cached_property methods become lazily-evaluated entries:

    class MyPkgs(PackageSet):
        @cached_property
        def hello(self):
            return self.call(lambda bash: mk_hello(bash))
"""

from __future__ import annotations

import inspect
import logging
from functools import cached_property
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping

from pixflake.errors import CyclicOverlayError, MissingAttributeError, PackageSetError
from pixflake.lazy import MISSING, AttrSetView, Thunk, force
from pixflake.overlay import Overlay, check_overrides, overlay_layers

logger = logging.getLogger(__name__)

BaseFactory = Callable[..., Any]


def call_with_attrs(fn: Callable, lookup: Callable[[str], Any], overrides: Mapping[str, Any],
                    where: str) -> Any:
    """Resolve fn's parameters by name and call it (callPackage).

        call_with_attrs(lambda bash, coreutils: ..., lookup, {}, "pkgs")
        # equivalent to: fn(bash=lookup("bash"), coreutils=lookup("coreutils"))

    Explicit overrides take precedence; parameters with defaults are
    left to their default when the name is not found.
    """
    sig = inspect.signature(fn)
    kwargs = {}
    for name, param in sig.parameters.items():
        if name == "self" or param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue
        if name in overrides:
            kwargs[name] = overrides[name]
            continue
        value = lookup(name)
        if value is MISSING:
            if param.default is not param.empty:
                continue
            raise MissingAttributeError(
                name, f"{where} (required by {getattr(fn, '__qualname__', fn)!r})"
            )
        kwargs[name] = value
    return fn(**kwargs)


class PackageSet:
    """Base class for a lazily-evaluated base package set.

    Subclass this and define packages as @cached_property methods.
    Use self.call(fn) to auto-inject dependencies by parameter name.
    A base factory may return an instance; its packages are not
    evaluated until something reads them.
    """

    def __init__(self, system: str, config: Mapping[str, Any] | None = None):
        self.system = system
        self.config = MappingProxyType(dict(config or {}))

    @classmethod
    def package_names(cls) -> list[str]:
        names = []
        for klass in reversed(cls.__mro__):
            for name, attr in vars(klass).items():
                if isinstance(attr, cached_property) and not name.startswith("_") and name not in names:
                    names.append(name)
        return names

    def call(self, fn, **overrides):
        """Resolve fn's parameters from this package set and call it.

            self.call(lambda bash, coreutils: mk(...))
            # equivalent to: fn(bash=self.bash, coreutils=self.coreutils)
        """
        return call_with_attrs(
            fn, lambda name: getattr(self, name, MISSING), overrides, type(self).__name__,
        )


def base_entries(base: Any) -> dict[str, Any]:
    """Entries of the bottom layer for whatever a base factory returned."""
    if isinstance(base, PackageSet):
        return {
            name: Thunk(lambda n=name: getattr(base, n), name)
            for name in base.package_names()
        }
    if isinstance(base, Mapping):
        return dict(base)
    raise PackageSetError(
        f"base package factory returned {type(base).__name__}, "
        "expected a mapping, a PackageSet or a PackageCollection"
    )


class _Layer:
    __slots__ = ("fn", "index", "entries", "running", "early_reads")

    def __init__(self, index: int, fn: Overlay | None = None, entries: dict | None = None):
        self.index = index
        self.fn = fn
        self.entries = entries
        self.running = False
        self.early_reads: set[str] = set()


class _Stack:
    """The layers of one package collection and their memoized results."""

    def __init__(self, base: dict[str, Any], overlays: Iterable[Overlay], system, config):
        self.base = base
        self.overlays = tuple(overlays)
        self.system = system
        self.config = config
        self.layers = [_Layer(0, entries=base)]
        self.layers += [_Layer(i + 1, fn=fn) for i, fn in enumerate(self.overlays)]
        self.views: dict[int, PackageCollection] = {}

    def view(self, depth: int) -> PackageCollection:
        if depth not in self.views:
            self.views[depth] = PackageCollection(self, depth)
        return self.views[depth]

    @property
    def final(self) -> PackageCollection:
        return self.view(len(self.layers))

    def entries(self, layer: _Layer) -> dict[str, Any]:
        if layer.entries is not None:
            return layer.entries
        layer.running = True
        layer.early_reads = set()
        try:
            result = check_overrides(layer.fn(self.final, self.view(layer.index)), layer.fn)
        finally:
            layer.running = False
        clash = sorted(layer.early_reads & set(result))
        if clash:
            name = getattr(layer.fn, "__qualname__", repr(layer.fn))
            raise CyclicOverlayError(
                f"overlay {name} reads final.{clash[0]} while defining {clash[0]!r}; "
                "wrap the value in lazy() to refer to the final package",
                section="pkgsOverlays",
            )
        layer.entries = dict(result)
        return layer.entries

    def lookup(self, name: str, depth: int) -> Any:
        running = []
        for layer in reversed(self.layers[:depth]):
            if layer.running:
                # Its names are unknown until the overlay returns; checked then.
                layer.early_reads.add(name)
                running.append(layer)
                continue
            entries = self.entries(layer)
            if name in entries:
                return force(entries[name], CyclicOverlayError, name)
        if running:
            overlay = getattr(running[0].fn, "__qualname__", repr(running[0].fn))
            raise CyclicOverlayError(
                f"{name!r} is not defined below overlay {overlay}, which is still running; "
                "wrap the value in lazy() to refer to the final package",
                section="pkgsOverlays",
            )
        return MISSING

    def names(self, depth: int) -> list[str]:
        names: dict[str, None] = {}
        for layer in self.layers[:depth]:
            if not layer.running:
                names.update(dict.fromkeys(self.entries(layer)))
        return list(names)


class PackageCollection(AttrSetView):
    """A realized, read-only, system-specific package collection.

    Packages are reachable as attributes (pkgs.hello) and items
    (pkgs["hello"]). Item access never collides with the methods and
    properties below, attribute access does.
    """

    _what = "package collection"

    def __init__(self, stack: _Stack, depth: int):
        object.__setattr__(self, "_stack", stack)
        object.__setattr__(self, "_depth", depth)

    @classmethod
    def from_mapping(cls, entries: Mapping[str, Any], system: str | None = None,
                     config: Mapping[str, Any] | None = None) -> PackageCollection:
        return _Stack(dict(entries), (), system, MappingProxyType(dict(config or {}))).final

    @property
    def system(self) -> str | None:
        return object.__getattribute__(self, "_stack").system

    @property
    def config(self) -> Mapping[str, Any]:
        return object.__getattribute__(self, "_stack").config

    def _lookup(self, name: str) -> Any:
        stack = object.__getattribute__(self, "_stack")
        return stack.lookup(name, object.__getattribute__(self, "_depth"))

    def _names(self) -> list[str]:
        stack = object.__getattribute__(self, "_stack")
        return stack.names(object.__getattribute__(self, "_depth"))

    def extend(self, overlay: Overlay) -> PackageCollection:
        """New collection with overlay applied on top; self is unchanged.

        Like pkgs.extend: the existing overlays are re-run against the
        new final collection.
        """
        stack = object.__getattribute__(self, "_stack")
        overlays = stack.overlays[:object.__getattribute__(self, "_depth") - 1]
        return _Stack(stack.base, overlays + overlay_layers(overlay), stack.system, stack.config).final

    def call(self, fn: Callable, **overrides) -> Any:
        """Call fn with its parameters looked up by name in this collection."""
        return call_with_attrs(fn, self._lookup, overrides, self._what)

    def select(self, *names: str) -> dict[str, Any]:
        """Explicitly bring the named packages into a local mapping.

            deps = pkgs.select("bash", "coreutils")
        """
        return {name: self[name] for name in names}

    def __repr__(self) -> str:
        stack = object.__getattribute__(self, "_stack")
        return f"<PackageCollection system={stack.system!r} layers={len(stack.layers)}>"


def build_package_set(base_factory: BaseFactory, system: str,
                      config: Mapping[str, Any] | None = None,
                      overlay: Overlay | None = None) -> PackageCollection:
    """Build the package collection for one system.

    Calls base_factory(system=..., config=...) once and applies the
    (composed) overlay on top of whatever it returns. Overlay entries
    win over base entries. A base that is itself a PackageCollection
    keeps its overlays, with the new ones stacked above.
    """
    config = MappingProxyType(dict(config or {}))
    layers = overlay_layers(overlay)
    logger.debug("building package set for %s (%d overlay(s))", system, len(layers))
    base = base_factory(system=system, config=config)
    if isinstance(base, PackageCollection):
        stack = object.__getattribute__(base, "_stack")
        depth = object.__getattribute__(base, "_depth")
        return _Stack(stack.base, stack.overlays[:depth - 1] + layers, system, config).final
    return _Stack(base_entries(base), layers, system, config).final
