"""Overlay composition.

An overlay has Nix's two-argument shape:

    Nix:    final: prev: { gcc = mkGcc { shell = prev.shell; }; }
    Python: lambda final, prev: {"gcc": mk_gcc(shell=prev.shell)}

`prev` is the collection as left by the overlays before this one,
`final` is the completed collection after every overlay has been
applied. compose_overlays() folds a list of overlays into one overlay
with the same shape, like lib.composeManyExtensions.

Values that read `final` for a key the same overlay defines must be
wrapped in lazy(); reading it eagerly raises CyclicOverlayError.
"""

from __future__ import annotations

from typing import Any, Callable, Iterable, Mapping

from pixflake.errors import CyclicOverlayError, OverlayError
from pixflake.lazy import MISSING, AttrSetView, force

Overlay = Callable[[Any, Any], Mapping[str, Any]]


def identity_overlay(final, prev) -> dict:
    return {}


class ComposedOverlay:
    """An ordered, flattened sequence of overlays acting as one overlay."""

    def __init__(self, layers: Iterable[Overlay] = ()):
        self.layers = tuple(layers)

    def __call__(self, final, prev) -> dict[str, Any]:
        """Fold the layers eagerly over prev.

        The package set builder expands a ComposedOverlay into its
        layers instead of calling it, which keeps lookups lazy.
        """
        merged: dict[str, Any] = {}
        for layer in self.layers:
            merged.update(check_overrides(layer(final, _FoldView(prev, dict(merged))), layer))
        return merged

    def __len__(self) -> int:
        return len(self.layers)

    def __repr__(self) -> str:
        names = ", ".join(getattr(f, "__qualname__", repr(f)) for f in self.layers)
        return f"<ComposedOverlay [{names}]>"


def overlay_layers(overlay: Overlay | None) -> tuple[Overlay, ...]:
    """Layers an overlay contributes to a package collection, in order."""
    if overlay is None:
        return ()
    if isinstance(overlay, ComposedOverlay):
        return overlay.layers
    return (overlay,)


def compose_overlays(overlays: Iterable[Overlay]) -> ComposedOverlay:
    """Compose overlays left to right into a single overlay.

    Each overlay's `prev` is the result of all earlier overlays applied
    to the base; every overlay shares the same `final`. An empty list
    composes to the identity. Nested compositions are flattened, so
    composition is associative.
    """
    layers: list[Overlay] = []
    for i, overlay in enumerate(overlays):
        if not callable(overlay):
            raise OverlayError(f"overlay #{i} is not callable: {overlay!r}", section="pkgsOverlays")
        layers.extend(overlay_layers(overlay))
    return ComposedOverlay(layers)


def check_overrides(result: Any, overlay: Overlay) -> Mapping[str, Any]:
    if not isinstance(result, Mapping):
        name = getattr(overlay, "__qualname__", repr(overlay))
        raise OverlayError(
            f"overlay {name} returned {type(result).__name__}, expected a mapping of overrides",
            section="pkgsOverlays",
        )
    return result


class _FoldView(AttrSetView):
    """`prev` for one step of an eager fold: earlier overrides over prev."""

    _what = "package collection"

    def __init__(self, prev, overrides: dict[str, Any]):
        object.__setattr__(self, "_prev", prev)
        object.__setattr__(self, "_overrides", overrides)

    def _lookup(self, name: str) -> Any:
        overrides = object.__getattribute__(self, "_overrides")
        if name in overrides:
            return force(overrides[name], CyclicOverlayError, name)
        prev = object.__getattribute__(self, "_prev")
        if isinstance(prev, AttrSetView):
            return prev._lookup(name)
        if isinstance(prev, Mapping):
            return force(prev.get(name, MISSING), CyclicOverlayError, name)
        return getattr(prev, name, MISSING)

    def _names(self) -> list[str]:
        overrides = object.__getattribute__(self, "_overrides")
        prev = object.__getattribute__(self, "_prev")
        names = list(prev) if isinstance(prev, (AttrSetView, Mapping)) else []
        return names + [n for n in overrides if n not in names]
