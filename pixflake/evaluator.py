"""Manifest evaluation: from a manifest to a self-referential flake.

evaluate() turns a Manifest into an EvaluatedFlake for one system.
Every computed part is a memoized thunk, forced in this order:

    pkgsConfig -> pkgsOverlays -> outputs -> lazy outputs

The package collection (ctx.pkgs) is built the first time something
reads it, so a manifest that never touches packages needs no base
package input.

The flake is handed to the manifest's functions (as ctx.self) before
any of this has run. Reading a part of it that is still being computed
raises SelfReferenceCycleError; reading a name that is simply not
there (after outputs are known) raises MissingAttributeError.

    def outputs(ctx):
        return {
            "packages": {"hello": ctx.pkgs.hello},
            "default": lazy(lambda: ctx.self.packages["hello"]),
            "motd": ctx.self.description,
        }

    flake = evaluate(manifest, "x86_64-linux", inputs)
    flake.self is flake   # True
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping

from pixflake.constants import BASE_PACKAGES_INPUT, SELF_KEY
from pixflake.errors import (
    ConfigEvaluationError,
    FlakeError,
    InvalidManifestError,
    SelfReferenceCycleError,
    UnresolvedInputError,
)
from pixflake.inputs import InputResolver, LocalInputResolver, ResolvedInput, resolve_inputs
from pixflake.lazy import MISSING, AttrSetView, LazyAttrSet, Thunk, force
from pixflake.manifest import DATA_SECTIONS, Manifest, check_overlay_list, load_manifest
from pixflake.overlay import compose_overlays
from pixflake.package_set import PackageCollection, build_package_set

logger = logging.getLogger(__name__)

COMPUTED_SECTIONS = ("pkgsConfig", "pkgsOverlays")


class EvaluatedFlake(AttrSetView):
    """The result of evaluating a manifest for one system.

    Holds the manifest's data sections, the computed pkgsConfig and
    pkgsOverlays, every output, and `self`, which is this object.
    """

    _what = "flake"

    def __init__(self, evaluation: _Evaluation):
        object.__setattr__(self, "_evaluation", evaluation)

    def _lookup(self, name: str) -> Any:
        return object.__getattribute__(self, "_evaluation").lookup(name)

    def _names(self) -> list[str]:
        return object.__getattribute__(self, "_evaluation").names()

    def __repr__(self) -> str:
        evaluation = object.__getattribute__(self, "_evaluation")
        return f"<EvaluatedFlake {evaluation.manifest.source or evaluation.manifest.description!r} system={evaluation.system!r}>"


def _data_sections(manifest: Manifest) -> dict[str, Any]:
    sections = {}
    for key in DATA_SECTIONS:
        value = manifest.section(key)
        if value is None:
            continue
        sections[key] = value
    return sections


class _Evaluation:
    """State of one evaluation; nothing in it is shared with another."""

    def __init__(self, manifest: Manifest, system: str, inputs: Mapping[str, Any]):
        self.manifest = manifest
        self.system = system
        self.inputs = inputs
        self.sections = _data_sections(manifest)
        self.flake = EvaluatedFlake(self)
        self.pkgs_config = Thunk(self._pkgs_config, "pkgsConfig")
        self.pkgs_overlays = Thunk(self._pkgs_overlays, "pkgsOverlays")
        self.pkgs = Thunk(self._package_collection, "pkgs")
        self.outputs = Thunk(self._outputs, "outputs")
        self.context = LazyAttrSet({
            SELF_KEY: self.flake,
            "system": system,
            "inputs": inputs,
            "pkgs": self.pkgs,
        }, cycle_error=SelfReferenceCycleError)

    def force(self, thunk: Thunk) -> Any:
        return thunk.force(SelfReferenceCycleError)

    def run(self) -> None:
        for step in (self.pkgs_config, self.pkgs_overlays, self.outputs):
            logger.debug("evaluating %s for %s", step.name, self.system)
            self.force(step)
        for name in self.force(self.outputs):
            self.lookup(name)

    def lookup(self, name: str) -> Any:
        if name == SELF_KEY:
            return self.flake
        if name in DATA_SECTIONS:
            return self.sections.get(name, MISSING)
        if name == "pkgsConfig":
            return self.force(self.pkgs_config)
        if name == "pkgsOverlays":
            return self.force(self.pkgs_overlays)
        outputs = self.force(self.outputs)
        if name not in outputs:
            return MISSING
        return force(outputs[name], SelfReferenceCycleError, name)

    def names(self) -> list[str]:
        return [*self.sections, *COMPUTED_SECTIONS, *self.force(self.outputs), SELF_KEY]

    def call(self, section: str, fn: Callable) -> Any:
        try:
            return fn(self.context)
        except FlakeError:
            raise
        except Exception as exc:
            raise ConfigEvaluationError(
                f"{section} raised {type(exc).__name__}: {exc}", section=section,
            ) from exc

    def _pkgs_config(self) -> Mapping[str, Any]:
        config = self.manifest.pkgs_config
        if config is None:
            return MappingProxyType({})
        if callable(config):
            config = self.call("pkgsConfig", config)
            if not isinstance(config, Mapping):
                raise InvalidManifestError(
                    f"pkgsConfig returned {type(config).__name__}, expected a mapping",
                    section="pkgsConfig",
                )
        return MappingProxyType(dict(config))

    def _pkgs_overlays(self) -> tuple:
        overlays = self.manifest.pkgs_overlays
        if overlays is None:
            return ()
        if callable(overlays):
            overlays = check_overlay_list(self.call("pkgsOverlays", overlays))
        return overlays

    def _package_collection(self) -> PackageCollection:
        config = self.force(self.pkgs_config)
        if self.manifest.pkgs_for_system is not None:
            pkgs = self.call("pkgsForSystem", self.manifest.pkgs_for_system)
            if isinstance(pkgs, PackageCollection):
                return pkgs
            if isinstance(pkgs, Mapping):
                return PackageCollection.from_mapping(pkgs, system=self.system, config=config)
            raise InvalidManifestError(
                f"pkgsForSystem returned {type(pkgs).__name__}, expected a package collection",
                section="pkgsForSystem",
            )
        return build_package_set(
            self._base_factory(), self.system, config,
            compose_overlays(self.force(self.pkgs_overlays)),
        )

    def _base_factory(self) -> Callable[..., Any]:
        handle = self.inputs.get(BASE_PACKAGES_INPUT)
        if handle is None:
            raise UnresolvedInputError(
                BASE_PACKAGES_INPUT,
                f"no {BASE_PACKAGES_INPUT!r} input to build packages from; "
                "declare it or define pkgsForSystem",
            )
        factory = handle.factory if isinstance(handle, ResolvedInput) else handle
        if not callable(factory):
            raise UnresolvedInputError(
                BASE_PACKAGES_INPUT, f"input {BASE_PACKAGES_INPUT!r} ({handle}) provides no package set",
            )
        return factory

    def _outputs(self) -> Mapping[str, Any]:
        result = self.manifest.outputs(self.context)
        if not isinstance(result, Mapping):
            raise InvalidManifestError(
                f"outputs returned {type(result).__name__}, expected a mapping", section="outputs",
            )
        reserved = {SELF_KEY, *DATA_SECTIONS, *COMPUTED_SECTIONS}
        clash = sorted(reserved & set(result))
        if clash:
            raise InvalidManifestError(
                f"outputs may not define {clash[0]!r}", section="outputs",
            )
        return MappingProxyType(dict(result))


def evaluate(manifest: Manifest | Mapping[str, Any], system: str,
             resolved_inputs: Mapping[str, Any] | None = None) -> EvaluatedFlake:
    """Evaluate manifest for system against already-resolved inputs.

    Every declared input must have an entry in resolved_inputs. The
    whole flake is computed before this returns; errors propagate.
    """
    if not isinstance(manifest, Manifest):
        manifest = Manifest.from_mapping(manifest)
    inputs = MappingProxyType(dict(resolved_inputs or {}))
    try:
        for name in manifest.inputs:
            if name not in inputs:
                raise UnresolvedInputError(name)
        evaluation = _Evaluation(manifest, system, inputs)
        evaluation.run()
    except FlakeError as exc:
        if exc.source is None:
            exc.source = manifest.source
        raise
    logger.debug("evaluated %s for %s: %s", manifest.source or "manifest", system,
                 ", ".join(evaluation.names()))
    return evaluation.flake


def evaluate_many(manifest: Manifest | Mapping[str, Any], systems: Iterable[str],
                  resolved_inputs: Mapping[str, Any] | None = None,
                  max_workers: int | None = None) -> dict[str, EvaluatedFlake]:
    """Evaluate one manifest for several systems in parallel."""
    if not isinstance(manifest, Manifest):
        manifest = Manifest.from_mapping(manifest)
    systems = list(dict.fromkeys(systems))
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        flakes = pool.map(lambda system: evaluate(manifest, system, resolved_inputs), systems)
        return dict(zip(systems, flakes))


def evaluate_path(path: str | Path, system: str,
                  resolver: InputResolver | None = None) -> EvaluatedFlake:
    """Load a flake.py, resolve its inputs locally and evaluate it."""
    manifest = load_manifest(path)
    if resolver is None:
        resolver = LocalInputResolver(Path(manifest.source).parent)
    try:
        inputs = resolve_inputs(manifest, resolver)
    except FlakeError as exc:
        if exc.source is None:
            exc.source = manifest.source
        raise
    return evaluate(manifest, system, inputs)
