"""Input resolution: turning declared input references into handles.

The evaluator never fetches anything itself. It is handed a mapping of
already-resolved inputs, produced by an InputResolver. This module
ships the resolver for local paths:

    path:../nixpkgs     relative to the manifest's directory
    ./vendor/tools      same, without the scheme
    /opt/pkgs           absolute

A resolved directory may provide a base package set (default.py
defining make_package_set(system, config)) and, for flake inputs, its
own flake.py, which is loaded but not evaluated.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Mapping, Protocol

from pixflake.constants import MANIFEST_FILENAME, PACKAGE_SET_FACTORY, PACKAGE_SOURCE_FILENAME
from pixflake.errors import InputFetchError, ManifestError
from pixflake.manifest import InputSpec, Manifest, load_manifest, load_module

logger = logging.getLogger(__name__)

REMOTE_SCHEMES = ("github:", "gitlab:", "git+", "http://", "https://", "tarball+", "flake:")


@dataclass(frozen=True)
class ResolvedInput:
    """Immutable handle to a resolved input."""

    name: str
    url: str
    path: Path | None = None
    factory: Callable[..., Any] | None = None
    manifest: Manifest | None = None

    def __str__(self) -> str:
        return str(self.path) if self.path is not None else self.url


class InputResolver(Protocol):
    def resolve(self, spec: InputSpec) -> ResolvedInput: ...


def local_location(url: str) -> str | None:
    """Filesystem location named by a local reference, or None."""
    if url.startswith("path:"):
        return url[len("path:"):]
    if url.startswith(("/", "./", "../")) or url in (".", ".."):
        return url
    return None


class LocalInputResolver:
    """Resolves path references against a base directory."""

    def __init__(self, base_dir: str | os.PathLike = "."):
        self.base_dir = Path(base_dir)

    def resolve(self, spec: InputSpec) -> ResolvedInput:
        location = local_location(spec.url)
        if location is None:
            kind = "remote" if spec.url.startswith(REMOTE_SCHEMES) else "unrecognized"
            raise InputFetchError(
                f"cannot fetch input {spec.name!r} from {kind} reference {spec.url!r}; "
                "only local paths are supported",
                section="inputs",
            )
        path = (self.base_dir / location).resolve()
        if not path.is_dir():
            raise InputFetchError(
                f"input {spec.name!r}: {path} is not a directory", section="inputs",
            )

        factory = None
        source = path / PACKAGE_SOURCE_FILENAME
        if source.is_file():
            factory = self._load_factory(spec, source)

        manifest = None
        if spec.flake and (path / MANIFEST_FILENAME).is_file():
            try:
                manifest = load_manifest(path)
            except ManifestError as exc:
                raise InputFetchError(
                    f"input {spec.name!r}: {exc.msg}", section="inputs", source=exc.source,
                ) from exc

        logger.debug("resolved input %s -> %s (package set: %s, flake: %s)",
                     spec.name, path, factory is not None, manifest is not None)
        return ResolvedInput(spec.name, spec.url, path, factory, manifest)

    def _load_factory(self, spec: InputSpec, source: Path) -> Callable[..., Any]:
        try:
            module = load_module(source, "pixflake_pkgs")
        except ManifestError as exc:
            raise InputFetchError(f"input {spec.name!r}: {exc.msg}", section="inputs") from exc
        factory = getattr(module, PACKAGE_SET_FACTORY, None)
        if not callable(factory):
            raise InputFetchError(
                f"input {spec.name!r}: {source} does not define {PACKAGE_SET_FACTORY}(system, config)",
                section="inputs",
            )
        return factory


def resolve_inputs(manifest: Manifest, resolver: InputResolver) -> Mapping[str, ResolvedInput]:
    """Resolve every input the manifest declares, once each."""
    resolved = {}
    for name, spec in manifest.inputs.items():
        resolved[name] = resolver.resolve(spec)
    return MappingProxyType(resolved)
