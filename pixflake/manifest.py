"""The flake manifest: declarative top-level sections and their validation.

A manifest comes in two forms. The document form is a mapping using the
schema's section names:

    {
        "description": "hello flake",
        "inputs": {"nixpkgs": "path:../nixpkgs"},
        "pkgsConfig": {"allowUnfree": True},
        "outputs": lambda ctx: {"packages": {"hello": ctx.pkgs.hello}},
    }

The file form is a flake.py module defining the same sections as
snake_case module attributes (pkgs_config, pkgs_overlays, ...), with
outputs usually written as a def.

Every section except outputs is optional; an absent section is None
here and the evaluator applies its default.
"""

from __future__ import annotations

import hashlib
import importlib.util
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType, ModuleType
from typing import Any, Callable, Mapping

from pixflake.constants import MANIFEST_FILENAME
from pixflake.errors import InvalidManifestError, ManifestLoadError, MissingOutputsError

# document key -> Manifest field (also the flake.py attribute name)
SECTIONS = {
    "description": "description",
    "inputs": "inputs",
    "overlays": "overlays",
    "modules": "modules",
    "pkgsConfig": "pkgs_config",
    "pkgsOverlays": "pkgs_overlays",
    "pkgsForSystem": "pkgs_for_system",
    "outputs": "outputs",
    "templates": "templates",
    "nixosConfigurations": "nixos_configurations",
}

# Sections whose value is data rather than a function of the context.
DATA_SECTIONS = ("description", "inputs", "overlays", "modules", "templates", "nixosConfigurations")


@dataclass(frozen=True)
class InputSpec:
    """A declared input: a name and the reference to resolve it from."""

    name: str
    url: str
    flake: bool = True

    @classmethod
    def parse(cls, name: str, ref: Any) -> InputSpec:
        if isinstance(ref, InputSpec):
            return cls(name, ref.url, ref.flake)
        if isinstance(ref, (str, os.PathLike)):
            return cls(name, os.fspath(ref))
        if isinstance(ref, Mapping) and "url" in ref:
            unknown = set(ref) - {"url", "flake"}
            if unknown:
                raise InvalidManifestError(
                    f"input {name!r} has unsupported attribute(s) {sorted(unknown)}",
                    section="inputs",
                )
            return cls(name, os.fspath(ref["url"]), bool(ref.get("flake", True)))
        raise InvalidManifestError(
            f"input {name!r} must be a reference string or a mapping with 'url', got {ref!r}",
            section="inputs",
        )


def _frozen(value: Mapping | None) -> Mapping | None:
    return None if value is None else MappingProxyType(dict(value))


@dataclass(frozen=True)
class Manifest:
    outputs: Callable[[Any], Mapping[str, Any]] | None = None
    description: str = ""
    inputs: Mapping[str, InputSpec] = field(default_factory=dict)
    overlays: Mapping[str, Callable] | None = None
    modules: Mapping[str, Any] | None = None
    pkgs_config: Mapping[str, Any] | Callable | None = None
    pkgs_overlays: tuple | Callable | None = None
    pkgs_for_system: Callable | None = None
    templates: Mapping[str, Any] | None = None
    nixos_configurations: Mapping[str, Any] | None = None
    source: str | None = field(default=None, compare=False)

    def __post_init__(self):
        if self.outputs is None:
            raise MissingOutputsError(source=self.source)
        if not callable(self.outputs):
            self._invalid("outputs", "must be a function of one argument")
        if not isinstance(self.description, str):
            self._invalid("description", "must be a string")

        inputs = self._mapping("inputs", self.inputs)
        try:
            specs = {name: InputSpec.parse(name, ref) for name, ref in (inputs or {}).items()}
        except InvalidManifestError as exc:
            exc.source = self.source
            raise
        object.__setattr__(self, "inputs", MappingProxyType(specs))

        overlays = self._mapping("overlays", self.overlays)
        for name, fn in (overlays or {}).items():
            if not callable(fn):
                self._invalid("overlays", f"overlay {name!r} is not callable")
        object.__setattr__(self, "overlays", _frozen(overlays))
        object.__setattr__(self, "modules", _frozen(self._mapping("modules", self.modules)))

        if self.pkgs_config is not None and not callable(self.pkgs_config):
            object.__setattr__(self, "pkgs_config", _frozen(self._mapping("pkgsConfig", self.pkgs_config)))

        if self.pkgs_overlays is not None and not callable(self.pkgs_overlays):
            object.__setattr__(self, "pkgs_overlays", check_overlay_list(self.pkgs_overlays, self.source))

        if self.pkgs_for_system is not None and not callable(self.pkgs_for_system):
            self._invalid("pkgsForSystem", "must be a function of one argument")

        templates = self._mapping("templates", self.templates)
        for name, template in (templates or {}).items():
            if isinstance(template, Mapping):
                template = template.get("path")
            if not isinstance(template, (str, os.PathLike)):
                self._invalid("templates", f"template {name!r} needs a path")
        object.__setattr__(self, "templates", _frozen(templates))
        object.__setattr__(self, "nixos_configurations",
                           _frozen(self._mapping("nixosConfigurations", self.nixos_configurations)))

    def _invalid(self, section: str, msg: str):
        raise InvalidManifestError(f"{section} {msg}", section=section, source=self.source)

    def _mapping(self, section: str, value: Any) -> Mapping | None:
        if value is not None and not isinstance(value, Mapping):
            self._invalid(section, f"must be a mapping, got {type(value).__name__}")
        return value

    def section(self, key: str) -> Any:
        """Value of a section by its document name (None when absent)."""
        return getattr(self, SECTIONS[key])

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], source: str | None = None) -> Manifest:
        unknown = sorted(set(data) - set(SECTIONS))
        if unknown:
            raise InvalidManifestError(
                f"flake has unsupported attribute {unknown[0]!r}", section=unknown[0], source=source,
            )
        kwargs = {SECTIONS[key]: value for key, value in data.items() if value is not None}
        return cls(source=source, **kwargs)

    @classmethod
    def from_module(cls, module: ModuleType, source: str | None = None) -> Manifest:
        data = {}
        for key, attr in SECTIONS.items():
            value = getattr(module, attr, None)
            if value is not None:
                data[key] = value
        return cls.from_mapping(data, source=source or getattr(module, "__file__", None))


def check_overlay_list(overlays: Any, source: str | None = None) -> tuple:
    if isinstance(overlays, (str, bytes)) or not isinstance(overlays, (list, tuple)):
        raise InvalidManifestError(
            f"pkgsOverlays must be a list of overlays, got {type(overlays).__name__}",
            section="pkgsOverlays", source=source,
        )
    for i, overlay in enumerate(overlays):
        if not callable(overlay):
            raise InvalidManifestError(
                f"pkgsOverlays[{i}] is not callable", section="pkgsOverlays", source=source,
            )
    return tuple(overlays)


def load_module(path: Path, prefix: str) -> ModuleType:
    """Execute a Python file as a module named after its path."""
    digest = hashlib.sha256(str(path).encode()).hexdigest()[:16]
    spec = importlib.util.spec_from_file_location(f"{prefix}_{digest}", path)
    if spec is None or spec.loader is None:
        raise ManifestLoadError(f"cannot load {path}", source=str(path))
    module = importlib.util.module_from_spec(spec)
    sys.modules[spec.name] = module
    try:
        spec.loader.exec_module(module)
    except Exception as exc:
        del sys.modules[spec.name]
        raise ManifestLoadError(f"error while loading {path}: {exc}", source=str(path)) from exc
    return module


def manifest_path(path: str | os.PathLike) -> Path:
    path = Path(path)
    if path.is_dir():
        path = path / MANIFEST_FILENAME
    if not path.is_file():
        raise ManifestLoadError(f"no {MANIFEST_FILENAME} found at {path}", source=str(path))
    return path.resolve()


def load_manifest(path: str | os.PathLike) -> Manifest:
    """Load flake.py (or the flake.py inside directory path)."""
    path = manifest_path(path)
    return Manifest.from_module(load_module(path, "pixflake_manifest"), source=str(path))
