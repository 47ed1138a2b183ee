"""pixflake — flake manifest evaluation in Python.

    from pixflake import evaluate, lazy

    flake = evaluate({
        "description": "hello",
        "outputs": lambda ctx: {"packages": {"hello": ctx.pkgs.hello}},
    }, "x86_64-linux", {"nixpkgs": make_package_set})
"""

from pixflake.errors import (
    ConfigEvaluationError,
    CyclicOverlayError,
    FlakeError,
    InputFetchError,
    InvalidManifestError,
    MissingAttributeError,
    MissingOutputsError,
    SelfReferenceCycleError,
    UnresolvedInputError,
)
from pixflake.evaluator import EvaluatedFlake, evaluate, evaluate_many, evaluate_path
from pixflake.inputs import LocalInputResolver, ResolvedInput, resolve_inputs
from pixflake.lazy import fix, lazy
from pixflake.manifest import InputSpec, Manifest, load_manifest
from pixflake.overlay import compose_overlays, identity_overlay
from pixflake.package_set import PackageCollection, PackageSet, build_package_set

__all__ = [
    "evaluate", "evaluate_many", "evaluate_path", "EvaluatedFlake",
    "Manifest", "InputSpec", "load_manifest",
    "LocalInputResolver", "ResolvedInput", "resolve_inputs",
    "compose_overlays", "identity_overlay",
    "PackageCollection", "PackageSet", "build_package_set",
    "fix", "lazy",
    "FlakeError", "MissingOutputsError", "InvalidManifestError", "UnresolvedInputError",
    "InputFetchError", "CyclicOverlayError", "SelfReferenceCycleError",
    "ConfigEvaluationError", "MissingAttributeError",
]
