"""Error kinds raised while loading and evaluating a flake manifest.

Every error carries the manifest ``section`` it was detected in (when
known) and the ``source`` manifest path, so the CLI can report where an
evaluation failed without a traceback.
"""

from __future__ import annotations


class FlakeError(Exception):
    """Base class for all pixflake errors."""

    def __init__(self, msg: str, *, section: str | None = None, source: str | None = None):
        self.msg = msg
        self.section = section
        self.source = source
        super().__init__(msg)

    @property
    def kind(self) -> str:
        return type(self).__name__


class ManifestError(FlakeError):
    pass


class MissingOutputsError(ManifestError):
    def __init__(self, source: str | None = None):
        super().__init__("flake has no 'outputs' function", section="outputs", source=source)


class InvalidManifestError(ManifestError):
    pass


class ManifestLoadError(ManifestError):
    pass


class UnresolvedInputError(FlakeError):
    def __init__(self, name: str, msg: str | None = None, **kw):
        self.name = name
        super().__init__(msg or f"input {name!r} was not resolved", section="inputs", **kw)


class InputFetchError(FlakeError):
    pass


class ConfigEvaluationError(FlakeError):
    pass


class OverlayError(FlakeError):
    pass


class InfiniteRecursionError(FlakeError):
    """A lazy value was forced while it was already being computed."""


class CyclicOverlayError(InfiniteRecursionError, OverlayError):
    pass


class SelfReferenceCycleError(InfiniteRecursionError):
    pass


class MissingAttributeError(FlakeError, AttributeError):
    """Attribute lookup on a lazy set found no such name.

    Also an AttributeError so that hasattr() and getattr(obj, name, default)
    behave as usual.
    """

    def __init__(self, name: str, where: str = "attribute set", **kw):
        self.name = name
        super().__init__(f"{where} has no attribute {name!r}", **kw)


class PackageSetError(FlakeError):
    pass
