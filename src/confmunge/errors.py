"""Exception hierarchy for confmunge."""

from __future__ import annotations


class ConfmungeError(Exception):
    """Base class for all confmunge errors."""


class ArtifactLoadError(ConfmungeError):
    """An artifact could not be loaded (unsupported format or unparsable)."""


class LocationError(ArtifactLoadError):
    """The target artifact file does not exist at the resolved path."""

    def __init__(self, path: object) -> None:
        self.path = path
        super().__init__(f"Unable to find the targeted file {path}")


class DispatchError(ConfmungeError):
    """A graft or prune could not be satisfied against the current document."""

    def __init__(self, action: str, file: object, selector: str, mode: str) -> None:
        self.action = action
        self.file = file
        self.selector = selector
        self.mode = mode
        super().__init__(f"Unable to {action} at selector {selector!r} in {file} (mode={mode})")


class FormatError(ConfmungeError):
    """Persisted munge data is neither the current nor the legacy shape."""
