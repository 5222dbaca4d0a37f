"""Artifact: one managed config file, loaded once, grafted/pruned in place.

The artifact never touches the parsed document itself; every structural
edit goes through a TreeEditor picked by file format.
"""

from __future__ import annotations

import logging
import os
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from confmunge.errors import ArtifactLoadError, DispatchError, LocationError
from confmunge.models import Fragment, Mode
from confmunge.xml_editor import XmlTreeEditor

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger("confmunge.artifact")

# File extensions handled by each format.
_FORMATS = {
    ".xml": "xml",
    ".appxmanifest": "xml",
    ".storyboard": "xml",
}


class TreeEditor(Protocol):
    """What an artifact needs from a parsed document.

    Grafts return the state their prune needs, or None when the selector
    resolves to nothing; prunes return False in that case.
    """

    def parse_fragment(self, xml: str) -> Any: ...
    def graft_insert(self, selector: str, node: Any, after: str | None = None) -> dict[str, Any] | None: ...
    def graft_merge(self, selector: str, node: Any) -> dict[str, Any] | None: ...
    def graft_overwrite(self, selector: str, node: Any) -> dict[str, Any] | None: ...
    def graft_remove(self, selector: str, node: Any) -> dict[str, Any] | None: ...
    def prune_insert(self, selector: str, node: Any, restore: dict[str, Any] | None = None) -> bool: ...
    def prune_merge(self, selector: str, node: Any, restore: dict[str, Any] | None) -> bool: ...
    def prune_overwrite(self, selector: str, node: Any, restore: dict[str, Any] | None) -> bool: ...
    def prune_removed(self, selector: str, restore: dict[str, Any] | None) -> bool: ...
    def write(self) -> None: ...


_EDITORS: dict[str, Callable[[Path, int], TreeEditor]] = {
    "xml": XmlTreeEditor,
}


class Artifact:
    """A config file under management, with its parsed document and dirty flag."""

    def __init__(self, project_root: Path | str, file_tag: str, indent: int = 4) -> None:
        self.project_root = Path(project_root)
        self.path = Path(os.path.normpath(self.project_root / file_tag))
        if not self.path.is_file():
            raise LocationError(self.path)

        self.format = _FORMATS.get(self.path.suffix.lower())
        if self.format is None:
            msg = f"Unable to load {self.path}: no loader for {self.path.suffix or 'extensionless'} files"
            raise ArtifactLoadError(msg)

        try:
            self.editor: TreeEditor = _EDITORS[self.format](self.path, indent)
        except ET.ParseError as exc:
            msg = f"Parsing {self.path} failed: {exc}"
            raise ArtifactLoadError(msg) from exc
        self.dirty = False
        logger.debug("loaded %s (%s)", self.path, self.format)

    def __repr__(self) -> str:
        return f"Artifact({str(self.path)!r}, dirty={self.dirty})"

    def _node(self, action: str, selector: str, fragment: Fragment) -> Any:
        try:
            return self.editor.parse_fragment(fragment.xml)
        except (ET.ParseError, ValueError) as exc:
            raise DispatchError(action, self.path, selector, fragment.mode.value) from exc

    def graft(self, selector: str, fragment: Fragment) -> dict[str, Any]:
        """Apply fragment at selector. Returns the state prune needs to undo exactly this graft."""
        node = self._node("graft", selector, fragment)
        mode = fragment.mode
        if mode is Mode.MERGE:
            restore = self.editor.graft_merge(selector, node)
        elif mode is Mode.OVERWRITE:
            restore = self.editor.graft_overwrite(selector, node)
        elif mode is Mode.REMOVE:
            restore = self.editor.graft_remove(selector, node)
        elif mode is Mode.INSERT:
            restore = self.editor.graft_insert(selector, node, fragment.after)
        else:
            msg = f"unhandled mode {mode!r}"
            raise AssertionError(msg)

        if restore is None:
            raise DispatchError("graft", self.path, selector, mode.value)
        self.dirty = True
        logger.debug("grafted %s at %s in %s", mode.value, selector, self.path)
        return restore

    def prune(self, selector: str, fragment: Fragment, restore: dict[str, Any] | None = None) -> None:
        """Undo a graft of fragment at selector, using the state graft returned."""
        node = self._node("prune", selector, fragment)
        mode = fragment.mode
        if mode is Mode.MERGE:
            ok = self.editor.prune_merge(selector, node, restore)
        elif mode is Mode.OVERWRITE:
            ok = self.editor.prune_overwrite(selector, node, restore)
        elif mode is Mode.REMOVE:
            ok = self.editor.prune_removed(selector, restore)
        elif mode is Mode.INSERT:
            ok = self.editor.prune_insert(selector, node, restore)
        else:
            msg = f"unhandled mode {mode!r}"
            raise AssertionError(msg)

        if not ok:
            raise DispatchError("prune", self.path, selector, mode.value)
        self.dirty = True
        logger.debug("pruned %s at %s in %s", mode.value, selector, self.path)

    def save(self) -> None:
        """Write the document back to disk and clear the dirty flag."""
        self.editor.write()
        self.dirty = False
        logger.info("saved %s", self.path)
