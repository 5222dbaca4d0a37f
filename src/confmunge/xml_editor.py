"""XmlTreeEditor: the tree editor behind XML-family artifacts.

Selectors follow the ElementTree path syntax with one extension for
absolute paths:

    /manifest                 the document root, if its tag is "manifest" (or "*")
    /manifest/application     root.find("application")
    application/activity      root.find("application/activity")

Namespace prefixes declared anywhere in the document ("android:name") can be
used in selectors and in fragments; fragments are parsed inside a wrapper
that re-declares the document's namespaces.

Graft operations return what prune needs to undo them (a JSON-compatible
dict, persisted with the munge) or None when the selector resolves to
nothing. Prune operations return False in that case.

The undo state covers only what the graft itself changed (attribute values
it replaced, children it appended or displaced), so pruning one fragment
leaves edits made under the same target by other fragments in place.
"""

from __future__ import annotations

import contextlib
import copy
import logging
import re
import xml.etree.ElementTree as ET
from typing import TYPE_CHECKING, Any
from xml.sax.saxutils import quoteattr

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger("confmunge.xml_editor")

_ROOT_RE = re.compile(r"^/([^/]*)")
_ABSOLUTE_RE = re.compile(r"^/([^/]*)/(.+)")
_TAG_RE = re.compile(r"[A-Za-z_][\w.\-]*(?::[A-Za-z_][\w.\-]*)?")
# Attributes (local names) that identify an element among same-tag siblings when merging.
_IDENTITY_ATTRS = ("name", "id")
# ElementTree refuses to register prefixes of this form.
_RESERVED_PREFIX_RE = re.compile(r"ns\d+")


def equal_nodes(one: ET.Element, two: ET.Element) -> bool:
    """Structural equality: tag, attributes, trimmed text, children (recursively)."""
    if one.tag != two.tag or one.attrib != two.attrib:
        return False
    if (one.text or "").strip() != (two.text or "").strip():
        return False
    if len(one) != len(two):
        return False
    return all(equal_nodes(a, b) for a, b in zip(one, two, strict=True))


def _matches_shape(node: ET.Element, pattern: ET.Element) -> bool:
    """True if node has pattern's tag, carries its attributes and text, and matches each pattern child."""
    if node.tag != pattern.tag:
        return False
    if any(node.get(k) != v for k, v in pattern.attrib.items()):
        return False
    text = (pattern.text or "").strip()
    if text and (node.text or "").strip() != text:
        return False
    return all(any(_matches_shape(kid, p) for kid in node) for p in pattern)


def _same_entity(node: ET.Element, other: ET.Element) -> bool:
    """Whether other describes node: equal name/id attributes if other has any, else no conflicting attributes."""
    keys = {k: v for k, v in other.attrib.items() if k.rpartition("}")[2] in _IDENTITY_ATTRS}
    if keys:
        return all(node.get(k) == v for k, v in keys.items())
    return all(node.get(k) == v for k, v in other.attrib.items() if k in node.attrib)


def _merge_child(parent: ET.Element, node: ET.Element) -> dict[str, Any]:
    for kid in parent:
        if kid.tag == node.tag and _same_entity(kid, node):
            return {"merged": _merge_into(kid, node)}
    parent.append(copy.deepcopy(node))
    return {"appended": True}


def _merge_into(target: ET.Element, node: ET.Element) -> dict[str, Any]:
    """Merge node into target. Returns what changed: prior attribute values, prior text, per-child results."""
    undo: dict[str, Any] = {"attrib": {k: target.get(k) for k in node.attrib}}
    target.attrib.update(node.attrib)
    if (node.text or "").strip():
        undo["text"] = target.text
        target.text = node.text
    undo["kids"] = [_merge_child(target, child) for child in node]
    return undo


def _unmerge_child(parent: ET.Element, node: ET.Element, entry: dict[str, Any]) -> None:
    for kid in parent:
        if entry.get("appended"):
            if equal_nodes(kid, node):
                parent.remove(kid)
                return
        elif kid.tag == node.tag and _same_entity(kid, node):
            _unmerge_from(kid, node, entry.get("merged") or {})
            return


def _unmerge_from(target: ET.Element, node: ET.Element, undo: dict[str, Any]) -> None:
    """Revert what _merge_into recorded. Values changed since by someone else are left alone."""
    entries = undo.get("kids") or []
    for child, entry in reversed(list(zip(node, entries))):
        _unmerge_child(target, child, entry)
    if "text" in undo and (target.text or "").strip() == (node.text or "").strip():
        target.text = undo["text"]
    _restore_attrib(target, node, undo.get("attrib") or {})


def _restore_attrib(target: ET.Element, node: ET.Element, previous: dict[str, str | None]) -> None:
    """Put back previous values of the attributes node set, where target still holds node's value."""
    for key, old in previous.items():
        if target.get(key) != node.get(key):
            continue
        if old is None:
            target.attrib.pop(key, None)
        else:
            target.set(key, old)


def _replace_content(target: ET.Element, source: ET.Element) -> None:
    """Give target source's attributes, text and children. Tag and tail are kept."""
    target.attrib.clear()
    target.attrib.update(source.attrib)
    target.text = source.text
    target[:] = [copy.deepcopy(kid) for kid in source]


def _serialize(element: ET.Element) -> str:
    detached = copy.deepcopy(element)
    detached.tail = None
    return ET.tostring(detached, encoding="unicode")


def _parse_saved(xml: str) -> ET.Element:
    """Parse a node written by _serialize, keeping comments (a saved node may itself be one)."""
    parser = ET.XMLParser(target=ET.TreeBuilder(insert_comments=True))
    wrapper = ET.fromstring(f"<_saved>{xml}</_saved>", parser)
    return wrapper[0]


def _remove_equal(parent: ET.Element, node: ET.Element) -> None:
    for kid in parent:
        if equal_nodes(node, kid):
            parent.remove(kid)
            return


def _reinsert(target: ET.Element, nodes: list[list[Any]]) -> None:
    for index, xml in nodes:
        target.insert(min(int(index), len(target)), _parse_saved(xml))


class XmlTreeEditor:
    """Parsed XML document plus the graft/prune primitives."""

    def __init__(self, path: Path, indent: int = 4) -> None:
        self.path = path
        self.indent = indent
        self.namespaces = self._collect_namespaces(path)
        parser = ET.XMLParser(target=ET.TreeBuilder(insert_comments=True))
        self.doc = ET.parse(path, parser)
        self.root = self.doc.getroot()

    @staticmethod
    def _collect_namespaces(path: Path) -> dict[str, str]:
        """Map prefix -> uri for every namespace declared in the file, and register them for writing."""
        namespaces: dict[str, str] = {}
        for _event, (prefix, uri) in ET.iterparse(path, events=("start-ns",)):
            namespaces.setdefault(prefix, uri)
        for prefix, uri in namespaces.items():
            if _RESERVED_PREFIX_RE.fullmatch(prefix):
                continue
            with contextlib.suppress(ValueError):
                ET.register_namespace(prefix, uri)
        return namespaces

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def resolve(self, selector: str) -> ET.Element | None:
        """Return the element a selector points at, or None."""
        m = _ROOT_RE.match(selector)
        if m is None:
            return self.root.find(selector, self.namespaces)
        if m.group(1) not in ("*", self.root.tag, self._qualify(m.group(1))):
            return None
        sub = _ABSOLUTE_RE.match(selector)
        if sub is None:
            return self.root
        return self.root.find(sub.group(2), self.namespaces)

    def find(self, path: str) -> ET.Element | None:
        return self.root.find(path, self.namespaces)

    def find_all(self, path: str) -> list[ET.Element]:
        return self.root.findall(path, self.namespaces)

    def find_or_create(self, path: str) -> ET.Element:
        """Find path below the root, or append a new element named path to the root."""
        element = self.find(path)
        if element is None:
            element = self.create_element(path)
            self.root.append(element)
        return element

    @staticmethod
    def get_node_text_safe(element: ET.Element | None) -> str | None:
        if element is None or not element.text:
            return None
        return element.text.strip()

    @staticmethod
    def find_element_attribute_value(attribute_name: str, elements: ET.Element | list[ET.Element]) -> str:
        """Value of the last <x name=attribute_name value=...> element (case-insensitive name)."""
        if not isinstance(elements, list):
            elements = [elements]
        matches = [
            e.get("value", "") for e in elements
            if e.get("name", "").lower() == attribute_name.lower()
        ]
        return matches[-1] if matches else ""

    def remove_children(self, element: ET.Element, path: str) -> None:
        for child in element.findall(path, self.namespaces):
            element.remove(child)

    def create_element(self, tag: str, attributes: dict[str, str] | None = None) -> ET.Element:
        return ET.Element(self._qualify(tag), attributes or {})

    def parse_fragment(self, xml: str) -> ET.Element:
        """Parse a single-element fragment, resolving the document's namespace prefixes."""
        decls = " ".join(
            f"xmlns:{prefix}={quoteattr(uri)}" if prefix else f"xmlns={quoteattr(uri)}"
            for prefix, uri in self.namespaces.items()
        )
        wrapper = ET.fromstring(f"<_fragment {decls}>{xml}</_fragment>")
        elements = [e for e in wrapper if isinstance(e.tag, str)]
        if len(elements) != 1:
            msg = f"fragment must contain exactly one element, got {len(elements)}: {xml!r}"
            raise ValueError(msg)
        return elements[0]

    def _qualify(self, tag: str) -> str:
        prefix, sep, local = tag.partition(":")
        if sep and prefix in self.namespaces:
            return f"{{{self.namespaces[prefix]}}}{local}"
        if not sep and "" in self.namespaces:
            return f"{{{self.namespaces['']}}}{tag}"
        return tag

    # ------------------------------------------------------------------
    # Graft
    # ------------------------------------------------------------------

    def graft_insert(self, selector: str, node: ET.Element, after: str | None = None) -> dict[str, Any] | None:
        """Insert a copy of node under selector unless an equal child exists.

        Returns {"inserted": bool}; False means the document already had the
        node, so pruning must leave it in place.
        """
        parent = self.resolve(selector)
        if parent is None:
            parent = self._create_parent(selector)
            if parent is None:
                return None
        if any(equal_nodes(node, kid) for kid in parent):
            return {"inserted": False}
        index = self._insert_index(parent, after) if after else len(parent)
        parent.insert(index, copy.deepcopy(node))
        return {"inserted": True}

    def graft_merge(self, selector: str, node: ET.Element) -> dict[str, Any] | None:
        """Merge node into (same tag) or under (other tag) the target, recording only what changed."""
        target = self.resolve(selector)
        if target is None:
            return None
        if node.tag == target.tag:
            return _merge_into(target, node)
        return {"kids": [_merge_child(target, node)]}

    def graft_overwrite(self, selector: str, node: ET.Element) -> dict[str, Any] | None:
        """Replace the target's content with node's; keep the replaced attributes, text and children."""
        target = self.resolve(selector)
        if target is None:
            return None
        restore: dict[str, Any] = {
            "attrib": {},
            "text": target.text,
            "nodes": [[i, _serialize(kid)] for i, kid in enumerate(target)],
        }
        if node.tag == target.tag:
            keys = [*target.attrib, *(k for k in node.attrib if k not in target.attrib)]
            restore["attrib"] = {k: target.get(k) for k in keys if target.get(k) != node.get(k)}
            _replace_content(target, node)
        else:
            target.text = None
            target[:] = [copy.deepcopy(node)]
        return restore

    def graft_remove(self, selector: str, node: ET.Element) -> dict[str, Any] | None:
        """Delete what node describes: target attributes (same tag, no children) or matching children."""
        target = self.resolve(selector)
        if target is None:
            return None
        attrib: dict[str, str] = {}
        removed: list[list[Any]] = []
        if node.tag == target.tag and len(node) == 0:
            for key in node.attrib:
                if key in target.attrib:
                    attrib[key] = target.attrib.pop(key)
        else:
            removed = [[i, _serialize(kid)] for i, kid in enumerate(target) if _matches_shape(kid, node)]
            for i, _xml in reversed(removed):
                del target[i]
        return {"attrib": attrib, "nodes": removed}

    def _create_parent(self, selector: str) -> ET.Element | None:
        """Create the element a selector names, creating missing ancestors too."""
        head, _, tag = selector.rstrip("/").rpartition("/")
        if not _TAG_RE.fullmatch(tag):
            return None
        if not head:
            if selector.startswith("/"):
                return None
            head = "."
        parent = self.resolve(head)
        if parent is None:
            parent = self._create_parent(head)
            if parent is None:
                return None
        element = self.create_element(tag)
        parent.append(element)
        logger.debug("created %s under %s", tag, head)
        return element

    def _insert_index(self, parent: ET.Element, after: str) -> int:
        """Position just past the last child named by the first present tag in after; 0 if none."""
        tags = [kid.tag for kid in parent]
        for name in after.split(";"):
            qualified = self._qualify(name.strip())
            if qualified in tags:
                return len(tags) - tags[::-1].index(qualified)
        return 0

    # ------------------------------------------------------------------
    # Prune
    # ------------------------------------------------------------------

    def prune_insert(self, selector: str, node: ET.Element, restore: dict[str, Any] | None = None) -> bool:
        """Remove the first child of selector equal to node, unless graft found it already there."""
        parent = self.resolve(selector)
        if parent is None:
            return False
        if restore is not None and not restore.get("inserted", True):
            return True
        _remove_equal(parent, node)
        return True

    def prune_merge(self, selector: str, node: ET.Element, restore: dict[str, Any] | None) -> bool:
        """Revert what graft_merge recorded; edits made since by others stay."""
        target = self.resolve(selector)
        if target is None:
            return False
        if restore:
            if node.tag == target.tag:
                _unmerge_from(target, node, restore)
            else:
                for entry in restore.get("kids") or []:
                    _unmerge_child(target, node, entry)
        return True

    def prune_overwrite(self, selector: str, node: ET.Element, restore: dict[str, Any] | None) -> bool:
        """Take out what graft_overwrite put in and bring back what it replaced."""
        target = self.resolve(selector)
        if target is None:
            return False
        if not restore:
            return True
        same_tag = node.tag == target.tag
        for added in list(node) if same_tag else [node]:
            _remove_equal(target, added)
        written = (node.text or "").strip() if same_tag else ""
        if (target.text or "").strip() == written:
            target.text = restore.get("text")
        if same_tag:
            _restore_attrib(target, node, restore.get("attrib") or {})
        _reinsert(target, restore.get("nodes") or [])
        return True

    def prune_removed(self, selector: str, restore: dict[str, Any] | None) -> bool:
        """Re-insert what graft_remove deleted, at the positions it was deleted from."""
        target = self.resolve(selector)
        if target is None:
            return False
        if restore:
            for key, value in (restore.get("attrib") or {}).items():
                target.attrib.setdefault(key, value)
            _reinsert(target, restore.get("nodes") or [])
        return True

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def write(self) -> None:
        """Serialize to a temp file beside the document, then rename it into place."""
        ET.indent(self.doc, space=" " * self.indent)
        data = ET.tostring(self.root, encoding="utf-8", xml_declaration=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_bytes(data + b"\n")
        tmp.replace(self.path)
