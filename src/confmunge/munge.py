"""ChangeSet: the reference-counted munge of fragment contributions.

Shape (current, as persisted under "config_munge"):

    {"files": {
        "<file>": {
            "<selector>": [
                {"xml": "<perm/>", "count": 2, "mode": "merge", "restore": {...}},
                ...
            ]
        }
    }}

Legacy shape (no "files" wrapper, fragment text mapped straight to a count):

    {"<file>": {"<selector>": {"<xml>": 3}}}

Every stored contribution has count >= 1. Reaching zero deletes the entry,
and empty selector and file maps are deleted with it. Iteration order is
insertion order at every level.
"""

from __future__ import annotations

import copy
import logging
from typing import TYPE_CHECKING, Any

from confmunge.errors import FormatError
from confmunge.models import Contribution, Fragment

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger("confmunge.munge")

_CURRENT_MARKER = "files"


class ChangeSet:
    """file -> selector -> [Contribution], reference counted."""

    def __init__(self) -> None:
        self._files: dict[str, dict[str, list[Contribution]]] = {}

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, file: str, selector: str, fragment: Fragment) -> Contribution | None:
        for c in self._files.get(file, {}).get(selector, []):
            if c.fragment == fragment:
                return c
        return None

    def count(self, file: str, selector: str, fragment: Fragment) -> int:
        c = self.get(file, selector, fragment)
        return c.count if c is not None else 0

    def files(self) -> list[str]:
        return list(self._files)

    def items(self, file: str | None = None) -> Iterator[tuple[str, str, Contribution]]:
        """Yield (file, selector, contribution) in insertion order."""
        files = [file] if file is not None else list(self._files)
        for f in files:
            for selector, contributions in self._files.get(f, {}).items():
                for c in contributions:
                    yield f, selector, c

    @property
    def is_empty(self) -> bool:
        return not self._files

    def __len__(self) -> int:
        return sum(1 for _ in self.items())

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, tuple) or len(key) != 3:
            return False
        return self.get(*key) is not None

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add(self, file: str, selector: str, fragment: Fragment) -> int:
        """Record one more contributor for fragment. Returns the resulting count."""
        return self._add(file, selector, fragment, 1)

    def remove(self, file: str, selector: str, fragment: Fragment) -> int:
        """Drop one contributor. Removing something never added is a no-op. Returns the resulting count."""
        return self._remove(file, selector, fragment, 1)

    def set_restore(self, file: str, selector: str, fragment: Fragment, restore: dict[str, Any] | None) -> None:
        """Attach the state captured at graft time to a stored contribution."""
        c = self.get(file, selector, fragment)
        if c is None:
            msg = f"No contribution for {fragment.xml!r} at {selector!r} in {file}"
            raise KeyError(msg)
        c.restore = restore

    def increment(self, other: ChangeSet) -> ChangeSet:
        """Add all of other's counts. Returns the contributions that were not present before."""
        added = ChangeSet()
        for file, selector, c in other.items():
            if self.count(file, selector, c.fragment) == 0:
                added._add(file, selector, c.fragment, c.count)
            self._add(file, selector, c.fragment, c.count)
        return added

    def decrement(self, other: ChangeSet) -> ChangeSet:
        """Subtract all of other's counts. Returns the contributions that reached zero.

        Returned entries keep the restore state they carried here, so the
        caller can prune them.
        """
        removed = ChangeSet()
        for file, selector, c in other.items():
            existing = self.get(file, selector, c.fragment)
            if existing is None:
                continue
            snapshot = copy.deepcopy(existing)
            if self._remove(file, selector, c.fragment, c.count) == 0:
                snapshot.count = 1
                removed._insert(file, selector, snapshot)
        return removed

    def _add(self, file: str, selector: str, fragment: Fragment, n: int) -> int:
        c = self.get(file, selector, fragment)
        if c is not None:
            c.count += n
            return c.count
        self._insert(file, selector, Contribution(fragment=fragment, count=n))
        return n

    def _insert(self, file: str, selector: str, contribution: Contribution) -> None:
        self._files.setdefault(file, {}).setdefault(selector, []).append(contribution)

    def _remove(self, file: str, selector: str, fragment: Fragment, n: int) -> int:
        selectors = self._files.get(file)
        contributions = selectors.get(selector) if selectors else None
        if not contributions:
            logger.debug("nothing to remove at %s %s", file, selector)
            return 0
        for i, c in enumerate(contributions):
            if c.fragment == fragment:
                break
        else:
            logger.debug("nothing to remove at %s %s", file, selector)
            return 0

        c.count -= n
        if c.count > 0:
            return c.count
        del contributions[i]
        if not contributions:
            del selectors[selector]  # type: ignore[union-attr]
            if not selectors:
                del self._files[file]
        return 0

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            _CURRENT_MARKER: {
                file: {
                    selector: [c.to_dict() for c in contributions]
                    for selector, contributions in selectors.items()
                }
                for file, selectors in self._files.items()
            }
        }

    @classmethod
    def from_dict(cls, raw: Any) -> ChangeSet:
        return migrate_legacy(raw)


def migrate_legacy(raw: Any) -> ChangeSet:
    """Build a ChangeSet from persisted munge data of either shape.

    Current-shape input (has the "files" marker) is loaded as-is. Legacy
    input is rewritten by re-adding each fragment count times. Anything
    else raises FormatError.
    """
    cs = ChangeSet()
    if raw is None:
        return cs
    if not isinstance(raw, dict):
        msg = f"config munge must be a mapping, got {type(raw).__name__}"
        raise FormatError(msg)

    if _CURRENT_MARKER in raw:
        for file, selectors in _mapping(raw[_CURRENT_MARKER], "files").items():
            for selector, entries in _mapping(selectors, file).items():
                if not isinstance(entries, list):
                    msg = f"munge entries for {file} {selector} must be a list"
                    raise FormatError(msg)
                for entry in entries:
                    c = Contribution.from_dict(entry)
                    if c.count < 1:
                        continue
                    cs._add(file, selector, c.fragment, c.count)
                    if c.restore is not None:
                        cs.set_restore(file, selector, c.fragment, c.restore)
        return cs

    if raw:
        logger.info("migrating legacy config munge (%d files)", len(raw))
    for file, selectors in raw.items():
        for selector, xmls in _mapping(selectors, file).items():
            for xml, count in _mapping(xmls, f"{file} {selector}").items():
                try:
                    n = int(count)
                except (TypeError, ValueError):
                    msg = f"legacy munge count for {xml!r} is not an integer: {count!r}"
                    raise FormatError(msg) from None
                if not xml:
                    msg = f"legacy munge has an empty fragment under {file} {selector}"
                    raise FormatError(msg)
                fragment = Fragment(xml=xml)
                for _ in range(n):
                    cs.add(file, selector, fragment)
    return cs


def _mapping(value: Any, where: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        msg = f"config munge: expected a mapping under {where!r}, got {type(value).__name__}"
        raise FormatError(msg)
    return value
