"""ArtifactCache: load each config file once per run, write back only what changed.

Files are keyed by (project root, platform, file tag), where the file tag is
the name used for the file in config munges. Applying a graft and a later
prune for the same selector must hit the same in-memory document, so a key
is loaded at most once and never evicted or reloaded.
"""

from __future__ import annotations

import logging
import posixpath
from pathlib import Path

from confmunge.artifact import Artifact

logger = logging.getLogger("confmunge.cache")

# Older plugins name the bare config.xml; it lives under res/xml/.
_LEGACY_REDIRECTS = {
    "config.xml": "res/xml/config.xml",
}

CacheKey = tuple[str, str, str]


def normalize_file_tag(file_tag: str) -> str:
    tag = posixpath.normpath(file_tag.replace("\\", "/"))
    return _LEGACY_REDIRECTS.get(tag, tag)


class ArtifactCache:
    """One Artifact per (project root, platform, file tag)."""

    def __init__(self, indent: int = 4) -> None:
        self.indent = indent
        self._cached: dict[CacheKey, Artifact] = {}

    @staticmethod
    def key(project_root: Path | str, platform: str, file_tag: str) -> CacheKey:
        return (str(Path(project_root).resolve()), platform, normalize_file_tag(file_tag))

    def get(self, project_root: Path | str, platform: str, file_tag: str) -> Artifact:
        """Return the cached artifact for the key, loading it on first access."""
        key = self.key(project_root, platform, file_tag)
        artifact = self._cached.get(key)
        if artifact is None:
            artifact = Artifact(key[0], key[2], indent=self.indent)
            self._cached[key] = artifact
        return artifact

    def __contains__(self, key: object) -> bool:
        return key in self._cached

    def __len__(self) -> int:
        return len(self._cached)

    def artifacts(self) -> list[Artifact]:
        return list(self._cached.values())

    def dirty(self) -> list[Artifact]:
        return [a for a in self._cached.values() if a.dirty]

    def flush_all(self) -> list[Artifact]:
        """Save every dirty artifact. Returns the artifacts written."""
        written = self.dirty()
        for artifact in written:
            artifact.save()
        if written:
            logger.info("flushed %d of %d artifacts", len(written), len(self._cached))
        return written
