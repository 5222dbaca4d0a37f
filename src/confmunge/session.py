"""MungeSession: record plugin config edits and realize them against artifacts.

A session owns one ArtifactCache and one PluginStateStore for a single
(project, platform). Typical install batch:

    session = MungeSession(project_root, "android", plugins_dir)
    session.install_plugin(info, changes, variables={"API_KEY": "x"})
    session.save_all()          # dirty artifacts, then <platform>.json

A fragment is grafted only when its count goes from 0 to 1 and pruned only
when it drops back to 0, so identical edits from several plugins touch the
document once.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from confmunge.cache import ArtifactCache
from confmunge.errors import ConfmungeError
from confmunge.state import PluginStateStore

if TYPE_CHECKING:
    from collections.abc import Iterable

    from confmunge.artifact import Artifact
    from confmunge.config import ConfmungeConfig
    from confmunge.models import ConfigChange, PluginInfo
    from confmunge.munge import ChangeSet

logger = logging.getLogger("confmunge.session")


class MungeSession:
    """One install/uninstall session for a platform."""

    def __init__(
        self,
        project_root: Path | str,
        platform: str,
        plugins_dir: Path | str,
        cache: ArtifactCache | None = None,
        state: PluginStateStore | None = None,
    ) -> None:
        self.project_root = Path(project_root)
        self.platform = platform
        self.cache = cache if cache is not None else ArtifactCache()
        self.state = state if state is not None else PluginStateStore.load(plugins_dir, platform)

    @classmethod
    def from_config(cls, cfg: ConfmungeConfig) -> MungeSession:
        return cls(
            cfg.platform_root,
            cfg.platform,
            cfg.plugins_dir,
            cache=ArtifactCache(indent=cfg.artifacts.indent),
        )

    @property
    def change_set(self) -> ChangeSet:
        return self.state.change_set

    def artifact(self, file: str) -> Artifact:
        return self.cache.get(self.project_root, self.platform, file)

    # ------------------------------------------------------------------
    # Single contributions
    # ------------------------------------------------------------------

    def add_config_change(self, change: ConfigChange) -> int:
        """Count one more contributor for change; graft it if it is new. Returns the count."""
        cs = self.change_set
        count = cs.add(change.file, change.selector, change.fragment)
        if count > 1:
            logger.debug("%s at %s already applied (count=%d)", change.file, change.selector, count)
            return count
        try:
            restore = self.artifact(change.file).graft(change.selector, change.fragment)
        except ConfmungeError:
            # Nothing was applied; don't leave a count behind for it.
            cs.remove(change.file, change.selector, change.fragment)
            raise
        cs.set_restore(change.file, change.selector, change.fragment, restore)
        return count

    def remove_config_change(self, change: ConfigChange) -> int:
        """Drop one contributor for change; prune it when none remain. Returns the count."""
        cs = self.change_set
        existing = cs.get(change.file, change.selector, change.fragment)
        if existing is None:
            logger.debug("no contribution to remove at %s %s", change.file, change.selector)
            return 0
        if existing.count == 1:
            self.artifact(change.file).prune(change.selector, change.fragment, existing.restore)
        return cs.remove(change.file, change.selector, change.fragment)

    # ------------------------------------------------------------------
    # Whole plugins
    # ------------------------------------------------------------------

    def install_plugin(
        self,
        plugin: PluginInfo,
        changes: Iterable[ConfigChange],
        variables: dict[str, Any] | None = None,
        top_level: bool = True,
    ) -> None:
        """Apply a plugin's config edits and record it as installed."""
        for change in changes:
            self.add_config_change(change)
        self.state.add_plugin(plugin.id, variables, top_level)
        self.state.add_plugin_metadata(plugin)
        logger.info("installed %s (%s)", plugin.id, "top-level" if top_level else "dependency")

    def uninstall_plugin(
        self,
        plugin: PluginInfo,
        changes: Iterable[ConfigChange],
        top_level: bool = True,
    ) -> None:
        """Reverse a plugin's config edits and forget it."""
        for change in changes:
            self.remove_config_change(change)
        self.state.remove_plugin(plugin.id, top_level)
        self.state.remove_plugin_metadata(plugin)
        logger.info("uninstalled %s", plugin.id)

    def reapply_all(self) -> int:
        """Graft every recorded contribution again, in change-set order. Returns how many.

        Restore state recorded by an earlier graft is kept; only entries
        without one take the state of the re-graft.
        """
        n = 0
        for file, selector, c in list(self.change_set.items()):
            restore = self.artifact(file).graft(selector, c.fragment)
            if c.restore is None:
                self.change_set.set_restore(file, selector, c.fragment, restore)
            n += 1
        return n

    def save_all(self) -> list[Artifact]:
        """Flush dirty artifacts, then persist the plugin state. Returns the artifacts written."""
        written = self.cache.flush_all()
        self.state.save()
        return written
