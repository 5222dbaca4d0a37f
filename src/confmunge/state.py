"""PluginStateStore: the persisted <platform>.json for one platform.

Layout (plugins_dir/<platform>.json, written with 2-space indentation):

    {
      "prepare_queue": {"installed": [...], "uninstalled": [...]},
      "config_munge": {"files": {...}},
      "installed_plugins": {"<plugin id>": {<variables>}},
      "dependent_plugins": {"<plugin id>": {<variables>}},
      "modules": [{"id": ..., "file": ..., "pluginId": ...}],
      "plugin_metadata": {"<plugin id>": "<version>"}
    }

A plugin is installed if it is in either plugin map and top-level if it is
in installed_plugins. An id lives in at most one of the two maps.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from confmunge.models import InstallItem, ModuleMetadata, UninstallItem
from confmunge.munge import ChangeSet

if TYPE_CHECKING:
    from confmunge.models import PluginInfo

logger = logging.getLogger("confmunge.state")

_KNOWN_KEYS = {
    "prepare_queue", "config_munge", "installed_plugins",
    "dependent_plugins", "modules", "plugin_metadata",
}

_MANIFEST_TEMPLATE = """\
{ns}.define('{ns}/plugin_list', function(require, exports, module) {{
  module.exports = {modules};
  module.exports.metadata = {metadata};
}});"""


def _stringify(value: Any) -> str:
    """JSON with 2-space indentation, continuation lines shifted to sit inside the template."""
    return json.dumps(value, indent=2, ensure_ascii=False).replace("\n", "\n  ")


def generate_metadata(
    modules: list[ModuleMetadata],
    plugin_metadata: dict[str, str],
    namespace: str = "cordova",
) -> str:
    """Render the runtime module manifest (the plugin_list module)."""
    return _MANIFEST_TEMPLATE.format(
        ns=namespace,
        modules=_stringify([m.to_dict() for m in modules]),
        metadata=_stringify(plugin_metadata),
    )


@dataclass
class PrepareQueue:
    """Install/uninstall work waiting for the external prepare phase. FIFO per list."""

    installed: list[InstallItem] = field(default_factory=list)
    uninstalled: list[UninstallItem] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> PrepareQueue:
        d = d or {}
        return cls(
            installed=[InstallItem.from_dict(i) for i in d.get("installed") or []],
            uninstalled=[UninstallItem.from_dict(u) for u in d.get("uninstalled") or []],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "installed": [i.to_dict() for i in self.installed],
            "uninstalled": [u.to_dict() for u in self.uninstalled],
        }


class PluginStateStore:
    """Installed/dependent plugins, prepare queue, module metadata and the munge for one platform."""

    def __init__(self, path: Path | str, platform: str, root: dict[str, Any] | None = None) -> None:
        self.path = Path(path)
        self.platform = platform
        root = root or {}
        self.installed_plugins: dict[str, dict[str, Any]] = dict(root.get("installed_plugins") or {})
        self.dependent_plugins: dict[str, dict[str, Any]] = dict(root.get("dependent_plugins") or {})
        self.change_set = ChangeSet.from_dict(root.get("config_munge") or {"files": {}})
        self.prepare_queue = PrepareQueue.from_dict(root.get("prepare_queue"))
        self.modules = [ModuleMetadata.from_dict(m) for m in root.get("modules") or []]
        self.plugin_metadata: dict[str, str] = dict(root.get("plugin_metadata") or {})
        # Keys written by other tools are carried through untouched.
        self._extra = {k: v for k, v in root.items() if k not in _KNOWN_KEYS}

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    @classmethod
    def load(cls, plugins_dir: Path | str, platform: str) -> PluginStateStore:
        """Read plugins_dir/<platform>.json, or start fresh if it doesn't exist."""
        path = Path(plugins_dir) / f"{platform}.json"
        root: dict[str, Any] | None = None
        if path.exists():
            root = json.loads(path.read_text(encoding="utf-8"))
            logger.debug("loaded plugin state from %s", path)
        return cls(path, platform, root)

    def to_dict(self) -> dict[str, Any]:
        return {
            **self._extra,
            "prepare_queue": self.prepare_queue.to_dict(),
            "config_munge": self.change_set.to_dict(),
            "installed_plugins": self.installed_plugins,
            "dependent_plugins": self.dependent_plugins,
            "modules": [m.to_dict() for m in self.modules],
            "plugin_metadata": self.plugin_metadata,
        }

    def save(self) -> None:
        """Write the whole record atomically (temp file, then rename)."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(self.to_dict(), indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        tmp.replace(self.path)
        logger.debug("saved plugin state to %s", self.path)

    # ------------------------------------------------------------------
    # Plugin sets
    # ------------------------------------------------------------------

    def is_plugin_top_level(self, plugin_id: str) -> bool:
        return plugin_id in self.installed_plugins

    def is_plugin_dependent(self, plugin_id: str) -> bool:
        return plugin_id in self.dependent_plugins

    def is_plugin_installed(self, plugin_id: str) -> bool:
        return self.is_plugin_top_level(plugin_id) or self.is_plugin_dependent(plugin_id)

    def get_plugin_variables(self, plugin_id: str) -> dict[str, Any] | None:
        if plugin_id in self.installed_plugins:
            return self.installed_plugins[plugin_id]
        return self.dependent_plugins.get(plugin_id)

    def add_plugin(
        self, plugin_id: str, variables: dict[str, Any] | None = None, top_level: bool = True,
    ) -> PluginStateStore:
        """Record plugin_id as top-level or dependent. Last write wins across the two sets."""
        if not plugin_id:
            msg = "plugin_id must be non-empty"
            raise ValueError(msg)
        target, other = self._sets(top_level)
        other.pop(plugin_id, None)
        target[plugin_id] = dict(variables or {})
        return self

    def remove_plugin(self, plugin_id: str, top_level: bool = True) -> PluginStateStore:
        """Drop plugin_id from the indicated set only."""
        target, _ = self._sets(top_level)
        target.pop(plugin_id, None)
        return self

    def make_top_level(self, plugin_id: str) -> PluginStateStore:
        """Promote a dependent plugin to top-level. No-op if it isn't dependent."""
        if plugin_id in self.dependent_plugins:
            self.installed_plugins[plugin_id] = self.dependent_plugins.pop(plugin_id)
        return self

    def _sets(self, top_level: bool) -> tuple[dict[str, dict[str, Any]], dict[str, dict[str, Any]]]:
        if top_level:
            return self.installed_plugins, self.dependent_plugins
        return self.dependent_plugins, self.installed_plugins

    # ------------------------------------------------------------------
    # Module metadata
    # ------------------------------------------------------------------

    def add_plugin_metadata(self, plugin_info: PluginInfo) -> PluginStateStore:
        """Add the plugin's runtime modules (skipping files already listed) and its version."""
        known = {m.file for m in self.modules}
        for module in plugin_info.get_js_modules(self.platform):
            metadata = ModuleMetadata.from_js_module(plugin_info.id, module)
            if metadata.file not in known:
                self.modules.append(metadata)
                known.add(metadata.file)
        self.plugin_metadata[plugin_info.id] = plugin_info.version
        return self

    def remove_plugin_metadata(self, plugin_info: PluginInfo) -> PluginStateStore:
        files = {f"plugins/{plugin_info.id}/{m.src}" for m in plugin_info.get_js_modules(self.platform)}
        self.modules = [m for m in self.modules if m.file not in files]
        self.plugin_metadata.pop(plugin_info.id, None)
        return self

    def generate_metadata(self) -> str:
        return generate_metadata(self.modules, self.plugin_metadata)

    def generate_and_save_metadata(self, destination: Path | str) -> PluginStateStore:
        """Write the runtime module manifest to destination (parents created as needed)."""
        dest = Path(destination)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_text(self.generate_metadata(), encoding="utf-8")
        return self

    # ------------------------------------------------------------------
    # Prepare queue
    # ------------------------------------------------------------------

    def enqueue_install(
        self,
        plugin_dir_name: str,
        vars: dict[str, Any] | None = None,  # noqa: A002
        top_level: bool = True,
        force: bool = False,
    ) -> None:
        self.prepare_queue.installed.append(
            InstallItem(plugin=plugin_dir_name, vars=dict(vars or {}), top_level=top_level, force=force),
        )

    def enqueue_uninstall(self, plugin_id: str, top_level: bool = True) -> None:
        self.prepare_queue.uninstalled.append(UninstallItem(plugin=plugin_id, top_level=top_level))
