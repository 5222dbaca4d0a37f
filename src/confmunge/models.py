"""Data models: fragments, contributions, plugin module metadata, queue items."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from confmunge.errors import FormatError

# Module base name inferred from a js-module src when no explicit name is given.
_MODULE_NAME_RE = re.compile(r"([^/]+)\.js")


class Mode(Enum):
    """How a fragment is applied at its selector."""

    INSERT = "insert"        # persisted by omitting "mode"
    MERGE = "merge"
    OVERWRITE = "overwrite"
    REMOVE = "remove"

    @classmethod
    def parse(cls, value: Mode | str | None) -> Mode:
        """Return the Mode for a persisted value. None or "" means INSERT."""
        if isinstance(value, Mode):
            return value
        if not value:
            return cls.INSERT
        try:
            return cls(value)
        except ValueError:
            msg = f"Unrecognized fragment mode: {value!r}"
            raise FormatError(msg) from None

    def persisted(self) -> str | None:
        return None if self is Mode.INSERT else self.value


@dataclass(frozen=True)
class Fragment:
    """A markup fragment plus how to apply it. Equal fragments are the same logical edit."""

    xml: str
    mode: Mode = Mode.INSERT
    after: str | None = None    # ";"-separated sibling tags, INSERT only

    def __post_init__(self) -> None:
        if not self.xml:
            msg = "Fragment xml must be non-empty"
            raise ValueError(msg)
        object.__setattr__(self, "mode", Mode.parse(self.mode))
        if self.after and self.mode is not Mode.INSERT:
            msg = f"'after' is only valid for insert fragments, not {self.mode.value}"
            raise ValueError(msg)


@dataclass
class Contribution:
    """One fragment under a (file, selector), with its reference count."""

    fragment: Fragment
    count: int = 1
    # State captured when the fragment was grafted; consumed by prune.
    restore: dict[str, Any] | None = None

    @property
    def xml(self) -> str:
        return self.fragment.xml

    @property
    def mode(self) -> Mode:
        return self.fragment.mode

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Contribution:
        if not isinstance(d, dict) or "xml" not in d:
            msg = f"Malformed munge entry: {d!r}"
            raise FormatError(msg)
        try:
            count = int(d.get("count", 1))
        except (TypeError, ValueError):
            msg = f"Malformed munge count: {d.get('count')!r}"
            raise FormatError(msg) from None
        try:
            fragment = Fragment(xml=d["xml"], mode=Mode.parse(d.get("mode")), after=d.get("after"))
        except ValueError as exc:
            raise FormatError(str(exc)) from exc
        return cls(fragment=fragment, count=count, restore=d.get("restore"))

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"xml": self.fragment.xml, "count": self.count}
        mode = self.fragment.mode.persisted()
        if mode:
            d["mode"] = mode
        if self.fragment.after:
            d["after"] = self.fragment.after
        if self.restore is not None:
            d["restore"] = self.restore
        return d


@dataclass(frozen=True)
class ConfigChange:
    """A config-file edit declared by a plugin."""

    file: str
    selector: str
    fragment: Fragment

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> ConfigChange:
        return cls(
            file=d["file"],
            selector=d["selector"],
            fragment=Fragment(xml=d["xml"], mode=Mode.parse(d.get("mode")), after=d.get("after")),
        )


@dataclass
class JsModule:
    """A runtime module declared by a plugin."""

    src: str = ""
    name: str = ""
    clobbers: list[str] = field(default_factory=list)
    merges: list[str] = field(default_factory=list)
    runs: bool = False


@dataclass
class PluginInfo:
    """The parts of a plugin descriptor the state store needs."""

    id: str
    version: str = ""
    js_modules: list[JsModule] = field(default_factory=list)
    platform_js_modules: dict[str, list[JsModule]] = field(default_factory=dict)

    def get_js_modules(self, platform: str) -> list[JsModule]:
        """Common modules followed by the ones declared for platform."""
        return [*self.js_modules, *self.platform_js_modules.get(platform, [])]


@dataclass
class ModuleMetadata:
    """One entry of the generated runtime module manifest."""

    id: str
    file: str
    plugin_id: str
    clobbers: list[str] | None = None
    merges: list[str] | None = None
    runs: bool = False

    @classmethod
    def from_js_module(cls, plugin_id: str, module: JsModule) -> ModuleMetadata:
        if not plugin_id:
            msg = "plugin_id must be a valid plugin id"
            raise ValueError(msg)
        name = module.name
        if not name and module.src:
            m = _MODULE_NAME_RE.search(module.src)
            name = m.group(1) if m else ""
        if not name:
            msg = f"js-module of {plugin_id} has no name and none can be inferred from src {module.src!r}"
            raise ValueError(msg)
        return cls(
            id=f"{plugin_id}.{name}",
            file=f"plugins/{plugin_id}/{module.src}",
            plugin_id=plugin_id,
            clobbers=list(module.clobbers) or None,
            merges=list(module.merges) or None,
            runs=module.runs,
        )

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> ModuleMetadata:
        return cls(
            id=d["id"],
            file=d["file"],
            plugin_id=d.get("pluginId", ""),
            clobbers=d.get("clobbers"),
            merges=d.get("merges"),
            runs=bool(d.get("runs", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"id": self.id, "file": self.file, "pluginId": self.plugin_id}
        if self.clobbers:
            d["clobbers"] = list(self.clobbers)
        if self.merges:
            d["merges"] = list(self.merges)
        if self.runs:
            d["runs"] = True
        return d


@dataclass
class InstallItem:
    """Pending install work for the external prepare phase."""

    plugin: str
    vars: dict[str, Any] = field(default_factory=dict)
    top_level: bool = True
    force: bool = False

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> InstallItem:
        return cls(
            plugin=d["plugin"],
            vars=d.get("vars") or {},
            top_level=bool(d.get("topLevel", True)),
            force=bool(d.get("force", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"plugin": self.plugin, "vars": self.vars, "topLevel": self.top_level, "force": self.force}


@dataclass
class UninstallItem:
    """Pending uninstall work for the external prepare phase."""

    plugin: str
    top_level: bool = True

    @property
    def id(self) -> str:
        return self.plugin

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> UninstallItem:
        return cls(plugin=d.get("plugin") or d["id"], top_level=bool(d.get("topLevel", True)))

    def to_dict(self) -> dict[str, Any]:
        return {"plugin": self.plugin, "id": self.plugin, "topLevel": self.top_level}
