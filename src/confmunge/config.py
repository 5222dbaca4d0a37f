"""ConfmungeConfig: project-local settings for a host project.

Default layout (all relative to the project root):

    confmunge.toml              # this config (git-tracked)
    platforms/<platform>/       # platform project whose config files get munged
    plugins/
        <platform>.json         # persisted plugin state + config munge

confmunge.toml example:

    [project]
    platform = "android"
    # platform_root = "platforms/android"   # default
    # plugins_dir = "plugins"               # default

    [artifacts]
    indent = 4

    [metadata]
    # destination = "platforms/android/assets/www/cordova_plugins.js"
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

_CONFIG_FILENAME = "confmunge.toml"
_DEFAULT_PLATFORM = "android"
_DEFAULT_PLUGINS_DIR = "plugins"
_DEFAULT_INDENT = 4


@dataclass
class ArtifactsConfig:
    indent: int = _DEFAULT_INDENT   # spaces per level when artifacts are written back


@dataclass
class MetadataConfig:
    destination: Path | None = None   # where `confmunge metadata --write` puts the module manifest


@dataclass
class ConfmungeConfig:
    """Resolved configuration for a host project."""

    root: Path                      # directory that contains confmunge.toml
    platform: str = _DEFAULT_PLATFORM
    platform_root: Path = field(default_factory=Path)
    plugins_dir: Path = field(default_factory=Path)
    artifacts: ArtifactsConfig = field(default_factory=ArtifactsConfig)
    metadata: MetadataConfig = field(default_factory=MetadataConfig)

    @property
    def state_path(self) -> Path:
        return self.plugins_dir / f"{self.platform}.json"


def load_config(root: Path | str | None = None, platform: str | None = None) -> ConfmungeConfig:
    """Load confmunge.toml from root (or search upward from cwd if root is None).

    platform overrides [project].platform; platform_root follows it unless set explicitly.
    """
    root_path = _find_root(Path(root) if root else Path.cwd())
    config_path = root_path / _CONFIG_FILENAME

    raw: dict[str, Any] = {}
    if config_path.exists():
        with config_path.open("rb") as f:
            raw = tomllib.load(f)

    project = raw.get("project", {})
    art_section = raw.get("artifacts", {})
    meta_section = raw.get("metadata", {})

    platform_id = platform or str(project.get("platform", _DEFAULT_PLATFORM))
    platform_rel = project.get("platform_root", f"platforms/{platform_id}")
    plugins_rel = project.get("plugins_dir", _DEFAULT_PLUGINS_DIR)
    destination = meta_section.get("destination")

    return ConfmungeConfig(
        root=root_path,
        platform=platform_id,
        platform_root=root_path / platform_rel,
        plugins_dir=root_path / plugins_rel,
        artifacts=ArtifactsConfig(
            indent=int(art_section.get("indent", _DEFAULT_INDENT)),
        ),
        metadata=MetadataConfig(
            destination=root_path / destination if destination else None,
        ),
    )


def _find_root(start: Path) -> Path:
    """Walk upward from start looking for confmunge.toml."""
    for directory in (start, *start.parents):
        if (directory / _CONFIG_FILENAME).exists():
            return directory
    return start


def init_config(root: Path, platform: str | None = None) -> Path:
    """Write a default confmunge.toml at root. Raises if already exists."""
    config_path = root / _CONFIG_FILENAME
    if config_path.exists():
        msg = f"confmunge.toml already exists at {config_path}"
        raise FileExistsError(msg)

    platform_id = platform or _DEFAULT_PLATFORM
    content = f"""\
[project]
platform = "{platform_id}"
# platform_root = "platforms/{platform_id}"   # default
# plugins_dir = "plugins"                     # default; holds {platform_id}.json

# [artifacts]
# indent = 4   # spaces per level when config files are written back

# [metadata]
# destination = "platforms/{platform_id}/assets/www/cordova_plugins.js"
"""
    config_path.write_text(content)
    return config_path
