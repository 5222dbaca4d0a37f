"""Reference-counted plugin edits to a host project's config files.

Three pieces work together:
    ChangeSet          file -> selector -> [Contribution]; how many plugins need each fragment
    ArtifactCache      one parsed Artifact per config file per run; flush writes only dirty ones
    PluginStateStore   plugins/<platform>.json: installed/dependent plugins, prepare queue,
                       runtime module metadata, and the ChangeSet itself

MungeSession ties them together for an install/uninstall batch:

    session = MungeSession(platform_root, "android", plugins_dir)
    session.install_plugin(info, [ConfigChange("AndroidManifest.xml", "/manifest",
                                               Fragment("<uses-permission android:name='X'/>"))])
    session.save_all()
"""

from confmunge.artifact import Artifact
from confmunge.cache import ArtifactCache
from confmunge.config import ConfmungeConfig, init_config, load_config
from confmunge.errors import ArtifactLoadError, ConfmungeError, DispatchError, FormatError, LocationError
from confmunge.models import ConfigChange, Contribution, Fragment, JsModule, Mode, ModuleMetadata, PluginInfo
from confmunge.munge import ChangeSet, migrate_legacy
from confmunge.session import MungeSession
from confmunge.state import PluginStateStore, generate_metadata

__all__ = [
    "Artifact",
    "ArtifactCache",
    "ArtifactLoadError",
    "ChangeSet",
    "ConfigChange",
    "ConfmungeConfig",
    "ConfmungeError",
    "Contribution",
    "DispatchError",
    "FormatError",
    "Fragment",
    "JsModule",
    "LocationError",
    "Mode",
    "ModuleMetadata",
    "MungeSession",
    "PluginInfo",
    "PluginStateStore",
    "generate_metadata",
    "init_config",
    "load_config",
    "migrate_legacy",
]
