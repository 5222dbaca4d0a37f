"""
Tests for MungeSession

Tests cover:
- count-gated graft and prune across several contributors
- rollback when a graft fails
- uninstall in a later session using the persisted restore state
- reapply after the platform files were regenerated
- save ordering and plugin bookkeeping
"""

import json

import pytest

from confmunge.cache import ArtifactCache
from confmunge.errors import DispatchError, LocationError
from confmunge.models import ConfigChange, Fragment, JsModule, Mode, PluginInfo
from confmunge.session import MungeSession

PERM = ConfigChange("manifest.xml", "/root", Fragment("<perm />", Mode.MERGE))


@pytest.fixture
def session(project, plugins_dir):
    return MungeSession(project, "android", plugins_dir)


def _perms(project):
    return (project / "manifest.xml").read_text().count("<perm />")


# ============================================================================
# Reference Counting
# ============================================================================

class TestSharedContribution:
    """Two plugins asking for the same edit."""

    def test_graft_once_prune_at_zero(self, session, project):
        assert session.add_config_change(PERM) == 1
        artifact = session.artifact("manifest.xml")
        assert artifact.dirty
        session.save_all()
        assert _perms(project) == 1

        assert session.add_config_change(PERM) == 2
        assert artifact.dirty is False
        session.save_all()
        assert _perms(project) == 1

        assert session.remove_config_change(PERM) == 1
        assert artifact.dirty is False
        assert artifact.editor.root.find("perm") is not None

        assert session.remove_config_change(PERM) == 0
        assert artifact.dirty
        session.save_all()
        assert _perms(project) == 0
        assert session.change_set.is_empty

    def test_insert_is_count_gated(self, session):
        change = ConfigChange("simple.xml", "/root", Fragment("<d />"))
        session.add_config_change(change)
        session.add_config_change(change)
        root = session.artifact("simple.xml").editor.root
        assert [kid.tag for kid in root] == ["a", "b", "c", "d"]

        session.remove_config_change(change)
        assert root.find("d") is not None
        session.remove_config_change(change)
        assert root.find("d") is None

    def test_remove_never_added(self, session):
        assert session.remove_config_change(PERM) == 0
        assert len(session.cache) == 0

    def test_failed_graft_leaves_no_count(self, session):
        bad = ConfigChange("res/xml/config.xml", "/widget/missing", Fragment("<x />", Mode.OVERWRITE))
        with pytest.raises(DispatchError):
            session.add_config_change(bad)
        assert session.change_set.count(bad.file, bad.selector, bad.fragment) == 0
        assert session.change_set.is_empty

    def test_missing_file_propagates(self, session):
        with pytest.raises(LocationError, match="Unable to find the targeted file"):
            session.add_config_change(ConfigChange("missing.xml", "/root", Fragment("<x />")))
        assert session.change_set.is_empty


# ============================================================================
# Persistence Across Sessions
# ============================================================================

class TestAcrossSessions:
    """Munge state written by one session drives the next."""

    def test_uninstall_uses_persisted_restore(self, project, plugins_dir):
        change = ConfigChange("res/xml/config.xml", "/widget", Fragment('<preference name="A" value="9" />', Mode.MERGE))
        first = MungeSession(project, "android", plugins_dir)
        first.add_config_change(change)
        first.save_all()
        assert 'value="9"' in (project / "res" / "xml" / "config.xml").read_text()

        saved = json.loads((plugins_dir / "android.json").read_text())
        entry = saved["config_munge"]["files"]["res/xml/config.xml"]["/widget"][0]
        assert entry["mode"] == "merge"
        assert entry["restore"] == {"kids": [{"merged": {"attrib": {"name": "A", "value": "1"}, "kids": []}}]}

        second = MungeSession(project, "android", plugins_dir)
        assert second.remove_config_change(change) == 0
        second.save_all()
        text = (project / "res" / "xml" / "config.xml").read_text()
        assert 'value="9"' not in text
        assert '<preference name="A" value="1" />' in text

    def test_reapply_after_platform_reset(self, project, plugins_dir):
        first = MungeSession(project, "android", plugins_dir)
        first.add_config_change(ConfigChange("manifest.xml", "/root", Fragment("<perm />")))
        first.add_config_change(ConfigChange("simple.xml", "/root", Fragment("<x />")))
        first.save_all()

        (project / "manifest.xml").write_text("<root />")
        second = MungeSession(project, "android", plugins_dir)
        assert second.reapply_all() == 2
        second.save_all()
        assert _perms(project) == 1
        assert "<x />" in (project / "simple.xml").read_text()

    def test_legacy_key_shares_artifact(self, project, plugins_dir):
        session = MungeSession(project, "android", plugins_dir)
        session.add_config_change(ConfigChange("config.xml", "/*", Fragment('<feature name="X" />')))
        assert session.artifact("res/xml/config.xml") is session.artifact("config.xml")
        assert len(session.cache) == 1


# ============================================================================
# Whole Plugins
# ============================================================================

class TestPlugins:
    """install_plugin / uninstall_plugin bookkeeping."""

    @pytest.fixture
    def plugin(self):
        return PluginInfo("cordova-plugin-x", "1.2.0", js_modules=[JsModule(src="www/x.js", clobbers=["x"])])

    def test_install_and_uninstall(self, session, project, plugin):
        changes = [PERM]
        session.install_plugin(plugin, changes, variables={"K": "v"})
        assert session.state.get_plugin_variables("cordova-plugin-x") == {"K": "v"}
        assert session.state.plugin_metadata == {"cordova-plugin-x": "1.2.0"}
        assert [m.id for m in session.state.modules] == ["cordova-plugin-x.x"]

        session.uninstall_plugin(plugin, changes)
        assert not session.state.is_plugin_installed("cordova-plugin-x")
        assert session.state.modules == []
        assert session.artifact("manifest.xml").editor.root.find("perm") is None

    def test_dependency_then_sibling(self, session, plugin):
        other = PluginInfo("cordova-plugin-y", "0.1.0")
        session.install_plugin(plugin, [PERM], top_level=False)
        session.install_plugin(other, [PERM])
        assert session.change_set.count(PERM.file, PERM.selector, PERM.fragment) == 2

        session.uninstall_plugin(plugin, [PERM], top_level=False)
        assert session.artifact("manifest.xml").editor.root.find("perm") is not None
        assert session.state.is_plugin_top_level("cordova-plugin-y")

    def test_save_all_writes_artifacts_then_state(self, session, project, plugins_dir, plugin):
        session.install_plugin(plugin, [PERM])
        written = session.save_all()
        assert [a.path.name for a in written] == ["manifest.xml"]
        saved = json.loads((plugins_dir / "android.json").read_text())
        assert saved["installed_plugins"] == {"cordova-plugin-x": {}}
        assert _perms(project) == 1

    def test_shared_cache(self, project, plugins_dir):
        cache = ArtifactCache()
        one = MungeSession(project, "android", plugins_dir, cache=cache)
        two = MungeSession(project, "android", plugins_dir, cache=cache)
        assert one.artifact("manifest.xml") is two.artifact("manifest.xml")


# ============================================================================
# Shared Selector
# ============================================================================

class TestSharedSelector:
    """Different plugins editing under one selector undo only their own edits."""

    MERGE_A = ConfigChange("res/xml/config.xml", "/widget", Fragment('<preference name="A" value="9" />', Mode.MERGE))
    INSERT_G = ConfigChange("res/xml/config.xml", "/widget", Fragment('<feature name="G" />'))

    def test_merge_prune_keeps_other_plugins_insert(self, session):
        session.add_config_change(self.MERGE_A)
        session.add_config_change(self.INSERT_G)

        session.remove_config_change(self.MERGE_A)
        root = session.artifact("res/xml/config.xml").editor.root
        assert session.change_set.count(self.INSERT_G.file, self.INSERT_G.selector, self.INSERT_G.fragment) == 1
        assert root.find("feature[@name='G']") is not None
        assert root.find("preference[@name='A']").get("value") == "1"

        session.remove_config_change(self.INSERT_G)
        assert root.find("feature[@name='G']") is None

    def test_overwrite_prune_keeps_other_plugins_insert(self, session):
        overwrite = ConfigChange("res/xml/config.xml", "/widget/feature", Fragment('<feature name="O" />', Mode.OVERWRITE))
        param = ConfigChange("res/xml/config.xml", "/widget/feature", Fragment('<param name="p" />'))
        session.add_config_change(overwrite)
        session.add_config_change(param)

        session.remove_config_change(overwrite)
        feature = session.artifact("res/xml/config.xml").editor.root.find("feature")
        assert feature.get("name") == "F"
        assert feature.find("param") is not None

    def test_merge_removal_keeps_comments(self, project, plugins_dir):
        path = project / "res" / "xml" / "config.xml"
        path.write_text(
            '<?xml version="1.0" encoding="utf-8"?>\n'
            '<widget id="com.example.app">\n'
            "    <!-- keep me -->\n"
            '    <preference name="A" value="1" />\n'
            "</widget>\n",
        )
        session = MungeSession(project, "android", plugins_dir)
        session.add_config_change(self.MERGE_A)
        session.remove_config_change(self.MERGE_A)
        session.save_all()
        text = path.read_text()
        assert "<!-- keep me -->" in text
        assert '<preference name="A" value="1" />' in text

    def test_preexisting_node_survives_install_and_uninstall(self, session, project):
        already_there = ConfigChange("res/xml/config.xml", "/widget", Fragment('<feature name="F" />'))
        session.add_config_change(already_there)
        session.remove_config_change(already_there)
        session.save_all()
        assert '<feature name="F" />' in (project / "res" / "xml" / "config.xml").read_text()

    def test_preexisting_node_survives_uninstall_in_later_session(self, project, plugins_dir):
        already_there = ConfigChange("res/xml/config.xml", "/widget", Fragment('<feature name="F" />'))
        first = MungeSession(project, "android", plugins_dir)
        first.add_config_change(already_there)
        first.save_all()

        second = MungeSession(project, "android", plugins_dir)
        second.remove_config_change(already_there)
        second.save_all()
        assert '<feature name="F" />' in (project / "res" / "xml" / "config.xml").read_text()
