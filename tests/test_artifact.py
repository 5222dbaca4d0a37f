"""
Tests for Artifact

Tests cover:
- load failures (missing file, unknown format, unparsable)
- mode dispatch and dirty tracking
- dispatch errors naming file, selector and mode
- save
"""

import pytest

from confmunge.artifact import Artifact
from confmunge.errors import ArtifactLoadError, DispatchError, LocationError
from confmunge.models import Fragment, Mode

# ============================================================================
# Loading
# ============================================================================

class TestLoad:
    """Artifacts load eagerly and fail fast."""

    def test_loads_xml(self, project):
        artifact = Artifact(project, "AndroidManifest.xml")
        assert artifact.format == "xml"
        assert artifact.path == project / "AndroidManifest.xml"
        assert artifact.dirty is False
        assert set(vars(artifact)) == {"project_root", "path", "format", "editor", "dirty"}

    def test_missing_file(self, project):
        with pytest.raises(LocationError, match="Unable to find the targeted file"):
            Artifact(project, "res/xml/missing.xml")

    def test_missing_file_is_a_load_error(self, project):
        with pytest.raises(ArtifactLoadError):
            Artifact(project, "nope.plist")

    def test_unsupported_format(self, project):
        (project / "Info.plist").write_text("{}")
        with pytest.raises(ArtifactLoadError, match="no loader"):
            Artifact(project, "Info.plist")

    def test_unparsable(self, project):
        (project / "broken.xml").write_text("<root><unclosed></root>")
        with pytest.raises(ArtifactLoadError, match="Parsing"):
            Artifact(project, "broken.xml")

    def test_other_xml_extensions(self, project):
        (project / "Package.appxmanifest").write_text("<Package />")
        assert Artifact(project, "Package.appxmanifest").format == "xml"


# ============================================================================
# Graft / Prune
# ============================================================================

class TestGraft:
    """Dispatch on fragment mode."""

    def test_insert_marks_dirty(self, project):
        artifact = Artifact(project, "manifest.xml")
        assert artifact.graft("/root", Fragment("<perm />")) == {"inserted": True}
        assert artifact.dirty
        assert artifact.editor.root.find("perm") is not None

    def test_merge_returns_restore_state(self, project):
        artifact = Artifact(project, "manifest.xml")
        restore = artifact.graft("/root", Fragment("<perm />", Mode.MERGE))
        assert restore == {"kids": [{"appended": True}]}

        artifact.prune("/root", Fragment("<perm />", Mode.MERGE), restore)
        assert artifact.editor.root.find("perm") is None

    def test_remove_round_trip(self, project):
        artifact = Artifact(project, "res/xml/config.xml")
        fragment = Fragment('<preference name="B" />', Mode.REMOVE)
        restore = artifact.graft("/widget", fragment)
        assert [p.get("name") for p in artifact.editor.find_all("preference")] == ["A"]

        artifact.prune("/widget", fragment, restore)
        assert [p.get("name") for p in artifact.editor.find_all("preference")] == ["A", "B"]

    def test_overwrite_round_trip(self, project):
        artifact = Artifact(project, "res/xml/config.xml")
        fragment = Fragment('<feature name="G" />', Mode.OVERWRITE)
        restore = artifact.graft("/widget/feature", fragment)
        assert artifact.editor.find("feature").get("name") == "G"

        artifact.prune("/widget/feature", fragment, restore)
        assert artifact.editor.find("feature").get("name") == "F"

    @pytest.mark.parametrize("mode", [Mode.MERGE, Mode.OVERWRITE, Mode.REMOVE])
    def test_missing_target_is_a_dispatch_error(self, project, mode):
        artifact = Artifact(project, "res/xml/config.xml")
        with pytest.raises(DispatchError) as exc_info:
            artifact.graft("/widget/missing", Fragment("<x />", mode))

        err = exc_info.value
        assert err.selector == "/widget/missing"
        assert err.mode == mode.value
        assert "config.xml" in str(err)
        assert "/widget/missing" in str(err)
        assert mode.value in str(err)
        assert artifact.dirty is False

    def test_insert_under_wrong_root_is_a_dispatch_error(self, project):
        artifact = Artifact(project, "manifest.xml")
        with pytest.raises(DispatchError):
            artifact.graft("/widget", Fragment("<x />"))

    def test_prune_missing_target_is_a_dispatch_error(self, project):
        artifact = Artifact(project, "manifest.xml")
        with pytest.raises(DispatchError):
            artifact.prune("/root/none", Fragment("<x />"))

    def test_bad_fragment_is_a_dispatch_error(self, project):
        artifact = Artifact(project, "manifest.xml")
        with pytest.raises(DispatchError):
            artifact.graft("/root", Fragment("<unclosed>"))


# ============================================================================
# Save
# ============================================================================

class TestSave:
    """Write-back clears the dirty flag."""

    def test_save_writes_and_clears_dirty(self, project):
        artifact = Artifact(project, "manifest.xml")
        artifact.graft("/root", Fragment("<perm />"))
        artifact.save()

        assert artifact.dirty is False
        assert "<perm />" in (project / "manifest.xml").read_text()

    def test_save_when_clean_still_writes(self, project):
        path = project / "simple.xml"
        path.write_text("<root><a/></root>")
        artifact = Artifact(project, "simple.xml")
        artifact.save()
        assert path.read_text().startswith("<?xml")
