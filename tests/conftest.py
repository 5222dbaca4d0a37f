"""Shared fixtures: a throwaway platform project with a few config files."""

from pathlib import Path

import pytest

ANDROID_NS = "http://schemas.android.com/apk/res/android"

ANDROID_MANIFEST = f"""<?xml version="1.0" encoding="utf-8"?>
<manifest xmlns:android="{ANDROID_NS}" package="com.example.app">
    <application android:label="demo">
        <activity android:name="MainActivity" />
    </application>
</manifest>
"""

CONFIG_XML = """<?xml version="1.0" encoding="utf-8"?>
<widget id="com.example.app" version="1.0.0">
    <preference name="A" value="1" />
    <preference name="B" value="2" />
    <feature name="F" />
</widget>
"""

SIMPLE_XML = """<?xml version="1.0" encoding="utf-8"?>
<root>
    <a />
    <b />
    <c />
</root>
"""


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """platforms/android under tmp_path with AndroidManifest.xml, res/xml/config.xml, manifest.xml."""
    root = tmp_path / "platforms" / "android"
    (root / "res" / "xml").mkdir(parents=True)
    (root / "AndroidManifest.xml").write_text(ANDROID_MANIFEST)
    (root / "res" / "xml" / "config.xml").write_text(CONFIG_XML)
    (root / "manifest.xml").write_text('<?xml version="1.0" encoding="utf-8"?>\n<root />\n')
    (root / "simple.xml").write_text(SIMPLE_XML)
    return root


@pytest.fixture
def plugins_dir(tmp_path: Path) -> Path:
    return tmp_path / "plugins"
