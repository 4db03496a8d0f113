"""
test_repack — archive entries carry explicit modes.
"""
from pathlib import PurePosixPath

import pytest

from conftest import read_tar_gz, read_zip, zip_modes
from packager.core.repack import (
    bundle_rule,
    launcher_rule,
    pack_tar_gz,
    pack_zip,
    repackage,
)
from packager.exceptions import RepackagingError


@pytest.fixture
def tree(tmp_path):
    root = tmp_path / "tree"
    (root / "resources").mkdir(parents=True)
    (root / "install.sh").write_text("#!/bin/sh\n")
    (root / "readme.txt").write_text("hello")
    (root / "my-app").write_bytes(b"\x7fELF")
    (root / "resources" / "app-config.json").write_text("{}")
    # on-disk modes must not leak into the archive
    (root / "install.sh").chmod(0o600)
    (root / "readme.txt").chmod(0o777)
    return root


class TestPackZip:

    def test_modes_and_prefix(self, tree):
        data = pack_zip(tree, prefix="My App", rule=launcher_rule("my-app"))
        modes = zip_modes(data)

        assert modes["My App/install.sh"] == 0o755
        assert modes["My App/my-app"] == 0o755
        assert modes["My App/readme.txt"] == 0o644
        assert modes["My App/resources/app-config.json"] == 0o644
        assert modes["My App/resources/"] == 0o755

    def test_sorted_and_complete(self, tree):
        names = list(read_zip(pack_zip(tree)))
        assert names == sorted(names)
        assert "resources/app-config.json" in names

    def test_bundle_rule(self):
        assert bundle_rule(PurePosixPath("Contents/MacOS/tauri-shell"))
        assert not bundle_rule(PurePosixPath("Contents/Resources/app-config.json"))
        assert not bundle_rule(PurePosixPath("Contents/Info.plist"))


class TestPackTarGz:

    def test_modes(self, tree):
        members = read_tar_gz(pack_tar_gz(tree, prefix="MyApp", rule=launcher_rule("my-app")))

        assert members["MyApp/install.sh"][1] == 0o755
        assert members["MyApp/my-app"] == (b"\x7fELF", 0o755)
        assert members["MyApp/readme.txt"][1] == 0o644


class TestRepackage:

    def test_unknown_format(self, tree):
        with pytest.raises(RepackagingError, match="Unsupported"):
            repackage(tree, "rar")

    def test_default_rule_only_marks_install_scripts(self, tree):
        modes = zip_modes(repackage(tree, "zip"))
        assert modes["install.sh"] == 0o755
        assert modes["my-app"] == 0o644


class TestWorkspaceLayout:

    @pytest.fixture
    def ws(self, tmp_path):
        ws = tmp_path / "ws"
        bundle = ws / "wrap" / "shell.app" / "Contents"
        bundle.mkdir(parents=True)
        (bundle / "Info.plist").write_text("<plist/>")
        (ws / "wrap" / "notes.txt").write_text("kept")
        (ws / "NOTICE.txt").write_text("kept")
        return ws

    def test_siblings_keep_their_paths(self, ws):
        names = set(read_zip(repackage(ws, "zip")))
        assert names == {"NOTICE.txt", "wrap/notes.txt", "wrap/shell.app/Contents/Info.plist"}

    def test_project_rehomed_under_prefix(self, ws):
        data = pack_zip(ws, prefix="My App.app", project=ws / "wrap" / "shell.app")
        entries = set(zip_modes(data))

        assert set(read_zip(data)) == {
            "NOTICE.txt",
            "wrap/notes.txt",
            "My App.app/Contents/Info.plist",
        }
        assert "My App.app/" in entries
        assert "wrap/shell.app/" not in entries

    def test_prefix_with_project_at_base(self, ws):
        members = read_tar_gz(pack_tar_gz(ws, prefix="App", project=ws))
        assert set(members) == {
            "App/NOTICE.txt",
            "App/wrap/notes.txt",
            "App/wrap/shell.app/Contents/Info.plist",
        }
