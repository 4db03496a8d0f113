"""Linux tarball: app-config.json, icon, renamed launcher, explicit modes."""
import json
import logging
from pathlib import Path

from packager.builders.base import PackagedArtifact, SkeletonBuilder
from packager.core.repack import launcher_rule, pack_tar_gz
from packager.io.schema import BuildConfig, Platform
from packager.policy.platforms import executable_name, safe_name

logger = logging.getLogger(__name__)

SKELETON_LAUNCHER = "tauri-shell"
INSTALL_SCRIPT = "install.sh"
APP_NAME_PLACEHOLDER = "{{APP_NAME}}"


class LinuxBuilder(SkeletonBuilder):
    platform = Platform.LINUX

    def configure(self, root: Path, config: BuildConfig) -> None:
        resources = root / "resources"
        resources.mkdir(parents=True, exist_ok=True)
        (resources / "app-config.json").write_text(
            json.dumps({"url": config.url, "title": config.app_name}, indent=2, ensure_ascii=False),
            encoding="utf-8",
        )

        install = root / INSTALL_SCRIPT
        if install.is_file():
            script = install.read_text(encoding="utf-8")
            install.write_text(
                script.replace(APP_NAME_PLACEHOLDER, safe_name(config.app_name, keep_spaces=True)),
                encoding="utf-8",
            )

        launcher = root / SKELETON_LAUNCHER
        exe_name = executable_name(config.app_name)
        if launcher.is_file() and exe_name != SKELETON_LAUNCHER:
            launcher.rename(root / exe_name)
            logger.info("Renamed launcher to %s", exe_name)

    def package(self, ws: Path, root: Path, config: BuildConfig, build_id: str) -> PackagedArtifact:
        name = safe_name(config.app_name, keep_spaces=True)
        rule = launcher_rule(executable_name(config.app_name), SKELETON_LAUNCHER)
        data = pack_tar_gz(ws, prefix=name, rule=rule, project=root)
        return PackagedArtifact(data, self.profile.output_path(build_id, name))
