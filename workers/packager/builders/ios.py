"""iOS Xcode project: appConfig.json, pbxproj build settings, asset catalogs."""
import logging
from pathlib import Path
from typing import Optional

from packager.builders.base import SkeletonBuilder
from packager.core.patcher import patch_json_file, patch_pbxproj, write_privacy_policy
from packager.io.schema import BuildConfig, Platform

logger = logging.getLogger(__name__)

APP_DIR = Path("LeanIOS")
APP_CONFIG = APP_DIR / "appConfig.json"
PRIVACY = APP_DIR / "privacy_policy.md"
LEGACY_PRIVACY = APP_DIR / "privacy_policy.txt"

# Only the app target's identifier is rewritten; test targets keep theirs.
SKELETON_BUNDLE_ID = r"co\.median\.ios\.[^;]+"


def find_pbxproj(root: Path) -> Optional[Path]:
    for candidate in sorted(root.glob("*.xcodeproj/project.pbxproj")):
        return candidate
    return None


def pbx_value(value: str) -> str:
    """Quote a build-setting value unless it is a bare identifier or number."""
    if value and all(c.isalnum() or c in "._-/" for c in value):
        return value
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class IOSBuilder(SkeletonBuilder):
    platform = Platform.IOS

    def configure(self, root: Path, config: BuildConfig) -> None:
        updates = {
            "general.initialUrl": config.url,
            "general.appName": config.app_name,
            "general.iosVersionString": config.version_name,
            "general.iosBuildNumber": config.version_number,
        }
        if config.package_name:
            updates["general.iosBundleId"] = config.package_name
        patch_json_file(root / APP_CONFIG, updates, required=True, root=root)

        pbxproj = find_pbxproj(root)
        if pbxproj is None:
            logger.warning("project.pbxproj not found, skipping build settings")
        else:
            settings = {
                "MARKETING_VERSION": pbx_value(config.version_name),
                "CURRENT_PROJECT_VERSION": str(config.version_number),
                "BUILD_SETTINGS_APP_NAME": pbx_value(config.app_name),
            }
            patterns = {}
            if config.package_name:
                settings["PRODUCT_BUNDLE_IDENTIFIER"] = pbx_value(config.package_name)
                patterns["PRODUCT_BUNDLE_IDENTIFIER"] = SKELETON_BUNDLE_ID
            patch_pbxproj(pbxproj, settings, patterns)

        write_privacy_policy(root / PRIVACY, config.privacy_policy, legacy=(root / LEGACY_PRIVACY,))
