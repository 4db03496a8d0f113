"""Android source bundle: appConfig.json, manifest version, launcher icons."""
import logging
from pathlib import Path
from typing import Optional

from packager.builders.base import SkeletonBuilder
from packager.core.icons import IconOutcome
from packager.core.patcher import patch_json_file, patch_xml_attribute, write_privacy_policy
from packager.exceptions import ConfigPatchError
from packager.io.schema import BuildConfig, Platform
from packager.policy.platforms import ANDROID_RES

logger = logging.getLogger(__name__)

MAIN_DIR = Path("app", "src", "main")
APP_CONFIG = MAIN_DIR / "assets" / "appConfig.json"
MANIFEST = MAIN_DIR / "AndroidManifest.xml"
PRIVACY = MAIN_DIR / "assets" / "privacy_policy.md"


class AndroidBuilder(SkeletonBuilder):
    platform = Platform.ANDROID

    def configure(self, root: Path, config: BuildConfig) -> None:
        updates = {
            "general.initialUrl": config.url,
            "general.appName": config.app_name,
            "general.androidVersionName": config.version_name,
            "general.androidVersionCode": config.version_number,
        }
        if config.package_name:
            updates["general.androidPackageName"] = config.package_name
        patch_json_file(root / APP_CONFIG, updates, required=True, root=root)

        patch_xml_attribute(
            root / MANIFEST, "android:versionName", config.version_name, required=False, root=root
        )
        if write_privacy_policy(root / PRIVACY, config.privacy_policy):
            logger.info("Wrote privacy policy to %s", PRIVACY)

    def apply_icons(self, root: Path, icon: Optional[bytes], build_id: str) -> IconOutcome:
        if icon is not None and not (root / ANDROID_RES).is_dir():
            raise ConfigPatchError(ANDROID_RES, f"Resource directory not found: {ANDROID_RES}")
        return super().apply_icons(root, icon, build_id)
