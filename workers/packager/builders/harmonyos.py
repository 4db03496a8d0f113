"""HarmonyOS project: app.json5, rawfile config, string resources, media."""
import logging
from pathlib import Path
from typing import Optional

from packager.builders.base import SkeletonBuilder
from packager.core.icons import IconOutcome, IconOutcomeKind, solid_image
from packager.core.patcher import (
    patch_json5_file,
    patch_json_file,
    patch_string_resource,
    write_privacy_policy,
)
from packager.io.schema import BuildConfig, Platform
from packager.policy.platforms import HARMONY_BACKGROUNDS

logger = logging.getLogger(__name__)

MAIN_DIR = Path("entry", "src", "main")
RAWFILE = MAIN_DIR / "resources" / "rawfile"
APP_JSON5 = Path("AppScope", "app.json5")
APP_STRINGS = Path("AppScope", "resources", "base", "element", "string.json")
ENTRY_STRINGS = MAIN_DIR / "resources" / "base" / "element" / "string.json"


class HarmonyOSBuilder(SkeletonBuilder):
    platform = Platform.HARMONYOS

    def configure(self, root: Path, config: BuildConfig) -> None:
        raw_updates = {
            "versionName": config.version_name,
            "versionCode": config.version_number,
        }
        if config.package_name:
            raw_updates["bundleName"] = config.package_name

        patch_json_file(
            root / RAWFILE / "appConfig.json",
            {f"general.{key}": value for key, value in raw_updates.items()},
            required=False,
            root=root,
        )
        patch_json5_file(root / APP_JSON5, raw_updates, required=True, root=root)

        patch_string_resource(root / APP_STRINGS, {"app_name": config.app_name}, root=root)
        patch_string_resource(root / ENTRY_STRINGS, {"EntryAbility_label": config.app_name}, root=root)

        write_privacy_policy(root / RAWFILE / "privacy_policy.md", config.privacy_policy)

    def apply_icons(self, root: Path, icon: Optional[bytes], build_id: str) -> IconOutcome:
        outcome = super().apply_icons(root, icon, build_id)
        if outcome.kind is not IconOutcomeKind.OK:
            return outcome

        written = outcome.written
        for spec in HARMONY_BACKGROUNDS:
            target_dir = root / spec.relative_dir
            if not target_dir.is_dir():
                continue
            try:
                solid_image(spec.size).save(target_dir / spec.file_name, format="PNG")
                written += 1
            except OSError as e:
                return IconOutcome.soft_failed(f"{spec.relative_path}: {e}", written)
        return IconOutcome.ok(written)
