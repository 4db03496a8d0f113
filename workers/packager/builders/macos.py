"""macOS app bundle: app-config.json, Info.plist, ICNS icon, zipped with modes."""
import json
import logging
from pathlib import Path
from typing import Optional

from packager.builders.base import PackagedArtifact, SkeletonBuilder
from packager.core.icns import build_icns
from packager.core.icons import IconOutcome, load_image, normalize
from packager.core.patcher import patch_plist
from packager.core.repack import bundle_rule, pack_zip
from packager.exceptions import IconGenerationError
from packager.io.schema import BuildConfig, Platform
from packager.policy.platforms import safe_name

logger = logging.getLogger(__name__)

CONTENTS = Path("Contents")
RESOURCES = CONTENTS / "Resources"
INFO_PLIST = CONTENTS / "Info.plist"
DEFAULT_ICNS = "AppIcon.icns"


def icns_target(bundle: Path) -> Path:
    """The bundle's existing ``.icns`` file, or ``AppIcon.icns``."""
    existing = sorted((bundle / RESOURCES).glob("*.icns"))
    return existing[0] if existing else bundle / RESOURCES / DEFAULT_ICNS


class MacOSBuilder(SkeletonBuilder):
    platform = Platform.MACOS

    def configure(self, root: Path, config: BuildConfig) -> None:
        resources = root / RESOURCES
        resources.mkdir(parents=True, exist_ok=True)
        (resources / "app-config.json").write_text(
            json.dumps({"url": config.url, "title": config.app_name}, indent=2, ensure_ascii=False),
            encoding="utf-8",
        )
        patch_plist(
            root / INFO_PLIST,
            {"CFBundleName": config.app_name, "CFBundleDisplayName": config.app_name},
            only_existing=frozenset({"CFBundleDisplayName"}),
            required=False,
            root=root,
        )

    def apply_icons(self, root: Path, icon: Optional[bytes], build_id: str) -> IconOutcome:
        if icon is None:
            return IconOutcome.skipped("no icon supplied")
        try:
            data = build_icns(normalize(load_image(icon)))
            target = icns_target(root)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except (IconGenerationError, OSError) as e:
            return IconOutcome.soft_failed(f"icns generation failed: {e}")
        logger.info("[build %s] wrote %s (%s bytes)", build_id, target.name, len(data))
        return IconOutcome.ok(1)

    def package(self, ws: Path, root: Path, config: BuildConfig, build_id: str) -> PackagedArtifact:
        name = safe_name(config.app_name, keep_spaces=True)
        data = pack_zip(ws, prefix=f"{name}.app", rule=bundle_rule, project=root)
        return PackagedArtifact(data, self.profile.output_path(build_id, name))
