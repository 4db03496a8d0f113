"""Chrome extension: manifest fields, popup config, toolbar icons."""
import logging
from pathlib import Path
from typing import Optional

from packager.builders.base import PackagedArtifact, SkeletonBuilder
from packager.core.icons import IconOutcome
from packager.core.patcher import patch_json_file
from packager.core.repack import pack_zip
from packager.io.schema import BuildConfig, Platform

logger = logging.getLogger(__name__)

ARCHIVE_PREFIX = "googleplugin"

POPUP_WIDTH = 360
POPUP_HEIGHT = 520
POPUP_TEXT = {
    "loadingText": "Loading...",
    "timeoutText": "Loading timed out. Refresh or open the full site.",
    "openFullText": "Open full site",
}


def popup_config(config: BuildConfig) -> dict:
    return {
        "targetUrl": config.url,
        "popup": {"width": POPUP_WIDTH, "height": POPUP_HEIGHT, **POPUP_TEXT},
    }


class ChromeExtensionBuilder(SkeletonBuilder):
    platform = Platform.CHROME_EXTENSION

    def configure(self, root: Path, config: BuildConfig) -> None:
        patch_json_file(
            root / "manifest.json",
            {
                "name": config.app_name,
                "version": config.version_name,
                "description": config.description or config.app_name,
                "action.default_title": config.app_name,
                "__config": popup_config(config),
            },
            required=True,
            root=root,
        )

    def apply_icons(self, root: Path, icon: Optional[bytes], build_id: str) -> IconOutcome:
        if icon is not None:
            (root / "icons").mkdir(exist_ok=True)
        return super().apply_icons(root, icon, build_id)

    def package(self, ws: Path, root: Path, config: BuildConfig, build_id: str) -> PackagedArtifact:
        data = pack_zip(ws, prefix=ARCHIVE_PREFIX, project=root)
        return PackagedArtifact(data, self.profile.output_path(build_id))
