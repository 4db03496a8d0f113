"""
Platform profiles — every per-platform knob in one place.

Builders contain the patching logic; which skeleton to fetch, how to
recognize its root, which icons to render and how long a build may
take are profile data, not code.
"""
import re
from dataclasses import dataclass
from typing import Optional

from packager.core.icons import ADAPTIVE_SAFE_ZONE, IconSpec
from packager.core.locator import Marker, all_of, any_of, has_dir, has_file, name_endswith
from packager.io.schema import Platform

LOCAL_TIMEOUT = 60.0
DESKTOP_TIMEOUT = 90.0
HARMONY_SAFE_ZONE = 0.66


@dataclass(frozen=True)
class PlatformProfile:
    """How one platform's skeleton is fetched, located and packaged."""

    platform: Platform
    skeleton_path: str
    archive_format: str               # zip | tar.gz | exe
    output_name: str                  # may contain {safe}
    marker: Optional[Marker] = None
    icon_specs: tuple[IconSpec, ...] = ()
    timeout_seconds: float = LOCAL_TIMEOUT
    max_depth: int = 3
    icon_failure_fatal: bool = False

    def output_path(self, build_id: str, safe_name: str = "App") -> str:
        return f"builds/{build_id}/{self.output_name.format(safe=safe_name)}"


# ── Safe file names ──────────────────────────────────────────────────────────

def safe_name(name: str, keep_spaces: bool = False) -> str:
    """ASCII alphanumerics and CJK ideographs only; ``App`` if nothing is left."""
    pattern = r"[^a-zA-Z0-9\u4e00-\u9fa5\s]" if keep_spaces else r"[^a-zA-Z0-9\u4e00-\u9fa5]"
    cleaned = re.sub(pattern, "", name).strip()
    return cleaned or "App"


def executable_name(name: str) -> str:
    """Lower-case, whitespace collapsed to ``-`` (Linux launcher name)."""
    return re.sub(r"\s+", "-", safe_name(name, keep_spaces=True)).lower()


# ── Icon tables ──────────────────────────────────────────────────────────────

ANDROID_RES = "app/src/main/res"

# density, launcher, foreground, splash, actionbar
ANDROID_DENSITIES = (
    ("mdpi", 48, 108, 180, 24),
    ("hdpi", 72, 162, 270, 36),
    ("xhdpi", 96, 216, 360, 48),
    ("xxhdpi", 144, 324, 540, 72),
    ("xxxhdpi", 192, 432, 720, 96),
)


def _android_icons() -> tuple[IconSpec, ...]:
    specs = []
    for density, launcher, foreground, splash, actionbar in ANDROID_DENSITIES:
        mipmap = f"{ANDROID_RES}/mipmap-{density}"
        mipmap_night = f"{ANDROID_RES}/mipmap-night-{density}"
        drawable = f"{ANDROID_RES}/drawable-{density}"
        drawable_night = f"{ANDROID_RES}/drawable-night-{density}"
        specs += [
            IconSpec(mipmap, "ic_launcher.png", launcher),
            IconSpec(mipmap, "ic_launcher_foreground.png", foreground, safe_zone=ADAPTIVE_SAFE_ZONE),
            IconSpec(drawable, "splash.png", splash, safe_zone=ADAPTIVE_SAFE_ZONE),
            IconSpec(drawable_night, "splash.png", splash, safe_zone=ADAPTIVE_SAFE_ZONE),
            IconSpec(mipmap, "ic_sidebar_logo.png", launcher),
            IconSpec(mipmap_night, "ic_sidebar_logo.png", launcher),
            IconSpec(drawable, "ic_actionbar.png", actionbar),
            IconSpec(drawable_night, "ic_actionbar.png", actionbar),
        ]
    return tuple(specs)


IOS_ASSETS = "LeanIOS/Images.xcassets"
IOS_APP_ICON_SIZES = (29, 40, 58, 76, 80, 120, 152, 167, 180, 1024)


def _ios_icons() -> tuple[IconSpec, ...]:
    specs = [
        IconSpec(f"{IOS_ASSETS}/AppIcon.appiconset", f"icon-{size}.png", size, background="opaque")
        for size in IOS_APP_ICON_SIZES
    ]
    specs += [
        IconSpec(f"{IOS_ASSETS}/LaunchCenter.imageset", name, 200)
        for name in ("2x.png", "2xDark.png")
    ]
    for variant in ("header", "headerDark"):
        specs += [
            IconSpec(f"{IOS_ASSETS}/HeaderImage.imageset", f"{variant}{suffix}.png", size)
            for suffix, size in (("", 60), ("@2x", 120), ("@3x", 180))
        ]
    return tuple(specs)


HARMONY_ENTRY_MEDIA = "entry/src/main/resources/base/media"
HARMONY_APPSCOPE_MEDIA = "AppScope/resources/base/media"

HARMONY_ICONS = (
    IconSpec(HARMONY_ENTRY_MEDIA, "icon.png", 256),
    IconSpec(HARMONY_ENTRY_MEDIA, "startIcon.png", 256),
    IconSpec(HARMONY_ENTRY_MEDIA, "foreground.png", 1024, safe_zone=HARMONY_SAFE_ZONE),
    IconSpec(HARMONY_APPSCOPE_MEDIA, "foreground.png", 1024, safe_zone=HARMONY_SAFE_ZONE),
)
# Solid-white adaptive backgrounds, written alongside the foregrounds.
HARMONY_BACKGROUNDS = (
    IconSpec(HARMONY_ENTRY_MEDIA, "background.png", 1024, background="opaque"),
    IconSpec(HARMONY_APPSCOPE_MEDIA, "background.png", 1024, background="opaque"),
)

CHROME_ICONS = tuple(
    IconSpec("icons", f"icon{size}.png", size, fit="cover") for size in (16, 48, 128)
) + (IconSpec("icons", "icon.png", 1024, fit="cover"),)

LINUX_ICONS = (IconSpec("resources", "icon.png", 512, fit="cover"),)


# ── Profiles ─────────────────────────────────────────────────────────────────

PROFILES: dict[Platform, PlatformProfile] = {
    Platform.ANDROID: PlatformProfile(
        platform=Platform.ANDROID,
        skeleton_path="Android/android.zip",
        archive_format="zip",
        output_name="android-source.zip",
        marker=all_of(has_dir("app"), has_dir("app", "src", "main")),
        icon_specs=_android_icons(),
    ),
    Platform.IOS: PlatformProfile(
        platform=Platform.IOS,
        skeleton_path="IOS/ios.zip",
        archive_format="zip",
        output_name="ios-source.zip",
        marker=has_file("LeanIOS", "appConfig.json"),
        icon_specs=_ios_icons(),
    ),
    Platform.WINDOWS: PlatformProfile(
        platform=Platform.WINDOWS,
        skeleton_path="WindowsApp/tauri-shell.exe",
        archive_format="exe",
        output_name="{safe}.exe",
        timeout_seconds=DESKTOP_TIMEOUT,
    ),
    Platform.MACOS: PlatformProfile(
        platform=Platform.MACOS,
        skeleton_path="MacOSApp/tauri-shell.app.zip",
        archive_format="zip",
        output_name="{safe}.app.zip",
        marker=name_endswith(".app"),
        timeout_seconds=DESKTOP_TIMEOUT,
        max_depth=1,
    ),
    Platform.LINUX: PlatformProfile(
        platform=Platform.LINUX,
        skeleton_path="LinuxApp/tauri-shell.tar.gz",
        archive_format="tar.gz",
        output_name="{safe}.tar.gz",
        marker=any_of(has_file("tauri-shell"), has_dir("resources")),
        icon_specs=LINUX_ICONS,
        timeout_seconds=DESKTOP_TIMEOUT,
        max_depth=1,
    ),
    Platform.CHROME_EXTENSION: PlatformProfile(
        platform=Platform.CHROME_EXTENSION,
        skeleton_path="GooglePlugin/googleplugin.zip",
        archive_format="zip",
        output_name="chrome-extension.zip",
        marker=has_file("manifest.json"),
        icon_specs=CHROME_ICONS,
    ),
    Platform.WECHAT: PlatformProfile(
        platform=Platform.WECHAT,
        skeleton_path="WeChat/wechat.zip",
        archive_format="zip",
        output_name="wechat-source.zip",
        marker=has_file("app.json"),
    ),
    Platform.HARMONYOS: PlatformProfile(
        platform=Platform.HARMONYOS,
        skeleton_path="HarmonyOS/harmonyos.zip",
        archive_format="zip",
        output_name="harmonyos-source.zip",
        marker=all_of(has_dir("entry"), has_dir("AppScope"), has_dir("entry", "src", "main")),
        icon_specs=HARMONY_ICONS,
    ),
    Platform.ANDROID_APK: PlatformProfile(
        platform=Platform.ANDROID_APK,
        skeleton_path="Android/android.zip",
        archive_format="zip",
        output_name="app-release.apk",
        marker=all_of(has_dir("app"), has_dir("app", "src", "main")),
        icon_specs=_android_icons(),
        timeout_seconds=3600.0,
    ),
}


def get_profile(platform: Platform) -> PlatformProfile:
    return PROFILES[Platform(platform)]
