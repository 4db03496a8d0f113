"""
Shared pytest fixtures for packager tests.

Skeleton archives are assembled in memory for every platform and put
into a directory-backed storage, so builds run end-to-end without S3,
PostgreSQL or GitHub.  The Windows skeleton is a minimal PE32+ image
written with ``struct``; its version resource is installed with the
package's own resource writer.
"""
import io
import json
import plistlib
import struct
import tarfile
import zipfile

import httpx
import pytest
from PIL import Image

from packager.config import Settings
from packager.core.resources import RT_VERSION, ResourceTable, load_pe, write_resources
from packager.core.versioninfo import BINARY, TEXT, VersionNode, serialize_node
from packager.io.job_store import InMemoryJobStore
from packager.io.schema import BuildConfig
from packager.io.storage import LocalStorage
from packager.remote.downloads import ArtifactDownloads
from packager.remote.github_client import GitHubActionsClient
from packager.remote.rate_limiter import RateLimiter


# ── Archive helpers ──────────────────────────────────────────────────────────

def make_zip(files: dict, modes: dict = None) -> bytes:
    """Zip ``{name: bytes|str}``; names ending in ``/`` become directories."""
    modes = modes or {}
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        for name, content in files.items():
            info = zipfile.ZipInfo(name)
            if name in modes:
                info.create_system = 3
                info.external_attr = modes[name] << 16
            if isinstance(content, str):
                content = content.encode("utf-8")
            zf.writestr(info, content)
    return buf.getvalue()


def make_tar_gz(files: dict, modes: dict = None) -> bytes:
    modes = modes or {}
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tf:
        for name, content in files.items():
            if isinstance(content, str):
                content = content.encode("utf-8")
            info = tarfile.TarInfo(name)
            info.size = len(content)
            info.mode = modes.get(name, 0o644)
            tf.addfile(info, io.BytesIO(content))
    return buf.getvalue()


def read_zip(data: bytes) -> dict:
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        return {n: zf.read(n) for n in zf.namelist() if not n.endswith("/")}


def zip_modes(data: bytes) -> dict:
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        return {i.filename: (i.external_attr >> 16) & 0o777 for i in zf.infolist()}


def read_tar_gz(data: bytes) -> dict:
    with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as tf:
        return {
            m.name: (tf.extractfile(m).read(), m.mode & 0o777)
            for m in tf.getmembers() if m.isfile()
        }


def png(width: int = 300, height: int = 200, color=(220, 30, 30, 255)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGBA", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


# ── Minimal PE32+ ────────────────────────────────────────────────────────────

OPTIONAL_HEADER64 = struct.Struct("<HBBIIIIIQIIHHHHHHIIIIHHQQQQII")
SECTION = struct.Struct("<8sIIIIIIHHI")


def minimal_pe() -> bytes:
    """One ``.text`` section, no resources, no certificate."""
    out = bytearray(0x400)
    out[0:2] = b"MZ"
    struct.pack_into("<I", out, 0x3C, 0x40)
    out[0x40:0x44] = b"PE\x00\x00"
    struct.pack_into("<HHIIIHH", out, 0x44, 0x8664, 1, 0, 0, 0, OPTIONAL_HEADER64.size + 16 * 8, 0x0022)
    OPTIONAL_HEADER64.pack_into(
        out, 0x58,
        0x20B, 14, 0,
        0x200, 0, 0,
        0x1000, 0x1000,
        0x140000000,
        0x1000, 0x200,
        6, 0, 0, 0, 6, 0,
        0,
        0x2000, 0x200, 0,
        2, 0x8160,
        0x100000, 0x1000, 0x100000, 0x1000,
        0, 16,
    )
    section_table = 0x58 + OPTIONAL_HEADER64.size + 16 * 8
    SECTION.pack_into(out, section_table, b".text", 0x10, 0x1000, 0x200, 0x200, 0, 0, 0, 0, 0x60000020)
    out[0x200] = 0xC3
    return bytes(out)


def version_info(product: str = "tauri-shell") -> VersionNode:
    fixed = struct.pack("<I", 0xFEEF04BD) + b"\x00" * 48
    return VersionNode(
        key="VS_VERSION_INFO",
        value=fixed,
        value_type=BINARY,
        children=[
            VersionNode(key="StringFileInfo", value="", value_type=TEXT, children=[
                VersionNode(key="040904B0", value="", value_type=TEXT, children=[
                    VersionNode(key="ProductName", value=product, value_type=TEXT),
                    VersionNode(key="FileDescription", value=product, value_type=TEXT),
                    VersionNode(key="FileVersion", value="1.0.0", value_type=TEXT),
                ]),
            ]),
            VersionNode(key="VarFileInfo", value="", value_type=TEXT, children=[
                VersionNode(key="Translation", value=struct.pack("<HH", 0x0409, 1200)),
            ]),
        ],
    )


def shell_exe() -> bytes:
    """Minimal PE carrying a VS_VERSIONINFO resource."""
    exe = minimal_pe()
    table = ResourceTable()
    table.set(RT_VERSION, 1, 0x0409, serialize_node(version_info()))
    return write_resources(exe, load_pe(exe), table)


# ── Platform skeletons ───────────────────────────────────────────────────────

ANDROID_APP_CONFIG = {
    "general": {
        "initialUrl": "https://median.co",
        "appName": "Median",
        "androidPackageName": "co.median.android",
        "androidVersionName": "0.0.1",
        "androidVersionCode": 1,
        "userAgentAdd": "median",
    },
    "navigation": {"sidebarNavigation": {"enabled": False}},
}

MANIFEST = (
    '<?xml version="1.0" encoding="utf-8"?>\n'
    '<manifest xmlns:android="http://schemas.android.com/apk/res/android"\n'
    '    android:versionCode="1"\n'
    '    android:versionName="0.0.1">\n'
    '    <application android:label="@string/app_name" />\n'
    '</manifest>\n'
)

PBXPROJ = """\
// !$*UTF8*$!
{
    buildSettings = {
        BUILD_SETTINGS_APP_NAME = Median;
        CURRENT_PROJECT_VERSION = 1;
        MARKETING_VERSION = 1.0;
        PRODUCT_BUNDLE_IDENTIFIER = co.median.ios.skeleton;
    };
    buildSettings = {
        PRODUCT_BUNDLE_IDENTIFIER = com.example.UnitTests;
    };
}
"""

INFO_PLIST = plistlib.dumps({
    "CFBundleName": "tauri-shell",
    "CFBundleExecutable": "tauri-shell",
    "CFBundleIconFile": "icon.icns",
})

APP_JSON5 = """\
{
  // application scope
  "app": {
    "bundleName": "com.example.harmony",
    "vendor": "example",
    "versionCode": 1000000,
    "versionName": "1.0.0",
    "icon": "$media:app_icon",
    "label": "$string:app_name",
  }
}
"""

WECHAT_APP_CONFIG = """\
// appConfig.js
module.exports = {
  "general": {
    "initialUrl": "https://example.com",
    "appName": "Mini",
    "appId": "",
    "version": "0.0.1"
  },
  "login": {
    "enableWxLogin": false
  }
};
"""


def android_skeleton() -> bytes:
    base = "android-template/app/src/main"
    return make_zip({
        f"{base}/assets/appConfig.json": json.dumps(ANDROID_APP_CONFIG),
        f"{base}/AndroidManifest.xml": MANIFEST,
        f"{base}/res/mipmap-mdpi/ic_launcher.png": png(48, 48),
        f"{base}/res/mipmap-hdpi/ic_launcher.png": png(72, 72),
        f"{base}/res/drawable-mdpi/splash.png": png(180, 180),
        "android-template/gradlew": "#!/bin/sh\n",
    }, modes={"android-template/gradlew": 0o755})


def ios_skeleton() -> bytes:
    return make_zip({
        "median-ios/LeanIOS/appConfig.json": json.dumps({"general": {"appName": "Median"}}),
        "median-ios/LeanIOS/privacy_policy.txt": "old policy",
        "median-ios/LeanIOS.xcodeproj/project.pbxproj": PBXPROJ,
        "median-ios/LeanIOS/Images.xcassets/AppIcon.appiconset/Contents.json": "{}",
    })


def macos_skeleton() -> bytes:
    return make_zip({
        "tauri-shell.app/Contents/Info.plist": INFO_PLIST,
        "tauri-shell.app/Contents/MacOS/tauri-shell": b"\x7fELF-ish",
        "tauri-shell.app/Contents/Resources/icon.icns": b"icns\x00\x00\x00\x08",
    }, modes={"tauri-shell.app/Contents/MacOS/tauri-shell": 0o755})


def linux_skeleton() -> bytes:
    return make_tar_gz({
        "tauri-shell": b"\x7fELF",
        "install.sh": "#!/bin/sh\necho Installing {{APP_NAME}}\n",
        "resources/icon.png": png(64, 64),
        "README.txt": "readme",
    }, modes={"tauri-shell": 0o755, "install.sh": 0o755})


def chrome_skeleton() -> bytes:
    manifest = {
        "manifest_version": 3,
        "name": "Template",
        "version": "0.0.1",
        "action": {"default_popup": "popup.html", "default_title": "Template"},
    }
    return make_zip({
        "googleplugin/manifest.json": json.dumps(manifest),
        "googleplugin/popup.html": "<html></html>",
    })


def wechat_skeleton() -> bytes:
    return make_zip({
        "wechat/app.json": json.dumps({"pages": ["pages/index/index"]}),
        "wechat/appConfig.js": WECHAT_APP_CONFIG,
        "wechat/project.config.json": json.dumps({"appid": "touristappid", "projectname": "mini"}),
    })


def harmony_skeleton() -> bytes:
    strings = {"string": [{"name": "app_name", "value": "Template"}]}
    entry_strings = {"string": [
        {"name": "module_desc", "value": "module"},
        {"name": "EntryAbility_label", "value": "Template"},
    ]}
    return make_zip({
        "harmony/AppScope/app.json5": APP_JSON5,
        "harmony/AppScope/resources/base/element/string.json": json.dumps(strings),
        "harmony/AppScope/resources/base/media/app_icon.png": png(32, 32),
        "harmony/entry/src/main/resources/base/element/string.json": json.dumps(entry_strings),
        "harmony/entry/src/main/resources/base/media/icon.png": png(32, 32),
        "harmony/entry/src/main/resources/rawfile/appConfig.json": json.dumps(
            {"general": {"initialUrl": "https://example.com", "versionName": "0.0.1"}}
        ),
    })


SKELETONS = {
    "Android/android.zip": android_skeleton,
    "IOS/ios.zip": ios_skeleton,
    "WindowsApp/tauri-shell.exe": shell_exe,
    "MacOSApp/tauri-shell.app.zip": macos_skeleton,
    "LinuxApp/tauri-shell.tar.gz": linux_skeleton,
    "GooglePlugin/googleplugin.zip": chrome_skeleton,
    "WeChat/wechat.zip": wechat_skeleton,
    "HarmonyOS/harmonyos.zip": harmony_skeleton,
}


# ── Fixtures ─────────────────────────────────────────────────────────────────

@pytest.fixture
def job_store():
    return InMemoryJobStore()


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(tmp_path / "storage")


@pytest.fixture
def workspace_root(tmp_path):
    root = tmp_path / "workspaces"
    root.mkdir()
    return root


@pytest.fixture
def settings(workspace_root):
    return Settings(
        WORKSPACE_ROOT=str(workspace_root),
        GITHUB_TOKEN="test-token",
        GITHUB_OWNER="acme",
        GITHUB_APK_REPO="apk-builder",
        DISPATCH_SETTLE_SECONDS=0.0,
        POLL_INTERVAL_SECONDS=0.0,
        PUBLIC_BASE_URL="https://packager.example.com",
    )


@pytest.fixture
def source_icon():
    return png(300, 200)


@pytest.fixture
def skeleton_storage(storage, source_icon):
    """Storage pre-loaded with every platform skeleton and a source icon."""
    for path, factory in SKELETONS.items():
        storage.upload_file(path, factory())
    storage.upload_file("icons/source.png", source_icon)
    return storage


@pytest.fixture
def build_config():
    return BuildConfig(
        url="https://example.com/app",
        app_name="My App",
        package_name="com.example.myapp",
        version_name="2.3.4",
        version_code="42",
        privacy_policy="# Privacy\n\nWe collect nothing.",
        icon_path="icons/source.png",
        description="An example app",
        app_id="wx1234567890",
    )


# ── Fake GitHub Actions API ──────────────────────────────────────────────────

APK_MEMBER = "android/app/build/outputs/apk/release/app-release.apk"


class FakeGitHub:
    """``httpx.MockTransport`` handler for the workflow endpoints the client uses."""

    def __init__(
        self,
        build_id: str = "job-1",
        run_id: int = 77,
        statuses=("in_progress", "completed"),
        conclusion: str = "success",
        apk: bytes = b"APK-BYTES",
        remaining: int = 4000,
    ):
        self.build_id = build_id
        self.run_id = run_id
        self.statuses = list(statuses)
        self.conclusion = conclusion
        self.apk = apk
        self.remaining = remaining
        self.requests: list = []
        self.dispatched = None
        self.polls = 0
        self.downloads = 0
        self.fail_status: dict[str, int] = {}

    def _headers(self) -> dict:
        return {
            "x-ratelimit-limit": "5000",
            "x-ratelimit-remaining": str(self.remaining),
            "x-ratelimit-reset": "9999999999",
        }

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.requests.append(request)
        for suffix, code in self.fail_status.items():
            if path.endswith(suffix):
                return httpx.Response(code, json={"message": "nope"}, headers=self._headers())

        if request.method == "POST" and path.endswith("/dispatches"):
            self.dispatched = json.loads(request.content)
            return httpx.Response(204, headers=self._headers())
        if "/workflows/" in path and path.endswith("/runs"):
            return httpx.Response(200, json={"workflow_runs": [{"id": self.run_id}]}, headers=self._headers())
        if path.endswith(f"/actions/runs/{self.run_id}"):
            status = self.statuses[min(self.polls, len(self.statuses) - 1)]
            self.polls += 1
            return httpx.Response(200, json={
                "id": self.run_id,
                "status": status,
                "conclusion": self.conclusion if status == "completed" else None,
                "html_url": f"https://github.com/acme/apk-builder/actions/runs/{self.run_id}",
            }, headers=self._headers())
        if path.endswith(f"/actions/runs/{self.run_id}/artifacts"):
            return httpx.Response(200, json={"artifacts": [{
                "name": f"app-release-{self.build_id}",
                "archive_download_url": f"https://api.github.com/download/{self.run_id}",
            }]}, headers=self._headers())
        if path.startswith("/download/"):
            self.downloads += 1
            return httpx.Response(200, content=make_zip({APK_MEMBER: self.apk, "README.md": "x"}))
        return httpx.Response(404, json={"message": "Not Found"})


def github_client_factory(fake: FakeGitHub):
    """Client factory wired to *fake* with private limiter and dedup map."""
    def factory(settings):
        return GitHubActionsClient.from_settings(
            settings,
            transport=httpx.MockTransport(fake),
            rate_limiter=RateLimiter(),
            downloads=ArtifactDownloads(),
        )
    return factory


@pytest.fixture
def fake_github():
    return FakeGitHub()
