"""
test_runner — end-to-end builds through ``process_build``.

Every platform runs against the in-memory skeletons from conftest:
the job must finish ``completed`` at 100 with non-decreasing progress,
and the uploaded artifact must carry the patched values.  Failure paths
must leave a ``failed`` job with the cause and no workspace behind.
"""
import asyncio
import io
import json
import plistlib
import time

import pytest
from PIL import Image

from conftest import (
    INFO_PLIST,
    FakeGitHub,
    github_client_factory,
    make_zip,
    read_tar_gz,
    read_zip,
    zip_modes,
)
from packager.builders import base as builder_base
from packager.builders.windows import read_app_config
from packager.io.schema import JobStatus, Platform
from packager.io.storage import LocalStorage
from packager.remote.services import FAILURE_MESSAGE, source_output_path
from packager.runner import build_timeout, process_build


def build(platform, config, storage, job_store, settings, client_factory=None, job_id=None):
    job_id = job_id or f"{Platform(platform).value}-1"
    job_store.create_job(job_id, Platform(platform), config)
    return asyncio.run(process_build(
        job_id,
        platform,
        config,
        storage=storage,
        job_store=job_store,
        settings=settings,
        client_factory=client_factory,
    ))


def progress_of(job_store, job_id):
    return [p for jid, _, p in job_store.history if jid == job_id]


def image_size(data: bytes):
    return Image.open(io.BytesIO(data)).size


def assert_completed(job, job_store, storage):
    assert job.status is JobStatus.COMPLETED, job.error_message
    assert job.progress == 100
    assert job.error_message is None
    assert job.download_url.startswith("file://")
    progress = progress_of(job_store, job.id)
    assert progress == sorted(progress)
    assert progress[0] == 0 and progress[-1] == 100
    data = storage.download_file(job.output_file_path)
    assert job.file_size == len(data)
    return data


# ═══════════════════════════════════════════════════════════════════════════════
# Local platforms
# ═══════════════════════════════════════════════════════════════════════════════

class TestLocalPlatforms:

    def test_android(self, build_config, skeleton_storage, job_store, settings, workspace_root):
        job = build("android", build_config, skeleton_storage, job_store, settings)
        files = read_zip(assert_completed(job, job_store, skeleton_storage))

        assert job.output_file_path == "builds/android-1/android-source.zip"
        general = json.loads(files["android-template/app/src/main/assets/appConfig.json"])["general"]
        assert general["initialUrl"] == "https://example.com/app"
        assert general["appName"] == "My App"
        assert general["androidPackageName"] == "com.example.myapp"
        assert general["androidVersionName"] == "2.3.4"
        assert general["androidVersionCode"] == 42
        assert general["userAgentAdd"] == "median"
        assert 'android:versionName="2.3.4"' in files["android-template/app/src/main/AndroidManifest.xml"].decode()
        assert files["android-template/app/src/main/assets/privacy_policy.md"].decode() == build_config.privacy_policy

        res = "android-template/app/src/main/res"
        assert image_size(files[f"{res}/mipmap-mdpi/ic_launcher.png"]) == (48, 48)
        assert image_size(files[f"{res}/mipmap-hdpi/ic_launcher.png"]) == (72, 72)
        assert image_size(files[f"{res}/mipmap-mdpi/ic_launcher_foreground.png"]) == (108, 108)
        assert image_size(files[f"{res}/drawable-mdpi/splash.png"]) == (180, 180)
        assert not any("xxxhdpi" in name for name in files)

        assert zip_modes(skeleton_storage.download_file(job.output_file_path))["android-template/gradlew"] == 0o755
        assert list(workspace_root.iterdir()) == []

    def test_ios(self, build_config, skeleton_storage, job_store, settings):
        job = build("ios", build_config, skeleton_storage, job_store, settings)
        files = read_zip(assert_completed(job, job_store, skeleton_storage))

        general = json.loads(files["median-ios/LeanIOS/appConfig.json"])["general"]
        assert general["iosBundleId"] == "com.example.myapp"
        assert general["iosVersionString"] == "2.3.4"
        assert general["iosBuildNumber"] == 42

        pbx = files["median-ios/LeanIOS.xcodeproj/project.pbxproj"].decode()
        assert "MARKETING_VERSION = 2.3.4;" in pbx
        assert "CURRENT_PROJECT_VERSION = 42;" in pbx
        assert 'BUILD_SETTINGS_APP_NAME = "My App";' in pbx
        assert "PRODUCT_BUNDLE_IDENTIFIER = com.example.myapp;" in pbx
        assert "PRODUCT_BUNDLE_IDENTIFIER = com.example.UnitTests;" in pbx

        assert "median-ios/LeanIOS/privacy_policy.md" in files
        assert "median-ios/LeanIOS/privacy_policy.txt" not in files

        icon = Image.open(io.BytesIO(files["median-ios/LeanIOS/Images.xcassets/AppIcon.appiconset/icon-1024.png"]))
        assert icon.size == (1024, 1024)
        assert icon.mode == "RGB"

    def test_windows(self, build_config, skeleton_storage, job_store, settings):
        job = build("windows", build_config, skeleton_storage, job_store, settings)
        exe = assert_completed(job, job_store, skeleton_storage)

        assert job.output_file_path == "builds/windows-1/MyApp.exe"
        assert read_app_config(exe) == {"url": "https://example.com/app", "title": "My App"}

    def test_macos(self, build_config, skeleton_storage, job_store, settings):
        job = build("macos", build_config, skeleton_storage, job_store, settings)
        data = assert_completed(job, job_store, skeleton_storage)
        files, modes = read_zip(data), zip_modes(data)

        assert job.output_file_path == "builds/macos-1/My App.app.zip"
        info = plistlib.loads(files["My App.app/Contents/Info.plist"])
        assert info["CFBundleName"] == "My App"
        assert "CFBundleDisplayName" not in info
        assert json.loads(files["My App.app/Contents/Resources/app-config.json"]) == {
            "url": "https://example.com/app",
            "title": "My App",
        }
        icns = files["My App.app/Contents/Resources/icon.icns"]
        assert icns[:4] == b"icns" and len(icns) > 1000
        assert modes["My App.app/Contents/MacOS/tauri-shell"] == 0o755
        assert modes["My App.app/Contents/Info.plist"] == 0o644

    def test_linux(self, build_config, skeleton_storage, job_store, settings):
        job = build("linux", build_config, skeleton_storage, job_store, settings)
        members = read_tar_gz(assert_completed(job, job_store, skeleton_storage))

        assert job.output_file_path == "builds/linux-1/My App.tar.gz"
        assert members["My App/my-app"] == (b"\x7fELF", 0o755)
        assert "My App/tauri-shell" not in members
        script, mode = members["My App/install.sh"]
        assert mode == 0o755
        assert b"Installing My App" in script
        assert members["My App/README.txt"][1] == 0o644
        assert image_size(members["My App/resources/icon.png"][0]) == (512, 512)
        assert json.loads(members["My App/resources/app-config.json"][0])["title"] == "My App"

    def test_chrome_extension(self, build_config, skeleton_storage, job_store, settings):
        job = build("chrome_extension", build_config, skeleton_storage, job_store, settings)
        files = read_zip(assert_completed(job, job_store, skeleton_storage))

        manifest = json.loads(files["googleplugin/manifest.json"])
        assert manifest["name"] == "My App"
        assert manifest["version"] == "2.3.4"
        assert manifest["description"] == "An example app"
        assert manifest["action"] == {"default_popup": "popup.html", "default_title": "My App"}
        assert manifest["__config"]["targetUrl"] == "https://example.com/app"
        for size in (16, 48, 128):
            assert image_size(files[f"googleplugin/icons/icon{size}.png"]) == (size, size)
        cover = Image.open(io.BytesIO(files["googleplugin/icons/icon128.png"])).convert("RGBA")
        assert cover.getpixel((0, 0))[3] == 255

    def test_wechat(self, build_config, skeleton_storage, job_store, settings):
        job = build("wechat", build_config, skeleton_storage, job_store, settings)
        files = read_zip(assert_completed(job, job_store, skeleton_storage))

        module = files["wechat/appConfig.js"].decode()
        assert module.startswith("// appConfig.js")
        assert '"appId": "wx1234567890"' in module
        assert '"initialUrl": "https://example.com/app"' in module
        assert '"enableWxLogin": false' in module
        assert json.loads(files["wechat/project.config.json"])["appid"] == "wx1234567890"

    def test_harmonyos(self, build_config, skeleton_storage, job_store, settings):
        job = build("harmonyos", build_config, skeleton_storage, job_store, settings)
        files = read_zip(assert_completed(job, job_store, skeleton_storage))

        app = files["harmony/AppScope/app.json5"].decode()
        assert '"bundleName": "com.example.myapp"' in app
        assert '"versionName": "2.3.4"' in app
        assert '"versionCode": 42' in app
        assert "// application scope" in app

        raw = json.loads(files["harmony/entry/src/main/resources/rawfile/appConfig.json"])["general"]
        assert raw["versionName"] == "2.3.4"
        assert raw["initialUrl"] == "https://example.com"
        strings = json.loads(files["harmony/AppScope/resources/base/element/string.json"])["string"]
        assert strings == [{"name": "app_name", "value": "My App"}]
        entry = json.loads(files["harmony/entry/src/main/resources/base/element/string.json"])["string"]
        assert {"name": "EntryAbility_label", "value": "My App"} in entry
        assert "harmony/entry/src/main/resources/rawfile/privacy_policy.md" in files

        media = "harmony/entry/src/main/resources/base/media"
        assert image_size(files[f"{media}/icon.png"]) == (256, 256)
        assert image_size(files[f"{media}/foreground.png"]) == (1024, 1024)
        background = Image.open(io.BytesIO(files[f"{media}/background.png"]))
        assert background.getpixel((5, 5)) == (255, 255, 255, 255)
        assert "harmony/AppScope/resources/base/media/foreground.png" in files

    def test_android_keeps_workspace_layout(self, build_config, storage, job_store, settings):
        storage.upload_file("Android/android.zip", make_zip({
            "wrap/app/src/main/assets/appConfig.json": "{}",
            "NOTICE.txt": "third-party notices",
        }))
        config = build_config.model_copy(update={"icon_path": None})
        job = build("android", config, storage, job_store, settings)
        files = read_zip(assert_completed(job, job_store, storage))

        assert set(files) == {
            "NOTICE.txt",
            "wrap/app/src/main/assets/appConfig.json",
            "wrap/app/src/main/assets/privacy_policy.md",
        }
        assert files["NOTICE.txt"] == b"third-party notices"

    def test_macos_siblings_survive_rename(self, build_config, storage, job_store, settings):
        storage.upload_file("MacOSApp/tauri-shell.app.zip", make_zip({
            "tauri-shell.app/Contents/Info.plist": INFO_PLIST,
            "LICENSE.txt": "MIT",
        }))
        config = build_config.model_copy(update={"icon_path": None})
        job = build("macos", config, storage, job_store, settings)
        files = read_zip(assert_completed(job, job_store, storage))

        assert files["LICENSE.txt"] == b"MIT"
        assert "My App.app/Contents/Info.plist" in files
        assert not any(name.startswith("tauri-shell.app") for name in files)

    def test_dict_config_and_no_icon(self, skeleton_storage, job_store, settings):
        config = {"url": "https://example.org", "app_name": "Plain"}
        job_store.create_job("plain", Platform.WECHAT, config)
        job = asyncio.run(process_build(
            "plain", "wechat", config,
            storage=skeleton_storage, job_store=job_store, settings=settings,
        ))
        assert_completed(job, job_store, skeleton_storage)


# ═══════════════════════════════════════════════════════════════════════════════
# Failures
# ═══════════════════════════════════════════════════════════════════════════════

class SlowStorage(LocalStorage):
    def download_file(self, path):
        time.sleep(0.5)
        return super().download_file(path)


class TestFailures:

    def test_missing_skeleton(self, build_config, storage, job_store, settings, workspace_root):
        job = build("android", build_config, storage, job_store, settings)

        assert job.status is JobStatus.FAILED
        assert job.error_message == "File not found: Android/android.zip"
        assert job.output_file_path is None
        assert list(workspace_root.iterdir()) == []

    def test_missing_required_config(self, build_config, storage, job_store, settings, workspace_root):
        storage.upload_file("Android/android.zip", make_zip({"t/app/src/main/AndroidManifest.xml": "<m/>"}))
        job = build("android", build_config, storage, job_store, settings)

        assert job.status is JobStatus.FAILED
        assert "appConfig.json" in job.error_message
        assert job.progress == 35
        assert list(workspace_root.iterdir()) == []

    def test_unrecognized_skeleton(self, build_config, storage, job_store, settings):
        storage.upload_file("GooglePlugin/googleplugin.zip", make_zip({"a/readme.txt": "x"}))
        job = build("chrome_extension", build_config, storage, job_store, settings)

        assert job.status is JobStatus.FAILED
        assert "Could not find" in job.error_message

    def test_android_icon_without_res_dir(self, build_config, storage, job_store, settings, source_icon):
        storage.upload_file("Android/android.zip", make_zip({
            "app/src/main/assets/appConfig.json": "{}",
        }))
        storage.upload_file("icons/source.png", source_icon)
        job = build("android", build_config, storage, job_store, settings)

        assert job.status is JobStatus.FAILED
        assert "app/src/main/res" in job.error_message

    def test_missing_icon_is_not_fatal(self, build_config, skeleton_storage, job_store, settings):
        config = build_config.model_copy(update={"icon_path": "icons/missing.png"})
        job = build("chrome_extension", config, skeleton_storage, job_store, settings)

        files = read_zip(assert_completed(job, job_store, skeleton_storage))
        assert not any(name.startswith("googleplugin/icons/") for name in files)

    def test_timeout(self, build_config, tmp_path, job_store, settings):
        storage = SlowStorage(tmp_path / "slow")
        settings.BUILD_TIMEOUT_SECONDS = 0.05
        job = build("wechat", build_config, storage, job_store, settings)

        assert job.status is JobStatus.FAILED
        assert job.error_message == "wechat build timed out after 0.05s"

    def test_timeout_waits_for_stage_before_cleanup(
        self, build_config, skeleton_storage, job_store, settings, workspace_root, monkeypatch
    ):
        real_extract = builder_base.extract_archive

        def slow_extract(data, dest, archive_format):
            time.sleep(0.6)
            return real_extract(data, dest, archive_format)

        monkeypatch.setattr(builder_base, "extract_archive", slow_extract)
        settings.BUILD_TIMEOUT_SECONDS = 0.2
        job = build("android", build_config, skeleton_storage, job_store, settings)

        assert job.status is JobStatus.FAILED
        assert job.error_message == "android build timed out after 0.2s"
        assert list(workspace_root.iterdir()) == []

    def test_timeouts_per_platform(self, settings):
        assert build_timeout(Platform.ANDROID, settings) == 60
        assert build_timeout(Platform.MACOS, settings) == 90
        assert build_timeout(Platform.ANDROID_APK, settings) > settings.REMOTE_MAX_WAIT_SECONDS
        settings.BUILD_TIMEOUT_SECONDS = 5
        assert build_timeout(Platform.WINDOWS, settings) == 5


# ═══════════════════════════════════════════════════════════════════════════════
# Remote APK
# ═══════════════════════════════════════════════════════════════════════════════

class TestAndroidApk:

    def test_remote_build(self, build_config, skeleton_storage, job_store, settings):
        fake = FakeGitHub(build_id="apk-1")
        job = build(
            "android_apk", build_config, skeleton_storage, job_store, settings,
            client_factory=github_client_factory(fake), job_id="apk-1",
        )
        apk = assert_completed(job, job_store, skeleton_storage)

        assert apk == b"APK-BYTES"
        assert job.output_file_path == "builds/apk-1/app-release.apk"
        assert job.github_run_id == 77
        source = read_zip(skeleton_storage.download_file(source_output_path("apk-1")))
        assert json.loads(source["android-template/app/src/main/assets/appConfig.json"])["general"]["appName"] == "My App"

        progress = progress_of(job_store, "apk-1")
        # local source stages are scaled into the first 45%
        assert progress[:progress.index(45)] == [0, 5, 9, 15, 24, 33]
        assert 50 in progress

    def test_remote_failure(self, build_config, skeleton_storage, job_store, settings):
        fake = FakeGitHub(build_id="apk-2", conclusion="failure")
        job = build(
            "android_apk", build_config, skeleton_storage, job_store, settings,
            client_factory=github_client_factory(fake), job_id="apk-2",
        )

        assert job.status is JobStatus.FAILED
        assert job.error_message == FAILURE_MESSAGE
        assert job.github_run_id == 77

    def test_unconfigured_remote(self, build_config, skeleton_storage, job_store, settings):
        settings.GITHUB_TOKEN = None
        job = build("android_apk", build_config, skeleton_storage, job_store, settings)

        assert job.status is JobStatus.FAILED
        assert "GitHub configuration missing" in job.error_message
        assert job.progress == 0
