"""WeChat mini-program: appConfig.js module and project.config.json."""
import json
import logging
import re
from pathlib import Path

from packager.builders.base import SkeletonBuilder
from packager.core.patcher import dump_json, patch_json_file, set_nested
from packager.io.schema import BuildConfig, Platform

logger = logging.getLogger(__name__)

APP_CONFIG = "appConfig.js"
PROJECT_CONFIG = "project.config.json"

MODULE_EXPORTS = re.compile(r"module\.exports\s*=\s*(\{[\s\S]*\});?\s*$")
MODULE_HEADER = "// appConfig.js - centralized mini-program configuration\n"

DEFAULT_LOGIN = {
    "enableWxLogin": True,
    "defaultAvatarUrl": "",
}


def render_module(data: dict) -> str:
    return f"{MODULE_HEADER}module.exports = {dump_json(data)};\n"


def default_app_config(config: BuildConfig) -> dict:
    return {
        "general": {
            "initialUrl": config.url,
            "appName": config.app_name,
            "appId": config.app_id or "",
            "version": config.version_name,
        },
        "login": dict(DEFAULT_LOGIN),
    }


def update_app_config(path: Path, config: BuildConfig) -> bool:
    """
    Patch the ``module.exports`` object of appConfig.js.

    The object is read as JSON; a missing file or a literal that is not
    valid JSON is replaced by a fresh default config.  Returns True if
    the existing object was patched.
    """
    data = None
    if path.is_file():
        match = MODULE_EXPORTS.search(path.read_text(encoding="utf-8"))
        if match:
            try:
                data = json.loads(match.group(1))
            except json.JSONDecodeError:
                data = None

    if not isinstance(data, dict):
        logger.warning("%s missing or unparseable, writing defaults", APP_CONFIG)
        path.write_text(render_module(default_app_config(config)), encoding="utf-8")
        return False

    set_nested(data, "general.initialUrl", config.url)
    set_nested(data, "general.appName", config.app_name)
    set_nested(data, "general.appId", config.app_id or "")
    set_nested(data, "general.version", config.version_name)
    path.write_text(render_module(data), encoding="utf-8")
    return True


class WeChatBuilder(SkeletonBuilder):
    platform = Platform.WECHAT

    def configure(self, root: Path, config: BuildConfig) -> None:
        update_app_config(root / APP_CONFIG, config)
        if config.app_id:
            patch_json_file(root / PROJECT_CONFIG, {"appid": config.app_id}, required=False, root=root)
