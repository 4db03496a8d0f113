"""
Windows executable: version info, icon group and embedded app config.

The skeleton is a single ``.exe``; nothing is extracted.  The icon group
is best-effort, while the APPCONFIG resource is mandatory: without it
the shell has no URL to load.
"""
import asyncio
import json
import logging
import struct
from typing import Optional

import pefile

from packager.builders.base import BuildContext, PackagedArtifact, settle_icon_outcome
from packager.core.ico import build_ico
from packager.core.icons import IconOutcome, load_image, normalize
from packager.core.resources import (
    RT_ICON,
    ResourceTable,
    add_custom_resource,
    load_pe,
    read_resources,
    replace_icon_group,
    update_version_strings,
    write_resources,
)
from packager.exceptions import IconGenerationError, ResourceEditError
from packager.io.schema import BuildConfig, Platform
from packager.policy.platforms import PlatformProfile, get_profile, safe_name
from packager.policy.stages import Stage

logger = logging.getLogger(__name__)

CONFIG_RESOURCE_TYPE = "APPCONFIG"
CONFIG_RESOURCE_ID = 1


def version_strings(config: BuildConfig) -> dict[str, str]:
    return {
        "ProductName": config.app_name,
        "FileDescription": config.app_name,
        "CompanyName": "",
        "LegalCopyright": "",
        "InternalName": config.app_name,
        "OriginalFilename": f"{config.app_name}.exe",
    }


def app_config_blob(config: BuildConfig) -> bytes:
    return json.dumps(
        {"url": config.url, "title": config.app_name},
        ensure_ascii=False,
        separators=(",", ":"),
    ).encode("utf-8")


def read_app_config(exe: bytes) -> Optional[dict]:
    """Return the embedded APPCONFIG JSON, or None if absent."""
    table = read_resources(load_pe(exe))
    res = table.get(CONFIG_RESOURCE_TYPE, CONFIG_RESOURCE_ID, 0x0409)
    return json.loads(res.data.decode("utf-8")) if res else None


def _replace_icons(table: ResourceTable, icon: bytes) -> tuple[ResourceTable, IconOutcome]:
    """Try the icon swap on a copy so a failure leaves *table* untouched."""
    try:
        ico = build_ico(normalize(load_image(icon)))
        candidate = table.copy()
        replace_icon_group(candidate, ico)
    except (IconGenerationError, ResourceEditError, OSError, ValueError) as e:
        return table, IconOutcome.soft_failed(f"icon replacement failed: {e}")
    return candidate, IconOutcome.ok(len(candidate.of_type(RT_ICON)))


def edit_executable(
    exe: bytes,
    config: BuildConfig,
    icon: Optional[bytes] = None,
) -> tuple[bytes, IconOutcome]:
    """
    Apply version strings, optional icon and the APPCONFIG resource.

    Returns
    -------
    (new executable bytes, icon outcome)

    Raises
    ------
    ResourceEditError
        If the executable cannot be parsed or rewritten.
    """
    pe = load_pe(exe)
    table = read_resources(pe)

    try:
        update_version_strings(table, version_strings(config))
    except ResourceEditError as e:
        logger.warning("Version info left unchanged: %s", e)

    outcome = IconOutcome.skipped("no icon supplied")
    if icon is not None:
        table, outcome = _replace_icons(table, icon)

    add_custom_resource(table, CONFIG_RESOURCE_TYPE, app_config_blob(config), CONFIG_RESOURCE_ID)
    try:
        result = write_resources(exe, pe, table)
    except (pefile.PEFormatError, struct.error, ValueError) as e:
        raise ResourceEditError(f"Failed to write resources: {e}") from e
    return result, outcome


class WindowsBuilder:
    platform = Platform.WINDOWS

    def __init__(self, profile: Optional[PlatformProfile] = None):
        self.profile = profile or get_profile(self.platform)

    async def build(self, ctx: BuildContext) -> PackagedArtifact:
        await ctx.advance(Stage.DOWNLOADING)
        exe = await ctx.fetch(self.profile.skeleton_path)
        logger.info("[build %s] fetched %s (%s bytes)", ctx.job_id, self.profile.skeleton_path, len(exe))

        await ctx.advance(Stage.CONFIGURING)
        icon, fetch_outcome = await ctx.fetch_icon()

        await ctx.advance(Stage.PROCESSING_ICONS)
        data, outcome = await asyncio.to_thread(edit_executable, exe, ctx.config, icon)
        settle_icon_outcome(fetch_outcome or outcome, self.profile, ctx.job_id)
        logger.info("[build %s] embedded %s resource", ctx.job_id, CONFIG_RESOURCE_TYPE)

        await ctx.advance(Stage.PACKAGING)
        name = safe_name(ctx.config.app_name)
        return PackagedArtifact(data, self.profile.output_path(ctx.job_id, name))
