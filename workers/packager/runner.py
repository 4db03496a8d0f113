"""
Build runner — top-level orchestration: job → platform artifact.

``process_build`` is the single entry point used by the queue worker.
It owns the state machine for one job, picks the local or remote
strategy from the platform, enforces the platform timeout and turns
any exception into a ``failed`` job carrying the exception's message.
"""
import asyncio
import logging
from typing import Optional, Union

from packager.builders.android import AndroidBuilder
from packager.builders.android_apk import AndroidApkBuilder, ClientFactory
from packager.builders.base import BuildContext
from packager.builders.chrome import ChromeExtensionBuilder
from packager.builders.harmonyos import HarmonyOSBuilder
from packager.builders.ios import IOSBuilder
from packager.builders.linux import LinuxBuilder
from packager.builders.macos import MacOSBuilder
from packager.builders.wechat import WeChatBuilder
from packager.builders.windows import WindowsBuilder
from packager.config import Settings, get_settings
from packager.core.state import BuildStateMachine
from packager.exceptions import BuildTimeoutError
from packager.io.job_store import JobStore
from packager.io.schema import BuildConfig, BuildJob, Platform
from packager.io.storage import ObjectStorage
from packager.policy.platforms import get_profile
from packager.policy.stages import local_progress, remote_source_progress

logger = logging.getLogger(__name__)

LOCAL_BUILDERS = {
    Platform.ANDROID: AndroidBuilder,
    Platform.IOS: IOSBuilder,
    Platform.WINDOWS: WindowsBuilder,
    Platform.MACOS: MacOSBuilder,
    Platform.LINUX: LinuxBuilder,
    Platform.CHROME_EXTENSION: ChromeExtensionBuilder,
    Platform.WECHAT: WeChatBuilder,
    Platform.HARMONYOS: HarmonyOSBuilder,
}

# Slack on top of the remote max wait for the source build and APK upload.
REMOTE_TIMEOUT_MARGIN = 300.0


def build_timeout(platform: Platform, settings: Settings) -> float:
    if settings.BUILD_TIMEOUT_SECONDS:
        return settings.BUILD_TIMEOUT_SECONDS
    if platform is Platform.ANDROID_APK:
        return settings.REMOTE_MAX_WAIT_SECONDS + REMOTE_TIMEOUT_MARGIN
    return get_profile(platform).timeout_seconds


async def _execute(
    ctx: BuildContext,
    client_factory: Optional[ClientFactory],
) -> None:
    if ctx.platform is Platform.ANDROID_APK:
        await AndroidApkBuilder(client_factory=client_factory).run(ctx)
        return
    builder = LOCAL_BUILDERS[ctx.platform]()
    artifact = await builder.build(ctx)
    await ctx.publish(artifact)


async def process_build(
    job_id: str,
    platform: Union[Platform, str],
    config: Union[BuildConfig, dict],
    *,
    storage: ObjectStorage,
    job_store: JobStore,
    settings: Optional[Settings] = None,
    client_factory: Optional[ClientFactory] = None,
) -> Optional[BuildJob]:
    """
    Run one build to completion or failure.

    Parameters
    ----------
    job_id : str
        Id of a job already created in *job_store* with status pending.
    platform : Platform or str
        Target platform.
    config : BuildConfig or dict
        Job configuration.
    storage, job_store
        Collaborators for skeleton/artifact I/O and status persistence.
    settings : Settings, optional
        Defaults to the process-wide settings.
    client_factory : callable, optional
        Builds the remote CI client from settings (android_apk only).

    Returns
    -------
    The job as last persisted, or None if the store does not know it.
    """
    platform = Platform(platform)
    settings = settings or get_settings()
    if isinstance(config, dict):
        config = BuildConfig.model_validate(config)

    machine = BuildStateMachine(job_id, job_store)
    ctx = BuildContext(
        job_id,
        platform,
        config,
        storage,
        machine,
        settings=settings,
        progress_for=remote_source_progress if platform is Platform.ANDROID_APK else local_progress,
    )
    timeout = build_timeout(platform, settings)
    logger.info("[build %s] starting %s build (timeout %ss)", job_id, platform.value, timeout)

    try:
        await machine.start()
        await asyncio.wait_for(_execute(ctx, client_factory), timeout=timeout)
    except asyncio.TimeoutError:
        await _fail(machine, BuildTimeoutError(platform.value, timeout))
    except Exception as e:
        logger.error("[build %s] %s build failed: %s", job_id, platform.value, e, exc_info=True)
        await _fail(machine, e)

    return await asyncio.to_thread(job_store.get_job, job_id)


async def _fail(machine: BuildStateMachine, error: Exception) -> None:
    if machine.status.is_terminal:
        logger.warning(
            "[build %s] error after job reached %s: %s", machine.job_id, machine.status.value, error
        )
        return
    await machine.fail(str(error) or error.__class__.__name__)
