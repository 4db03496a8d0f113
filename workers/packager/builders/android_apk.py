"""Android APK via remote CI: local source build, then a GitHub Actions run."""
import asyncio
import logging
from typing import Callable, Optional

from packager.builders.android import AndroidBuilder
from packager.builders.base import BuildContext
from packager.io.schema import Platform
from packager.policy.stages import Stage, remote_progress
from packager.remote.github_client import GitHubActionsClient
from packager.remote.services import run_remote_build, source_output_path

logger = logging.getLogger(__name__)

ClientFactory = Callable[..., GitHubActionsClient]


class AndroidApkBuilder:
    """Remote strategy; unlike the local builders it completes the job itself."""

    platform = Platform.ANDROID_APK

    def __init__(
        self,
        client_factory: Optional[ClientFactory] = None,
        source_builder: Optional[AndroidBuilder] = None,
    ):
        self.client_factory = client_factory or GitHubActionsClient.from_settings
        self.source_builder = source_builder or AndroidBuilder()

    async def run(self, ctx: BuildContext) -> None:
        client = self.client_factory(ctx.settings)
        async with client:
            artifact = await self.source_builder.build(ctx)
            source_path = source_output_path(ctx.job_id)
            await asyncio.to_thread(ctx.storage.upload_file, source_path, artifact.data)
            await ctx.machine.advance(Stage.SOURCE_READY.value, remote_progress(Stage.SOURCE_READY))
            logger.info("[build %s] source bundle uploaded (%s bytes)", ctx.job_id, artifact.size)

            await run_remote_build(client, ctx.storage, ctx.machine, source_path, ctx.settings)
