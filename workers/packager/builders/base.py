"""
Shared skeleton-build pipeline.

A ``SkeletonBuilder`` runs the fixed stage sequence
(fetch → extract → locate → configure → icons → package); platform
subclasses only fill in ``configure`` and, where needed, ``apply_icons``
and ``package``.  Publishing the artifact is the context's job so the
remote strategy can reuse the local source build.
"""
import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

from packager.config import Settings
from packager.core.icons import IconOutcome, IconOutcomeKind, generate_icons
from packager.core.locator import find_project_root
from packager.core.repack import repackage
from packager.core.state import BuildStateMachine
from packager.core.workspace import extract_archive, workspace
from packager.exceptions import PackagerError
from packager.io.schema import BuildConfig, Platform
from packager.io.storage import ObjectStorage
from packager.policy.platforms import PlatformProfile, get_profile
from packager.policy.stages import Stage, local_progress

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class PackagedArtifact:
    data: bytes
    output_path: str

    @property
    def size(self) -> int:
        return len(self.data)


class BuildContext:
    """Everything one build execution needs, bundled for the builders."""

    def __init__(
        self,
        job_id: str,
        platform: Platform,
        config: BuildConfig,
        storage: ObjectStorage,
        machine: BuildStateMachine,
        settings: Optional[Settings] = None,
        progress_for: Callable[[Stage], int] = local_progress,
    ):
        self.job_id = job_id
        self.platform = Platform(platform)
        self.config = config
        self.storage = storage
        self.machine = machine
        self.settings = settings or Settings()
        self.progress_for = progress_for

    async def advance(self, stage: Stage) -> None:
        await self.machine.advance(stage.value, self.progress_for(stage))

    async def fetch(self, path: str) -> bytes:
        return await asyncio.to_thread(self.storage.download_file, path)

    async def fetch_icon(self) -> tuple[Optional[bytes], Optional[IconOutcome]]:
        """Download the source icon, if one was supplied.

        A failed download is not fatal: it comes back as a soft-failed
        outcome and the skeleton's own icons stay in place.
        """
        if not self.config.icon_path:
            return None, None
        try:
            return await self.fetch(self.config.icon_path), None
        except PackagerError as e:
            logger.warning("[build %s] icon download failed: %s", self.job_id, e)
            return None, IconOutcome.soft_failed(f"icon download failed: {e}")

    async def publish(self, artifact: PackagedArtifact) -> None:
        """Upload *artifact* and complete the job."""
        await self.advance(Stage.UPLOADING)
        await asyncio.to_thread(self.storage.upload_file, artifact.output_path, artifact.data)
        await self.advance(Stage.FINALIZING)
        download_url = await asyncio.to_thread(
            self.storage.get_temp_download_url, artifact.output_path
        )
        await self.machine.complete(artifact.output_path, download_url, artifact.size)


async def run_blocking(func: Callable[..., T], *args: Any) -> T:
    """Run *func* in a worker thread and return only once that thread is done.

    A cancelled caller still waits for the thread before the
    ``CancelledError`` propagates, so workspace cleanup never runs while
    a stage is writing into the tree.
    """
    task = asyncio.ensure_future(asyncio.to_thread(func, *args))
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        await asyncio.wait({task})
        if not task.cancelled() and task.exception() is not None:
            logger.debug("%s failed after cancellation: %s", getattr(func, "__name__", func), task.exception())
        raise


def settle_icon_outcome(
    outcome: IconOutcome,
    profile: PlatformProfile,
    build_id: str,
) -> IconOutcome:
    """Log a soft failure, or escalate it when the profile makes icons fatal."""
    if outcome.kind is IconOutcomeKind.SOFT_FAILED:
        if profile.icon_failure_fatal:
            outcome = IconOutcome.hard_failed(outcome.reason or "icon generation failed")
        else:
            logger.warning(
                "[build %s] continuing without custom icons: %s", build_id, outcome.reason
            )
    outcome.raise_if_fatal()
    return outcome


class SkeletonBuilder:
    """Template for builds that customize an extracted skeleton archive."""

    platform: Platform

    def __init__(self, profile: Optional[PlatformProfile] = None):
        self.profile = profile or get_profile(self.platform)

    # ── hooks ──

    def locate(self, workspace_dir: Path) -> Path:
        return find_project_root(
            workspace_dir,
            self.profile.marker,
            max_depth=self.profile.max_depth,
            description=f"{self.platform.value} project root",
        )

    def configure(self, root: Path, config: BuildConfig) -> None:
        raise NotImplementedError

    def apply_icons(self, root: Path, icon: Optional[bytes], build_id: str) -> IconOutcome:
        return generate_icons(root, icon, self.profile.icon_specs, build_id)

    def package(self, ws: Path, root: Path, config: BuildConfig, build_id: str) -> PackagedArtifact:
        data = repackage(ws, self.profile.archive_format)
        return PackagedArtifact(data, self.profile.output_path(build_id))

    # ── pipeline ──

    async def build(self, ctx: BuildContext) -> PackagedArtifact:
        await ctx.advance(Stage.DOWNLOADING)
        skeleton = await ctx.fetch(self.profile.skeleton_path)
        logger.info("[build %s] fetched %s (%s bytes)", ctx.job_id, self.profile.skeleton_path, len(skeleton))

        with workspace(self.platform.value, ctx.job_id, ctx.settings.WORKSPACE_ROOT) as ws:
            await ctx.advance(Stage.EXTRACTING)
            await run_blocking(extract_archive, skeleton, ws, self.profile.archive_format)
            root = self.locate(ws)
            logger.info("[build %s] project root: %s", ctx.job_id, root.relative_to(ws))

            await ctx.advance(Stage.CONFIGURING)
            await run_blocking(self.configure, root, ctx.config)

            icon, outcome = await ctx.fetch_icon()
            await ctx.advance(Stage.PROCESSING_ICONS)
            if outcome is None:
                outcome = await run_blocking(self.apply_icons, root, icon, ctx.job_id)
            settle_icon_outcome(outcome, self.profile, ctx.job_id)

            await ctx.advance(Stage.PACKAGING)
            return await run_blocking(self.package, ws, root, ctx.config, ctx.job_id)
