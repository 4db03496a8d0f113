"""
Remote build services — dispatch, poll, collect, reconcile.

``run_remote_build`` drives a job end-to-end once its source bundle is
ready.  ``handle_remote_callback`` and ``sync_remote_status`` reconcile
a job from the CI side (callback payload or an explicit re-poll) and
are no-ops for jobs that already reached a terminal state.
"""
from __future__ import annotations

import asyncio
import io
import logging
import time
import zipfile
from typing import Awaitable, Callable, Optional

from packager.config import Settings
from packager.core.state import BuildStateMachine
from packager.exceptions import PackagerError, RemotePollError
from packager.io.job_store import JobStore
from packager.io.schema import BuildJob, JobStatus, RemoteCallback, RemoteRun
from packager.io.storage import ObjectStorage
from packager.policy.stages import Stage, remote_progress, running_progress
from packager.remote.github_client import GitHubActionsClient

logger = logging.getLogger(__name__)

FAILURE_MESSAGE = "GitHub Actions build failed. Check the workflow logs for details."
APK_RELEASE_DIR = "android/app/build/outputs/apk/"


def artifact_name(build_id: str) -> str:
    return f"app-release-{build_id}"


def apk_output_path(build_id: str) -> str:
    return f"builds/{build_id}/app-release.apk"


def source_output_path(build_id: str) -> str:
    return f"builds/{build_id}/android-source.zip"


def extract_apk(archive: bytes) -> bytes:
    """Pull the release APK out of a CI artifact zip.

    Members under the Gradle APK output directory win over any other
    ``.apk`` in the archive.

    Raises:
        RemotePollError: If the archive is unreadable or holds no APK.
    """
    try:
        with zipfile.ZipFile(io.BytesIO(archive)) as zf:
            apks = [n for n in zf.namelist() if n.endswith(".apk")]
            if not apks:
                raise RemotePollError("APK file not found in artifact")
            preferred = [n for n in apks if APK_RELEASE_DIR in n]
            name = sorted(preferred or apks)[0]
            logger.info("Found APK: %s", name)
            return zf.read(name)
    except zipfile.BadZipFile as e:
        raise RemotePollError(f"Artifact is not a valid zip: {e}") from e


async def collect_apk(
    client: GitHubActionsClient,
    storage: ObjectStorage,
    build_id: str,
    run_id: int,
) -> tuple[str, str, int]:
    """Download, extract and upload the APK; returns (path, url, size)."""
    archive = await client.download_artifact(run_id, artifact_name(build_id))
    apk = await asyncio.to_thread(extract_apk, archive)
    path = apk_output_path(build_id)
    await asyncio.to_thread(storage.upload_file, path, apk)
    url = await asyncio.to_thread(storage.get_temp_download_url, path)
    logger.info("[build %s] uploaded APK (%.2f MB)", build_id, len(apk) / 1024 / 1024)
    return path, url, len(apk)


async def wait_for_run(
    client: GitHubActionsClient,
    machine: BuildStateMachine,
    run: RemoteRun,
    base_interval: float,
    max_wait: float,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> RemoteRun:
    """Poll until the run completes, pacing requests by the rate limiter.

    Raises:
        RemotePollError: If the run does not finish within *max_wait*.
    """
    started = clock()
    while True:
        run = await client.check_run_status(run.build_id, run.run_id)
        if run.finished:
            return run

        elapsed = clock() - started
        if elapsed >= max_wait:
            raise RemotePollError(
                f"Remote run {run.run_id} did not finish within {max_wait:g}s"
            )
        await machine.advance(Stage.RUNNING.value, running_progress(elapsed, max_wait))

        interval = client.rate_limiter.recommended_interval(base_interval)
        if interval != base_interval:
            client.rate_limiter.log_stats()
        await sleep(min(interval, max(max_wait - elapsed, 0)))


async def run_remote_build(
    client: GitHubActionsClient,
    storage: ObjectStorage,
    machine: BuildStateMachine,
    source_path: str,
    settings: Settings,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> None:
    """
    Dispatch a CI run for an uploaded source bundle and see it through.

    Ends with the job completed, or raises so the caller can fail it.
    """
    build_id = machine.job_id
    source_url = await asyncio.to_thread(storage.get_temp_download_url, source_path)

    run = await client.trigger_build(
        build_id,
        source_url,
        settings.callback_url,
        settle_seconds=settings.DISPATCH_SETTLE_SECONDS,
    )
    await machine.advance(
        Stage.DISPATCHED.value, remote_progress(Stage.DISPATCHED), github_run_id=run.run_id
    )

    run = await wait_for_run(
        client,
        machine,
        run,
        base_interval=settings.POLL_INTERVAL_SECONDS,
        max_wait=settings.REMOTE_MAX_WAIT_SECONDS,
        sleep=sleep,
    )
    if not run.succeeded:
        logger.error(
            "[build %s] run %s concluded %s %s",
            build_id, run.run_id, run.conclusion, run.error or "",
        )
        raise RemotePollError(FAILURE_MESSAGE)

    await machine.advance(Stage.DOWNLOADING_ARTIFACT.value, remote_progress(Stage.DOWNLOADING_ARTIFACT))
    path, url, size = await collect_apk(client, storage, build_id, run.run_id)
    await machine.advance(Stage.UPLOADING.value, remote_progress(Stage.UPLOADING))
    await machine.complete(path, url, size)


# ── Reconciliation ───────────────────────────────────────────────────────────

async def _load_machine(
    job_store: JobStore,
    job_id: str,
    require_run_id: bool = False,
) -> Optional[tuple[BuildJob, BuildStateMachine]]:
    job = await asyncio.to_thread(job_store.get_job, job_id)
    if job is None:
        raise KeyError(f"Build not found: {job_id}")
    if job.status.is_terminal:
        logger.info("[build %s] already %s, ignoring remote update", job_id, job.status.value)
        return None
    if require_run_id and job.github_run_id is None:
        raise RemotePollError(f"Build {job_id} has no GitHub run id")
    machine = BuildStateMachine(job_id, job_store, status=job.status, progress=job.progress)
    if job.status is JobStatus.PENDING:
        await machine.start()
    return job, machine


async def handle_remote_callback(
    job_store: JobStore,
    job_id: str,
    payload: RemoteCallback,
    client: Optional[GitHubActionsClient] = None,
    storage: Optional[ObjectStorage] = None,
) -> Optional[JobStatus]:
    """
    Apply a CI completion callback.

    On success the APK is collected when a client and storage are
    given; otherwise the artifact URL from the payload is recorded.
    Returns the new status, or None when the job was already terminal.
    """
    loaded = await _load_machine(job_store, job_id)
    if loaded is None:
        return None
    _, machine = loaded

    if payload.status != "success":
        await machine.fail(FAILURE_MESSAGE)
        return machine.status

    if payload.run_id is not None and client is not None and storage is not None:
        await machine.advance(
            Stage.DOWNLOADING_ARTIFACT.value,
            remote_progress(Stage.DOWNLOADING_ARTIFACT),
            github_run_id=payload.run_id,
        )
        try:
            path, url, size = await collect_apk(client, storage, job_id, payload.run_id)
        except PackagerError as e:
            await machine.fail(str(e))
            return machine.status
        await machine.complete(path, url, size)
    else:
        await machine.complete(None, payload.artifact_url, None)
    return machine.status


async def sync_remote_status(
    job_store: JobStore,
    client: GitHubActionsClient,
    storage: ObjectStorage,
    job_id: str,
) -> Optional[RemoteRun]:
    """
    Re-poll the run recorded on a job and apply its result.

    Returns the observed run, or None when the job was already terminal.

    Raises:
        RemotePollError: If the job has no correlated run id.
    """
    loaded = await _load_machine(job_store, job_id, require_run_id=True)
    if loaded is None:
        return None
    job, machine = loaded

    run = await client.check_run_status(job_id, job.github_run_id)
    if not run.finished:
        return run
    if not run.succeeded:
        await machine.fail(FAILURE_MESSAGE)
        return run

    try:
        path, url, size = await collect_apk(client, storage, job_id, run.run_id)
    except PackagerError as e:
        await machine.fail(str(e))
        return run
    await machine.complete(path, url, size)
    return run
