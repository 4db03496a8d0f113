"""GitHub Actions client for the remote APK build."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Optional

import httpx

from packager.exceptions import RemoteDispatchError, RemotePollError
from packager.io.schema import RemoteRun, RemoteRunState
from packager.remote.downloads import ArtifactDownloads, default_downloads
from packager.remote.rate_limiter import RateLimiter, default_rate_limiter

logger = logging.getLogger(__name__)

API_VERSION = "2022-11-28"
MIB = 1024 * 1024


class GitHubActionsClient:
    """Dispatches, polls and downloads one repository's build workflow."""

    def __init__(
        self,
        token: str,
        owner: str,
        repo: str,
        workflow: str = "build-android-apk.yml",
        ref: str = "master",
        api_base: str = "https://api.github.com",
        rate_limiter: Optional[RateLimiter] = None,
        downloads: Optional[ArtifactDownloads] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ):
        """Initialize the client.

        Args:
            token: Bearer token with ``actions:write`` on the repository
            owner: Repository owner
            repo: Repository name
            workflow: Workflow file name
            ref: Git ref the workflow runs on
            api_base: REST API root
            rate_limiter: Shared rate-limit tracker (process-wide default)
            downloads: Shared download dedup map (process-wide default)
            transport: Custom httpx transport (tests use ``httpx.MockTransport``)
            timeout: Per-request timeout for API calls, in seconds
        """
        self.owner = owner
        self.repo = repo
        self.workflow = workflow
        self.ref = ref
        self.rate_limiter = rate_limiter or default_rate_limiter()
        self.downloads = downloads or default_downloads()

        self._client = httpx.AsyncClient(
            base_url=api_base.rstrip("/"),
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": API_VERSION,
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "GitHubActionsClient":
        if not settings.github_configured:
            raise RemoteDispatchError(
                "GitHub configuration missing (GITHUB_TOKEN, GITHUB_OWNER, GITHUB_APK_REPO)"
            )
        return cls(
            token=settings.GITHUB_TOKEN,
            owner=settings.GITHUB_OWNER,
            repo=settings.GITHUB_APK_REPO,
            workflow=settings.GITHUB_WORKFLOW,
            ref=settings.GITHUB_REF,
            api_base=settings.GITHUB_API_BASE,
            **kwargs,
        )

    async def __aenter__(self) -> "GitHubActionsClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    @property
    def repo_path(self) -> str:
        return f"/repos/{self.owner}/{self.repo}"

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        if self.rate_limiter.should_throttle():
            logger.warning(
                "Remote API usage at %.1f%%, consider slowing down",
                self.rate_limiter.usage_percent(),
            )
        response = await self._client.request(method, path, **kwargs)
        self.rate_limiter.update_from_headers(response.headers)
        return response

    # ── Dispatch ─────────────────────────────────────────────────────────────

    async def dispatch_workflow(self, build_id: str, source_url: str, callback_url: str) -> None:
        """POST a workflow_dispatch event.

        Raises:
            RemoteDispatchError: On transport errors or a non-2xx response.
        """
        payload = {
            "ref": self.ref,
            "inputs": {
                "build_id": build_id,
                "source_url": source_url,
                "callback_url": callback_url,
            },
        }
        try:
            response = await self._request(
                "POST",
                f"{self.repo_path}/actions/workflows/{self.workflow}/dispatches",
                json=payload,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise RemoteDispatchError(
                f"Failed to trigger GitHub Actions: {e.response.status_code} {e.response.text}"
            ) from e
        except httpx.HTTPError as e:
            raise RemoteDispatchError(f"Failed to trigger GitHub Actions: {e}") from e
        logger.info("[build %s] dispatched %s on %s", build_id, self.workflow, self.ref)

    async def latest_run_id(self) -> int:
        """Id of the newest run of the workflow.

        Raises:
            RemoteDispatchError: If no run is listed.
        """
        try:
            response = await self._request(
                "GET",
                f"{self.repo_path}/actions/workflows/{self.workflow}/runs",
                params={"per_page": 1},
            )
            response.raise_for_status()
            runs = response.json().get("workflow_runs") or []
        except (httpx.HTTPError, ValueError) as e:
            raise RemoteDispatchError(f"Failed to list workflow runs: {e}") from e
        if not runs:
            raise RemoteDispatchError("Workflow was dispatched but no run is listed")
        return int(runs[0]["id"])

    async def trigger_build(
        self,
        build_id: str,
        source_url: str,
        callback_url: str,
        settle_seconds: float = 2.0,
    ) -> RemoteRun:
        """
        Dispatch and correlate the resulting run.

        The dispatch endpoint returns no run id, so the newest run after
        a short delay is taken as this build's.  Concurrent dispatches
        can be mis-correlated.
        """
        await self.dispatch_workflow(build_id, source_url, callback_url)
        await asyncio.sleep(settle_seconds)
        run_id = await self.latest_run_id()
        logger.info("[build %s] correlated with run %s", build_id, run_id)
        return RemoteRun(build_id=build_id, run_id=run_id)

    # ── Status ───────────────────────────────────────────────────────────────

    async def get_run(self, build_id: str, run_id: int) -> RemoteRun:
        """Fetch a run's status.

        Raises:
            RemotePollError: On transport errors or a non-2xx response.
        """
        try:
            response = await self._request("GET", f"{self.repo_path}/actions/runs/{run_id}")
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise RemotePollError(f"Failed to get run {run_id} status: {e}") from e
        return RemoteRun(
            build_id=build_id,
            run_id=run_id,
            status=data.get("status") or RemoteRunState.QUEUED.value,
            conclusion=data.get("conclusion"),
            html_url=data.get("html_url"),
        )

    async def check_run_status(self, build_id: str, run_id: int) -> RemoteRun:
        """Like :meth:`get_run`, but a transport error reads as a failed run."""
        try:
            return await self.get_run(build_id, run_id)
        except RemotePollError as e:
            logger.error("[build %s] %s", build_id, e)
            return RemoteRun(
                build_id=build_id,
                run_id=run_id,
                status=RemoteRunState.COMPLETED.value,
                conclusion="failure",
                error=str(e),
            )

    # ── Artifacts ────────────────────────────────────────────────────────────

    async def find_artifact(self, run_id: int, name: str) -> dict:
        try:
            response = await self._request(
                "GET",
                f"{self.repo_path}/actions/runs/{run_id}/artifacts",
                params={"per_page": 100},
            )
            response.raise_for_status()
            artifacts = response.json().get("artifacts") or []
        except (httpx.HTTPError, ValueError) as e:
            raise RemotePollError(f"Failed to list artifacts for run {run_id}: {e}") from e
        for artifact in artifacts:
            if artifact.get("name") == name:
                return artifact
        raise RemotePollError(f"Artifact {name} not found on run {run_id}")

    async def download_artifact(self, run_id: int, name: str) -> bytes:
        """Download an artifact archive; concurrent callers share one transfer."""
        async def _download() -> bytes:
            artifact = await self.find_artifact(run_id, name)
            return await self._stream(artifact["archive_download_url"], name)

        return await self.downloads.fetch(run_id, name, _download)

    async def _stream(self, url: str, label: str, timeout: float = 600.0) -> bytes:
        """Read a download in chunks, logging throughput about once per MiB."""
        chunks: list[bytes] = []
        received = 0
        next_log = MIB
        started = time.monotonic()
        try:
            async with self._client.stream(
                "GET", url, follow_redirects=True, timeout=timeout
            ) as response:
                self.rate_limiter.update_from_headers(response.headers)
                response.raise_for_status()
                async for chunk in response.aiter_bytes():
                    chunks.append(chunk)
                    received += len(chunk)
                    if received >= next_log:
                        elapsed = max(time.monotonic() - started, 1e-6)
                        logger.info(
                            "Downloading %s: %.1f MB (%.2f MB/s)",
                            label, received / MIB, received / MIB / elapsed,
                        )
                        next_log += MIB
        except httpx.HTTPError as e:
            raise RemotePollError(f"Failed to download artifact {label}: {e}") from e

        elapsed = max(time.monotonic() - started, 1e-6)
        logger.info(
            "Downloaded %s: %.1f MB in %.1fs", label, received / MIB, elapsed
        )
        return b"".join(chunks)
