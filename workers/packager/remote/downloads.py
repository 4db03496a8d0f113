"""
Artifact downloads deduplicated by ``(run_id, artifact_name)``.

Concurrent requesters for the same key await one shared task.  The
entry is dropped as soon as that task settles, success or failure, so
a later call starts a fresh transfer.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class ArtifactDownloads:
    """Map of in-flight downloads."""

    def __init__(self):
        self._inflight: dict[str, asyncio.Task] = {}

    @staticmethod
    def key(run_id: int, artifact_name: str) -> str:
        return f"{run_id}-{artifact_name}"

    def in_flight(self) -> int:
        return len(self._inflight)

    async def fetch(
        self,
        run_id: int,
        artifact_name: str,
        download: Callable[[], Awaitable[bytes]],
    ) -> bytes:
        """Return the artifact bytes, joining an existing transfer if one is running."""
        key = self.key(run_id, artifact_name)
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(download())
            self._inflight[key] = task
            task.add_done_callback(lambda done, k=key: self._settle(k, done))
        else:
            logger.info("Joining in-flight download %s", key)
        # shield: one requester being cancelled must not cancel the shared transfer
        return await asyncio.shield(task)

    def _settle(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Download %s failed: %s", key, task.exception())


_default_downloads: Optional[ArtifactDownloads] = None


def default_downloads() -> ArtifactDownloads:
    """The process-wide dedup map shared by every remote client."""
    global _default_downloads
    if _default_downloads is None:
        _default_downloads = ArtifactDownloads()
    return _default_downloads
