"""
Packager Worker — packager v1

Consumes build jobs from a Redis queue and runs them through
``process_build``.  Skeletons and artifacts live in S3-compatible
storage; job state is persisted to PostgreSQL.

Queue payloads are JSON objects with a ``job_type``:

    build            {job_id, platform, config}
    remote_callback  {job_id, status, run_id?, artifact_url?}
    remote_sync      {job_id}

A missing ``job_type`` means ``build``.
"""
import asyncio
import json
import logging
import time
from typing import Optional

import redis

from packager.config import Settings, get_settings
from packager.io.job_store import PostgresJobStore
from packager.io.schema import RemoteCallback
from packager.io.storage import S3Storage
from packager.remote.github_client import GitHubActionsClient
from packager.remote.services import handle_remote_callback, sync_remote_status
from packager.runner import process_build

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("packager_worker")


class PackagerWorker:
    """
    Worker that pulls build jobs from Redis and executes them one at a time.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.redis_client: Optional[redis.Redis] = None
        self.job_store: Optional[PostgresJobStore] = None
        self.storage: Optional[S3Storage] = None

    def connect(self):
        """Establish Redis, PostgreSQL and object storage clients."""
        logger.info("Connecting to Redis...")
        self.redis_client = redis.Redis.from_url(self.settings.redis_url, decode_responses=True)
        self.redis_client.ping()
        logger.info("Redis connected")

        logger.info("Connecting to PostgreSQL...")
        self.job_store = PostgresJobStore(self.settings.database_url)
        self.job_store.init_schema()
        logger.info("PostgreSQL connected")

        self.storage = S3Storage.from_settings(self.settings)

    def run(self):
        """Main worker loop — blocking pop from Redis queue."""
        self.connect()
        queue_name = self.settings.PACKAGER_QUEUE
        logger.info(f"Packager worker started, waiting for jobs on {queue_name}...")

        while True:
            try:
                if self.redis_client is None:
                    raise RuntimeError("Redis client not connected")

                result = self.redis_client.blpop([queue_name], timeout=5)
                if result is None:
                    continue

                _, job_data = result  # type: ignore
                self.handle(json.loads(job_data))

            except KeyboardInterrupt:
                logger.info("Worker shutting down...")
                break
            except Exception as e:
                logger.error(f"Error in worker loop: {e}", exc_info=True)
                time.sleep(5)

        if self.job_store is not None:
            self.job_store.close()

    def handle(self, job: dict) -> None:
        """Dispatch one decoded queue payload."""
        job_type = job.get("job_type", "build")
        job_id = job["job_id"]
        logger.info(f"Received {job_type} job: {job_id}")

        if job_type == "build":
            final = asyncio.run(
                process_build(
                    job_id,
                    job["platform"],
                    job["config"],
                    storage=self.storage,
                    job_store=self.job_store,
                    settings=self.settings,
                )
            )
            if final is not None:
                logger.info(
                    f"Build {job_id} finished — status={final.status.value}, "
                    f"progress={final.progress}"
                )
        elif job_type == "remote_callback":
            payload = RemoteCallback.model_validate(job)
            asyncio.run(self._callback(job_id, payload))
        elif job_type == "remote_sync":
            asyncio.run(self._sync(job_id))
        else:
            logger.warning(f"Unknown job type '{job_type}', skipping")

    async def _callback(self, job_id: str, payload: RemoteCallback) -> None:
        async with GitHubActionsClient.from_settings(self.settings) as client:
            status = await handle_remote_callback(
                self.job_store, job_id, payload, client=client, storage=self.storage
            )
        logger.info(f"Callback for {job_id} applied: {status.value if status else 'ignored'}")

    async def _sync(self, job_id: str) -> None:
        async with GitHubActionsClient.from_settings(self.settings) as client:
            run = await sync_remote_status(self.job_store, client, self.storage, job_id)
        if run is not None:
            logger.info(f"Sync for {job_id}: run {run.run_id} {run.status}")


# =============================================================================
# Entry point
# =============================================================================

def main():
    PackagerWorker().run()


if __name__ == "__main__":
    main()
