"""Object storage adapters: skeleton downloads and artifact uploads."""

import logging
from pathlib import Path
from typing import Optional, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from packager.exceptions import TemplateFetchError, UploadError

logger = logging.getLogger(__name__)


class ObjectStorage(Protocol):
    """Capability the engine needs from whatever storage backend is deployed."""

    def download_file(self, path: str) -> bytes: ...

    def upload_file(self, path: str, content: bytes) -> None: ...

    def get_temp_download_url(self, path: str) -> str: ...


class S3Storage:
    """S3/MinIO-backed object storage."""

    def __init__(
        self,
        bucket: str,
        endpoint_url: Optional[str] = None,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        region: str = "us-east-1",
        url_expiry: int = 3600,
        client=None,
    ):
        """Initialize the S3 client.

        Args:
            bucket: Bucket holding skeletons and build outputs
            endpoint_url: Custom endpoint (e.g., http://minio:9000); None for AWS
            access_key: S3 access key
            secret_key: S3 secret key
            region: AWS region (use us-east-1 for MinIO default)
            url_expiry: Lifetime of presigned download URLs, in seconds
            client: Pre-built boto3 client (tests inject a stubbed one)
        """
        self.bucket = bucket
        self.url_expiry = url_expiry

        self._client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
            config=Config(
                signature_version="s3v4",
                s3={"addressing_style": "path"},
            ),
        )

    @classmethod
    def from_settings(cls, settings) -> "S3Storage":
        return cls(
            bucket=settings.S3_BUCKET,
            endpoint_url=settings.S3_ENDPOINT,
            access_key=settings.S3_ACCESS_KEY,
            secret_key=settings.S3_SECRET_KEY,
            region=settings.S3_REGION,
            url_expiry=settings.S3_TEMP_URL_EXPIRY,
        )

    def download_file(self, path: str, chunk_size: int = 1024 * 1024) -> bytes:
        """Download an object, reading the body in chunks.

        Args:
            path: Object key
            chunk_size: Chunk size in bytes

        Returns:
            Object content

        Raises:
            TemplateFetchError: If the object is missing or unreadable
        """
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=path)
            chunks = [
                chunk for chunk in response["Body"].iter_chunks(chunk_size=chunk_size)
            ]
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("NoSuchKey", "404"):
                raise TemplateFetchError(path, f"File not found: {path}") from e
            logger.error(f"Failed to download {path}: {e}")
            raise TemplateFetchError(path, f"Failed to download {path}: {e}") from e
        except BotoCoreError as e:
            logger.error(f"Failed to download {path}: {e}")
            raise TemplateFetchError(path, f"Failed to download {path}: {e}") from e

        content = b"".join(chunks)
        logger.debug("Downloaded s3://%s/%s (%s bytes)", self.bucket, path, len(content))
        return content

    def upload_file(self, path: str, content: bytes) -> None:
        """Upload an object.

        Raises:
            UploadError: If the put fails
        """
        try:
            self._client.put_object(Bucket=self.bucket, Key=path, Body=content)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to upload {path}: {e}")
            raise UploadError(path, f"Failed to upload {path}: {e}") from e
        logger.info("Uploaded s3://%s/%s (%s bytes)", self.bucket, path, len(content))

    def get_temp_download_url(self, path: str) -> str:
        """Presigned GET URL valid for ``url_expiry`` seconds."""
        try:
            return self._client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": path},
                ExpiresIn=self.url_expiry,
            )
        except (ClientError, BotoCoreError) as e:
            raise UploadError(path, f"Failed to sign download URL for {path}: {e}") from e


class LocalStorage:
    """Directory-backed object storage for development and tests.

    Layout: <base_dir>/<path>
    """

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        target = (self.base_dir / path).resolve()
        if self.base_dir.resolve() not in target.parents:
            raise ValueError(f"Path escapes storage root: {path}")
        return target

    def download_file(self, path: str) -> bytes:
        try:
            return self._resolve(path).read_bytes()
        except (OSError, ValueError) as e:
            raise TemplateFetchError(path, f"File not found: {path}") from e

    def upload_file(self, path: str, content: bytes) -> None:
        try:
            target = self._resolve(path)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
        except (OSError, ValueError) as e:
            raise UploadError(path, f"Failed to upload {path}: {e}") from e

    def get_temp_download_url(self, path: str) -> str:
        return self._resolve(path).as_uri()
