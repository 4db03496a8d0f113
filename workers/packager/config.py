"""
Packager configuration
"""
from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Packager settings"""

    # Object storage (S3 / MinIO)
    S3_ENDPOINT: str | None = None
    S3_ACCESS_KEY: str = "minioadmin"
    S3_SECRET_KEY: str = "minioadmin"
    S3_BUCKET: str = "packager"
    S3_REGION: str = "us-east-1"
    S3_TEMP_URL_EXPIRY: int = 3600  # seconds

    # PostgreSQL job store
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "packager"
    POSTGRES_USER: str = "packager"
    POSTGRES_PASSWORD: str = "packager_pw"

    # Redis queue
    REDIS_HOST: str = "redis"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    PACKAGER_QUEUE: str = "packager:queue"

    # Workspaces
    WORKSPACE_ROOT: str | None = None  # None -> system temp dir

    # Remote CI (GitHub Actions)
    GITHUB_TOKEN: str | None = None
    GITHUB_OWNER: str | None = None
    GITHUB_APK_REPO: str | None = None
    GITHUB_WORKFLOW: str = "build-android-apk.yml"
    GITHUB_REF: str = "master"
    GITHUB_API_BASE: str = "https://api.github.com"
    PUBLIC_BASE_URL: str = "http://localhost:3000"

    # Timing
    DISPATCH_SETTLE_SECONDS: float = 2.0
    POLL_INTERVAL_SECONDS: float = 30.0
    REMOTE_MAX_WAIT_SECONDS: float = 3600.0
    BUILD_TIMEOUT_SECONDS: float | None = None  # overrides per-platform defaults

    @property
    def database_url(self) -> str:
        """PostgreSQL connection string"""
        return f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    @property
    def redis_url(self) -> str:
        """Redis connection string"""
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    @property
    def callback_url(self) -> str:
        """Endpoint the CI workflow reports back to"""
        return f"{self.PUBLIC_BASE_URL.rstrip('/')}/api/github-callback"

    @property
    def github_configured(self) -> bool:
        return bool(self.GITHUB_TOKEN and self.GITHUB_OWNER and self.GITHUB_APK_REPO)

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    return Settings()
