"""
Schema — Pydantic models shared by the packager.

BuildJob is the record the orchestrator mutates; BuildConfig is the
platform-agnostic payload a job carries.  Remote CI state (run
correlation, rate-limit budget) is modelled here as well so it can be
logged and persisted in the same shape.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class Platform(str, Enum):
    """Target platforms.  ``ANDROID_APK`` uses the remote CI strategy."""
    ANDROID = "android"
    IOS = "ios"
    WINDOWS = "windows"
    MACOS = "macos"
    LINUX = "linux"
    CHROME_EXTENSION = "chrome_extension"
    WECHAT = "wechat"
    HARMONYOS = "harmonyos"
    ANDROID_APK = "android_apk"


class JobStatus(str, Enum):
    """Build lifecycle states."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


# ── Build configuration ──────────────────────────────────────────────────────

def parse_version_code(value: Optional[str], default: int = 1) -> int:
    """Parse a numeric version code / build number, falling back to *default*."""
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


class BuildConfig(BaseModel):
    """Job-specific values patched into a skeleton."""
    url: str = Field(..., description="Initial URL the shell loads")
    app_name: str = Field(..., min_length=1)
    package_name: Optional[str] = Field(default=None, description="Package / bundle identifier")
    version_name: str = "1.0.0"
    version_code: Optional[str] = "1"
    privacy_policy: Optional[str] = None
    icon_path: Optional[str] = Field(default=None, description="Storage path of the source icon")

    # Platform extras
    description: Optional[str] = None   # chrome extension
    app_id: Optional[str] = None        # wechat mini-program id

    @property
    def version_number(self) -> int:
        return parse_version_code(self.version_code)


# ── Build job ────────────────────────────────────────────────────────────────

class BuildJob(BaseModel):
    """One build execution as seen by the job store."""
    id: str
    platform: Platform
    status: JobStatus = JobStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    config: BuildConfig

    # Set on completion only
    output_file_path: Optional[str] = None
    download_url: Optional[str] = None
    file_size: Optional[int] = None

    # Set on failure only
    error_message: Optional[str] = None

    # Remote strategy
    github_run_id: Optional[int] = None

    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ── Remote CI ────────────────────────────────────────────────────────────────

class RateLimitSnapshot(BaseModel):
    """Rate-limit budget as reported by the last remote response."""
    limit: int
    remaining: int
    reset: int          # epoch seconds
    used: int
    observed_at: float  # epoch seconds

    @property
    def usage_percent(self) -> float:
        if self.limit <= 0:
            return 0.0
        return (self.limit - self.remaining) / self.limit * 100


class RemoteRunState(str, Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class RemoteRun(BaseModel):
    """A correlated external CI execution."""
    build_id: str
    run_id: int
    status: str = RemoteRunState.QUEUED.value
    conclusion: Optional[str] = None
    html_url: Optional[str] = None
    error: Optional[str] = None

    @property
    def finished(self) -> bool:
        return self.status == RemoteRunState.COMPLETED.value

    @property
    def succeeded(self) -> bool:
        return self.finished and self.conclusion == "success"

    def job_status(self) -> JobStatus:
        """Map ``(status, conclusion)`` onto the job lifecycle."""
        if not self.finished:
            return JobStatus.PROCESSING
        return JobStatus.COMPLETED if self.succeeded else JobStatus.FAILED


class RemoteCallback(BaseModel):
    """Payload posted by the CI workflow when it finishes."""
    status: str
    run_id: Optional[int] = None
    artifact_url: Optional[str] = None
