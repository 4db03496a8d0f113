"""Exception hierarchy for the packager.

All errors raised by the engine inherit from :class:`PackagerError`, so
the orchestrator can record the message on the job and fail it with a
single ``except`` clause.

Hierarchy::

    PackagerError
    ├── TemplateFetchError
    ├── InvalidSkeletonStructure
    ├── ConfigPatchError
    ├── IconGenerationError
    ├── ResourceEditError
    ├── RepackagingError
    ├── UploadError
    ├── RemoteDispatchError
    ├── RemotePollError
    ├── BuildTimeoutError
    └── InvalidTransitionError
"""

from __future__ import annotations


class PackagerError(Exception):
    """Base exception for all packager errors."""


class TemplateFetchError(PackagerError):
    """The platform skeleton could not be fetched from object storage.

    Attributes:
        path: Storage path of the skeleton.
    """

    def __init__(self, path: str, message: str | None = None) -> None:
        self.path = path
        super().__init__(message or f"Failed to fetch template: {path}")


class InvalidSkeletonStructure(PackagerError):
    """No directory matching the platform marker was found in the skeleton."""


class ConfigPatchError(PackagerError):
    """A required config file is missing or could not be parsed.

    Attributes:
        path: Path of the offending file, relative to the project root.
    """

    def __init__(self, path: str, message: str) -> None:
        self.path = path
        super().__init__(message)


class IconGenerationError(PackagerError):
    """Icon assets could not be produced.

    Only surfaces as an exception when icon replacement is fused with a
    mandatory step; otherwise it is carried as an ``IconOutcome``.
    """


class ResourceEditError(PackagerError):
    """The executable's resource section could not be rewritten."""


class RepackagingError(PackagerError):
    """The workspace could not be written into an output archive."""


class UploadError(PackagerError):
    """The output artifact could not be uploaded.

    Attributes:
        path: Destination storage path.
    """

    def __init__(self, path: str, message: str | None = None) -> None:
        self.path = path
        super().__init__(message or f"Failed to upload artifact: {path}")


class RemoteDispatchError(PackagerError):
    """The remote CI workflow could not be dispatched or correlated."""


class RemotePollError(PackagerError):
    """Run status or artifacts could not be retrieved from the remote CI."""


class BuildTimeoutError(PackagerError):
    """A build exceeded its platform timeout.

    Attributes:
        platform: Platform being built.
        timeout: Timeout that was exceeded, in seconds.
    """

    def __init__(self, platform: str, timeout: float) -> None:
        self.platform = platform
        self.timeout = timeout
        super().__init__(f"{platform} build timed out after {timeout:g}s")


class InvalidTransitionError(PackagerError):
    """A job in a terminal state was asked to change state."""
