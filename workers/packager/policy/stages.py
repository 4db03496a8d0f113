"""
Stages — progress checkpoints and timeouts per strategy.

Values are non-decreasing in declaration order; 100 is reserved for
completion and only ever written by ``BuildStateMachine.complete``.
"""
from enum import Enum


class Stage(str, Enum):
    INITIALIZING = "initializing"
    DOWNLOADING = "downloading"
    EXTRACTING = "extracting"
    CONFIGURING = "configuring"
    PROCESSING_ICONS = "processing_icons"
    PACKAGING = "packaging"
    UPLOADING = "uploading"
    FINALIZING = "finalizing"
    COMPLETED = "completed"

    # Remote CI strategy
    SOURCE_READY = "source_ready"
    DISPATCHED = "dispatched"
    RUNNING = "running"
    DOWNLOADING_ARTIFACT = "downloading_artifact"


LOCAL_PROGRESS: dict[Stage, int] = {
    Stage.INITIALIZING: 0,
    Stage.DOWNLOADING: 12,
    Stage.EXTRACTING: 20,
    Stage.CONFIGURING: 35,
    Stage.PROCESSING_ICONS: 55,
    Stage.PACKAGING: 75,
    Stage.UPLOADING: 90,
    Stage.FINALIZING: 96,
    Stage.COMPLETED: 100,
}

# The local source build that feeds the remote run is squeezed into 0-45.
REMOTE_SOURCE_SCALE = 0.45

REMOTE_PROGRESS: dict[Stage, int] = {
    Stage.SOURCE_READY: 45,
    Stage.DISPATCHED: 50,
    Stage.RUNNING: 60,
    Stage.DOWNLOADING_ARTIFACT: 90,
    Stage.UPLOADING: 95,
    Stage.COMPLETED: 100,
}

# While the remote run is in flight progress creeps from RUNNING up to this.
REMOTE_RUNNING_CEILING = 85


def local_progress(stage: Stage) -> int:
    return LOCAL_PROGRESS[stage]


def remote_source_progress(stage: Stage) -> int:
    return int(LOCAL_PROGRESS[stage] * REMOTE_SOURCE_SCALE)


def remote_progress(stage: Stage) -> int:
    return REMOTE_PROGRESS[stage]


def running_progress(elapsed: float, max_wait: float) -> int:
    """Interpolate between RUNNING and the ceiling by elapsed fraction."""
    start = REMOTE_PROGRESS[Stage.RUNNING]
    if max_wait <= 0:
        return start
    fraction = min(max(elapsed / max_wait, 0.0), 1.0)
    return start + int((REMOTE_RUNNING_CEILING - start) * fraction)
