"""
Workspace — ephemeral extraction directory owned by one build.

The directory name embeds platform, build id and a timestamp so
concurrent builds never collide.  Removal is attempted on every exit
path; removal errors are logged and never replace the build's own
exception.
"""
import io
import logging
import shutil
import tarfile
import tempfile
import time
import zipfile
from contextlib import contextmanager
from pathlib import Path, PurePosixPath
from typing import Iterator, Optional

from packager.exceptions import InvalidSkeletonStructure

logger = logging.getLogger(__name__)


def workspace_name(platform: str, build_id: str) -> str:
    return f"{platform}-build-{build_id}-{time.time_ns()}"


@contextmanager
def workspace(
    platform: str,
    build_id: str,
    root: Optional[str] = None,
) -> Iterator[Path]:
    """Create a fresh build directory and remove it on exit."""
    base = Path(root) if root else Path(tempfile.gettempdir())
    base.mkdir(parents=True, exist_ok=True)
    path = base / workspace_name(platform, build_id)
    path.mkdir()
    logger.debug("[build %s] workspace %s", build_id, path)
    try:
        yield path
    finally:
        try:
            shutil.rmtree(path)
        except OSError as e:
            logger.warning("[build %s] failed to clean workspace %s: %s", build_id, path, e)


def _safe_member(dest: Path, name: str) -> Path:
    """Resolve an archive member under *dest*, rejecting path traversal."""
    rel = PurePosixPath(name.replace("\\", "/"))
    if rel.is_absolute() or ".." in rel.parts:
        raise InvalidSkeletonStructure(f"Unsafe archive member: {name}")
    return dest.joinpath(*rel.parts)


def extract_zip(data: bytes, dest: Path) -> list[str]:
    """Extract a zip buffer into *dest*, restoring Unix modes when present."""
    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as e:
        raise InvalidSkeletonStructure(f"Skeleton is not a valid zip archive: {e}") from e

    names = []
    with archive:
        for info in archive.infolist():
            target = _safe_member(dest, info.filename)
            if info.is_dir():
                target.mkdir(parents=True, exist_ok=True)
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            with archive.open(info) as src, open(target, "wb") as out:
                shutil.copyfileobj(src, out)
            mode = (info.external_attr >> 16) & 0o777
            if mode:
                target.chmod(mode)
            names.append(info.filename)
    return names


def extract_tar_gz(data: bytes, dest: Path) -> list[str]:
    """Extract a tar+gzip buffer into *dest* (regular files and dirs only)."""
    try:
        archive = tarfile.open(fileobj=io.BytesIO(data), mode="r:gz")
    except (tarfile.TarError, OSError) as e:
        raise InvalidSkeletonStructure(f"Skeleton is not a valid tar.gz archive: {e}") from e

    names = []
    with archive:
        for member in archive.getmembers():
            target = _safe_member(dest, member.name)
            if member.isdir():
                target.mkdir(parents=True, exist_ok=True)
                continue
            if not member.isfile():
                logger.debug("Skipping non-regular tar member %s", member.name)
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            src = archive.extractfile(member)
            if src is None:
                continue
            with src, open(target, "wb") as out:
                shutil.copyfileobj(src, out)
            target.chmod(member.mode & 0o777 or 0o644)
            names.append(member.name)
    return names


def extract_archive(data: bytes, dest: Path, archive_format: str) -> list[str]:
    if archive_format == "zip":
        return extract_zip(data, dest)
    if archive_format == "tar.gz":
        return extract_tar_gz(data, dest)
    raise ValueError(f"Unsupported archive format: {archive_format}")
