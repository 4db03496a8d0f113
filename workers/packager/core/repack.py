"""
Repackager — write a workspace tree into an in-memory archive.

Entries are added in sorted order with explicit Unix modes: 0755 for
anything the platform's executable rule recognizes, 0644 otherwise.
Default archiver modes are never relied on.
"""
import io
import logging
import stat
import tarfile
import time
import zipfile
from pathlib import Path, PurePosixPath
from typing import Callable, Iterator, Optional

from packager.exceptions import RepackagingError

logger = logging.getLogger(__name__)

EXEC_MODE = 0o755
FILE_MODE = 0o644
DIR_MODE = 0o755

INSTALL_SCRIPTS = frozenset({"install.sh", "uninstall.sh"})
WRAPPER_SCRIPTS = frozenset({"gradlew"})

ExecutableRule = Callable[[PurePosixPath], bool]


# ── Executable rules ─────────────────────────────────────────────────────────

def is_install_script(path: PurePosixPath) -> bool:
    return path.name in INSTALL_SCRIPTS


def launcher_rule(*names: str) -> ExecutableRule:
    """Install scripts, the named launchers, and extension-less files."""
    launchers = frozenset(names)

    def rule(path: PurePosixPath) -> bool:
        return is_install_script(path) or path.name in launchers or "." not in path.name

    return rule


def bundle_rule(path: PurePosixPath) -> bool:
    """Files under an app bundle's ``Contents/MacOS`` directory."""
    return "/Contents/MacOS/" in f"/{path}" or is_install_script(path)


def default_rule(path: PurePosixPath) -> bool:
    """Install scripts and build-tool wrappers shipped in source bundles."""
    return is_install_script(path) or path.name in WRAPPER_SCRIPTS


# ── Walking ──────────────────────────────────────────────────────────────────

def iter_tree(root: Path) -> Iterator[tuple[Path, PurePosixPath]]:
    """Yield ``(absolute, relative)`` for every directory and file, sorted."""
    for path in sorted(root.rglob("*")):
        yield path, PurePosixPath(path.relative_to(root).as_posix())


def archive_name(rel: PurePosixPath, project: PurePosixPath, prefix: str) -> PurePosixPath:
    """Entry name for *rel*: the project subtree is re-homed under *prefix*."""
    if not prefix:
        return rel
    if project == PurePosixPath("."):
        return PurePosixPath(prefix) / rel
    if rel == project or project in rel.parents:
        return PurePosixPath(prefix) / rel.relative_to(project)
    return rel


def iter_entries(
    base: Path,
    project: Optional[Path] = None,
    prefix: str = "",
) -> Iterator[tuple[Path, PurePosixPath]]:
    """Yield ``(absolute, archive name)`` for everything under *base*.

    Files outside *project* keep their path relative to *base*.  With a
    *prefix*, directories that only lead down to the project are dropped
    since the project no longer lives under them.
    """
    project_rel = PurePosixPath((project or base).relative_to(base).as_posix())
    for path, rel in iter_tree(base):
        if prefix and path.is_dir() and rel in project_rel.parents:
            continue
        yield path, archive_name(rel, project_rel, prefix)


def entry_mode(rel: PurePosixPath, rule: ExecutableRule) -> int:
    return EXEC_MODE if rule(rel) else FILE_MODE


def pack_zip(
    base: Path,
    prefix: str = "",
    rule: ExecutableRule = default_rule,
    compresslevel: int = 9,
    project: Optional[Path] = None,
) -> bytes:
    """Zip *base*; entries under *project* are named ``prefix/relative``."""
    buf = io.BytesIO()
    try:
        with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED, compresslevel=compresslevel) as zf:
            for path, rel in iter_entries(base, project, prefix):
                name = str(rel)
                if path.is_dir():
                    info = zipfile.ZipInfo(name + "/", date_time=_zip_time(path))
                    info.create_system = 3
                    info.external_attr = ((stat.S_IFDIR | DIR_MODE) << 16) | 0x10
                    zf.writestr(info, b"")
                    continue
                info = zipfile.ZipInfo(name, date_time=_zip_time(path))
                info.compress_type = zipfile.ZIP_DEFLATED
                info.create_system = 3  # Unix, so external_attr carries the mode
                info.external_attr = (stat.S_IFREG | entry_mode(rel, rule)) << 16
                zf.writestr(info, path.read_bytes())
    except OSError as e:
        raise RepackagingError(f"Failed to create zip archive: {e}") from e
    return buf.getvalue()


def pack_tar_gz(
    base: Path,
    prefix: str = "",
    rule: ExecutableRule = default_rule,
    compresslevel: int = 9,
    project: Optional[Path] = None,
) -> bytes:
    """tar+gzip *base*; members under *project* are named ``prefix/relative``."""
    buf = io.BytesIO()
    try:
        with tarfile.open(fileobj=buf, mode="w:gz", compresslevel=compresslevel) as tf:
            for path, rel in iter_entries(base, project, prefix):
                info = tarfile.TarInfo(str(rel))
                info.mtime = int(path.stat().st_mtime)
                if path.is_dir():
                    info.type = tarfile.DIRTYPE
                    info.mode = DIR_MODE
                    tf.addfile(info)
                    continue
                data = path.read_bytes()
                info.size = len(data)
                info.mode = entry_mode(rel, rule)
                tf.addfile(info, io.BytesIO(data))
    except (OSError, tarfile.TarError) as e:
        raise RepackagingError(f"Failed to create tar.gz archive: {e}") from e
    return buf.getvalue()


def repackage(
    base: Path,
    archive_format: str,
    prefix: str = "",
    rule: Optional[ExecutableRule] = None,
    project: Optional[Path] = None,
) -> bytes:
    rule = rule or default_rule
    if archive_format == "zip":
        data = pack_zip(base, prefix, rule, project=project)
    elif archive_format == "tar.gz":
        data = pack_tar_gz(base, prefix, rule, project=project)
    else:
        raise RepackagingError(f"Unsupported archive format: {archive_format}")
    logger.debug("Packed %s as %s (%s bytes)", base, archive_format, len(data))
    return data


def _zip_time(path: Path) -> tuple:
    # zip cannot represent dates before 1980
    t = time.localtime(max(path.stat().st_mtime, 315532800))
    return t[:6]
