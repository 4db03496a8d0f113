"""
Locator — find the real project root inside an extracted skeleton.

Skeleton archives may wrap the project in zero or more directories.
The search is a bounded depth-first walk that returns the first
directory satisfying a marker predicate.  It runs over the small
``DirectoryView`` abstraction so it can be exercised without touching
the filesystem.
"""
from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import Callable, Iterable, Optional, Protocol, TypeVar

from packager.exceptions import InvalidSkeletonStructure

P = TypeVar("P")

# Archive tooling leaves these behind; never descend into them.
IGNORED_DIRS = frozenset({"__MACOSX"})


class DirectoryView(Protocol[P]):
    def join(self, path: P, *parts: str) -> P: ...

    def is_file(self, path: P) -> bool: ...

    def is_dir(self, path: P) -> bool: ...

    def subdirs(self, path: P) -> list[P]: ...


Marker = Callable[[DirectoryView, object], bool]


class FileSystemView:
    """DirectoryView over real directories."""

    def join(self, path: Path, *parts: str) -> Path:
        return path.joinpath(*parts)

    def is_file(self, path: Path) -> bool:
        return path.is_file()

    def is_dir(self, path: Path) -> bool:
        return path.is_dir()

    def subdirs(self, path: Path) -> list[Path]:
        return sorted(p for p in path.iterdir() if p.is_dir())


class MemoryView:
    """DirectoryView over a set of relative file paths (e.g. an archive listing)."""

    def __init__(self, files: Iterable[str]):
        self.files: set[PurePosixPath] = set()
        self.dirs: set[PurePosixPath] = {PurePosixPath(".")}
        for name in files:
            p = PurePosixPath(name)
            if name.endswith("/"):
                self.dirs.add(p)
            else:
                self.files.add(p)
            self.dirs.update(p.parents)

    def join(self, path: PurePosixPath, *parts: str) -> PurePosixPath:
        return path.joinpath(*parts)

    def is_file(self, path: PurePosixPath) -> bool:
        return path in self.files

    def is_dir(self, path: PurePosixPath) -> bool:
        return path in self.dirs

    def subdirs(self, path: PurePosixPath) -> list[PurePosixPath]:
        return sorted(d for d in self.dirs if d != path and d.parent == path)


# ── Marker predicates ────────────────────────────────────────────────────────

def has_file(*parts: str) -> Marker:
    """Directory contains the file at *parts*."""
    return lambda view, path: view.is_file(view.join(path, *parts))


def has_dir(*parts: str) -> Marker:
    """Directory contains the subdirectory at *parts*."""
    return lambda view, path: view.is_dir(view.join(path, *parts))


def all_of(*markers: Marker) -> Marker:
    return lambda view, path: all(m(view, path) for m in markers)


def any_of(*markers: Marker) -> Marker:
    return lambda view, path: any(m(view, path) for m in markers)


def name_endswith(suffix: str) -> Marker:
    """Directory's own name ends with *suffix* (e.g. ``.app`` bundles)."""
    return lambda view, path: PurePosixPath(str(path)).name.endswith(suffix)


# ── Search ───────────────────────────────────────────────────────────────────

def locate_project_root(
    view: DirectoryView,
    start,
    marker: Marker,
    max_depth: int = 3,
) -> Optional[object]:
    """
    Depth-first search for the first directory satisfying *marker*.

    *start* itself is checked first, then each subdirectory (sorted by
    name) with ``max_depth - 1``.  Hidden directories and ``__MACOSX``
    are skipped.  Returns None if nothing matches within the bound.
    """
    if marker(view, start):
        return start
    if max_depth <= 0:
        return None
    for child in view.subdirs(start):
        name = PurePosixPath(str(child)).name
        if name.startswith(".") or name in IGNORED_DIRS:
            continue
        found = locate_project_root(view, child, marker, max_depth - 1)
        if found is not None:
            return found
    return None


def find_project_root(
    directory: Path,
    marker: Marker,
    max_depth: int = 3,
    description: str = "project root",
) -> Path:
    """Filesystem wrapper around :func:`locate_project_root`.

    Raises:
        InvalidSkeletonStructure: If no matching directory is found.
    """
    found = locate_project_root(FileSystemView(), Path(directory), marker, max_depth)
    if found is None:
        raise InvalidSkeletonStructure(
            f"Could not find {description} within {max_depth} levels of {directory}"
        )
    return found
