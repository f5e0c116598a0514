"""Read-only access to test sources.

The coupling analyzer never touches the filesystem directly; it goes through
a ContentProvider so it can run against other sources (an in-memory tree in
tests, a repository snapshot, ...).
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from .globs import matches_any

logger = logging.getLogger(__name__)


@dataclass
class WalkResult:
    files: list[Path] = field(default_factory=list)
    truncated: bool = False


class ContentProvider(Protocol):
    def exists(self, path: Path) -> bool: ...

    def read_file(self, path: Path, *, max_bytes: int | None = None) -> str: ...

    def list_dir(self, path: Path) -> list[str]: ...

    def walk(
        self,
        root: Path,
        *,
        include: Iterable[str],
        exclude: Iterable[str] = (),
        max_files: int | None = None,
    ) -> WalkResult: ...


class FilesystemContentProvider:
    """ContentProvider over the local filesystem."""

    def exists(self, path: Path) -> bool:
        try:
            return path.exists()
        except OSError:
            return False

    def read_file(self, path: Path, *, max_bytes: int | None = None) -> str:
        """Read text, stopping at `max_bytes`. Undecodable bytes are replaced.

        Raises OSError if the file cannot be read.
        """
        with path.open("rb") as f:
            data = f.read() if max_bytes is None else f.read(max_bytes)
        if max_bytes is not None and len(data) == max_bytes and path.stat().st_size > max_bytes:
            logger.debug("Read of %s capped at %d bytes", path, max_bytes)
        return data.decode("utf-8", errors="replace")

    def list_dir(self, path: Path) -> list[str]:
        return sorted(os.listdir(path))

    def walk(
        self,
        root: Path,
        *,
        include: Iterable[str],
        exclude: Iterable[str] = (),
        max_files: int | None = None,
    ) -> WalkResult:
        """Find files under `root` whose relative path matches `include`.

        Excluded directories are pruned before descending. Directory order
        is sorted so the result is stable. Stops (truncated=True) once
        `max_files` files were found.
        """
        include = tuple(include)
        exclude = tuple(exclude)
        result = WalkResult()

        for dirpath, dirnames, filenames in os.walk(root, topdown=True):
            current = Path(dirpath)
            rel_dir = current.relative_to(root).as_posix()
            prefix = "" if rel_dir == "." else f"{rel_dir}/"

            # Prune directories we don't want to traverse. A directory is tested
            # both as `dir` and as `dir/`, so `**/fixtures` and `**/fixtures/**`
            # both prune it.
            dirnames[:] = sorted(
                d
                for d in dirnames
                if not (
                    matches_any(f"{prefix}{d}", exclude)
                    or matches_any(f"{prefix}{d}/", exclude)
                )
            )

            for name in sorted(filenames):
                rel = f"{prefix}{name}"
                if matches_any(rel, exclude) or not matches_any(rel, include):
                    continue
                if max_files is not None and len(result.files) >= max_files:
                    logger.warning(
                        "Test discovery under %s stopped at %d files", root, max_files
                    )
                    result.truncated = True
                    return result
                result.files.append(current / name)

        return result
