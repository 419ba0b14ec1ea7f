"""Codebase file discovery and reading."""

import fnmatch
import logging
import os
from pathlib import Path, PurePosixPath
from typing import List, Optional, Sequence

from ..exceptions import UnreadableFileError

logger = logging.getLogger(__name__)

BINARY_SNIFF_BYTES = 8192


def match_globs(path: str, globs: Sequence[str]) -> bool:
    """Match a relative path (or its file name) against glob patterns, case-insensitively."""
    if not globs:
        return False
    lower_path = path.lower()
    lower_name = PurePosixPath(path).name.lower()
    for pattern in globs:
        lowered = pattern.lower()
        if fnmatch.fnmatch(lower_path, lowered) or fnmatch.fnmatch(lower_name, lowered):
            return True
    return False


def discover_files(root: Path, exclude_dirs: Sequence[str],
                   file_paths: Optional[Sequence[str]] = None) -> List[str]:
    """List candidate files under ``root`` as sorted POSIX paths relative to it.

    ``file_paths`` pre-filters the list; entries outside ``root`` are dropped.
    """
    root = Path(root).resolve()
    if file_paths is not None:
        found = set()
        for file_path in file_paths:
            path = Path(file_path)
            full = path if path.is_absolute() else root / path
            try:
                relative = full.resolve().relative_to(root)
            except ValueError:
                logger.debug("Ignoring %s: outside %s", file_path, root)
                continue
            if full.is_file():
                found.add(relative.as_posix())
        return sorted(found)

    excluded = set(exclude_dirs)
    found = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in excluded)
        base = Path(dirpath).relative_to(root)
        for filename in filenames:
            found.append((base / filename).as_posix())
    return sorted(found)


def read_source(path: Path, max_bytes: int) -> str:
    """Read a text file for scanning.

    Raises:
        UnreadableFileError: For oversize, binary or unreadable files.
    """
    try:
        size = path.stat().st_size
        if size > max_bytes:
            raise UnreadableFileError(str(path), f"larger than {max_bytes // 1024} KB")
        with open(path, 'rb') as f:
            raw = f.read()
    except OSError as e:
        raise UnreadableFileError(str(path), e.strerror or str(e)) from e

    if b'\x00' in raw[:BINARY_SNIFF_BYTES]:
        raise UnreadableFileError(str(path), "binary file")
    for encoding in ('utf-8', 'latin1'):
        try:
            return raw.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise UnreadableFileError(str(path), "undecodable text")
