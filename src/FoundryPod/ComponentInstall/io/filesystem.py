# === NAVMAP v1 ===
# {
#   "module": "FoundryPod.ComponentInstall.io.filesystem",
#   "purpose": "Provide filesystem utilities for hashing, atomic writes, staging, and atomic directory swaps",
#   "sections": [
#     {"id": "hashing", "name": "Hashing Utilities", "anchor": "HAS", "kind": "helpers"},
#     {"id": "atomic-writes", "name": "Atomic File Writes", "anchor": "ATW", "kind": "helpers"},
#     {"id": "staging", "name": "Staging Directories", "anchor": "STG", "kind": "helpers"},
#     {"id": "swap", "name": "Atomic Directory Swap", "anchor": "SWP", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Filesystem helpers for component installs.

Responsibilities include computing content fingerprints for files and whole
directory trees, writing cache files without ever exposing partial content,
creating run-unique staging directories, and publishing a component directory
through a copy-then-rename swap so the destination always holds either its
previous or its new complete contents.
"""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
import tempfile
import uuid
from pathlib import Path
from typing import List, Optional

from ..errors import FilesystemError

__all__ = [
    "sha256_file",
    "sha256_directory",
    "atomic_write_bytes",
    "atomic_write_text",
    "create_staging_dir",
    "remove_tree",
    "list_component_dirs",
    "copy_dir_atomic",
]

logger = logging.getLogger("FoundryPod.ComponentInstall")

_CHUNK_SIZE = 1 << 20


def sha256_file(path: Path) -> str:
    """Compute the SHA-256 digest for ``path`` without loading it fully into memory."""

    hasher = hashlib.sha256()
    with Path(path).open("rb") as handle:
        for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def sha256_directory(root: Path) -> str:
    """Return a digest covering every relative path and file body under ``root``.

    Entries are visited in sorted order so the digest only depends on tree
    content, never on directory listing order.  Empty directories contribute
    their relative path.
    """

    root = Path(root)
    hasher = hashlib.sha256()
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        rel_dir = Path(dirpath).relative_to(root).as_posix()
        hasher.update(b"D\0" + rel_dir.encode("utf-8") + b"\0")
        for name in sorted(filenames):
            file_path = Path(dirpath) / name
            rel = file_path.relative_to(root).as_posix()
            hasher.update(b"F\0" + rel.encode("utf-8") + b"\0")
            hasher.update(sha256_file(file_path).encode("ascii"))
    return hasher.hexdigest()


def atomic_write_bytes(path: Path, payload: bytes) -> None:
    """Write ``payload`` to ``path`` via a sibling temporary file and ``os.replace``."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".part", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def atomic_write_text(path: Path, text: str) -> None:
    atomic_write_bytes(path, text.encode("utf-8"))


def create_staging_dir(component_id: str, root: Optional[Path] = None) -> Path:
    """Create a fresh, run-unique staging directory for ``component_id``."""

    if root is not None:
        Path(root).mkdir(parents=True, exist_ok=True)
    return Path(tempfile.mkdtemp(prefix=f"component-{component_id}-", dir=root))


def remove_tree(path: Path) -> None:
    """Remove ``path`` whether it is a directory, a file, or a dangling symlink."""

    path = Path(path)
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif path.exists() or path.is_symlink():
        path.unlink()


def list_component_dirs(parent: Path) -> List[str]:
    """Return the sorted names of subdirectories directly under ``parent``."""

    parent = Path(parent)
    if not parent.is_dir():
        return []
    return sorted(entry.name for entry in parent.iterdir() if entry.is_dir())


def copy_dir_atomic(source: Path, destination: Path) -> None:
    """Publish a copy of ``source`` at ``destination`` through a rename.

    The tree is copied into a uniquely named hidden sibling of
    ``destination``; only after the copy completes is the previous destination
    removed and the sibling renamed into place.

    Raises:
        FilesystemError: If the source is missing or the copy fails (the
            sibling is removed and the destination left untouched), or with
            ``fatal=True`` if the final removal or rename fails.
    """

    source = Path(source)
    destination = Path(destination)
    if not source.is_dir():
        raise FilesystemError(f"Source directory not found: {source}", path=str(source))

    parent = destination.parent
    parent.mkdir(parents=True, exist_ok=True)
    sibling = parent / f".staging-{destination.name}-{uuid.uuid4().hex[:12]}"
    try:
        shutil.copytree(source, sibling, symlinks=True)
    except (OSError, shutil.Error) as exc:
        shutil.rmtree(sibling, ignore_errors=True)
        raise FilesystemError(
            f"Failed to copy {source} to {sibling}: {exc}", path=str(destination)
        ) from exc

    try:
        if destination.exists() or destination.is_symlink():
            remove_tree(destination)
        os.rename(sibling, destination)
    except OSError as exc:
        raise FilesystemError(
            f"Failed to publish {destination}: {exc}", path=str(destination), fatal=True
        ) from exc
    logger.debug(
        "directory published",
        extra={"stage": "install", "source": str(source), "destination": str(destination)},
    )
