# === NAVMAP v1 ===
# {
#   "module": "FoundryPod.ComponentInstall.io.archive",
#   "purpose": "Decode tar and gzip-compressed tar payloads into directory trees",
#   "sections": [
#     {"id": "formats", "name": "Archive Format Detection", "anchor": "FMT", "kind": "helpers"},
#     {"id": "tar", "name": "Tar Stream Decoding", "anchor": "TAR", "kind": "helpers"},
#     {"id": "extract", "name": "extract_archive", "anchor": "function-extract-archive", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Minimal tar extractor for component payloads.

Component archives are decoded without ``tarfile`` so the accepted structure
stays deliberately small: 512-byte ustar headers, regular files and
directories only, and the first all-zero header ends the archive.  Every other
entry type is skipped, but its data blocks are consumed to keep the stream
aligned.  The format is chosen from a filename hint; zip, bzip2 and xz payloads
are rejected up front instead of being partially extracted.

Archives are trusted input: member paths are not sanitised, and neither
symlinks nor permissions or modification times are restored.
"""

from __future__ import annotations

import gzip
import logging
import re
import zlib
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Union

from ..errors import ExtractionError

__all__ = [
    "ArchiveFormat",
    "ExtractionReport",
    "detect_archive_format",
    "extract_tar_bytes",
    "extract_archive",
]

logger = logging.getLogger("FoundryPod.ComponentInstall")

BLOCK_SIZE = 512

_NAME = slice(0, 100)
_SIZE = slice(124, 136)
_TYPEFLAG = 156
_PREFIX = slice(345, 500)
_OCTAL_DIGITS = re.compile(r"[0-7]+")

_REGULAR_TYPES = {b"0", b"\x00"}
_DIRECTORY_TYPE = b"5"


class ArchiveFormat(str, Enum):
    TAR = "tar"
    TAR_GZ = "tar.gz"


@dataclass(slots=True)
class ExtractionReport:
    files: int = 0
    directories: int = 0
    skipped: int = 0


def detect_archive_format(hint: str) -> ArchiveFormat:
    """Map a filename or URL ``hint`` to a supported :class:`ArchiveFormat`.

    Raises:
        ExtractionError: If the hint names zip, bzip2 or xz, or no known format.
    """

    lower = (hint or "").lower().split("?", 1)[0].split("#", 1)[0]
    if lower.endswith((".tar.gz", ".tgz")):
        return ArchiveFormat.TAR_GZ
    if lower.endswith(".tar"):
        return ArchiveFormat.TAR
    if lower.endswith((".tar.bz2", ".tbz2")):
        raise ExtractionError(f"Archive format not supported: bzip2 ({hint})")
    if lower.endswith((".tar.xz", ".txz")):
        raise ExtractionError(f"Archive format not supported: xz ({hint})")
    if lower.endswith(".zip"):
        raise ExtractionError(f"Archive format not supported: zip ({hint})")
    raise ExtractionError(f"Unknown archive format: {hint}")


def _strip_nul(field: bytes) -> str:
    end = field.find(b"\x00")
    if end != -1:
        field = field[:end]
    return field.decode("utf-8", errors="replace").strip()


def _parse_octal(field: bytes) -> int:
    match = _OCTAL_DIGITS.search(_strip_nul(field))
    return int(match.group(0), 8) if match else 0


def _padded(size: int) -> int:
    return -(-size // BLOCK_SIZE) * BLOCK_SIZE


def extract_tar_bytes(data: bytes, dest_dir: Path) -> ExtractionReport:
    """Extract an uncompressed tar stream held in ``data`` into ``dest_dir``."""

    dest_dir = Path(dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)
    report = ExtractionReport()
    view = memoryview(data)
    offset = 0
    total = len(data)

    while offset < total:
        header = bytes(view[offset : offset + BLOCK_SIZE])
        if len(header) < BLOCK_SIZE:
            if header.strip(b"\x00"):
                raise ExtractionError(
                    f"Truncated tar header at offset {offset} ({len(header)} bytes)"
                )
            break
        offset += BLOCK_SIZE
        if not header.strip(b"\x00"):
            break

        name = _strip_nul(header[_NAME])
        size = _parse_octal(header[_SIZE])
        typeflag = header[_TYPEFLAG : _TYPEFLAG + 1]
        prefix = _strip_nul(header[_PREFIX])
        data_end = offset + size
        next_offset = offset + _padded(size)

        if typeflag in _REGULAR_TYPES:
            if data_end > total:
                raise ExtractionError(
                    f"Truncated tar entry '{name}': expected {size} bytes at offset {offset}"
                )
            if name:
                target = dest_dir / prefix / name if prefix else dest_dir / name
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(view[offset:data_end])
                report.files += 1
        elif typeflag == _DIRECTORY_TYPE:
            target = dest_dir / prefix / name if prefix else dest_dir / name
            target.mkdir(parents=True, exist_ok=True)
            report.directories += 1
        else:
            report.skipped += 1
            logger.debug(
                "skipping tar entry",
                extra={"stage": "extract", "entry": name, "typeflag": typeflag.decode("latin-1")},
            )
        offset = next_offset

    return report


def extract_archive(
    source: Union[Path, bytes],
    dest_dir: Path,
    format_hint: str,
) -> ExtractionReport:
    """Extract ``source`` into ``dest_dir`` using the format named by ``format_hint``.

    Args:
        source: Archive path or in-memory archive bytes.
        dest_dir: Directory receiving the extracted tree; created if missing.
        format_hint: Filename or URL whose suffix selects the format.

    Returns:
        Counts of written files, created directories and skipped entries.

    Raises:
        ExtractionError: For unsupported formats or truncated/malformed payloads.
    """

    archive_format = detect_archive_format(format_hint)
    if isinstance(source, (bytes, bytearray)):
        payload = bytes(source)
    else:
        try:
            payload = Path(source).read_bytes()
        except OSError as exc:
            raise ExtractionError(f"Unable to read archive {source}: {exc}") from exc

    if archive_format is ArchiveFormat.TAR_GZ:
        try:
            payload = gzip.decompress(payload)
        except (OSError, EOFError, zlib.error) as exc:
            raise ExtractionError(f"Malformed gzip stream for {format_hint}: {exc}") from exc

    report = extract_tar_bytes(payload, dest_dir)
    logger.debug(
        "archive extracted",
        extra={
            "stage": "extract",
            "format": archive_format.value,
            "files": report.files,
            "directories": report.directories,
            "skipped": report.skipped,
        },
    )
    return report
