"""Archive extraction and filesystem helpers for component installs."""

from .archive import ArchiveFormat, ExtractionReport, detect_archive_format, extract_archive
from .filesystem import (
    atomic_write_bytes,
    atomic_write_text,
    copy_dir_atomic,
    create_staging_dir,
    list_component_dirs,
    remove_tree,
    sha256_directory,
    sha256_file,
)

__all__ = [
    "ArchiveFormat",
    "ExtractionReport",
    "detect_archive_format",
    "extract_archive",
    "atomic_write_bytes",
    "atomic_write_text",
    "copy_dir_atomic",
    "create_staging_dir",
    "list_component_dirs",
    "remove_tree",
    "sha256_directory",
    "sha256_file",
]
