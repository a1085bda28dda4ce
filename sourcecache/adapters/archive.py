"""Safe archive extraction utilities.

Used by the generic getter to unpack downloaded archives. Extraction refuses
archives that try to escape the target directory (Zip Slip, Tar Slip) or that
carry symbolic links pointing outside of it.
"""

import sys
import tarfile
import zipfile
from pathlib import Path

from sourcecache.internal.logging import get_logger

logger = get_logger(__name__)

# Longest suffixes first so ".tar.gz" is not mistaken for ".gz".
ARCHIVE_SUFFIXES = (
    (".tar.gz", "r:gz"),
    (".tgz", "r:gz"),
    (".tar.bz2", "r:bz2"),
    (".tbz2", "r:bz2"),
    (".tar.xz", "r:xz"),
    (".txz", "r:xz"),
    (".tar", "r:"),
    (".zip", "zip"),
)

ARCHIVE_FORMATS = {
    "tar.gz": "r:gz",
    "tgz": "r:gz",
    "tar.bz2": "r:bz2",
    "tbz2": "r:bz2",
    "tar.xz": "r:xz",
    "txz": "r:xz",
    "tar": "r:",
    "zip": "zip",
}


class ArchiveSecurityError(Exception):
    """Raised when archive contains potentially malicious paths."""

    pass


def archive_mode(name: str) -> str | None:
    """Return the extraction mode for a file name, or None if it is not an archive."""
    lowered = name.lower()
    for suffix, mode in ARCHIVE_SUFFIXES:
        if lowered.endswith(suffix):
            return mode
    return None


def _is_path_safe(member_path: Path, target_dir: Path) -> bool:
    try:
        resolved = (target_dir / member_path).resolve()
        return resolved.is_relative_to(target_dir)
    except (ValueError, RuntimeError):
        return False


def safe_extract_zip(archive_path: Path, target_dir: Path) -> None:
    """Safely extract ZIP archive with path traversal protection.

    Raises:
        ArchiveSecurityError: If archive contains path traversal attempts.
        zipfile.BadZipFile: If archive is corrupted.
    """
    target_dir = target_dir.resolve()

    with zipfile.ZipFile(archive_path, "r") as zip_ref:
        for member in zip_ref.namelist():
            member_path = Path(member)

            if member_path.is_absolute() or ".." in member_path.parts:
                raise ArchiveSecurityError(
                    f"Zip Slip detected: {member} contains path traversal"
                )

            if not _is_path_safe(member_path, target_dir):
                raise ArchiveSecurityError(
                    f"Zip Slip detected: {member} escapes target directory"
                )

        zip_ref.extractall(target_dir)


def safe_extract_tar(archive_path: Path, target_dir: Path, mode: str = "r:*") -> None:
    """Safely extract TAR archive with path traversal protection.

    Raises:
        ArchiveSecurityError: If archive contains path traversal attempts.
        tarfile.TarError: If archive is corrupted.
    """
    target_dir = target_dir.resolve()

    with tarfile.open(archive_path, mode) as tar_ref:
        # Python 3.12+ has built-in filter parameter
        if sys.version_info >= (3, 12):
            tar_ref.extractall(target_dir, filter="data")
            return

        for member in tar_ref.getmembers():
            member_path = Path(member.name)

            if member_path.is_absolute():
                raise ArchiveSecurityError(
                    f"Tar Slip detected: {member.name} is absolute path"
                )

            if ".." in member_path.parts:
                raise ArchiveSecurityError(
                    f"Tar Slip detected: {member.name} contains path traversal"
                )

            if member.issym() or member.islnk():
                link_target = Path(member.linkname)
                if link_target.is_absolute() or ".." in link_target.parts:
                    raise ArchiveSecurityError(
                        f"Symlink attack detected: {member.name} -> {member.linkname}"
                    )

            if not _is_path_safe(member_path, target_dir):
                raise ArchiveSecurityError(
                    f"Tar Slip detected: {member.name} escapes target directory"
                )

        tar_ref.extractall(target_dir)


def safe_extract(archive_path: Path, target_dir: Path, mode: str | None = None) -> None:
    """Safely extract an archive into target_dir.

    Args:
        archive_path: Path to archive file.
        target_dir: Target extraction directory, created if missing.
        mode: Extraction mode from archive_mode(); detected from the file name if omitted.

    Raises:
        ArchiveSecurityError: If archive contains malicious paths.
        ValueError: If archive format is not supported.
    """
    if mode is None:
        mode = archive_mode(archive_path.name)
    if mode is None:
        raise ValueError(f"Unsupported archive format: {archive_path}")

    target_dir.mkdir(parents=True, exist_ok=True)
    if mode == "zip":
        safe_extract_zip(archive_path, target_dir)
    else:
        safe_extract_tar(archive_path, target_dir, mode)

    logger.debug("Extracted archive", archive=str(archive_path), target=str(target_dir))


__all__ = [
    "ARCHIVE_FORMATS",
    "ArchiveSecurityError",
    "archive_mode",
    "safe_extract",
    "safe_extract_zip",
    "safe_extract_tar",
]
