"""Archive container validation."""

import lzma
import tarfile
import zlib
from pathlib import Path
import logging

from cuda_alongside.exceptions import ArchiveFormatError

_READ_ERRORS = (tarfile.TarError, OSError, EOFError, lzma.LZMAError, zlib.error)


def validate_archive(file_path: Path, full: bool = True) -> bool:
    """Check that a file is a readable gzip or xz compressed tar archive.

    A full check lists every member, so a truncated download fails just
    like `tar -t`. With full=False only the first member header is read,
    which rejects HTML pages and foreign files without decompressing the
    whole archive.

    Args:
        file_path: Archive to inspect
        full: List every member instead of only the first

    Returns:
        True if the archive passes the check, False otherwise
    """
    logger = logging.getLogger("cuda_alongside.verification")

    if not file_path.is_file():
        return False

    try:
        with tarfile.open(file_path, "r:*") as tf:
            if full:
                members = tf.getmembers()
            else:
                first = tf.next()
                members = [first] if first is not None else []
    except _READ_ERRORS as e:
        logger.debug(f"{file_path.name} is not a valid archive: {e}")
        return False

    if not members:
        logger.debug(f"{file_path.name} is an empty archive")
        return False

    logger.debug(f"{file_path.name} is a valid archive ({len(members)} members)")
    return True


def validate_archive_or_raise(file_path: Path) -> None:
    """Validate an archive, raise if it is unusable.

    Raises:
        ArchiveFormatError: If the archive fails container validation
    """
    if not validate_archive(file_path):
        raise ArchiveFormatError(
            f"ARCHIVE_INVALID: {file_path} is not a valid tar.xz/tgz archive",
            {"path": str(file_path)},
        )
