"""Pre-flight checks run before anything is modified."""

import os
import shutil
from pathlib import Path
import logging

from cuda_alongside.config import InstallerSettings
from cuda_alongside.exceptions import PreconditionError

REQUIRED_TOOLS = ("nvidia-smi", "update-alternatives", "ldconfig")


def check_root() -> None:
    if os.geteuid() != 0:
        raise PreconditionError("This installer must be run as root (sudo)")


def check_tools(tools=REQUIRED_TOOLS) -> None:
    missing = [tool for tool in tools if shutil.which(tool) is None]
    if missing:
        raise PreconditionError(
            f"Required tool(s) not found: {', '.join(missing)}. Please install them first.",
            {"missing": missing},
        )


def _existing_parent(path: Path) -> Path:
    while not path.exists() and path != path.parent:
        path = path.parent
    return path


def check_disk_space(settings: InstallerSettings) -> None:
    """Require settings.min_free_bytes free on the filesystem holding install_base."""
    logger = logging.getLogger("cuda_alongside.prerequisites")
    free = shutil.disk_usage(_existing_parent(settings.install_base)).free
    gib = 1024**3
    logger.debug(f"Free space on {settings.install_base}: {free / gib:.1f}GB")
    if free < settings.min_free_bytes:
        raise PreconditionError(
            f"Insufficient disk space in {settings.install_base}. "
            f"Required: {settings.min_free_bytes / gib:.0f}GB, Available: {free / gib:.1f}GB"
        )


def check_prerequisites(settings: InstallerSettings, need_space: bool = True) -> None:
    """Run every pre-flight check.

    Args:
        settings: Installer settings
        need_space: Check free space (skipped once the toolkit is already installed)

    Raises:
        PreconditionError: On the first failing check
    """
    logger = logging.getLogger("cuda_alongside.prerequisites")
    logger.info("Checking prerequisites...")
    check_root()
    check_tools()
    if need_space:
        check_disk_space(settings)
    logger.info("Prerequisites check passed")
