"""Installer exceptions.

Every fatal condition surfaces as an InstallerError subclass; main() is the
only place these are turned into exit codes.
"""

from typing import Optional


class InstallerError(Exception):
    """Base exception for installer operations."""

    def __init__(self, message: str, context: Optional[dict] = None):
        """Initialize with message and optional context.

        Args:
            message: Human-readable error message
            context: Optional dict with additional context (paths, versions, etc.)
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}


class VersionNotFoundError(InstallerError):
    """Requested version or family is not in the catalog."""

    def __init__(self, message: str, known_versions: Optional[list[str]] = None):
        super().__init__(message, {"known_versions": known_versions or []})
        self.known_versions = known_versions or []


class PreconditionError(InstallerError):
    """A required tool, permission or resource is missing."""


class TransportError(InstallerError):
    """Archive fetch or copy failed."""


class ArchiveFormatError(InstallerError):
    """Archive failed container validation."""


class InstallCancelled(InstallerError):
    """Operator declined to continue."""


class StageError(InstallerError):
    """A stage action failed; the run aborts and must be resumed by re-invocation."""

    def __init__(self, stage, message: str):
        super().__init__(f"{stage.label} failed: {message}", {"stage": stage.name})
        self.stage = stage
