"""Installation stage enum and in-memory status model."""

from enum import IntEnum
from typing import Optional

from pydantic import BaseModel, Field


class InstallationStage(IntEnum):
    """Ordered installation stages.

    Stage transitions:
    START → TOOLKIT_DOWNLOADED → COMPANION_DOWNLOADED → TOOLKIT_INSTALLED
          → COMPANION_INSTALLED → COMPLETE

    The stage is always re-derived from the filesystem by StateProbe.
    """

    START = 0
    TOOLKIT_DOWNLOADED = 1
    COMPANION_DOWNLOADED = 2
    TOOLKIT_INSTALLED = 3
    COMPANION_INSTALLED = 4
    COMPLETE = 5

    @property
    def label(self) -> str:
        """Human-readable name of the step that produces this stage."""
        return _LABELS[self]


_LABELS = {
    InstallationStage.START: "Start",
    InstallationStage.TOOLKIT_DOWNLOADED: "Toolkit download",
    InstallationStage.COMPANION_DOWNLOADED: "Companion download",
    InstallationStage.TOOLKIT_INSTALLED: "Toolkit install",
    InstallationStage.COMPANION_INSTALLED: "Companion install",
    InstallationStage.COMPLETE: "Environment publish",
}


class ProgressData(BaseModel):
    """Current status of the running installation."""

    stage: InstallationStage = Field(..., description="Last stage reached")
    progress: int = Field(..., ge=0, le=100, description="Percentage completion (0-100)")
    message: str = Field(..., description="Human-readable status description")
    error: Optional[str] = Field(None, description="Error message if a stage failed")
