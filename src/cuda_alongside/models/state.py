"""Resume hint model persisted in the work area."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from cuda_alongside.models.status import InstallationStage


class ResumeHint(BaseModel):
    """Persistent hint at <work_area>/install_state.json.

    Records the last stage an action completed. It is never ground truth:
    StateProbe re-derives the stage from the filesystem on every run.
    """

    version: str = Field(..., description="Toolkit version being installed")
    family: str = Field(..., description="Toolkit family")
    stage: InstallationStage = Field(..., description="Last stage an action completed")
    last_update: datetime = Field(
        default_factory=datetime.now, description="Last hint update timestamp"
    )
    error: Optional[str] = Field(None, description="Failure message from the last run")

    @field_validator("stage", mode="before")
    @classmethod
    def parse_stage(cls, v):
        """Accept stage names as well as their integer values."""
        if isinstance(v, str) and not v.isdigit():
            try:
                return InstallationStage[v]
            except KeyError:
                raise ValueError(f"Unknown stage: {v}")
        if isinstance(v, str):
            return int(v)
        return v

    @field_validator("last_update", mode="before")
    @classmethod
    def parse_iso8601(cls, v):
        """Parse ISO 8601 timestamp strings."""
        if isinstance(v, str):
            return datetime.fromisoformat(v.replace("Z", "+00:00"))
        return v
