"""State manager for the resume hint and in-memory status."""

import json
from pathlib import Path
from typing import Optional
import logging

from cuda_alongside.models.state import ResumeHint
from cuda_alongside.models.status import InstallationStage, ProgressData


class StateManager:
    """Tracks the status of one run.

    Manages:
    - In-memory status (stage, progress, message) for logging and the CLI
    - The resume hint file in the work area
    """

    def __init__(self, hint_file: Path):
        """Initialize state manager.

        Args:
            hint_file: Path of the resume hint JSON file
        """
        self.logger = logging.getLogger("cuda_alongside.state_manager")
        self.hint_file = hint_file

        self._current_stage: InstallationStage = InstallationStage.START
        self._current_progress: int = 0
        self._current_message: str = "Installer ready"
        self._current_error: Optional[str] = None

    def get_status(self) -> ProgressData:
        """Get current status.

        Returns:
            ProgressData with current stage, progress, message, error
        """
        return ProgressData(
            stage=self._current_stage,
            progress=self._current_progress,
            message=self._current_message,
            error=self._current_error,
        )

    def update_status(
        self,
        stage: InstallationStage,
        progress: int,
        message: str,
        error: Optional[str] = None,
    ) -> None:
        """Update in-memory status.

        Args:
            stage: Last stage reached
            progress: Percentage completion of the current action (0-100)
            message: Human-readable description
            error: Error message if the action failed
        """
        self._current_stage = stage
        self._current_progress = progress
        self._current_message = message
        self._current_error = error
        self.logger.debug(
            f"Status updated: stage={stage.name}, progress={progress}%, message={message}"
        )

    def load_hint(self) -> Optional[ResumeHint]:
        """Load the resume hint.

        Returns:
            ResumeHint if present and valid, None otherwise
        """
        if not self.hint_file.exists():
            self.logger.debug("No resume hint found")
            return None

        try:
            with open(self.hint_file, "r", encoding="utf-8") as f:
                data = json.load(f)
            hint = ResumeHint(**data)
            self.logger.info(f"Loaded resume hint: version={hint.version}, stage={hint.stage.name}")
            return hint
        except Exception as e:
            self.logger.warning(f"Ignoring unreadable resume hint {self.hint_file}: {e}")
            self.hint_file.unlink(missing_ok=True)
            return None

    def save_hint(self, hint: ResumeHint) -> None:
        """Write the resume hint.

        Args:
            hint: ResumeHint to persist
        """
        try:
            self.hint_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.hint_file, "w", encoding="utf-8") as f:
                json.dump(hint.model_dump(mode="json"), f, indent=2)
            self.logger.debug(f"Saved resume hint: stage={hint.stage.name}")
        except Exception as e:
            self.logger.error(f"Failed to save resume hint: {e}", exc_info=True)
            raise

    def record_stage(
        self, version: str, family: str, stage: InstallationStage, error: Optional[str] = None
    ) -> None:
        """Update status and persist the hint for a completed (or failed) stage."""
        if error:
            self.update_status(stage, 0, f"{stage.label} failed", error=error)
        else:
            self.update_status(stage, 100, f"{stage.label} complete")
        self.save_hint(ResumeHint(version=version, family=family, stage=stage, error=error))
