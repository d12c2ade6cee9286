"""Stage executor: drives an installation from its probed stage to COMPLETE.

Steps run in stage order. A step is attempted only while the current stage
is below the stage it produces, and the filesystem is re-probed after every
step, so a half-finished step is retried on the next invocation instead of
being skipped.
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional
import logging

from cuda_alongside.exceptions import InstallerError, StageError
from cuda_alongside.models.context import InstallContext
from cuda_alongside.models.status import InstallationStage
from cuda_alongside.services.download import ArchiveStager
from cuda_alongside.services.environment import EnvironmentPublisher
from cuda_alongside.services.installer import CompanionInstaller, ToolkitInstaller
from cuda_alongside.services.state_manager import StateManager
from cuda_alongside.services.state_probe import StateProbe

StageAction = Callable[[InstallContext], Awaitable[None]]


@dataclass(frozen=True)
class StageStep:
    produces: InstallationStage
    action: StageAction

    @property
    def label(self) -> str:
        return self.produces.label


class StageExecutor:
    """Runs the remaining stage actions for one installation."""

    def __init__(
        self,
        probe: StateProbe,
        stager: ArchiveStager,
        toolkit_installer: ToolkitInstaller,
        companion_installer: CompanionInstaller,
        publisher: EnvironmentPublisher,
        state_manager: Optional[StateManager] = None,
    ):
        self.logger = logging.getLogger("cuda_alongside.executor")
        self.probe = probe
        self.stager = stager
        self.toolkit_installer = toolkit_installer
        self.companion_installer = companion_installer
        self.publisher = publisher
        self.state_manager = state_manager

    def steps(self) -> list[StageStep]:
        """All stage actions in canonical order."""
        return [
            StageStep(InstallationStage.TOOLKIT_DOWNLOADED, self._download_toolkit),
            StageStep(InstallationStage.COMPANION_DOWNLOADED, self._download_companion),
            StageStep(InstallationStage.TOOLKIT_INSTALLED, self._install_toolkit),
            StageStep(InstallationStage.COMPANION_INSTALLED, self._install_companion),
            StageStep(InstallationStage.COMPLETE, self._publish_environment),
        ]

    async def run(
        self,
        ctx: InstallContext,
        start_stage: InstallationStage,
        force: bool = False,
    ) -> InstallationStage:
        """Execute every step whose stage has not been reached yet.

        Args:
            ctx: Installation context
            start_stage: Stage classified by StateProbe at launch
            force: Run every step regardless of the current stage (reinstall)

        Returns:
            The stage probed after the last step (COMPLETE on success)

        Raises:
            StageError: If a step fails or its result cannot be observed on disk
        """
        state_manager = self.state_manager or StateManager(ctx.hint_file)
        version = ctx.descriptor.version
        current = start_stage
        self.logger.info(f"Starting from stage {current.name}")

        for step in self.steps():
            if not force and current >= step.produces:
                self.logger.debug(f"Skipping {step.label} (stage {current.name})")
                continue

            self.logger.info(f"Step: {step.label}")
            state_manager.update_status(current, 0, f"{step.label}...")
            try:
                await step.action(ctx)
            except (InstallerError, RuntimeError, OSError) as e:
                self._record_failure(state_manager, ctx, current, f"{step.label} failed: {e}")
                raise StageError(step.produces, str(e)) from e

            current = await self.probe.classify(ctx)
            if current < step.produces:
                message = f"expected stage {step.produces.name} but filesystem shows {current.name}"
                self._record_failure(state_manager, ctx, current, f"{step.label} failed: {message}")
                raise StageError(step.produces, message)

            state_manager.record_stage(version, ctx.family, step.produces)
            self.logger.info(f"{step.label} complete")

        return current

    def _record_failure(
        self,
        state_manager: StateManager,
        ctx: InstallContext,
        stage: InstallationStage,
        message: str,
    ) -> None:
        self.logger.error(message)
        try:
            state_manager.record_stage(ctx.descriptor.version, ctx.family, stage, error=message)
        except OSError as e:
            self.logger.warning(f"Could not record failure in resume hint: {e}")

    async def _download_toolkit(self, ctx: InstallContext) -> None:
        await self.stager.stage_toolkit(ctx)

    async def _download_companion(self, ctx: InstallContext) -> None:
        await self.stager.stage_companion(ctx)

    async def _install_toolkit(self, ctx: InstallContext) -> None:
        await self.toolkit_installer.install(ctx)

    async def _install_companion(self, ctx: InstallContext) -> None:
        # The work-area archive may come from an earlier, unfinished run:
        # always re-stage (and so re-validate) it before installing.
        archive = await self.stager.stage_companion(ctx)
        await self.companion_installer.install(ctx, archive)

    async def _publish_environment(self, ctx: InstallContext) -> None:
        await self.publisher.publish(ctx)

    async def verify(self, ctx: InstallContext) -> list[str]:
        """Final verification pass.

        Returns:
            A list of problems; empty when the installation is complete
        """
        issues = []
        if not ctx.install_root.is_dir():
            issues.append(f"CUDA installation directory not found: {ctx.install_root}")

        release = await self.probe.installed_release(ctx.nvcc_path)
        if release is None:
            issues.append("nvcc not found in CUDA installation")
        elif release != ctx.family:
            issues.append(f"nvcc reports release {release}, expected {ctx.family}")
        else:
            self.logger.info(f"nvcc found: version {release}")

        if not ctx.companion_header.is_file():
            issues.append("cuDNN headers not found")
        if not ctx.companion_library.is_file():
            issues.append("cuDNN libraries not found")
        if not ctx.switcher_path.is_file():
            issues.append(f"Environment switcher not found: {ctx.switcher_path}")

        for issue in issues:
            self.logger.warning(issue)
        if not issues:
            self.logger.info("Installation verification complete - all checks passed!")
        return issues
