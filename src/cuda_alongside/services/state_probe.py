"""Derive the installation stage from filesystem evidence.

Precedence (each condition gates the next):

1. install root, bin/nvcc, and an nvcc that reports the expected family
   -> TOOLKIT_INSTALLED, otherwise START
2. cudnn.h + libcudnn.so in the root -> COMPANION_INSTALLED;
   plus the switcher script -> COMPLETE
3. toolkit runfile in the work area -> at least TOOLKIT_DOWNLOADED;
   plus a valid companion archive (with the toolkit downloaded or
   installed) -> COMPANION_DOWNLOADED
4. result is the maximum of the above

The resume hint file is deliberately not consulted.
"""

import re
from pathlib import Path
from typing import Optional
import logging

from cuda_alongside.models.context import InstallContext
from cuda_alongside.models.status import InstallationStage
from cuda_alongside.services.process import ProcessManager
from cuda_alongside.utils.verification import validate_archive

_RELEASE_RE = re.compile(r"release\s+(\d+\.\d+)")


def parse_nvcc_release(output: str) -> Optional[str]:
    """Extract "12.6" from "Cuda compilation tools, release 12.6, V12.6.77"."""
    match = _RELEASE_RE.search(output)
    return match.group(1) if match else None


class StateProbe:
    """Read-only classifier of how far an installation progressed."""

    def __init__(self, process_manager: Optional[ProcessManager] = None):
        self.logger = logging.getLogger("cuda_alongside.state_probe")
        self.process_manager = process_manager or ProcessManager(show_spinner=False)

    async def installed_release(self, nvcc: Path) -> Optional[str]:
        """Release reported by an nvcc binary, or None if it cannot be run."""
        if not nvcc.is_file():
            return None
        try:
            result = await self.process_manager.run([str(nvcc), "--version"])
        except OSError as e:
            self.logger.debug(f"Cannot execute {nvcc}: {e}")
            return None
        if not result.ok:
            return None
        return parse_nvcc_release(result.stdout)

    async def installed_stage(self, ctx: InstallContext) -> InstallationStage:
        """Stage implied by the install root alone."""
        if not ctx.install_root.is_dir():
            return InstallationStage.START

        release = await self.installed_release(ctx.nvcc_path)
        if release != ctx.family:
            if release is not None:
                self.logger.debug(f"{ctx.nvcc_path} reports release {release}, expected {ctx.family}")
            return InstallationStage.START

        if not (ctx.companion_header.is_file() and ctx.companion_library.is_file()):
            return InstallationStage.TOOLKIT_INSTALLED
        if not ctx.switcher_path.is_file():
            return InstallationStage.COMPANION_INSTALLED
        return InstallationStage.COMPLETE

    def downloaded_stage(self, ctx: InstallContext, toolkit_installed: bool = False) -> InstallationStage:
        """Stage implied by archives in the work area alone."""
        floor = InstallationStage.START
        if ctx.toolkit_archive.is_file():
            floor = InstallationStage.TOOLKIT_DOWNLOADED

        if floor >= InstallationStage.TOOLKIT_DOWNLOADED or toolkit_installed:
            # Header check only; the companion is fully validated again before install
            if any(validate_archive(p, full=False) for p in ctx.companion_archives if p.is_file()):
                floor = InstallationStage.COMPANION_DOWNLOADED
        return floor

    async def classify(self, ctx: InstallContext) -> InstallationStage:
        """Classify the current installation stage for ctx.

        Deterministic and side-effect free: repeated calls with an unchanged
        filesystem return the same stage.
        """
        installed = await self.installed_stage(ctx)
        downloaded = self.downloaded_stage(
            ctx, toolkit_installed=installed >= InstallationStage.TOOLKIT_INSTALLED
        )
        stage = max(installed, downloaded)
        self.logger.debug(
            f"Probe: installed={installed.name}, downloaded={downloaded.name} -> {stage.name}"
        )
        return stage
