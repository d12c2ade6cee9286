"""Driver compatibility check.

Only the leading (major) component of driver versions is compared; driver
compatibility for CUDA releases is published at major-version granularity.
"""

import shutil
from dataclasses import dataclass, field
from typing import Optional
import logging

from cuda_alongside.exceptions import InstallCancelled, PreconditionError
from cuda_alongside.models.descriptors import VersionDescriptor, driver_major
from cuda_alongside.services.catalog import VersionCatalog
from cuda_alongside.services.process import ProcessManager
from cuda_alongside.utils.prompts import Confirm


@dataclass(frozen=True)
class CompatibilityReport:
    driver_version: str
    required_driver: str
    installed_major: int
    required_major: int
    suggestions: list[str] = field(default_factory=list)

    @property
    def compatible(self) -> bool:
        return self.installed_major >= self.required_major


class CompatibilityChecker:
    """Compares the running driver against catalog minima."""

    def __init__(self, catalog: VersionCatalog, process_manager: Optional[ProcessManager] = None):
        self.logger = logging.getLogger("cuda_alongside.compatibility")
        self.catalog = catalog
        self.process_manager = process_manager or ProcessManager(show_spinner=False)

    async def query_driver_version(self) -> str:
        """Ask nvidia-smi for the driver version.

        Raises:
            PreconditionError: If nvidia-smi is missing or reports nothing
        """
        if shutil.which("nvidia-smi") is None:
            raise PreconditionError("nvidia-smi not found. NVIDIA driver may not be installed.")

        result = await self.process_manager.run(
            ["nvidia-smi", "--query-gpu=driver_version", "--format=csv,noheader"]
        )
        lines = [line.strip() for line in result.stdout.splitlines() if line.strip()]
        if not result.ok or not lines:
            raise PreconditionError("Could not determine NVIDIA driver version")
        return lines[0]

    def check(self, driver_version: str, descriptor: VersionDescriptor) -> CompatibilityReport:
        """Compare a driver version with the descriptor's minimum.

        Args:
            driver_version: Reported driver version (e.g. "535.183.01")
            descriptor: Requested toolkit version

        Returns:
            CompatibilityReport; suggestions lists every catalog version the
            driver satisfies, sorted by version

        Raises:
            PreconditionError: If the driver version is not numeric
        """
        try:
            installed = driver_major(driver_version)
        except ValueError as e:
            raise PreconditionError(str(e)) from e

        suggestions = [
            d.version for d in self.catalog.descriptors() if installed >= d.required_driver_major
        ]
        report = CompatibilityReport(
            driver_version=driver_version,
            required_driver=descriptor.min_driver,
            installed_major=installed,
            required_major=descriptor.required_driver_major,
            suggestions=suggestions,
        )

        self.logger.info(f"Current driver: {driver_version}")
        self.logger.info(
            f"CUDA {descriptor.version} requires driver: {descriptor.min_driver} (minimum)"
        )
        if report.compatible:
            self.logger.info(f"Driver version is compatible with CUDA {descriptor.version}")
        else:
            self._warn(report, descriptor)
        return report

    def _warn(self, report: CompatibilityReport, descriptor: VersionDescriptor) -> None:
        warn = self.logger.warning
        warn("DRIVER COMPATIBILITY WARNING")
        warn(
            f"Your NVIDIA driver ({report.driver_version}) may not be compatible with "
            f"CUDA {descriptor.version}, which requires driver {descriptor.min_driver} or newer. "
            f"This may cause runtime errors like 'CUDA_ERROR_NOT_INITIALIZED'."
        )
        warn("Recommended actions:")
        warn("  1) Choose a CUDA version compatible with your driver:")
        if report.suggestions:
            for version in report.suggestions:
                warn(f"     - CUDA {version}")
        else:
            warn("     - No compatible CUDA versions found in the catalog")
        warn(f"  2) Upgrade your NVIDIA driver to {descriptor.min_driver} or newer")

    def require_override(self, report: CompatibilityReport, confirm: Confirm) -> None:
        """Ask for an explicit override when the driver is too old.

        Raises:
            InstallCancelled: If the operator declines
        """
        if report.compatible:
            return
        if not confirm("Continue anyway? Installation may fail at runtime", False):
            raise InstallCancelled("Installation cancelled. Please choose a compatible CUDA version.")
        self.logger.warning("Proceeding with potentially incompatible driver...")
