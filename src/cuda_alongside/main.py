"""Command-line entry point for the side-by-side CUDA installer."""

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from cuda_alongside.config import InstallerSettings
from cuda_alongside.exceptions import (
    InstallCancelled,
    InstallerError,
    VersionNotFoundError,
)
from cuda_alongside.models.context import InstallContext
from cuda_alongside.models.descriptors import (
    CompanionDescriptor,
    VersionDescriptor,
    family_of,
    version_key,
)
from cuda_alongside.models.status import InstallationStage, ProgressData
from cuda_alongside.services.catalog import VersionCatalog, default_catalog
from cuda_alongside.services.compatibility import CompatibilityChecker
from cuda_alongside.services.download import ArchiveStager
from cuda_alongside.services.environment import EnvironmentPublisher
from cuda_alongside.services.executor import StageExecutor
from cuda_alongside.services.installer import CompanionInstaller, ToolkitInstaller
from cuda_alongside.services.prerequisites import check_prerequisites
from cuda_alongside.services.process import ProcessManager
from cuda_alongside.services.state_manager import StateManager
from cuda_alongside.services.state_probe import StateProbe
from cuda_alongside.utils.logging import setup_logger
from cuda_alongside.utils.prompts import (
    Confirm,
    Prompt,
    always_yes,
    ask_text,
    ask_yes_no,
)

logger = logging.getLogger("cuda_alongside.main")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


@dataclass(frozen=True)
class InstallRequest:
    version: Optional[str] = None
    toolkit_url: Optional[str] = None
    family: Optional[str] = None
    min_driver: Optional[str] = None
    companion_url: Optional[str] = None
    companion_version: Optional[str] = None
    reinstall: bool = False
    allow_old_driver: bool = False


def select_version_interactive(catalog: VersionCatalog, prompt: Prompt) -> str:
    """Numbered menu of catalog versions, newest first, plus a custom entry.

    Raises:
        InstallCancelled: If no selection is made
        VersionNotFoundError: If the selection is invalid
    """
    choices = sorted(catalog.versions(), key=version_key, reverse=True)
    print("\nAvailable CUDA Versions\n")
    major = None
    for idx, version in enumerate(choices, start=1):
        if version.split(".")[0] != major:
            major = version.split(".")[0]
            print(f"CUDA {major}.x:")
        print(f"  {idx}) {version}")
    print("\n  0) Custom version\n")

    answer = prompt(f"Select CUDA version to install [0-{len(choices)}]")
    if not answer:
        raise InstallCancelled("No CUDA version selected")
    if answer == "0":
        custom = prompt("Enter CUDA version (e.g., 12.6.2, 11.8.0)")
        if not custom:
            raise InstallCancelled("No CUDA version entered")
        return custom
    if answer.isdigit() and 1 <= int(answer) <= len(choices):
        return choices[int(answer) - 1]
    raise VersionNotFoundError(f"Invalid selection: {answer}", known_versions=catalog.versions())


def _descriptor_for(catalog: VersionCatalog, request: InstallRequest, version: str) -> VersionDescriptor:
    if not (request.toolkit_url or request.family or request.min_driver):
        return catalog.resolve(version)

    base = catalog.resolve(version) if version in catalog else None
    if base is None and not request.toolkit_url:
        # Custom versions need at least a source
        catalog.resolve(version)
    try:
        return VersionDescriptor(
            version=version,
            family=request.family or (base.family if base else family_of(version)),
            source=request.toolkit_url or base.source,
            min_driver=request.min_driver or (base.min_driver if base else "0"),
        )
    except ValueError as e:
        raise VersionNotFoundError(f"Invalid custom version {version}: {e}") from e


def _companion_for(catalog: VersionCatalog, request: InstallRequest, family: str) -> CompanionDescriptor:
    try:
        existing = catalog.companion_for(family)
    except VersionNotFoundError:
        existing = None

    if existing is None and not request.companion_url:
        raise VersionNotFoundError(
            f"No cuDNN mapping found for CUDA {family}; pass --companion-url",
            known_versions=catalog.versions(),
        )
    if not (request.companion_url or request.companion_version):
        return existing
    return CompanionDescriptor(
        family=family,
        version=request.companion_version or (existing.version if existing else "custom"),
        source=request.companion_url or existing.source,
    )


def resolve_request(
    catalog: VersionCatalog, request: InstallRequest, version: str
) -> tuple[VersionCatalog, VersionDescriptor, CompanionDescriptor]:
    """Resolve a version, applying operator overrides.

    A toolkit URL makes versions outside the built-in catalog installable;
    a companion URL does the same for families without a cuDNN mapping.
    Overrides produce a derived catalog; the input catalog is unchanged.

    Raises:
        VersionNotFoundError: If the version (or its companion) is unknown
            and no override supplies it
    """
    descriptor = _descriptor_for(catalog, request, version)
    companion = _companion_for(catalog, request, descriptor.family)

    builtin = catalog.resolve(version) if version in catalog else None
    if descriptor != builtin or request.companion_url or request.companion_version:
        catalog = catalog.with_custom(descriptor, companion)
    return catalog, descriptor, companion


class Installer:
    """Wires the services together for one run."""

    def __init__(
        self,
        settings: InstallerSettings,
        catalog: Optional[VersionCatalog] = None,
        confirm: Confirm = ask_yes_no,
        prompt: Prompt = ask_text,
        ask: Confirm = ask_yes_no,
        process_manager: Optional[ProcessManager] = None,
        stager: Optional[ArchiveStager] = None,
        publisher: Optional[EnvironmentPublisher] = None,
    ):
        self.settings = settings
        self.catalog = catalog or default_catalog()
        self.confirm = confirm
        self.prompt = prompt
        # Questions --yes never answers: reinstall and driver override
        self.ask = ask
        self.process_manager = process_manager or ProcessManager()
        self.probe = StateProbe(self.process_manager)
        self.stager = stager or ArchiveStager(settings, confirm=confirm, prompt=prompt)
        self.publisher = publisher or EnvironmentPublisher(self.process_manager)
        self.state_manager: Optional[StateManager] = None

    def last_status(self) -> Optional[ProgressData]:
        """Status of the current run, None before a version is resolved."""
        if self.state_manager is None:
            return None
        return self.state_manager.get_status()

    def executor(self, state_manager: StateManager) -> StageExecutor:
        return StageExecutor(
            probe=self.probe,
            stager=self.stager,
            toolkit_installer=ToolkitInstaller(self.process_manager),
            companion_installer=CompanionInstaller(),
            publisher=self.publisher,
            state_manager=state_manager,
        )

    async def run(self, request: InstallRequest) -> int:
        """Resolve, check, probe and drive the installation.

        Returns:
            Process exit code

        Raises:
            InstallerError: On any fatal failure (including InstallCancelled)
        """
        version = request.version or select_version_interactive(self.catalog, self.prompt)
        logger.info(f"Using CUDA version: {version}")
        catalog, descriptor, companion = resolve_request(self.catalog, request, version)
        ctx = InstallContext.build(descriptor, companion, self.settings)

        logger.info("Installation Plan:")
        logger.info(f"  CUDA Version: {descriptor.version}")
        logger.info(f"  CUDA Major.Minor: {descriptor.family}")
        logger.info(f"  Install Directory: {ctx.install_root}")
        logger.info(f"  cuDNN Version: {companion.version}")
        logger.info(f"  Work Area: {ctx.work_area}")

        state_manager = self.state_manager = StateManager(ctx.hint_file)
        if self.stager.state_manager is None:
            self.stager.state_manager = state_manager
        stage = await self.probe.classify(ctx)
        logger.info(f"Current installation state: {stage.name}")
        hint = state_manager.load_hint()
        if hint is not None and hint.stage != stage:
            logger.info(f"Resume hint says {hint.stage.name}; continuing from probed stage {stage.name}")

        executor = self.executor(state_manager)
        force = request.reinstall
        if stage == InstallationStage.COMPLETE:
            logger.info(f"CUDA {descriptor.version} is already fully installed!")
            if not (request.reinstall or self.ask("Reinstall? This will verify and fix any issues", False)):
                return await self._finish(ctx, executor)
            force = True
        else:
            logger.warning(
                f"This will install CUDA {descriptor.version} and cuDNN {companion.version} to "
                f"{ctx.install_root} and create environment switcher scripts. "
                f"It will NOT modify your display driver or existing CUDA installations."
            )
            if not self.confirm("Continue with installation?", False):
                raise InstallCancelled("Installation cancelled by user")

        check_prerequisites(self.settings, need_space=stage < InstallationStage.TOOLKIT_INSTALLED)
        await self._log_existing()

        logger.info("Checking driver compatibility...")
        checker = CompatibilityChecker(catalog, self.process_manager)
        driver_version = await checker.query_driver_version()
        report = checker.check(driver_version, descriptor)
        checker.require_override(report, always_yes if request.allow_old_driver else self.ask)

        await executor.run(ctx, stage, force=force)
        return await self._finish(ctx, executor)

    async def _log_existing(self) -> None:
        installs = await self.publisher.list_installations(self.settings.install_base)
        logger.info("Existing CUDA installations:")
        for root, release in installs:
            logger.info(f"  - {root} (version {release})")

    async def _finish(self, ctx: InstallContext, executor: StageExecutor) -> int:
        issues = await executor.verify(ctx)
        if issues:
            logger.warning(f"Installation verification found {len(issues)} issue(s)")
            return EXIT_FAILURE

        logger.info(f"CUDA {ctx.descriptor.version} installation complete")
        logger.info(f"  Install Path: {ctx.install_root}")
        logger.info(f"  cuDNN Version: {ctx.companion.version}")
        for root, release in await self.publisher.list_installations(self.settings.install_base):
            tag = root.name[len("cuda-"):].replace(".", "")
            logger.info(f"  {root} (v{release}) - use: source {self.settings.bin_dir}/use-cuda{tag}")
        logger.info(f"Switch now with: source {ctx.switcher_path}")
        logger.info(f"Download files kept at: {ctx.work_area}")
        return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="cuda-alongside",
        description="Install a CUDA toolkit and cuDNN side by side with existing installations.",
    )
    p.add_argument("version", nargs="?", help="CUDA version (e.g. 12.6.2); omit for a menu")
    p.add_argument("--toolkit-url", help="Runfile URL or path (for versions not in the catalog)")
    p.add_argument("--family", help="major.minor family of a custom version")
    p.add_argument("--min-driver", help="Minimum driver version of a custom version")
    p.add_argument("--companion-url", help="cuDNN archive URL or path")
    p.add_argument("--companion-version", help="cuDNN version label")
    p.add_argument("--work-dir", type=Path, help="Reuse a work area (e.g. from an interrupted run)")
    p.add_argument("--install-base", type=Path, help="Parent directory of cuda-X.Y roots")
    p.add_argument("--log-file", help="Log file path")
    p.add_argument("-y", "--yes", action="store_true", help="Answer yes to confirmations")
    p.add_argument("--reinstall", action="store_true", help="Re-run every step even if complete")
    p.add_argument(
        "--allow-old-driver",
        action="store_true",
        help="Proceed even if the driver is older than the version requires",
    )
    p.add_argument("--debug", action="store_true", help="Verbose logging")
    return p


def settings_from_args(args: argparse.Namespace) -> InstallerSettings:
    overrides = {}
    if args.work_dir:
        overrides["work_dir"] = args.work_dir
    if args.install_base:
        overrides["install_base"] = args.install_base
    if args.log_file:
        overrides["log_file"] = args.log_file
    return InstallerSettings(**overrides)


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = settings_from_args(args)
    setup_logger(
        "cuda_alongside",
        settings.log_file,
        level=logging.DEBUG if args.debug else logging.INFO,
    )

    request = InstallRequest(
        version=args.version,
        toolkit_url=args.toolkit_url,
        family=args.family,
        min_driver=args.min_driver,
        companion_url=args.companion_url,
        companion_version=args.companion_version,
        reinstall=args.reinstall,
        allow_old_driver=args.allow_old_driver,
    )
    installer = Installer(settings, confirm=always_yes if args.yes else ask_yes_no)

    try:
        return asyncio.run(installer.run(request))
    except InstallCancelled as e:
        logger.info(e.message)
        return EXIT_OK
    except VersionNotFoundError as e:
        logger.error(e.message)
        return EXIT_FAILURE
    except InstallerError as e:
        logger.error(e.message)
        _log_last_status(installer)
        logger.error("Re-run the installer to resume from the last completed stage.")
        return EXIT_FAILURE
    except KeyboardInterrupt:
        _log_last_status(installer)
        logger.error("Interrupted. Re-run the installer to resume.")
        return EXIT_INTERRUPTED


def _log_last_status(installer: Installer) -> None:
    status = installer.last_status()
    if status is None:
        return
    logger.error(f"Stopped at stage {status.stage.name}: {status.message} ({status.progress}%)")


if __name__ == "__main__":
    sys.exit(main())
