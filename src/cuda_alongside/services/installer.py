"""Toolkit runfile and cuDNN installation into the install root."""

import asyncio
import shutil
import stat
import tarfile
from pathlib import Path
from typing import Optional
import logging

from cuda_alongside.exceptions import InstallerError
from cuda_alongside.models.context import InstallContext
from cuda_alongside.services.process import ProcessManager
from cuda_alongside.utils.verification import validate_archive_or_raise

# Toolkit only: no driver, no kernel modules, no OpenGL/DRM, no man pages
TOOLKIT_FLAGS = (
    "--toolkit",
    "--no-opengl-libs",
    "--no-drm",
    "--no-man-page",
    "--override",
    "--silent",
)


class ToolkitInstaller:
    """Runs the native CUDA runfile non-interactively."""

    def __init__(self, process_manager: Optional[ProcessManager] = None):
        self.logger = logging.getLogger("cuda_alongside.installer.toolkit")
        self.process_manager = process_manager or ProcessManager()

    def command(self, ctx: InstallContext) -> list[str]:
        return [
            str(ctx.toolkit_archive),
            TOOLKIT_FLAGS[0],
            f"--toolkitpath={ctx.install_root}",
            *TOOLKIT_FLAGS[1:],
        ]

    async def install(self, ctx: InstallContext) -> None:
        """Install the toolkit into ctx.install_root.

        Success is the runfile's zero exit status, nothing else.

        Raises:
            InstallerError: If the runfile is missing or exits non-zero
        """
        runfile = ctx.toolkit_archive
        if not runfile.is_file():
            raise InstallerError(f"CUDA installer not found at {runfile}")

        self.logger.info(f"Installing CUDA {ctx.descriptor.version} toolkit to {ctx.install_root}...")
        self.logger.info("This will NOT modify your display driver or existing CUDA installations")
        self.logger.info("Installation may take 5-15 minutes...")

        runfile.chmod(runfile.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        try:
            result = await self.process_manager.run(
                self.command(ctx), message="  Running CUDA installer"
            )
        except OSError as e:
            raise InstallerError(f"Cannot execute CUDA installer {runfile}: {e}") from e

        if not result.ok:
            self.logger.error(f"Installer output:\n{result.stdout[-2000:]}{result.stderr[-2000:]}")
            raise InstallerError(
                f"CUDA toolkit installation failed (exit code {result.returncode})",
                {"returncode": result.returncode},
            )
        self.logger.info(f"CUDA {ctx.descriptor.version} toolkit installed to {ctx.install_root}")


def locate_payload(extract_dir: Path) -> Path:
    """Find the cuDNN payload directory inside an extracted archive.

    Archive layouts vary between releases, so try in order: a "cudnn*"
    directory, a "cuda" directory, then the first subdirectory.

    Raises:
        InstallerError: If the archive contains no directory at all
    """
    subdirs = sorted(p for p in extract_dir.iterdir() if p.is_dir())
    for candidate in subdirs:
        if candidate.name.startswith("cudnn"):
            return candidate
    if (extract_dir / "cuda").is_dir():
        return extract_dir / "cuda"
    if subdirs:
        return subdirs[0]
    raise InstallerError(f"No subdirectories found in extracted archive {extract_dir}")


class CompanionInstaller:
    """Extracts a cuDNN archive and copies headers and libraries into the install root."""

    def __init__(self):
        self.logger = logging.getLogger("cuda_alongside.installer.companion")

    async def install(self, ctx: InstallContext, archive: Path) -> None:
        """Install cuDNN from a staged archive.

        Raises:
            ArchiveFormatError: If the archive does not validate
            InstallerError: If extraction fails or cudnn.h / libcudnn.so are
                missing after the copy
        """
        self.logger.info(f"Installing cuDNN {ctx.companion.version} to {ctx.install_root}...")
        validate_archive_or_raise(archive)

        extract_dir = ctx.extract_dir
        if extract_dir.exists():
            shutil.rmtree(extract_dir)
        extract_dir.mkdir(parents=True)

        self.logger.info(f"Extracting {archive.name}...")
        try:
            await asyncio.to_thread(self._extract, archive, extract_dir)
        except (tarfile.TarError, OSError) as e:
            raise InstallerError(f"Failed to extract cuDNN archive {archive}: {e}") from e

        payload = locate_payload(extract_dir)
        self.logger.info(f"Found cuDNN directory: {payload}")

        include_dir = ctx.install_root / "include"
        lib_dir = ctx.install_root / "lib64"
        include_dir.mkdir(parents=True, exist_ok=True)
        lib_dir.mkdir(parents=True, exist_ok=True)

        if (payload / "include").is_dir():
            copied = self._copy_matching(payload / "include", "cudnn*.h", include_dir)
            self.logger.info(f"Copied {copied} header file(s)")
        else:
            self.logger.warning(f"No include directory found in {payload}")

        lib_found = False
        for name in ("lib", "lib64"):
            if (payload / name).is_dir():
                copied = self._copy_matching(payload / name, "libcudnn*", lib_dir)
                self.logger.info(f"Copied {copied} library file(s) from {name}/")
                lib_found = True
        if not lib_found:
            self.logger.warning(f"No lib or lib64 directory found in {payload}")

        self.logger.debug(f"Removing {extract_dir}")
        shutil.rmtree(extract_dir)

        missing = [p for p in (ctx.companion_header, ctx.companion_library) if not p.exists()]
        if missing:
            raise InstallerError(
                "cuDNN installation verification failed, missing: "
                + ", ".join(str(p) for p in missing)
            )
        self.logger.info(f"cuDNN {ctx.companion.version} installed successfully")

    @staticmethod
    def _extract(archive: Path, extract_dir: Path) -> None:
        with tarfile.open(archive, "r:*") as tf:
            tf.extractall(extract_dir, filter="data")

    def _copy_matching(self, src_dir: Path, pattern: str, dst_dir: Path) -> int:
        """Copy files (and symlinks, as symlinks) matching pattern; make them world-readable."""
        count = 0
        for src in sorted(src_dir.glob(pattern)):
            dst = dst_dir / src.name
            if dst.is_symlink() or dst.exists():
                dst.unlink()
            shutil.copy2(src, dst, follow_symlinks=False)
            if not dst.is_symlink():
                dst.chmod(dst.stat().st_mode | stat.S_IRUSR | stat.S_IRGRP | stat.S_IROTH)
            self.logger.debug(f"Copied {src.name}")
            count += 1
        return count
