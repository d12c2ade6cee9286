"""Archive staging: resumable downloads, local copies and container validation."""

import fnmatch
import os
import shutil
from pathlib import Path
from typing import Optional
import logging

import httpx
import aiofiles

from cuda_alongside.config import InstallerSettings
from cuda_alongside.exceptions import TransportError
from cuda_alongside.models.context import InstallContext
from cuda_alongside.models.status import InstallationStage
from cuda_alongside.services.state_manager import StateManager
from cuda_alongside.utils.prompts import Confirm, Prompt, ask_text, ask_yes_no
from cuda_alongside.utils.verification import validate_archive


def is_url(source: str) -> bool:
    return source.startswith(("http://", "https://"))


def companion_name_for(source: str) -> str:
    """Work-area file name for a companion archive, keeping its container type."""
    return "cudnn.tgz" if source.endswith(".tgz") else "cudnn.tar.xz"


def default_search_dirs() -> list[Path]:
    """Download folders of the invoking user (not root's when run under sudo)."""
    user = os.environ.get("SUDO_USER") or os.environ.get("USER") or ""
    home = Path(os.path.expanduser(f"~{user}")) if user else Path.home()
    return [home / "Downloads", home]


class ArchiveStager:
    """Fetches or locates toolkit and companion archives into the work area."""

    def __init__(
        self,
        settings: InstallerSettings,
        state_manager: Optional[StateManager] = None,
        confirm: Confirm = ask_yes_no,
        prompt: Prompt = ask_text,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize archive stager.

        Args:
            settings: Installer settings (timeouts, chunk size, search dirs)
            state_manager: Receives download progress, if given
            confirm: Yes/no callback used before adopting a found archive
            prompt: Free-text callback asking the operator for an archive path
            transport: httpx transport override (tests use httpx.MockTransport)
        """
        self.logger = logging.getLogger("cuda_alongside.download")
        self.settings = settings
        self.state_manager = state_manager
        self.confirm = confirm
        self.prompt = prompt
        self.transport = transport
        self.chunk_size = settings.chunk_size

    async def stage_toolkit(self, ctx: InstallContext) -> Path:
        """Make the toolkit runfile available in the work area.

        Returns:
            Path to the executable runfile

        Raises:
            TransportError: If the download or copy fails
        """
        target = ctx.toolkit_archive
        ctx.work_area.mkdir(parents=True, exist_ok=True)

        if target.is_file():
            self.logger.info(f"CUDA installer already downloaded ({_human_size(target)})")
        else:
            self.logger.info(f"Downloading CUDA {ctx.descriptor.version} from: {ctx.descriptor.source}")
            self.logger.warning("Download size: ~3.5-4.5GB (this may take 10-30 minutes)")
            await self.fetch(ctx.descriptor.source, target, InstallationStage.START)
            self.logger.info("CUDA toolkit downloaded")

        target.chmod(0o755)
        return target

    async def stage_companion(self, ctx: InstallContext) -> Path:
        """Make a validated cuDNN archive available in the work area.

        Order: a valid archive already in the work area, a fresh download,
        an archive found in the operator's download folders, a path typed by
        the operator. Invalid files are removed, never reused.

        Returns:
            Path to the validated archive

        Raises:
            TransportError: If no valid archive could be obtained
        """
        ctx.work_area.mkdir(parents=True, exist_ok=True)

        existing = self.find_valid_companion(ctx, discard_invalid=True)
        if existing is not None:
            self.logger.info(f"cuDNN archive already present: {existing.name} ({_human_size(existing)})")
            return existing

        source = ctx.companion.source
        target = ctx.work_area / companion_name_for(source)
        self.logger.info(f"Downloading cuDNN {ctx.companion.version} from: {source}")
        self.logger.warning("Download size: ~700MB-1GB; may require NVIDIA Developer authentication")
        try:
            await self.fetch(source, target, InstallationStage.TOOLKIT_DOWNLOADED)
        except TransportError as e:
            self.logger.warning(f"Automatic cuDNN download failed: {e}")
        else:
            if validate_archive(target):
                self.logger.info("cuDNN archive downloaded and validated")
                return target
            self.logger.warning(f"Downloaded {target.name} is not a valid archive, removing...")
            target.unlink(missing_ok=True)

        return await self._acquire_manually(ctx)

    def find_valid_companion(self, ctx: InstallContext, discard_invalid: bool = False) -> Optional[Path]:
        """Return the first valid companion archive in the work area.

        Args:
            discard_invalid: Delete candidates that fail validation
        """
        for candidate in ctx.companion_archives:
            if not candidate.is_file():
                continue
            if validate_archive(candidate):
                return candidate
            if discard_invalid:
                self.logger.warning(f"Found {candidate.name} but it's not a valid archive, removing...")
                candidate.unlink(missing_ok=True)
        return None

    def search_local(self, ctx: InstallContext) -> Optional[Path]:
        """Find a manually downloaded cuDNN archive in the operator's folders."""
        tag = ctx.descriptor.family_tag
        family = ctx.family
        patterns = [
            f"cudnn*linux*x86*64*cuda*{tag}*.tar.xz",
            f"cudnn*linux*x86*64*cuda*{tag}*.tgz",
            f"cudnn-{family}*linux*x86*64*.tar.xz",
            f"cudnn-{family}*linux*x86*64*.tgz",
            f"cudnn-{family}*linux*x64*.tar.xz",
            f"cudnn-{family}*linux*x64*.tgz",
            "cudnn*.tar.xz",
            "cudnn*.tgz",
        ]
        locations = self.settings.search_dirs or default_search_dirs()

        for pattern in patterns:
            for location in locations:
                if not location.is_dir():
                    continue
                matches = sorted(
                    (p for p in location.iterdir() if p.is_file() and fnmatch.fnmatch(p.name, pattern)),
                    reverse=True,
                )
                if matches:
                    self.logger.debug(f"Pattern {pattern} matched {matches[0]}")
                    return matches[0]
        return None

    async def _acquire_manually(self, ctx: InstallContext) -> Path:
        self.logger.warning(
            f"Manual download required: cuDNN v{ctx.companion.version} for CUDA {ctx.family} "
            f"(Linux x86_64) from https://developer.nvidia.com/rdp/cudnn-archive"
        )

        found = self.search_local(ctx)
        if found is not None:
            self.logger.info(f"Found cuDNN archive: {found}")
            if self.confirm(f"Use {found}?", True):
                staged = await self._adopt(found, ctx)
                if staged is not None:
                    return staged
            else:
                self.logger.info("Declined to use the found file")
        else:
            self.logger.warning("Auto-detection did not find any cuDNN archive")

        while True:
            answer = self.prompt("Enter full path to cuDNN archive (or press Enter to search again)")
            if answer is None:
                raise TransportError(
                    f"No valid cuDNN archive available in {ctx.work_area}",
                    {"source": ctx.companion.source},
                )
            candidate = Path(answer).expanduser() if answer else self.search_local(ctx)
            if candidate is None:
                self.logger.warning("cuDNN archive not found in common locations")
                continue
            if not candidate.is_file():
                self.logger.error(f"File not found: {candidate}")
                continue
            staged = await self._adopt(candidate, ctx)
            if staged is not None:
                return staged

    async def _adopt(self, found: Path, ctx: InstallContext) -> Optional[Path]:
        """Copy an operator archive into the work area; None if unusable."""
        target = ctx.work_area / companion_name_for(found.name)
        try:
            await self.fetch(str(found), target, InstallationStage.TOOLKIT_DOWNLOADED)
        except TransportError as e:
            self.logger.error(str(e))
            return None
        if not validate_archive(target):
            self.logger.error(f"{found} is not a valid tar.xz/tgz archive")
            target.unlink(missing_ok=True)
            return None
        self.logger.info(f"cuDNN archive copied as {target.name} ({_human_size(target)})")
        return target

    async def fetch(self, source: str, target: Path, stage: InstallationStage) -> Path:
        """Bring a URL or local file to target.

        Args:
            source: HTTP(S) URL or filesystem path
            target: Destination in the work area
            stage: Stage reported in progress updates

        Raises:
            TransportError: On HTTP or filesystem failure
        """
        if is_url(source):
            try:
                await self._download_with_resume(source, target, stage)
            except httpx.HTTPError as e:
                raise TransportError(f"DOWNLOAD_FAILED: {source}: {e}", {"url": source}) from e
            return target

        path = Path(source).expanduser()
        if not path.is_file():
            raise TransportError(f"Source file not found: {path}", {"path": str(path)})
        # Copied under .part so an interrupted copy never carries the final name
        part = target.with_name(target.name + ".part")
        try:
            shutil.copyfile(path, part)
            part.replace(target)
        except OSError as e:
            raise TransportError(f"Failed to copy {path} to {target}: {e}", {"path": str(path)}) from e
        finally:
            part.unlink(missing_ok=True)
        return target

    async def _download_with_resume(self, url: str, target: Path, stage: InstallationStage) -> None:
        """HTTP download into <target>.part, resumed with a Range header.

        The partial file is only renamed to target once the transfer
        completes, so an interrupted run never leaves a truncated archive
        under the name StateProbe looks for.
        """
        part = target.with_name(target.name + ".part")
        bytes_downloaded = part.stat().st_size if part.exists() else 0

        headers = {}
        if bytes_downloaded > 0:
            self.logger.info(f"Resuming download from byte {bytes_downloaded}")
            headers["Range"] = f"bytes={bytes_downloaded}-"

        async with httpx.AsyncClient(
            timeout=self.settings.download_timeout,
            follow_redirects=True,
            transport=self.transport,
        ) as client:
            async with client.stream("GET", url, headers=headers) as response:
                if response.status_code == 416 and bytes_downloaded > 0:
                    # Range starts at EOF: the previous run already had every byte
                    self.logger.info("Partial file already complete")
                else:
                    response.raise_for_status()
                    if bytes_downloaded > 0 and response.status_code != 206:
                        self.logger.warning("Server ignored Range request, restarting download")
                        bytes_downloaded = 0

                    length = response.headers.get("Content-Length")
                    total = bytes_downloaded + int(length) if length else 0

                    mode = "ab" if bytes_downloaded > 0 else "wb"
                    async with aiofiles.open(part, mode) as f:
                        last_progress = -1
                        async for chunk in response.aiter_bytes(chunk_size=self.chunk_size):
                            await f.write(chunk)
                            bytes_downloaded += len(chunk)

                            if not total:
                                continue
                            current_progress = min(int(bytes_downloaded * 100 / total), 100)
                            if current_progress >= last_progress + 5:
                                last_progress = current_progress
                                self.logger.debug(
                                    f"Download progress: {current_progress}% "
                                    f"({bytes_downloaded}/{total} bytes)"
                                )
                                if self.state_manager is not None:
                                    self.state_manager.update_status(
                                        stage=stage,
                                        progress=current_progress,
                                        message=f"Downloading {target.name}...",
                                    )

        part.replace(target)
        self.logger.info(f"Downloaded {bytes_downloaded} bytes to {target}")


def _human_size(path: Path) -> str:
    size = float(path.stat().st_size)
    for unit in ("B", "KB", "MB"):
        if size < 1024:
            return f"{size:.1f}{unit}"
        size /= 1024
    return f"{size:.1f}GB"
