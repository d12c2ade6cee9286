"""Installer settings.

Defaults describe a real system install; tests and operators point them
elsewhere through the CLI flags in main.py.
"""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class InstallerSettings(BaseModel):
    """Filesystem layout and tunables for one run."""

    model_config = ConfigDict(frozen=True)

    install_base: Path = Field(Path("/usr/local"), description="Parent of cuda-<family> roots")
    bin_dir: Path = Field(Path("/usr/local/bin"), description="Where switcher scripts go")
    ld_conf_dir: Path = Field(Path("/etc/ld.so.conf.d"), description="Linker path fragments")
    profile_path: Path = Field(
        Path("/etc/profile.d/cuda-alongside.sh"),
        description="System-wide profile fragment",
    )
    alternatives_name: str = Field("cuda", description="update-alternatives group name")
    alternatives_link: Path = Field(Path("/usr/local/cuda"), description="Managed symlink")
    work_base: Path = Field(Path("/tmp"), description="Parent of process-scoped work areas")
    work_dir: Optional[Path] = Field(
        None, description="Explicit work area, e.g. one left behind by a previous run"
    )
    search_dirs: Optional[list[Path]] = Field(
        None, description="Where to look for manually downloaded companion archives"
    )
    min_free_bytes: int = Field(5 * 1024**3, ge=0, description="Free space needed on install_base")
    log_file: str = Field("/var/log/cuda-alongside/install.log", description="Rotating log file")
    download_timeout: float = Field(30.0, gt=0, description="httpx timeout in seconds")
    chunk_size: int = Field(64 * 1024, gt=0, description="Download chunk size in bytes")
