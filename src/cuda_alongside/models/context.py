"""Request-scoped installation context."""

import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from cuda_alongside.config import InstallerSettings
from cuda_alongside.models.descriptors import CompanionDescriptor, VersionDescriptor

COMPANION_ARCHIVE_NAMES = ("cudnn.tar.xz", "cudnn.tgz")
HINT_FILE_NAME = "install_state.json"


class InstallContext(BaseModel):
    """Everything one run needs to know about its target.

    Built once after resolution and passed explicitly to the probe, the
    executor and the publisher.
    """

    model_config = ConfigDict(frozen=True)

    descriptor: VersionDescriptor
    companion: CompanionDescriptor
    settings: InstallerSettings
    work_area: Path

    @classmethod
    def build(
        cls,
        descriptor: VersionDescriptor,
        companion: CompanionDescriptor,
        settings: InstallerSettings,
    ) -> "InstallContext":
        """Derive the work area from the settings or from the process id."""
        work_area = settings.work_dir or settings.work_base / f"cuda_install_{os.getpid()}"
        return cls(
            descriptor=descriptor,
            companion=companion,
            settings=settings,
            work_area=work_area,
        )

    @property
    def family(self) -> str:
        return self.descriptor.family

    @property
    def install_root(self) -> Path:
        return self.settings.install_base / f"cuda-{self.descriptor.family}"

    @property
    def nvcc_path(self) -> Path:
        return self.install_root / "bin" / "nvcc"

    @property
    def companion_header(self) -> Path:
        return self.install_root / "include" / "cudnn.h"

    @property
    def companion_library(self) -> Path:
        return self.install_root / "lib64" / "libcudnn.so"

    @property
    def toolkit_archive(self) -> Path:
        return self.work_area / f"cuda_{self.descriptor.version}_linux.run"

    @property
    def companion_archives(self) -> list[Path]:
        """Candidate companion archive paths, in preference order."""
        return [self.work_area / name for name in COMPANION_ARCHIVE_NAMES]

    @property
    def extract_dir(self) -> Path:
        return self.work_area / "cudnn_extract"

    @property
    def hint_file(self) -> Path:
        return self.work_area / HINT_FILE_NAME

    @property
    def switcher_path(self) -> Path:
        return self.settings.bin_dir / f"use-cuda{self.descriptor.family_tag}"

    @property
    def ld_conf_path(self) -> Path:
        return self.settings.ld_conf_dir / f"cuda-{self.descriptor.family}.conf"
