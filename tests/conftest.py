"""Global pytest fixtures and configuration."""

import io
import sys
import tarfile
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from cuda_alongside.config import InstallerSettings  # noqa: E402
from cuda_alongside.models.context import InstallContext  # noqa: E402
from cuda_alongside.services.catalog import default_catalog  # noqa: E402

NVCC_TEMPLATE = """#!/bin/sh
echo "nvcc: NVIDIA (R) Cuda compiler driver"
echo "Cuda compilation tools, release {release}, V{release}.77"
"""


@pytest.fixture
def settings(tmp_path):
    """Installer settings rooted in a temporary directory."""
    return InstallerSettings(
        install_base=tmp_path / "usr_local",
        bin_dir=tmp_path / "usr_local" / "bin",
        ld_conf_dir=tmp_path / "etc" / "ld.so.conf.d",
        profile_path=tmp_path / "etc" / "profile.d" / "cuda-alongside.sh",
        alternatives_link=tmp_path / "usr_local" / "cuda",
        work_dir=tmp_path / "work",
        search_dirs=[tmp_path / "Downloads"],
        log_file=str(tmp_path / "logs" / "install.log"),
    )


@pytest.fixture
def catalog():
    return default_catalog()


@pytest.fixture
def make_ctx(settings, catalog):
    """Build an InstallContext for a catalog version."""

    def _make(version: str = "12.6.2") -> InstallContext:
        descriptor = catalog.resolve(version)
        return InstallContext.build(descriptor, catalog.companion_for(descriptor.family), settings)

    return _make


@pytest.fixture
def ctx(make_ctx):
    """Context for CUDA 12.6.2."""
    return make_ctx("12.6.2")


@pytest.fixture
def make_nvcc():
    """Write a fake nvcc into <root>/bin that reports the given release."""

    def _make(root: Path, release: str = "12.6") -> Path:
        nvcc = root / "bin" / "nvcc"
        nvcc.parent.mkdir(parents=True, exist_ok=True)
        nvcc.write_text(NVCC_TEMPLATE.format(release=release))
        nvcc.chmod(0o755)
        return nvcc

    return _make


def _add_file(tf: tarfile.TarFile, name: str, data: bytes) -> None:
    info = tarfile.TarInfo(name)
    info.size = len(data)
    info.mode = 0o644
    tf.addfile(info, io.BytesIO(data))


def _add_symlink(tf: tarfile.TarFile, name: str, target: str) -> None:
    info = tarfile.TarInfo(name)
    info.type = tarfile.SYMTYPE
    info.linkname = target
    tf.addfile(info)


@pytest.fixture
def make_cudnn_archive():
    """Create a real cuDNN-like archive.

    Args (of the returned factory):
        path: Archive path; ".tgz" gives gzip, anything else xz
        top: Top-level payload directory name ("" puts files at the root)
        lib_dir: "lib" or "lib64"
    """

    def _make(
        path: Path,
        top: str = "cudnn-linux-x86_64-8.9.7.29_cuda12-archive",
        lib_dir: str = "lib",
        with_header: bool = True,
        with_library: bool = True,
    ) -> Path:
        mode = "w:gz" if path.name.endswith(".tgz") else "w:xz"
        prefix = f"{top}/" if top else ""
        path.parent.mkdir(parents=True, exist_ok=True)
        with tarfile.open(path, mode) as tf:
            _add_file(tf, f"{prefix}LICENSE", b"license\n")
            if with_header:
                _add_file(tf, f"{prefix}include/cudnn.h", b"#define CUDNN_MAJOR 8\n")
                _add_file(tf, f"{prefix}include/cudnn_version.h", b"#define CUDNN_MINOR 9\n")
            if with_library:
                _add_file(tf, f"{prefix}{lib_dir}/libcudnn.so.8.9.7", b"\x7fELF fake")
                _add_symlink(tf, f"{prefix}{lib_dir}/libcudnn.so.8", "libcudnn.so.8.9.7")
                _add_symlink(tf, f"{prefix}{lib_dir}/libcudnn.so", "libcudnn.so.8")
        return path

    return _make


@pytest.fixture
def mock_state_manager():
    """Mock StateManager for unit tests."""
    manager = MagicMock()
    manager.update_status = MagicMock()
    manager.record_stage = MagicMock()
    manager.save_hint = MagicMock()
    return manager
