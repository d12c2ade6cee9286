"""E2E fixtures: a whole install against a temporary filesystem.

Real archives, a real (fake) runfile and a real nvcc script are used;
only the root-owned system tools are answered by FakeSystemProcessManager.
"""

from unittest.mock import patch

import pytest

from cuda_alongside.main import InstallRequest, Installer
from cuda_alongside.services.download import ArchiveStager
from cuda_alongside.services.process import CmdResult, ProcessManager

FAKE_RUNFILE = """#!/bin/sh
for arg in "$@"; do
  case "$arg" in
    --toolkitpath=*) root="${arg#--toolkitpath=}" ;;
  esac
done
mkdir -p "$root/bin" "$root/lib64"
printf '#!/bin/sh\\necho "Cuda compilation tools, release %s, V%s.77"\\n' "$FAMILY" "$FAMILY" > "$root/bin/nvcc"
chmod 755 "$root/bin/nvcc"
touch "$root/lib64/libcudart.so"
echo "$root" >> "$(dirname "$0")/runfile_invocations"
exit 0
"""

SYSTEM_TOOLS = ("update-alternatives", "ldconfig", "nvidia-smi")


class FakeSystemProcessManager(ProcessManager):
    """Runs real commands except the system tools, which are recorded."""

    def __init__(self, driver_version: str = "560.35.03"):
        super().__init__(show_spinner=False)
        self.driver_version = driver_version
        self.system_calls: list[list[str]] = []

    async def run(self, argv, check=False, message=None):
        argv = [str(a) for a in argv]
        if argv[0] not in SYSTEM_TOOLS:
            return await super().run(argv, check=check, message=message)

        self.system_calls.append(argv)
        stdout = ""
        if argv[0] == "nvidia-smi":
            stdout = f"{self.driver_version}\n"
        return CmdResult(argv, 0, stdout, "")


@pytest.fixture
def make_runfile(tmp_path):
    """Write a local toolkit runfile that installs an nvcc for family."""

    def _make(name: str, family: str):
        path = tmp_path / "mirror" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(FAKE_RUNFILE.replace("$FAMILY", family))
        return path

    return _make


@pytest.fixture
def runfile(make_runfile):
    return make_runfile("cuda_12.6.2_560.35.03_linux.run", "12.6")


@pytest.fixture
def companion_archive(tmp_path, make_cudnn_archive):
    return make_cudnn_archive(tmp_path / "mirror" / "cudnn-linux-x86_64-8.9.7.29_cuda12-archive.tar.xz")


@pytest.fixture
def request_for(runfile, companion_archive):
    def _make(**overrides):
        fields = dict(
            version="12.6.2",
            toolkit_url=str(runfile),
            companion_url=str(companion_archive),
            companion_version="8.9.7",
        )
        fields.update(overrides)
        return InstallRequest(**fields)

    return _make


@pytest.fixture
def system():
    return FakeSystemProcessManager()


@pytest.fixture
def make_installer(settings, system):
    def _make(confirm=True, ask=False, prompt=None, run_settings=None):
        run_settings = run_settings or settings
        confirm_fn = lambda question, default: confirm  # noqa: E731
        prompt_fn = prompt or (lambda question: None)
        return Installer(
            run_settings,
            confirm=confirm_fn,
            prompt=prompt_fn,
            ask=lambda question, default: ask,
            process_manager=system,
            stager=ArchiveStager(run_settings, confirm=confirm_fn, prompt=prompt_fn),
        )

    return _make


@pytest.fixture(autouse=True)
def host_checks():
    """Skip root/tool/disk checks and pretend nvidia-smi is installed."""
    with patch("cuda_alongside.main.check_prerequisites"), \
         patch("cuda_alongside.services.compatibility.shutil.which", return_value="/usr/bin/nvidia-smi"):
        yield
