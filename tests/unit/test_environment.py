"""Unit tests for EnvironmentPublisher."""

import pytest
from unittest.mock import AsyncMock

from cuda_alongside.services.environment import EnvironmentPublisher, discover_install_roots
from cuda_alongside.services.process import CmdResult, ProcessManager


class RecordingProcessManager:
    """Stands in for ProcessManager; answers from a table of canned outputs."""

    def __init__(self, outputs=None):
        self.calls = []
        self.outputs = outputs or {}

    async def run(self, argv, check=False, message=None):
        argv = [str(a) for a in argv]
        self.calls.append(argv)
        stdout, returncode = self.outputs.get(tuple(argv[:2]), ("", 0))
        if check and returncode != 0:
            raise RuntimeError(f"Command failed ({returncode}): {' '.join(argv)}")
        return CmdResult(argv, returncode, stdout, "")

    def commands(self, prefix):
        return [c for c in self.calls if c[: len(prefix)] == list(prefix)]


@pytest.mark.unit
class TestRegisterAlternative:
    """Test update-alternatives registration."""

    @pytest.mark.asyncio
    async def test_registers_with_family_priority(self, ctx):
        pm = RecordingProcessManager()
        publisher = EnvironmentPublisher(pm)

        await publisher.register_alternative(ctx)

        link = str(ctx.settings.alternatives_link)
        root = str(ctx.install_root)
        assert pm.commands(["update-alternatives", "--install"]) == [
            ["update-alternatives", "--install", link, "cuda", root, "126"]
        ]
        assert pm.commands(["update-alternatives", "--set"]) == [
            ["update-alternatives", "--set", "cuda", root]
        ]
        assert pm.commands(["update-alternatives", "--remove"]) == []

    @pytest.mark.asyncio
    async def test_existing_registration_removed_first(self, ctx):
        root = str(ctx.install_root)
        query = f"Name: cuda\nLink: /usr/local/cuda\nAlternative: {root}\nPriority: 126\n"
        pm = RecordingProcessManager({("update-alternatives", "--query"): (query, 0)})

        await EnvironmentPublisher(pm).register_alternative(ctx)

        verbs = [c[1] for c in pm.calls]
        assert verbs == ["--query", "--remove", "--install", "--set"]

    @pytest.mark.asyncio
    async def test_other_root_not_removed(self, ctx, make_ctx):
        other = make_ctx("11.8.0")
        query = f"Name: cuda\nAlternative: {other.install_root}\nPriority: 118\n"
        pm = RecordingProcessManager({("update-alternatives", "--query"): (query, 0)})

        await EnvironmentPublisher(pm).register_alternative(ctx)

        assert pm.commands(["update-alternatives", "--remove"]) == []

    @pytest.mark.asyncio
    async def test_priorities_follow_family_order(self, make_ctx):
        pm = RecordingProcessManager()
        publisher = EnvironmentPublisher(pm)

        for version in ("12.6.2", "11.8.0"):
            await publisher.register_alternative(make_ctx(version))

        priorities = {c[4]: int(c[5]) for c in pm.commands(["update-alternatives", "--install"])}
        assert priorities[str(make_ctx("11.8.0").install_root)] == 118
        assert priorities[str(make_ctx("12.6.2").install_root)] == 126

    @pytest.mark.asyncio
    async def test_install_failure_raises(self, ctx):
        pm = RecordingProcessManager({("update-alternatives", "--install"): ("", 2)})

        with pytest.raises(RuntimeError):
            await EnvironmentPublisher(pm).register_alternative(ctx)


@pytest.mark.unit
class TestLinkerConfig:
    @pytest.mark.asyncio
    async def test_writes_fragment_and_runs_ldconfig(self, ctx):
        pm = RecordingProcessManager()

        await EnvironmentPublisher(pm).write_linker_config(ctx)

        content = ctx.ld_conf_path.read_text()
        assert ctx.ld_conf_path.name == "cuda-12.6.conf"
        assert f"{ctx.install_root}/lib64\n" in content
        assert f"{ctx.install_root}/targets/x86_64-linux/lib\n" in content
        assert ["ldconfig"] in pm.calls

    @pytest.mark.asyncio
    async def test_rewrite_is_idempotent(self, ctx):
        publisher = EnvironmentPublisher(RecordingProcessManager())

        await publisher.write_linker_config(ctx)
        first = ctx.ld_conf_path.read_text()
        await publisher.write_linker_config(ctx)

        assert ctx.ld_conf_path.read_text() == first


@pytest.mark.unit
class TestScripts:
    """Test switcher and profile generation."""

    def test_switcher_script(self, ctx):
        publisher = EnvironmentPublisher(AsyncMock())

        path = publisher.write_switcher(ctx)

        assert path.name == "use-cuda126"
        content = path.read_text()
        assert content.startswith("#!/bin/bash\n")
        assert f"export CUDA_HOME={ctx.install_root}\n" in content
        assert "export PATH=$CUDA_HOME/bin:$PATH" in content
        assert "export LD_LIBRARY_PATH=$CUDA_HOME/lib64:$LD_LIBRARY_PATH" in content
        assert 'export CGO_CFLAGS="-I$CUDA_HOME/include"' in content
        assert "-lcudnn" in content
        assert path.stat().st_mode & 0o777 == 0o755

    def test_profile_lists_every_root(self, ctx, make_ctx, make_nvcc):
        older = make_ctx("11.8.0")
        make_nvcc(older.install_root, "11.8")
        make_nvcc(ctx.install_root, "12.6")
        (ctx.settings.install_base / "cuda-12.0").mkdir(parents=True)  # no nvcc

        path = EnvironmentPublisher(AsyncMock()).write_profile(ctx)

        content = path.read_text()
        assert f"export CUDA_HOME_118={older.install_root}\n" in content
        assert f"export CUDA_HOME_126={ctx.install_root}\n" in content
        assert "CUDA_HOME_120" not in content
        assert content.index("CUDA_HOME_118") < content.index("CUDA_HOME_126")
        assert content.rstrip().endswith("-lcudnn\"")
        assert f"export CUDA_HOME={ctx.install_root}\n" in content

    def test_profile_regenerated_not_appended(self, ctx, make_nvcc):
        make_nvcc(ctx.install_root)
        publisher = EnvironmentPublisher(AsyncMock())

        publisher.write_profile(ctx)
        first = ctx.settings.profile_path.read_text()
        publisher.write_profile(ctx)

        assert ctx.settings.profile_path.read_text() == first
        assert first.count("CUDA_HOME_126=") == 1

    def test_no_temp_files_left(self, ctx):
        EnvironmentPublisher(AsyncMock()).write_switcher(ctx)

        assert [p.name for p in ctx.switcher_path.parent.iterdir()] == ["use-cuda126"]


@pytest.mark.unit
class TestPublish:
    @pytest.mark.asyncio
    async def test_publish_runs_every_step(self, ctx, make_nvcc):
        make_nvcc(ctx.install_root)
        pm = RecordingProcessManager()

        await EnvironmentPublisher(pm).publish(ctx)

        assert ctx.switcher_path.is_file()
        assert ctx.settings.profile_path.is_file()
        assert ctx.ld_conf_path.is_file()
        assert pm.commands(["update-alternatives", "--set"])

    @pytest.mark.asyncio
    async def test_other_installations_untouched(self, ctx, make_ctx, make_nvcc):
        older = make_ctx("11.8.0")
        make_nvcc(older.install_root, "11.8")
        older.ld_conf_path.parent.mkdir(parents=True, exist_ok=True)
        older.ld_conf_path.write_text("old\n")
        make_nvcc(ctx.install_root)

        await EnvironmentPublisher(RecordingProcessManager()).publish(ctx)

        assert older.ld_conf_path.read_text() == "old\n"
        assert not older.switcher_path.exists()

    @pytest.mark.asyncio
    async def test_list_installations(self, ctx, make_ctx, make_nvcc, settings):
        make_nvcc(make_ctx("11.8.0").install_root, "11.8")
        make_nvcc(ctx.install_root, "12.6")
        found = await EnvironmentPublisher(ProcessManager(show_spinner=False)).list_installations(
            settings.install_base
        )

        assert [(root.name, release) for root, release in found] == [
            ("cuda-11.8", "11.8"),
            ("cuda-12.6", "12.6"),
        ]


@pytest.mark.unit
class TestDiscoverInstallRoots:
    def test_numeric_family_order(self, tmp_path, make_nvcc):
        for family in ("12.10", "12.6", "11.8"):
            make_nvcc(tmp_path / f"cuda-{family}")

        assert [p.name for p in discover_install_roots(tmp_path)] == [
            "cuda-11.8",
            "cuda-12.6",
            "cuda-12.10",
        ]

    def test_missing_base(self, tmp_path):
        assert discover_install_roots(tmp_path / "missing") == []
