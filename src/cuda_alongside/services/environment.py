"""Environment publishing: update-alternatives, ldconfig, switcher and profile scripts.

Every artifact is rewritten in full on each publish, so re-running converges
on the same files instead of accumulating state.
"""

import os
from pathlib import Path
from typing import Optional
import logging

from cuda_alongside.models.context import InstallContext
from cuda_alongside.services.process import ProcessManager
from cuda_alongside.services.state_probe import parse_nvcc_release

_ENV_BODY = """\
export CUDA_HOME={root}
export PATH=$CUDA_HOME/bin:$PATH
export LD_LIBRARY_PATH=$CUDA_HOME/lib64:$LD_LIBRARY_PATH
export CGO_CFLAGS="-I$CUDA_HOME/include"
export CGO_LDFLAGS="-L$CUDA_HOME/lib64 -lcuda -lcudart -lcublas -lcudnn"
"""


def discover_install_roots(install_base: Path) -> list[Path]:
    """Every <install_base>/cuda-X.Y directory that contains bin/nvcc."""
    if not install_base.is_dir():
        return []
    roots = [
        p
        for p in install_base.glob("cuda-*")
        if p.is_dir() and not p.is_symlink() and (p / "bin" / "nvcc").is_file()
    ]
    return sorted(roots, key=lambda p: _family_key(p.name[len("cuda-"):]))


def _family_key(family: str) -> tuple:
    return tuple(int(x) if x.isdigit() else -1 for x in family.split("."))


def _write_script(path: Path, content: str) -> None:
    """Atomically replace path with content, mode 0755."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.parent / f".{path.name}.tmp.{os.getpid()}"
    try:
        tmp_path.write_text(content, encoding="utf-8")
        tmp_path.chmod(0o755)
        tmp_path.replace(path)
    except Exception:
        tmp_path.unlink(missing_ok=True)
        raise


class EnvironmentPublisher:
    """Makes an installed root usable system-wide."""

    def __init__(self, process_manager: Optional[ProcessManager] = None):
        self.logger = logging.getLogger("cuda_alongside.environment")
        self.process_manager = process_manager or ProcessManager()

    async def publish(self, ctx: InstallContext) -> None:
        """Run every publishing step for ctx.

        Raises:
            RuntimeError: If update-alternatives or ldconfig fails
            OSError: If a script cannot be written
        """
        await self.register_alternative(ctx)
        await self.write_linker_config(ctx)
        self.write_switcher(ctx)
        self.write_profile(ctx)

    async def register_alternative(self, ctx: InstallContext) -> None:
        """Register the install root with update-alternatives and select it.

        The priority comes from the family ("12.6" -> 126), so newer
        families outrank older ones in automatic mode.
        """
        settings = ctx.settings
        name = settings.alternatives_name
        root = str(ctx.install_root)
        priority = ctx.descriptor.priority

        query = await self.process_manager.run(["update-alternatives", "--query", name])
        if query.ok and root in query.stdout.split():
            self.logger.info(f"CUDA {ctx.family} already registered with update-alternatives")
            await self.process_manager.run(["update-alternatives", "--remove", name, root])

        self.logger.info(
            f"Registering CUDA {ctx.family} with update-alternatives (priority: {priority})"
        )
        await self.process_manager.run(
            ["update-alternatives", "--install", str(settings.alternatives_link), name, root, str(priority)],
            check=True,
        )
        self.logger.info(f"Setting CUDA {ctx.family} as default")
        await self.process_manager.run(["update-alternatives", "--set", name, root], check=True)

        link = settings.alternatives_link
        if link.exists():
            self.logger.info(f"Verified: {link} -> {link.resolve()}")

    async def write_linker_config(self, ctx: InstallContext) -> None:
        """Write the ld.so.conf.d fragment for this root and refresh the cache."""
        root = ctx.install_root
        content = (
            f"# CUDA {ctx.family} library paths\n"
            f"# Auto-generated by cuda-alongside\n"
            f"{root / 'lib64'}\n"
            f"{root / 'lib'}\n"
            f"{root / 'targets' / 'x86_64-linux' / 'lib'}\n"
        )
        ctx.ld_conf_path.parent.mkdir(parents=True, exist_ok=True)
        ctx.ld_conf_path.write_text(content, encoding="utf-8")
        self.logger.info(f"Created: {ctx.ld_conf_path}")

        await self.process_manager.run(["ldconfig"], check=True, message="  Updating library cache")

        cache = await self.process_manager.run(["ldconfig", "-p"])
        if any("libcudart.so" in line and str(root) in line for line in cache.stdout.splitlines()):
            self.logger.info(f"Libraries from CUDA {ctx.family} are properly registered")
        else:
            self.logger.warning("Library resolution may need verification")

    def switcher_script(self, ctx: InstallContext) -> str:
        return (
            "#!/bin/bash\n"
            f"# Switch to CUDA {ctx.family}\n"
            + _ENV_BODY.format(root=ctx.install_root)
            + "\n"
            f'echo "Switched to CUDA {ctx.family}"\n'
            'echo "CUDA_HOME=$CUDA_HOME"\n'
        )

    def write_switcher(self, ctx: InstallContext) -> Path:
        """Write <bin_dir>/use-cuda<tag>."""
        _write_script(ctx.switcher_path, self.switcher_script(ctx))
        self.logger.info(f"Created: {ctx.switcher_path}")
        return ctx.switcher_path

    def profile_script(self, ctx: InstallContext) -> str:
        """Render the system-wide profile from the roots currently on disk."""
        lines = [
            "# CUDA environment",
            "# Auto-generated by cuda-alongside; rewritten on every install",
            "",
            "# Available CUDA installations",
        ]
        for root in discover_install_roots(ctx.settings.install_base):
            tag = root.name[len("cuda-"):].replace(".", "")
            lines.append(f"export CUDA_HOME_{tag}={root}")
        lines += ["", f"# Default to CUDA {ctx.family}"]
        return "\n".join(lines) + "\n" + _ENV_BODY.format(root=ctx.install_root)

    def write_profile(self, ctx: InstallContext) -> Path:
        """Regenerate the profile fragment in full."""
        path = ctx.settings.profile_path
        _write_script(path, self.profile_script(ctx))
        self.logger.info(f"Updated: {path}")
        return path

    async def list_installations(self, install_base: Path) -> list[tuple[Path, str]]:
        """(root, reported release) for every discovered installation."""
        found = []
        for root in discover_install_roots(install_base):
            try:
                result = await self.process_manager.run([str(root / "bin" / "nvcc"), "--version"])
                release = parse_nvcc_release(result.stdout) or "unknown"
            except OSError:
                release = "unknown"
            found.append((root, release))
        return found
