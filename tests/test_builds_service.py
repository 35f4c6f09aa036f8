"""Tests for builds/service.py module.

End-to-end pipeline tests with a mocked HTTP transport and a fake tool
runner that unpacks with tarfile and fakes the kernel build outputs.
"""

import io
import os
import stat
import tarfile
from pathlib import Path

import httpx
import pytest
import respx

from rpi_kernel_build.builds.runner import ToolExecutionError
from rpi_kernel_build.builds.service import (
    PipelineError,
    describe_plan,
    inject_defconfig,
    run_pipeline,
)
from rpi_kernel_build.release import BOARD, DEVICE_TREES, KERNEL_ARTIFACTS
from rpi_kernel_build.types import PipelineStage, ReleaseSource

SOURCE = ReleaseSource(url="https://example.com/raspberrypi/linux/archive/abc123.tar.gz")
BASE_ENV = {"PATH": "/usr/bin:/bin", "HOME": "/root"}


def make_kernel_archive() -> bytes:
    """Build a tar.gz resembling an upstream kernel snapshot."""
    top = SOURCE.workspace_name
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for name, data in [
            (f"{top}/Makefile", b"all:\n"),
            (f"{top}/arch/arm64/configs/defconfig", b"CONFIG_ARM64=y\n"),
        ]:
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


class FakeToolRunner:
    """Simulates tar, patch and make without running external programs."""

    def __init__(
        self,
        failing_patches: set[str] | None = None,
        failing_make_target: str | None = None,
        artifact_mode: int = 0o644,
    ) -> None:
        self.calls: list[dict] = []
        self.failing_patches = failing_patches or set()
        self.failing_make_target = failing_make_target
        self.artifact_mode = artifact_mode

    @property
    def programs(self) -> list[str]:
        return [c["cmd"][0] for c in self.calls]

    def __call__(self, cmd, cwd=None, env=None, stdin=None):
        cmd = list(cmd)
        self.calls.append(
            {
                "cmd": cmd,
                "cwd": cwd,
                "env": env,
                "stdin": Path(stdin.name).name if stdin else None,
                "stdin_file": stdin,
            }
        )
        program = cmd[0]
        if program == "tar":
            with tarfile.open(cwd / cmd[2]) as tar:
                tar.extractall(cwd, filter="data")
        elif program == "patch":
            if Path(stdin.name).name in self.failing_patches:
                raise ToolExecutionError("patch -p1: exit status 1", exit_code=1)
        elif program == "make":
            if self.failing_make_target and self.failing_make_target in cmd:
                raise ToolExecutionError("make: exit status 2", exit_code=2)
            if "Image.gz" in cmd:
                for spec in KERNEL_ARTIFACTS:
                    path = cwd / spec.source
                    path.parent.mkdir(parents=True, exist_ok=True)
                    path.write_bytes(spec.name.encode())
                    os.chmod(path, self.artifact_mode)


@pytest.fixture
def work_dir(tmp_path: Path) -> Path:
    """Invocation directory with a defconfig."""
    wd = tmp_path / "work"
    wd.mkdir()
    defconfig = wd / "defconfig"
    defconfig.write_text("CONFIG_LOCALVERSION=\"-gooniebox\"\n")
    os.chmod(defconfig, 0o640)
    return wd


@pytest.fixture
def dest_dir(tmp_path: Path) -> Path:
    return tmp_path / "buildresult"


def run(work_dir: Path, dest_dir: Path, runner: FakeToolRunner, **kwargs):
    with httpx.Client() as client:
        return run_pipeline(
            client,
            work_dir,
            dest_dir,
            dest_dir,
            source=SOURCE,
            jobs=4,
            base_env=BASE_ENV,
            runner=runner,
            **kwargs,
        )


class TestRunPipeline:
    """Tests for run_pipeline function."""

    @respx.mock
    def test_success_without_patches(self, work_dir, dest_dir):
        """Should produce exactly the fixed artifact list with mirrored modes."""
        respx.get(SOURCE.url).mock(
            return_value=httpx.Response(200, content=make_kernel_archive())
        )
        runner = FakeToolRunner(artifact_mode=0o755)

        result = run(work_dir, dest_dir, runner)

        assert result.workspace == work_dir.resolve() / "linux-abc123"
        assert result.patches == []
        assert sorted(p.name for p in dest_dir.iterdir()) == sorted(
            ["vmlinuz", *DEVICE_TREES]
        )
        for artifact in result.artifacts:
            assert stat.S_IMODE(artifact.path.stat().st_mode) == 0o755
        assert runner.programs == ["tar", "make", "make", "make"]

    @respx.mock
    def test_defconfig_injected_with_mode(self, work_dir, dest_dir):
        """Should copy the defconfig into the configs slot with its mode."""
        respx.get(SOURCE.url).mock(
            return_value=httpx.Response(200, content=make_kernel_archive())
        )

        result = run(work_dir, dest_dir, FakeToolRunner())

        slot = result.workspace / BOARD.config_slot
        assert slot.read_text() == (work_dir / "defconfig").read_text()
        assert stat.S_IMODE(slot.stat().st_mode) == 0o640

    @respx.mock
    def test_patches_applied_in_order_inside_workspace(self, work_dir, dest_dir):
        """Should apply discovered patches in name order at the tree root."""
        respx.get(SOURCE.url).mock(
            return_value=httpx.Response(200, content=make_kernel_archive())
        )
        for name in ["0002-b.patch", "0001-a.patch"]:
            (work_dir / name).write_text("")
        runner = FakeToolRunner()

        result = run(work_dir, dest_dir, runner)

        patch_calls = [c for c in runner.calls if c["cmd"][0] == "patch"]
        assert [c["stdin"] for c in patch_calls] == ["0001-a.patch", "0002-b.patch"]
        assert all(c["cmd"] == ["patch", "-p1"] for c in patch_calls)
        assert all(c["cwd"] == result.workspace for c in patch_calls)
        assert [p.name for p in result.patches] == ["0001-a.patch", "0002-b.patch"]

    @respx.mock
    def test_make_runs_in_workspace_with_toolchain_env(self, work_dir, dest_dir):
        """Should run every make in the workspace with the same environment."""
        respx.get(SOURCE.url).mock(
            return_value=httpx.Response(200, content=make_kernel_archive())
        )
        runner = FakeToolRunner()
        cwd_before = Path.cwd()

        result = run(work_dir, dest_dir, runner)

        make_calls = [c for c in runner.calls if c["cmd"][0] == "make"]
        assert len(make_calls) == 3
        assert all(c["cwd"] == result.workspace for c in make_calls)
        envs = [c["env"] for c in make_calls]
        assert envs[0] == envs[1] == envs[2]
        assert envs[0]["ARCH"] == "arm64"
        assert envs[0]["CROSS_COMPILE"] == "aarch64-linux-gnu-"
        assert envs[0]["KBUILD_BUILD_USER"] == "gokrazy"
        assert envs[0]["KBUILD_BUILD_HOST"] == "docker"
        assert envs[0]["PATH"] == BASE_ENV["PATH"]
        assert Path.cwd() == cwd_before

    @respx.mock
    def test_fetch_404_halts_before_unpack(self, work_dir, dest_dir):
        """Should stop at fetch; no workspace is created."""
        respx.get(SOURCE.url).mock(return_value=httpx.Response(404))
        runner = FakeToolRunner()

        with pytest.raises(PipelineError) as exc_info:
            run(work_dir, dest_dir, runner)

        assert exc_info.value.stage == PipelineStage.FETCH
        assert exc_info.value.code == "http_error"
        assert str(exc_info.value).startswith("fetch:")
        assert runner.calls == []
        assert not (work_dir / SOURCE.workspace_name).exists()
        assert not dest_dir.exists()

    @respx.mock
    def test_failing_patch_halts_before_compile(self, work_dir, dest_dir):
        """Should stop after the patch stage; no make or harvest happens."""
        respx.get(SOURCE.url).mock(
            return_value=httpx.Response(200, content=make_kernel_archive())
        )
        (work_dir / "0001-ok.patch").write_text("")
        (work_dir / "0002-conflict.patch").write_text("")
        (work_dir / "0003-never.patch").write_text("")
        runner = FakeToolRunner(failing_patches={"0002-conflict.patch"})

        with pytest.raises(PipelineError) as exc_info:
            run(work_dir, dest_dir, runner)

        assert exc_info.value.stage == PipelineStage.PATCH
        assert "0002-conflict.patch" in str(exc_info.value)
        assert "make" not in runner.programs
        assert [c["stdin"] for c in runner.calls if c["cmd"][0] == "patch"] == [
            "0001-ok.patch",
            "0002-conflict.patch",
        ]
        assert not dest_dir.exists()

    @respx.mock
    def test_failing_patch_leaves_no_open_handles(self, work_dir, dest_dir):
        """Should close every patch file even when the patch stage fails."""
        respx.get(SOURCE.url).mock(
            return_value=httpx.Response(200, content=make_kernel_archive())
        )
        (work_dir / "0001-ok.patch").write_text("")
        (work_dir / "0002-conflict.patch").write_text("")
        runner = FakeToolRunner(failing_patches={"0002-conflict.patch"})

        with pytest.raises(PipelineError):
            run(work_dir, dest_dir, runner)

        handles = [c["stdin_file"] for c in runner.calls if c["cmd"][0] == "patch"]
        assert len(handles) == 2
        assert all(f.closed for f in handles)

    @respx.mock
    def test_relative_paths_resolved_against_invocation_dir(
        self, work_dir, tmp_path, monkeypatch
    ):
        """Should stage modules and artifacts outside the source tree."""
        respx.get(SOURCE.url).mock(
            return_value=httpx.Response(200, content=make_kernel_archive())
        )
        monkeypatch.chdir(tmp_path)
        runner = FakeToolRunner()

        with httpx.Client() as client:
            result = run_pipeline(
                client,
                Path("work"),
                Path("out"),
                Path("mods"),
                source=SOURCE,
                jobs=1,
                base_env=BASE_ENV,
                runner=runner,
            )

        install = next(c for c in runner.calls if "modules_install" in c["cmd"])
        mod_arg = next(a for a in install["cmd"] if a.startswith("INSTALL_MOD_PATH="))
        mod_path = Path(mod_arg.split("=", 1)[1])
        assert mod_path.is_absolute()
        assert install["cwd"] / mod_path == tmp_path.resolve() / "mods"
        assert result.workspace not in (install["cwd"] / mod_path).parents
        assert result.workspace == work_dir.resolve() / SOURCE.workspace_name
        assert (tmp_path / "out" / "vmlinuz").is_file()
        assert all(a.path.parent == tmp_path.resolve() / "out" for a in result.artifacts)

    @respx.mock
    def test_compile_failure_skips_harvest(self, work_dir, dest_dir):
        """Should not attempt any artifact copy when compile fails."""
        respx.get(SOURCE.url).mock(
            return_value=httpx.Response(200, content=make_kernel_archive())
        )
        runner = FakeToolRunner(failing_make_target="modules_install")

        with pytest.raises(PipelineError) as exc_info:
            run(work_dir, dest_dir, runner)

        assert exc_info.value.stage == PipelineStage.COMPILE
        assert "modules_install" in str(exc_info.value)
        assert not dest_dir.exists()

    @respx.mock
    def test_missing_defconfig_fails_configure(self, work_dir, dest_dir):
        """Should fail at configure when the defconfig is missing."""
        respx.get(SOURCE.url).mock(
            return_value=httpx.Response(200, content=make_kernel_archive())
        )
        (work_dir / "defconfig").unlink()
        runner = FakeToolRunner()

        with pytest.raises(PipelineError) as exc_info:
            run(work_dir, dest_dir, runner)

        assert exc_info.value.stage == PipelineStage.CONFIGURE
        assert runner.programs == ["tar"]

    @respx.mock
    def test_unpack_failure(self, work_dir, dest_dir):
        """Should fail at unpack when the archive is corrupt."""
        respx.get(SOURCE.url).mock(return_value=httpx.Response(200, content=b"junk"))

        def failing_tar(cmd, cwd=None, env=None, stdin=None):
            raise ToolExecutionError("tar xf abc123.tar.gz: exit status 2", 2)

        with httpx.Client() as client, pytest.raises(PipelineError) as exc_info:
            run_pipeline(
                client, work_dir, dest_dir, dest_dir, source=SOURCE, runner=failing_tar
            )

        assert exc_info.value.stage == PipelineStage.UNPACK
        # The downloaded archive is left in place for inspection
        assert (work_dir / SOURCE.archive_name).exists()

    @respx.mock
    def test_harvest_failure(self, work_dir, dest_dir):
        """Should fail at harvest when a build output is missing."""
        respx.get(SOURCE.url).mock(
            return_value=httpx.Response(200, content=make_kernel_archive())
        )

        class NoOutputRunner(FakeToolRunner):
            def __call__(self, cmd, cwd=None, env=None, stdin=None):
                if cmd[0] == "make":
                    self.calls.append({"cmd": list(cmd)})
                    return
                super().__call__(cmd, cwd=cwd, env=env, stdin=stdin)

        with pytest.raises(PipelineError) as exc_info:
            run(work_dir, dest_dir, NoOutputRunner())

        assert exc_info.value.stage == PipelineStage.HARVEST
        assert exc_info.value.code == "harvest_error"


class TestInjectDefconfig:
    """Tests for inject_defconfig function."""

    def test_copies_into_slot(self, tmp_path):
        """Should place the defconfig at arch/<arch>/configs/<name>."""
        workspace = tmp_path / "linux"
        (workspace / "arch" / "arm64" / "configs").mkdir(parents=True)
        defconfig = tmp_path / "defconfig"
        defconfig.write_text("CONFIG_X=y\n")

        dest = inject_defconfig(defconfig, workspace, BOARD)

        assert dest == workspace / "arch/arm64/configs/gooniebox_defconfig"
        assert dest.read_text() == "CONFIG_X=y\n"


class TestDescribePlan:
    """Tests for describe_plan function."""

    def test_plan_contents(self, work_dir, dest_dir):
        """Should describe stages, commands and artifacts without side effects."""
        (work_dir / "0001-a.patch").write_text("")

        plan = describe_plan(work_dir, dest_dir, dest_dir, source=SOURCE, jobs=3)

        assert plan["source_url"] == SOURCE.url
        assert plan["workspace"] == str(work_dir.resolve() / "linux-abc123")
        assert plan["patches"] == ["0001-a.patch"]
        assert plan["stages"] == [
            "fetch",
            "unpack",
            "configure",
            "patch",
            "compile",
            "harvest",
        ]
        assert plan["commands"][1] == ["make", "Image.gz", "dtbs", "modules", "-j3"]
        assert len(plan["artifacts"]) == 6
        assert not (work_dir / "linux-abc123").exists()
