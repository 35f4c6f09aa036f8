"""Thin CLI wrapper for rpi_kernel_build.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from rpi_kernel_build import __version__
from rpi_kernel_build.config import Settings, get_settings, print_settings_json

app = typer.Typer(
    name="kbuild",
    help="Raspberry Pi kernel build - reproducible cross-compilation of a pinned kernel",
    no_args_is_help=True,
)
console = Console()

logger = logging.getLogger("rpi_kernel_build")


def configure_logging(level: str) -> None:
    """Route package logging through a Rich handler at the given level."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"rpi-kernel-build version {__version__}")
        raise typer.Exit()


def _resolve_settings(
    work_dir: Path | None = None,
    dest_dir: Path | None = None,
    modules_dir: Path | None = None,
    jobs: int | None = None,
) -> Settings:
    """Apply CLI overrides on top of environment settings."""
    settings = get_settings()
    overrides = {
        "work_dir": work_dir,
        "dest_dir": dest_dir,
        "modules_dir": modules_dir,
        "jobs": jobs,
    }
    return settings.model_copy(
        update={k: v for k, v in overrides.items() if v is not None}
    )


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Raspberry Pi kernel build - reproducible cross-compilation of a pinned kernel."""


@app.command()
def build(
    work_dir: Annotated[
        Path | None,
        typer.Option("--work-dir", "-w", help="Directory with defconfig and patches"),
    ] = None,
    dest_dir: Annotated[
        Path | None,
        typer.Option("--dest-dir", "-d", help="Staging directory for artifacts"),
    ] = None,
    modules_dir: Annotated[
        Path | None,
        typer.Option("--modules-dir", help="INSTALL_MOD_PATH for kernel modules"),
    ] = None,
    jobs: Annotated[
        int | None,
        typer.Option("--jobs", "-j", min=1, help="Parallel make jobs"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Fetch, patch, compile and harvest the kernel."""
    import httpx

    from rpi_kernel_build.builds.service import PipelineError, run_pipeline

    settings = _resolve_settings(work_dir, dest_dir, modules_dir, jobs)
    configure_logging(settings.log_level)

    try:
        with httpx.Client(follow_redirects=True) as client:
            result = run_pipeline(
                client,
                settings.work_dir,
                settings.dest_dir,
                settings.modules_dir,
                jobs=settings.jobs,
                patch_pattern=settings.patch_pattern,
                defconfig_file=settings.defconfig_file,
                download_timeout=settings.download_timeout,
            )
    except PipelineError as e:
        logger.error("Build failed at stage %s: %s", e.stage.value, e)
        if json_output:
            typer.echo(
                json.dumps(
                    {
                        "success": False,
                        "stage": e.stage.value,
                        "code": e.code,
                        "error": str(e),
                    },
                    indent=2,
                )
            )
        raise typer.Exit(code=1) from None

    if json_output:
        typer.echo(json.dumps({"success": True, **result.to_dict()}, indent=2))
        return

    console.print("[green]Build succeeded[/green]")
    console.print(f"  Workspace: {result.workspace}")
    console.print(f"  Patches applied: {len(result.patches)}")
    console.print("[bold]Artifacts:[/bold]")
    for a in result.artifacts:
        console.print(f"  {a.path}  mode={a.mode:04o}  sha256={a.sha256[:16]}...")


@app.command()
def plan(
    work_dir: Annotated[
        Path | None,
        typer.Option("--work-dir", "-w", help="Directory with defconfig and patches"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show the fixed build plan without running it."""
    from rpi_kernel_build.builds.service import describe_plan

    settings = _resolve_settings(work_dir)
    info = describe_plan(
        settings.work_dir,
        settings.dest_dir,
        settings.modules_dir,
        jobs=settings.jobs,
        patch_pattern=settings.patch_pattern,
        defconfig_file=settings.defconfig_file,
    )

    if json_output:
        typer.echo(json.dumps(info, indent=2))
        return

    console.print("[bold]Build plan:[/bold]")
    console.print(f"  Source:      {info['source_url']}")
    console.print(f"  Workspace:   {info['workspace']}")
    console.print(f"  Config slot: {info['config_slot']}")
    console.print(f"  Stages:      {' -> '.join(info['stages'])}")
    console.print()
    console.print("[bold]Patches:[/bold]")
    if info["patches"]:
        for name in info["patches"]:
            console.print(f"  {name}")
    else:
        console.print("  (none)")
    console.print()
    console.print("[bold]Commands:[/bold]")
    for cmd in info["commands"]:
        console.print(f"  {' '.join(cmd)}", markup=False)
    console.print()
    console.print("[bold]Artifacts:[/bold]")
    for a in info["artifacts"]:
        console.print(f"  {a['source']} -> {a['destination']}")


@app.command()
def patches(
    work_dir: Annotated[
        Path | None,
        typer.Option("--work-dir", "-w", help="Directory to search for patches"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List patches in the order they will be applied."""
    from rpi_kernel_build.builds.patches import discover_patches

    settings = _resolve_settings(work_dir)
    found = discover_patches(settings.work_dir, settings.patch_pattern)

    if json_output:
        typer.echo(json.dumps([p.name for p in found], indent=2))
        return

    if not found:
        console.print("[yellow]No patches found[/yellow]")
        return

    console.print(f"[bold]Found {len(found)} patch(es):[/bold]")
    for i, p in enumerate(found, start=1):
        console.print(f"  {i:3d}. {p.name}")


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        typer.echo(print_settings_json(settings))
        return

    jobs_display = str(settings.jobs) if settings.jobs else "(CPU count)"
    timeout_display = (
        str(settings.download_timeout) if settings.download_timeout else "(none)"
    )
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Work directory:      {settings.work_dir}")
    console.print(f"  Staging directory:   {settings.dest_dir}")
    console.print(f"  Modules directory:   {settings.modules_dir}")
    console.print()
    console.print("[bold]Inputs:[/bold]")
    console.print(f"  Defconfig file:      {settings.defconfig_file}")
    console.print(f"  Patch pattern:       {settings.patch_pattern}")
    console.print()
    console.print("[bold]Operational:[/bold]")
    console.print(f"  Jobs:                {jobs_display}")
    console.print(f"  Download timeout:    {timeout_display}")
    console.print(f"  Log level:           {settings.log_level}")


if __name__ == "__main__":
    app()
