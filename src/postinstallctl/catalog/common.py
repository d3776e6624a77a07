"""Helpers shared by catalog steps."""
from __future__ import annotations

import io
import os
import shutil
import zipfile
from collections.abc import Sequence
from pathlib import Path

from ..errors import StepFailure
from ..files import chown_tree, ensure_line, set_assignment
from ..tasks.models import ExecutionContext, StepAction, StepCheck

ZSHRC_MARKER = "# set by postinstall"


def repair_packages(ctx: ExecutionContext) -> None:
    """Recovery for package installs: fix a broken dpkg state."""
    ctx.apt.repair()


def install_missing(ctx: ExecutionContext, packages: Sequence[str]) -> str:
    """Install whichever of *packages* are missing."""
    missing = ctx.apt.missing(packages)
    if not missing:
        return "all packages present"
    ctx.apt.install(missing)
    return f"installed {len(missing)} package(s): {', '.join(missing)}"


def zshrc(ctx: ExecutionContext) -> Path:
    """Return the target's ``.zshrc`` path."""
    return ctx.home / ".zshrc"


def ensure_zshrc_line(ctx: ExecutionContext, line: str) -> bool:
    """Append *line* to the target's ``.zshrc`` if missing."""
    path = zshrc(ctx)
    changed = ensure_line(path, line, marker=ZSHRC_MARKER)
    if changed:
        ctx.chown_to_target(path)
    return changed


def set_zshrc_alias(ctx: ExecutionContext, name: str, command: str) -> bool:
    """Replace or append ``alias name='command'`` in the target's ``.zshrc``."""
    path = zshrc(ctx)
    changed = set_assignment(path, f"alias {name}", f"'{command}'", marker=ZSHRC_MARKER)
    if changed:
        ctx.chown_to_target(path)
    return changed


def ensure_target_dir(ctx: ExecutionContext, path: Path) -> Path:
    """Create *path* (and missing parents below the home) owned by the target."""
    path = Path(path)
    missing: list[Path] = []
    current = path
    while not current.exists() and current != current.parent:
        missing.append(current)
        current = current.parent
    path.mkdir(parents=True, exist_ok=True)
    for created in reversed(missing):
        ctx.chown_to_target(created)
    return path


def download_for_target(
    ctx: ExecutionContext,
    url: str,
    destination: Path,
    *,
    mode: int = 0o644,
) -> Path:
    """Download *url* into the target's home and hand it over."""
    ensure_target_dir(ctx, Path(destination).parent)
    ctx.http.download(url, destination, mode=mode)
    ctx.chown_to_target(destination)
    return Path(destination)


def setup_venv(
    ctx: ExecutionContext,
    project: Path,
    *pip_args: str,
) -> None:
    """Create ``<project>/env`` as the target and pip install *pip_args* into it."""
    ctx.run_as_target(["python3", "-m", "venv", "env"], cwd=project)
    pip = project / "env" / "bin" / "pip"
    ctx.run_as_target([pip, "install", "--upgrade", "pip"], cwd=project)
    if pip_args:
        ctx.run_as_target([pip, "install", *pip_args], cwd=project)


def ensure_npm(ctx: ExecutionContext) -> None:
    """Install node and npm through apt when npm is unavailable."""
    if ctx.npm.available():
        return
    ctx.apt.install(["nodejs", "npm"])
    if not ctx.npm.available():
        raise StepFailure("npm is still unavailable after installing nodejs/npm.")


def on_path(name: str, ctx: ExecutionContext) -> bool:
    """Return ``True`` when *name* resolves on root's or the target's PATH."""
    search = os.pathsep.join(
        [str(ctx.home / ".local" / "bin"), os.environ.get("PATH", ""), "/usr/local/bin"]
    )
    return shutil.which(name, path=search) is not None


def extract_zip(data: bytes, destination: Path, *, strip_top: bool = False) -> list[Path]:
    """Extract the zip archive *data* below *destination*, keeping file modes.

    Members that would land outside *destination* are rejected. With
    *strip_top* the leading directory of every member is dropped.
    """
    destination = Path(destination)
    root = destination.resolve()
    written: list[Path] = []
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            for info in archive.infolist():
                name = info.filename
                if strip_top:
                    name = name.partition("/")[2]
                if not name:
                    continue
                target = (destination / name).resolve()
                if target != root and root not in target.parents:
                    raise StepFailure(f"Refusing to extract {info.filename} outside {destination}.")
                if info.is_dir():
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(archive.read(info))
                mode = (info.external_attr >> 16) & 0o777
                if mode:
                    target.chmod(mode)
                written.append(target)
    except zipfile.BadZipFile as exc:
        raise StepFailure(f"Downloaded archive is not a zip file: {exc}") from exc
    return written


def clone_tool(ctx: ExecutionContext, url: str, *parts: str, depth: int | None = 1) -> Path:
    """Clone or update *url* under the target's tools directory."""
    destination = ctx.tools_path(*parts)
    ensure_target_dir(ctx, destination.parent)
    ctx.git.clone_or_update(url, destination, depth=depth)
    return destination


def chown_to(ctx: ExecutionContext, path: Path, uid: int, gid: int) -> None:
    """Hand *path* to an arbitrary uid/gid (e.g. a container user) when elevated."""
    if ctx.identity.is_elevated:
        chown_tree(path, uid, gid)


# Step factories -----------------------------------------------------------

def apt_step(*packages: str) -> tuple[StepAction, StepCheck]:
    """Return ``(action, check)`` installing *packages* through apt."""

    def check(ctx: ExecutionContext) -> bool:
        return not ctx.apt.missing(packages)

    def action(ctx: ExecutionContext) -> str:
        return install_missing(ctx, packages)

    return action, check


def pipx_step(name: str, spec: str | None = None) -> tuple[StepAction, StepCheck]:
    """Return ``(action, check)`` installing *spec* (default *name*) with pipx."""

    def check(ctx: ExecutionContext) -> bool:
        return ctx.pipx.is_installed(name)

    def action(ctx: ExecutionContext) -> str:
        ctx.pipx.install(spec or name)
        ctx.pipx.ensurepath()
        return f"{name} installed with pipx"

    return action, check


def npm_step(package: str) -> tuple[StepAction, StepCheck]:
    """Return ``(action, check)`` installing *package* globally with npm."""

    def check(ctx: ExecutionContext) -> bool:
        return ctx.npm.is_installed(package)

    def action(ctx: ExecutionContext) -> str:
        ensure_npm(ctx)
        ctx.npm.install_global(package)
        return f"{package} installed globally"

    return action, check


__all__ = [
    "ZSHRC_MARKER",
    "apt_step",
    "chown_to",
    "clone_tool",
    "download_for_target",
    "ensure_npm",
    "ensure_target_dir",
    "ensure_zshrc_line",
    "extract_zip",
    "install_missing",
    "npm_step",
    "on_path",
    "pipx_step",
    "repair_packages",
    "set_zshrc_alias",
    "setup_venv",
    "zshrc",
]
