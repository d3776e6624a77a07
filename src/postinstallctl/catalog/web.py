"""Web-application tooling (``--web``)."""
from __future__ import annotations

from pathlib import Path

from ..tasks.models import ExecutionContext
from ..tasks.registry import TaskRegistry
from .common import clone_tool, setup_venv

DIRSEARCH_REPOSITORY = "https://github.com/maurosoria/dirsearch"


def _dirsearch_dir(ctx: ExecutionContext) -> Path:
    return ctx.tools_path("web", "dirsearch")


def dirsearch_installed(ctx: ExecutionContext) -> bool:
    """Return ``True`` when dirsearch is checked out with its virtualenv."""
    directory = _dirsearch_dir(ctx)
    return ctx.git.is_checkout(directory) and (directory / "env" / "bin" / "python").exists()


def install_dirsearch(ctx: ExecutionContext) -> str:
    """Clone dirsearch and install its requirements into a private venv."""
    directory = clone_tool(ctx, DIRSEARCH_REPOSITORY, "web", "dirsearch")
    setup_venv(ctx, directory, "-r", "requirements.txt")
    return f"dirsearch ready in {directory}"


def register(registry: TaskRegistry) -> None:
    """Append the web group to *registry*."""
    registry.register(
        "dirsearch",
        install_dirsearch,
        dirsearch_installed,
        group="web",
        description="dirsearch checkout with virtualenv",
    )


__all__ = ["dirsearch_installed", "install_dirsearch", "register"]
