"""Git checkouts owned by the target user."""
from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from ..identity import TargetExecutor

logger = logging.getLogger("postinstallctl.providers.git")


@dataclass(slots=True)
class GitProvider:
    """Clone or fast-forward repositories as the target user."""

    target: TargetExecutor
    git_bin: str = "git"

    @staticmethod
    def is_checkout(path: Path) -> bool:
        """Return ``True`` when *path* is a git working tree."""
        return (Path(path) / ".git").is_dir()

    def clone_or_update(
        self,
        url: str,
        destination: Path,
        *,
        depth: int | None = 1,
        recurse_submodules: bool = True,
    ) -> str:
        """Fast-forward an existing checkout or clone a fresh one.

        A non-checkout directory in the way is removed first. Returns
        ``"updated"`` or ``"cloned"``.
        """
        destination = Path(destination)
        if self.is_checkout(destination):
            args = [self.git_bin, "-C", str(destination), "pull", "--ff-only"]
            if recurse_submodules:
                args.append("--recurse-submodules")
            self.target.run(args)
            return "updated"

        if destination.exists():
            logger.info("Replacing non-git directory %s", destination)
            shutil.rmtree(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        args = [self.git_bin, "clone"]
        if depth is not None:
            args.extend(["--depth", str(depth)])
        args.extend([url, str(destination)])
        self.target.run(args)
        return "cloned"

    def checkout(self, destination: Path, ref: str) -> None:
        """Check out *ref* (branch, tag or commit) in *destination*."""
        self.target.run([self.git_bin, "-C", str(destination), "checkout", "--quiet", ref])


__all__ = ["GitProvider"]
