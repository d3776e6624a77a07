"""pipx installs into the target user's environment."""
from __future__ import annotations

import json
from dataclasses import dataclass

from ..command import CommandError
from ..identity import TargetExecutor


@dataclass(slots=True)
class PipxProvider:
    """Install Python applications with pipx as the target user."""

    target: TargetExecutor
    pipx_bin: str = "pipx"

    def installed(self) -> set[str]:
        """Return the names of the venvs pipx manages for the target."""
        try:
            result = self.target.run([self.pipx_bin, "list", "--json"], check=False)
        except CommandError:
            return set()
        if result.returncode != 0:
            return set()
        try:
            document = json.loads(result.stdout or "{}")
        except json.JSONDecodeError:
            return set()
        venvs = document.get("venvs", {}) if isinstance(document, dict) else {}
        return {str(name) for name in venvs}

    def is_installed(self, name: str) -> bool:
        """Return ``True`` when pipx already manages *name*."""
        return name in self.installed()

    def install(self, spec: str) -> None:
        """Install *spec* (a package name or ``git+`` URL)."""
        self.target.run([self.pipx_bin, "install", spec])

    def ensurepath(self) -> None:
        """Make sure the pipx bin directory is on the target's PATH."""
        self.target.run([self.pipx_bin, "ensurepath"])


__all__ = ["PipxProvider"]
