"""Global npm package installs."""
from __future__ import annotations

import json
from dataclasses import dataclass

from ..command import CommandError, CommandRunner


@dataclass(slots=True)
class NpmProvider:
    """Install npm packages globally (as root)."""

    runner: CommandRunner
    npm_bin: str = "npm"

    def available(self) -> bool:
        """Return ``True`` when npm can be executed."""
        return self.runner.succeeds([self.npm_bin, "--version"])

    def is_installed(self, package: str) -> bool:
        """Return ``True`` when *package* is installed globally."""
        try:
            result = self.runner.run(
                [self.npm_bin, "ls", "-g", "--depth=0", "--json", package],
                check=False,
            )
        except CommandError:
            return False
        try:
            document = json.loads(result.stdout or "{}")
        except json.JSONDecodeError:
            return False
        dependencies = document.get("dependencies", {}) if isinstance(document, dict) else {}
        return package in dependencies

    def install_global(self, package: str) -> None:
        """Install *package* globally."""
        self.runner.run([self.npm_bin, "install", "-g", package])


__all__ = ["NpmProvider"]
