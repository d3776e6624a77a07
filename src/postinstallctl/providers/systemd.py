"""Systemd provider for enabling and restarting system services."""
from __future__ import annotations

import subprocess
from dataclasses import dataclass

from ..command import CommandError, CommandRunner


class SystemdError(CommandError):
    """Raised when systemd operations fail."""


@dataclass(slots=True)
class SystemdProvider:
    """Drive ``systemctl`` for services the catalog depends on."""

    runner: CommandRunner
    systemctl_bin: str = "systemctl"

    def enable(self, unit: str, *, now: bool = False) -> subprocess.CompletedProcess[str]:
        """Enable *unit*, optionally starting it immediately."""
        if now:
            return self._systemctl("enable", "--now", unit)
        return self._systemctl("enable", unit)

    def restart(self, unit: str) -> subprocess.CompletedProcess[str]:
        """Restart *unit*."""
        return self._systemctl("restart", unit)

    def is_enabled(self, unit: str) -> bool:
        """Return ``True`` when *unit* is enabled."""
        return self._query("is-enabled", unit)

    def is_active(self, unit: str) -> bool:
        """Return ``True`` when *unit* is running."""
        return self._query("is-active", unit)

    # ------------------------------------------------------------------
    def _query(self, command: str, unit: str) -> bool:
        try:
            result = self._systemctl(command, "--quiet", unit, check=False)
        except SystemdError:
            return False
        return result.returncode == 0

    def _systemctl(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        command = [self.systemctl_bin, *args]
        try:
            return self.runner.run(command, check=check)
        except CommandError as exc:
            raise SystemdError(
                f"{self.systemctl_bin} {args[0]} failed: {exc}",
                argv=exc.argv,
                returncode=exc.returncode,
            ) from exc


__all__ = ["SystemdError", "SystemdProvider"]
