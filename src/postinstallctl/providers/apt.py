"""APT/dpkg provider: non-interactive package installs and broken-state repair."""
from __future__ import annotations

import logging
import subprocess
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path

from ..command import CommandError, CommandRunner
from ..config import AptConfig

logger = logging.getLogger("postinstallctl.providers.apt")

NONINTERACTIVE_ENV: dict[str, str] = {
    "DEBIAN_FRONTEND": "noninteractive",
    "NEEDRESTART_MODE": "a",
    "APT_LISTCHANGES_FRONTEND": "none",
}


class AptError(CommandError):
    """Raised when an apt/dpkg operation fails."""


@dataclass(slots=True)
class AptProvider:
    """Shell out to ``apt-get``/``dpkg`` with a non-interactive environment."""

    runner: CommandRunner
    apt_get_bin: str = "apt-get"
    dpkg_bin: str = "dpkg"
    dpkg_query_bin: str = "dpkg-query"

    @classmethod
    def from_config(cls, runner: CommandRunner, config: AptConfig) -> AptProvider:
        """Build a provider from the ``apt`` configuration section."""
        return cls(
            runner=runner,
            apt_get_bin=config.apt_get_bin,
            dpkg_bin=config.dpkg_bin,
            dpkg_query_bin=config.dpkg_query_bin,
        )

    def update(self) -> subprocess.CompletedProcess[str]:
        """Refresh package indexes."""
        return self._apt("update", "-y")

    def upgrade(self) -> subprocess.CompletedProcess[str]:
        """Upgrade installed packages."""
        return self._apt("-y", "upgrade")

    def install(self, packages: Sequence[str]) -> subprocess.CompletedProcess[str]:
        """Install *packages* (already-installed ones are a no-op for apt)."""
        if not packages:
            raise AptError("No packages requested.", argv=[self.apt_get_bin, "install"])
        return self._apt("install", "-y", *packages)

    def install_deb(self, path: Path) -> subprocess.CompletedProcess[str]:
        """Install a local ``.deb`` resolving its dependencies."""
        deb = Path(path).resolve()
        try:
            return self._apt("install", "-y", str(deb))
        except CommandError as exc:
            logger.warning("apt could not install %s (%s); falling back to dpkg -i", deb, exc)
        self._run([self.dpkg_bin, "-i", str(deb)], check=False)
        return self._apt("-y", "-f", "install")

    def repair(self) -> None:
        """Recover from an interrupted or conflicting dpkg state.

        Runs ``--fix-broken install`` allowing file overwrites; when that fails,
        ``dpkg --configure -a`` and the fix-broken pass are retried once.
        """
        fix_broken = ("-o", "Dpkg::Options::=--force-overwrite", "--fix-broken", "install", "-y")
        try:
            self._apt(*fix_broken)
            return
        except CommandError as exc:
            logger.warning("fix-broken install failed: %s", exc)
        self._run([self.dpkg_bin, "--configure", "-a"], check=False)
        self._apt(*fix_broken)

    def autoremove(self) -> subprocess.CompletedProcess[str]:
        """Remove automatically installed packages no longer needed."""
        return self._apt("-y", "autoremove")

    def autoclean(self) -> subprocess.CompletedProcess[str]:
        """Drop obsolete archives from the package cache."""
        return self._apt("-y", "autoclean")

    def is_installed(self, package: str) -> bool:
        """Return ``True`` when dpkg reports *package* as installed."""
        # Glob patterns such as ``open-vm-tools*`` are not dpkg package names.
        name = package.rstrip("*")
        result = self._run(
            [self.dpkg_query_bin, "-W", "-f=${Status}", name],
            check=False,
        )
        return result.returncode == 0 and "install ok installed" in (result.stdout or "")

    def missing(self, packages: Iterable[str]) -> list[str]:
        """Return the subset of *packages* that is not installed, in order."""
        return [package for package in packages if not self.is_installed(package)]

    # ------------------------------------------------------------------
    def _apt(self, *args: str) -> subprocess.CompletedProcess[str]:
        return self._run([self.apt_get_bin, *args], check=True)

    def _run(self, argv: Sequence[str], *, check: bool) -> subprocess.CompletedProcess[str]:
        try:
            return self.runner.run(argv, env=NONINTERACTIVE_ENV, check=check)
        except CommandError as exc:
            raise AptError(str(exc), argv=exc.argv, returncode=exc.returncode) from exc


__all__ = ["AptError", "AptProvider", "NONINTERACTIVE_ENV"]
