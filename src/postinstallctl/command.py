"""Subprocess execution with consistent logging, timeouts and errors."""
from __future__ import annotations

import logging
import os
import shlex
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from .errors import StepFailure

logger = logging.getLogger("postinstallctl.command")


class CommandError(StepFailure):
    """Raised when an external command fails, times out or is missing."""

    def __init__(self, message: str, *, argv: Sequence[str], returncode: int | None = None) -> None:
        """Store the failing command alongside the message."""
        super().__init__(message)
        self.argv = list(argv)
        self.returncode = returncode


def format_argv(argv: Sequence[str]) -> str:
    """Return *argv* quoted for display."""
    return " ".join(shlex.quote(str(arg)) for arg in argv)


@dataclass(slots=True)
class CommandRunner:
    """Run argument vectors (never shell strings) with a default timeout."""

    timeout: float | None = 1800.0

    def run(
        self,
        argv: Sequence[str | os.PathLike[str]],
        *,
        env: Mapping[str, str] | None = None,
        cwd: str | os.PathLike[str] | None = None,
        check: bool = True,
        input_text: str | None = None,
        timeout: float | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Execute *argv*, raising :class:`CommandError` on failure when *check*."""
        args = [str(arg) for arg in argv]
        if not args:
            raise CommandError("Refusing to run an empty command.", argv=args)
        logger.debug("CMD %s", format_argv(args))
        effective_timeout = self.timeout if timeout is None else timeout
        try:
            result = subprocess.run(  # noqa: S603
                args,
                input=input_text,
                capture_output=True,
                text=True,
                check=False,
                cwd=str(cwd) if cwd is not None else None,
                env=dict(os.environ, **dict(env)) if env else None,
                timeout=effective_timeout,
            )
        except FileNotFoundError as exc:
            raise CommandError(f"{args[0]} not found: {exc}", argv=args) from exc
        except subprocess.TimeoutExpired as exc:
            raise CommandError(
                f"{format_argv(args)} timed out after {effective_timeout:g}s",
                argv=args,
            ) from exc
        if result.stdout:
            logger.debug("STDOUT %s", result.stdout.strip())
        if result.stderr:
            logger.debug("STDERR %s", result.stderr.strip())
        if check and result.returncode != 0:
            stderr = (result.stderr or "").strip()
            stdout = (result.stdout or "").strip()
            message = stderr or stdout or "no output"
            raise CommandError(
                f"{format_argv(args)} failed (exit {result.returncode}): {message}",
                argv=args,
                returncode=result.returncode,
            )
        return result

    def succeeds(
        self,
        argv: Sequence[str | os.PathLike[str]],
        *,
        env: Mapping[str, str] | None = None,
        cwd: str | os.PathLike[str] | None = None,
    ) -> bool:
        """Return ``True`` when *argv* exits zero (missing binaries count as failure)."""
        try:
            result = self.run(argv, env=env, cwd=cwd, check=False)
        except CommandError:
            return False
        return result.returncode == 0


__all__ = ["CommandError", "CommandRunner", "format_argv"]
