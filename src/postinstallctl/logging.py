"""Structured operation logging plus the human-facing console log.

Every CLI invocation is recorded as one JSON object appended to
``<logs_dir>/operations.jsonl``. An operation collects sub-steps (one per
provisioning step for ``run``) and a final result. When the log directory is
unavailable the logger disables itself rather than failing the run.

Human progress messages go through the standard :mod:`logging` module and are
rendered by :class:`rich.logging.RichHandler`.
"""
from __future__ import annotations

import json
import logging
import os
import secrets
import time
from collections.abc import Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

OPERATIONS_LOG_NAME = "operations.jsonl"
CONSOLE_LOGGER_NAME = "postinstallctl"


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


def _sanitize(value: object) -> object:
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [_sanitize(item) for item in value]
    return str(value)


def _as_list(values: Iterable[object] | None) -> list[object]:
    if values is None:
        return []
    return [_sanitize(item) for item in values]


def _actor() -> dict[str, object]:
    return {
        "uid": os.geteuid(),
        "sudo_user": os.environ.get("SUDO_USER"),
        "pid": os.getpid(),
    }


class OperationScope:
    """Mutable record for a single logged operation."""

    def __init__(
        self,
        logger: StructuredLogger,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> None:
        """Initialise the scope for *command*."""
        self._logger = logger
        self.op_id = f"{datetime.now(tz=UTC):%Y%m%dT%H%M%SZ}-{secrets.token_hex(3)}"
        self.command = command
        self.args = dict(args or {})
        self.target = dict(target or {})
        self.started_at = _now_iso()
        self._start = time.perf_counter()
        self.steps: list[dict[str, object]] = []
        self.result: dict[str, object] | None = None

    def add_step(self, step_id: str, *, status: str, detail: str | None = None) -> None:
        """Record a sub-step of the operation."""
        entry: dict[str, object] = {"id": step_id, "status": status}
        if detail:
            entry["detail"] = detail
        self.steps.append(entry)

    def success(
        self,
        message: str,
        *,
        changed: int | None = None,
        warnings: Iterable[object] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation successful."""
        self._set_result(
            "success",
            message,
            changed=changed,
            warnings=warnings,
            context=context,
        )

    def warning(
        self,
        message: str,
        *,
        warnings: Iterable[object] | None = None,
        errors: Iterable[object] | None = None,
        changed: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._set_result(
            "warning",
            message,
            warnings=warnings,
            errors=errors,
            changed=changed,
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        rc: int | None = None,
        errors: Iterable[object] | None = None,
        warnings: Iterable[object] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation failed."""
        self._set_result(
            "error",
            message,
            rc=rc,
            errors=errors if errors is not None else [message],
            warnings=warnings,
            context=context,
        )

    def _set_result(
        self,
        status: str,
        message: str,
        *,
        rc: int | None = None,
        changed: int | None = None,
        warnings: Iterable[object] | None = None,
        errors: Iterable[object] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        result: dict[str, object] = {
            "status": status,
            "message": message,
            "warnings": _as_list(warnings),
            "errors": _as_list(errors),
        }
        if rc is not None:
            result["rc"] = rc
        if changed is not None:
            result["changed"] = changed
        if context:
            result["context"] = _sanitize(context)
        self.result = result

    def to_record(self) -> dict[str, object]:
        """Return the JSON-serialisable record for this operation."""
        return {
            "op_id": self.op_id,
            "command": self.command,
            "args": _sanitize(self.args),
            "target": _sanitize(self.target),
            "actor": _actor(),
            "started_at": self.started_at,
            "finished_at": _now_iso(),
            "duration_ms": int((time.perf_counter() - self._start) * 1000),
            "steps": list(self.steps),
            "result": self.result,
        }


class StructuredLogger:
    """Append operation records to a JSON-lines log under *log_dir*."""

    def __init__(self, log_dir: Path) -> None:
        """Prepare the log directory, disabling the logger when unavailable."""
        self._log_dir = Path(log_dir).expanduser()
        self._operations_log_path = self._log_dir / OPERATIONS_LOG_NAME
        self._enabled = True
        try:
            self._log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            self._enabled = False
            logging.getLogger(__name__).debug(
                "Structured logging disabled; cannot create %s: %s", self._log_dir, exc
            )

    @property
    def path(self) -> Path:
        """Return the operations log path."""
        return self._operations_log_path

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Yield a scope for *command* and persist it on exit."""
        scope = OperationScope(self, command, args=args, target=target)
        try:
            yield scope
        except Exception as exc:
            if scope.result is None:
                scope.error(f"{command} failed: {exc}")
            raise
        finally:
            if scope.result is None:
                scope.success(f"{command} completed.")
            self._write(scope.to_record())

    def _write(self, record: Mapping[str, object]) -> None:
        if not self._enabled:
            return
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=False))
                handle.write("\n")
        except OSError as exc:
            self._enabled = False
            logging.getLogger(__name__).debug(
                "Structured logging disabled after write failure: %s", exc
            )


def configure_console_logging(
    console: Console | None = None,
    *,
    level: int = logging.INFO,
) -> logging.Logger:
    """Attach a rich console handler to the package logger (idempotent).

    A later call with a different *console* redirects the existing handler.
    """
    logger = logging.getLogger(CONSOLE_LOGGER_NAME)
    logger.setLevel(level)
    existing = [handler for handler in logger.handlers if isinstance(handler, RichHandler)]
    if existing:
        if console is not None:
            existing[0].console = console
    else:
        handler = RichHandler(
            console=console,
            show_path=False,
            markup=False,
            rich_tracebacks=False,
        )
        handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
        logger.addHandler(handler)
    logger.propagate = False
    return logger


__all__ = [
    "CONSOLE_LOGGER_NAME",
    "OPERATIONS_LOG_NAME",
    "OperationScope",
    "StructuredLogger",
    "configure_console_logging",
]
